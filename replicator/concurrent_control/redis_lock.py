# Copyright 2025 ApeCloud, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.


import logging
import uuid
from typing import Optional

import redis.asyncio as redis
from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt, stop_after_delay, wait_fixed

from replicator.concurrent_control.base import DistributedLock

logger = logging.getLogger(__name__)

# Delete the key only if it still holds our value
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class RedisLock(DistributedLock):
    """
    Lock shared by all workers, held in Redis with an expiry.

    The key is taken with SET NX EX and a random value; release deletes it
    through a Lua compare-and-delete, so a lock that expired and was taken
    by another worker is never released by mistake.
    """

    def __init__(
        self,
        key: str,
        redis_url: str = "redis://localhost:6379",
        expire_time: int = 30,
        retry_times: int = 3,
        retry_delay: float = 0.1,
    ):
        if not key:
            raise ValueError("Redis lock key is required")
        super().__init__(key)
        self._redis_url = redis_url
        self._expire_time = expire_time
        self._retry_times = retry_times
        self._retry_delay = retry_delay
        self._redis_client = None
        self._release_sha = None
        self._lock_value: Optional[str] = None

    async def _get_client(self):
        if self._redis_client is None:
            client = redis.from_url(self._redis_url)
            try:
                await client.ping()
            except Exception as e:
                raise ConnectionError(f"Cannot connect to Redis at {self._redis_url}: {e}") from e
            self._release_sha = await client.script_load(RELEASE_SCRIPT)
            self._redis_client = client
        return self._redis_client

    async def _try_set(self, client, value: str) -> bool:
        try:
            return bool(await client.set(self._key, value, nx=True, ex=self._expire_time))
        except Exception as e:
            logger.warning(f"Failed to set lock {self._key}: {e}")
            return False

    async def acquire(self, timeout: Optional[float] = None) -> bool:
        if self._lock_value is not None:
            return True

        client = await self._get_client()
        value = str(uuid.uuid4())
        stop = stop_after_attempt(self._retry_times + 1)
        if timeout is not None:
            stop = stop_after_delay(timeout)

        retrying = AsyncRetrying(
            stop=stop,
            wait=wait_fixed(self._retry_delay),
            retry=retry_if_result(lambda acquired: not acquired),
            retry_error_callback=lambda retry_state: False,
        )
        acquired = await retrying(self._try_set, client, value)
        if acquired:
            self._lock_value = value
            logger.debug(f"Acquired lock {self._key}")
        return acquired

    async def release(self):
        if self._lock_value is None:
            return
        try:
            client = await self._get_client()
            released = await client.evalsha(self._release_sha, 1, self._key, self._lock_value)
            if not released:
                logger.warning(f"Lock {self._key} expired before release")
        except Exception as e:
            # The key expires on its own; local state must not stay held
            logger.error(f"Failed to release lock {self._key}: {e}")
        finally:
            self._lock_value = None

    def is_locked(self) -> bool:
        return self._lock_value is not None

    async def close(self):
        """Release the lock if held and close the connection"""
        await self.release()
        if self._redis_client is not None:
            await self._redis_client.aclose()
            self._redis_client = None
