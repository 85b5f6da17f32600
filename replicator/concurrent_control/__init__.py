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

from replicator.concurrent_control.base import DistributedLock, LockNotAcquiredError
from replicator.concurrent_control.redis_lock import RedisLock
from replicator.concurrent_control.threading_lock import ThreadingLock


def create_lock(lock_type: str = "threading", **kwargs) -> DistributedLock:
    if lock_type == "threading":
        return ThreadingLock(**kwargs)
    if lock_type == "redis":
        return RedisLock(**kwargs)
    raise ValueError(f"Unsupported lock type: {lock_type}")


__all__ = ["DistributedLock", "LockNotAcquiredError", "RedisLock", "ThreadingLock", "create_lock"]
