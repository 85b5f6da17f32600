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

import asyncio
import threading
import time
from typing import Optional, Set

from replicator.concurrent_control.base import DistributedLock

# Keys currently held in this process; a key is dropped as soon as it is released
_registry_guard = threading.Lock()
_held_keys: Set[str] = set()


def _try_hold(key: str) -> bool:
    with _registry_guard:
        if key in _held_keys:
            return False
        _held_keys.add(key)
        return True


def _drop(key: str):
    with _registry_guard:
        _held_keys.discard(key)


class ThreadingLock(DistributedLock):
    """Process-local lock; serializes work per key within one worker process"""

    def __init__(self, key: str, retry_delay: float = 0.05):
        super().__init__(key)
        self._retry_delay = retry_delay
        self._held = False

    async def acquire(self, timeout: Optional[float] = None) -> bool:
        if self._held:
            return True
        deadline = None if timeout is None else time.monotonic() + timeout
        while not _try_hold(self.key):
            if deadline is not None and time.monotonic() >= deadline:
                return False
            await asyncio.sleep(self._retry_delay)
        self._held = True
        return True

    async def release(self):
        if self._held:
            self._held = False
            _drop(self.key)

    def is_locked(self) -> bool:
        return self._held
