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

from abc import ABC, abstractmethod
from typing import Optional


class LockNotAcquiredError(Exception):
    def __init__(self, key: str):
        super().__init__(f"Lock {key} is held by another worker")
        self.key = key


class DistributedLock(ABC):
    """Async lock guarding one key"""

    def __init__(self, key: str):
        if not key:
            raise ValueError("Lock key is required")
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    @abstractmethod
    async def acquire(self, timeout: Optional[float] = None) -> bool:
        """Try to take the lock; False when it could not be taken in time"""

    @abstractmethod
    async def release(self):
        pass

    @abstractmethod
    def is_locked(self) -> bool:
        pass

    async def __aenter__(self):
        if not await self.acquire():
            raise LockNotAcquiredError(self._key)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.release()
