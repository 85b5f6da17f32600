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

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True, order=True)
class NamespacedName:
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class ReconcileRequest:
    """A unit of work naming one declaration to bring to its desired state"""

    namespaced_name: NamespacedName

    @classmethod
    def of(cls, namespace: str, name: str) -> "ReconcileRequest":
        return cls(NamespacedName(namespace, name))

    @property
    def key(self) -> str:
        return str(self.namespaced_name)


@dataclass(frozen=True)
class ReconcileResult:
    # Seconds to wait before reconciling the same declaration again
    requeue_after: Optional[float] = None

    @property
    def requeue(self) -> bool:
        return self.requeue_after is not None
