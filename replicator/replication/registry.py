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
from typing import Dict, Iterable, List, Optional, Type

from replicator.db.ops import ObjectStore
from replicator.replication.base import DEFAULT_ANNOTATION_PREFIX, ObjectReplicator, Replicator

logger = logging.getLogger(__name__)

# Every capability class known to the process, keyed by kind
_catalog: Dict[str, Type[ObjectReplicator]] = {}


def register_replicator(kind: str):
    """Class decorator adding a replicator to the catalog under kind"""

    def decorator(cls: Type[ObjectReplicator]) -> Type[ObjectReplicator]:
        if kind in _catalog and _catalog[kind] is not cls:
            raise ValueError(f"Replicator for kind {kind} already registered")
        cls.kind = kind
        _catalog[kind] = cls
        return cls

    return decorator


def available_kinds() -> List[str]:
    return sorted(_catalog)


class ReplicatorRegistry:
    """Active replication capabilities, keyed by source kind"""

    def __init__(self):
        self._replicators: Dict[str, Replicator] = {}

    def register(self, replicator: Replicator):
        if not replicator.kind:
            raise ValueError("Replicator has no kind")
        if replicator.kind in self._replicators:
            raise ValueError(f"Replicator for kind {replicator.kind} already registered")
        self._replicators[replicator.kind] = replicator

    def get(self, kind: str) -> Optional[Replicator]:
        return self._replicators.get(kind)

    def kinds(self) -> List[str]:
        return sorted(self._replicators)

    def __contains__(self, kind: str) -> bool:
        return kind in self._replicators


def build_registry(
    store: ObjectStore, kinds: Iterable[str], annotation_prefix: str = DEFAULT_ANNOTATION_PREFIX
) -> ReplicatorRegistry:
    registry = ReplicatorRegistry()
    for kind in kinds:
        if kind not in _catalog:
            raise ValueError(f"No replicator available for kind {kind}, available: {available_kinds()}")
        registry.register(_catalog[kind](store, annotation_prefix=annotation_prefix))
    logger.info(f"Registered replicators for kinds {registry.kinds()}")
    return registry
