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
from typing import List

from replicator.context import NamespacedName, ReconcileRequest
from replicator.db.ops import ObjectStore

logger = logging.getLogger(__name__)

NAME_FIELD = ".spec.source.name"
NAMESPACE_FIELD = ".spec.source.namespace"
KIND_FIELD = ".spec.source.kind"


class TriggerIndex:
    """
    Reverse lookup from a source object to the declarations that mirror it.

    Each query goes to the declaration table through its indexed source
    columns, so the answer always reflects the current set of declarations.
    """

    def __init__(self, store: ObjectStore):
        self.store = store

    async def resolve(self, kind: str, namespace: str, name: str) -> List[NamespacedName]:
        """
        Return the identities of declarations whose spec.source equals
        (kind, namespace, name) exactly. Store errors propagate.
        """
        # Empty fields are never indexed
        if not kind or not namespace or not name:
            return []

        items = await self.store.list_replicated_resources(
            field_selector={
                KIND_FIELD: kind,
                NAME_FIELD: name,
                NAMESPACE_FIELD: namespace,
            }
        )
        identities = [item.namespaced_name for item in items]
        logger.debug(f"{kind} {namespace}/{name} is the source of {len(identities)} ReplicatedResource(s)")
        return identities

    async def requests_for(self, kind: str, namespace: str, name: str) -> List[ReconcileRequest]:
        """resolve() for the watch path: failures are logged and mean no matches"""
        try:
            identities = await self.resolve(kind, namespace, name)
        except Exception as e:
            logger.warning(f"Failed to look up ReplicatedResources for {kind} {namespace}/{name}: {e}")
            return []
        return [ReconcileRequest(identity) for identity in identities]
