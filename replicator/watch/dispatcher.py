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
from replicator.db.ops import WatchEvent, WatchEventType
from replicator.index.trigger_index import TriggerIndex
from replicator.replication.registry import ReplicatorRegistry
from replicator.schema.models import REPLICATED_RESOURCE_KIND
from replicator.tasks.scheduler import TaskScheduler

logger = logging.getLogger(__name__)


class EventDispatcher:
    """
    Turns store change events into reconcile requests.

    - ReplicatedResource: on create, delete, and spec (generation) changes;
      status-only writes do not re-trigger.
    - Objects of a registered kind, when their resource version moved:
      their controlling ReplicatedResource, plus every ReplicatedResource
      that names them as source.
    """

    def __init__(self, scheduler: TaskScheduler, trigger_index: TriggerIndex, registry: ReplicatorRegistry):
        self.scheduler = scheduler
        self.trigger_index = trigger_index
        self.registry = registry

    async def requests_for(self, event: WatchEvent) -> List[ReconcileRequest]:
        if event.kind == REPLICATED_RESOURCE_KIND:
            if event.type == WatchEventType.MODIFIED and not event.generation_changed:
                return []
            return [ReconcileRequest(event.namespaced_name)]

        if event.kind not in self.registry:
            return []
        if event.type == WatchEventType.MODIFIED and not event.resource_version_changed:
            return []

        requests = []
        for ref in event.owner_references:
            if ref.controller and ref.kind == REPLICATED_RESOURCE_KIND:
                requests.append(ReconcileRequest(NamespacedName(event.namespace, ref.name)))

        logger.info(
            f"Dependent {event.namespace}/{event.name} of kind {event.kind} updated triggering a refresh"
        )
        requests.extend(await self.trigger_index.requests_for(event.kind, event.namespace, event.name))

        unique = []
        for request in requests:
            if request not in unique:
                unique.append(request)
        return unique

    async def handle(self, event: WatchEvent) -> List[ReconcileRequest]:
        requests = await self.requests_for(event)
        for request in requests:
            self.scheduler.schedule_reconcile(request)
        return requests
