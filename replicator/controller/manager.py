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
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.pool import NullPool

from replicator.config import Settings, create_engine
from replicator.context import ReconcileRequest
from replicator.controller.reconciler import ReplicatedResourceReconciler
from replicator.db.ops import ObjectStore
from replicator.index.trigger_index import TriggerIndex
from replicator.replication import ReplicatorRegistry, build_registry
from replicator.tasks.scheduler import LocalTaskScheduler, TaskScheduler, create_task_scheduler
from replicator.watch.dispatcher import EventDispatcher

logger = logging.getLogger(__name__)


class ControllerManager:
    """Wires store, capabilities, trigger index, reconciler and event dispatch together"""

    def __init__(
        self,
        store: ObjectStore,
        registry: ReplicatorRegistry,
        scheduler: TaskScheduler,
        noop_requeue_after: Optional[float] = None,
    ):
        self.store = store
        self.registry = registry
        self.scheduler = scheduler
        self.trigger_index = TriggerIndex(store)
        self.reconciler = ReplicatedResourceReconciler(store, registry, noop_requeue_after=noop_requeue_after)
        self.dispatcher = EventDispatcher(scheduler, self.trigger_index, registry)
        store.add_listener(self.dispatcher.handle)

        if isinstance(scheduler, LocalTaskScheduler) and scheduler.reconciler is None:
            scheduler.reconciler = self.reconciler

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: Optional[async_sessionmaker] = None,
        scheduler: Optional[TaskScheduler] = None,
    ) -> "ControllerManager":
        if session_factory is None:
            # Every task runs in its own event loop, so connections must not be pooled across tasks
            engine = create_engine(settings.database_url, poolclass=NullPool)
            session_factory = async_sessionmaker(engine, expire_on_commit=False)
        store = ObjectStore(session_factory)
        registry = build_registry(store, settings.enabled_kinds, annotation_prefix=settings.annotation_prefix)
        return cls(
            store,
            registry,
            scheduler or create_task_scheduler("celery"),
            noop_requeue_after=settings.noop_requeue_after,
        )

    async def enqueue_all(self) -> int:
        """Schedule a reconcile for every declaration (periodic resync)"""
        items = await self.store.list_replicated_resources()
        for rr in items:
            self.scheduler.schedule_reconcile(ReconcileRequest(rr.namespaced_name))
        logger.info(f"Resync scheduled {len(items)} ReplicatedResource(s)")
        return len(items)


_manager: Optional[ControllerManager] = None


def get_manager() -> ControllerManager:
    global _manager
    if _manager is None:
        from replicator.config import settings

        _manager = ControllerManager.from_settings(settings)
    return _manager
