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
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, List, Mapping, Optional, Tuple

from sqlalchemy import and_, delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from replicator.context import NamespacedName
from replicator.db.models import ReplicatedResource, StoredObject, utc_now
from replicator.exceptions import ConflictError, ObjectNotFoundError, StoreUnavailableError
from replicator.schema.models import REPLICATED_RESOURCE_KIND, OwnerReference

logger = logging.getLogger(__name__)

# Field selectors supported when listing declarations
REPLICATED_RESOURCE_FIELDS = {
    ".spec.source.name": ReplicatedResource.source_name,
    ".spec.source.namespace": ReplicatedResource.source_namespace,
    ".spec.source.kind": ReplicatedResource.source_kind,
}


class WatchEventType(str, Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass(frozen=True)
class WatchEvent:
    """Change notification emitted after every committed write"""

    type: WatchEventType
    kind: str
    namespace: str
    name: str
    old_resource_version: Optional[int] = None
    new_resource_version: Optional[int] = None
    generation_changed: bool = False
    owner_references: Tuple[OwnerReference, ...] = ()

    @property
    def namespaced_name(self) -> NamespacedName:
        return NamespacedName(self.namespace, self.name)

    @property
    def resource_version_changed(self) -> bool:
        return self.old_resource_version != self.new_resource_version


EventListener = Callable[[WatchEvent], Awaitable[None]]


def _object_event(event_type: WatchEventType, obj: StoredObject, old_rv: Optional[int] = None) -> WatchEvent:
    return WatchEvent(
        type=event_type,
        kind=obj.kind,
        namespace=obj.namespace,
        name=obj.name,
        old_resource_version=old_rv,
        new_resource_version=None if event_type == WatchEventType.DELETED else obj.resource_version,
        owner_references=tuple(obj.get_owner_references()),
    )


def _declaration_event(
    event_type: WatchEventType,
    rr: ReplicatedResource,
    old_rv: Optional[int] = None,
    generation_changed: bool = False,
) -> WatchEvent:
    return WatchEvent(
        type=event_type,
        kind=REPLICATED_RESOURCE_KIND,
        namespace=rr.namespace,
        name=rr.name,
        old_resource_version=old_rv,
        new_resource_version=None if event_type == WatchEventType.DELETED else rr.resource_version,
        generation_changed=generation_changed,
    )


class ObjectStore:
    """
    Persistent store for declarations and replicable objects.

    Reads return detached snapshots. Every update is conditioned on the
    resource_version carried by the snapshot being written back, so a
    concurrent writer makes the second write fail with ConflictError.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        if session_factory is None:
            from replicator.config import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        self._session_factory = session_factory
        self._listeners: List[EventListener] = []

    def add_listener(self, listener: EventListener):
        self._listeners.append(listener)

    async def _notify(self, event: WatchEvent):
        for listener in self._listeners:
            try:
                await listener(event)
            except Exception as e:
                logger.error(
                    f"Watch listener failed for {event.kind} {event.namespace}/{event.name}: {e}", exc_info=True
                )

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except IntegrityError as e:
            raise ConflictError(f"Object already exists: {e.orig}") from e
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Object store unavailable: {e}") from e

    # Replicable objects
    async def get_object(self, kind: str, namespace: str, name: str) -> StoredObject:
        async with self._session() as session:
            stmt = select(StoredObject).where(
                StoredObject.kind == kind, StoredObject.namespace == namespace, StoredObject.name == name
            )
            result = await session.execute(stmt)
            obj = result.scalars().first()
        if obj is None:
            raise ObjectNotFoundError(kind, namespace, name)
        return obj

    async def list_objects(self, kind: Optional[str] = None, namespace: Optional[str] = None) -> List[StoredObject]:
        async with self._session() as session:
            stmt = select(StoredObject)
            if kind is not None:
                stmt = stmt.where(StoredObject.kind == kind)
            if namespace is not None:
                stmt = stmt.where(StoredObject.namespace == namespace)
            result = await session.execute(stmt.order_by(StoredObject.namespace, StoredObject.name))
            return list(result.scalars().all())

    async def create_object(self, obj: StoredObject) -> StoredObject:
        obj.resource_version = 1
        obj.gmt_created = obj.gmt_updated = utc_now()
        async with self._session() as session:
            session.add(obj)
            await session.commit()
        logger.debug(f"Created {obj.kind} {obj.namespace}/{obj.name}")
        await self._notify(_object_event(WatchEventType.ADDED, obj))
        return obj

    async def update_object(self, obj: StoredObject) -> StoredObject:
        """Write obj back if nobody changed it since obj.resource_version was read"""
        observed = obj.resource_version
        async with self._session() as session:
            stmt = (
                update(StoredObject)
                .where(StoredObject.uid == obj.uid, StoredObject.resource_version == observed)
                .values(
                    type=obj.type,
                    data=dict(obj.data or {}),
                    annotations=dict(obj.annotations or {}),
                    owner_references=list(obj.owner_references or []),
                    resource_version=observed + 1,
                    gmt_updated=utc_now(),
                )
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            if result.rowcount != 1:
                await session.rollback()
                raise ConflictError(
                    f"Operation cannot be fulfilled on {obj.kind} {obj.namespace}/{obj.name}: "
                    f"the object has been modified; please apply your changes to the latest version"
                )
            await session.commit()
            updated = await session.get(StoredObject, obj.uid, populate_existing=True)
        await self._notify(_object_event(WatchEventType.MODIFIED, updated, old_rv=observed))
        return updated

    async def delete_object(self, kind: str, namespace: str, name: str):
        obj = await self.get_object(kind, namespace, name)
        async with self._session() as session:
            await session.execute(delete(StoredObject).where(StoredObject.uid == obj.uid))
            await session.commit()
        await self._notify(_object_event(WatchEventType.DELETED, obj, old_rv=obj.resource_version))

    # Declarations
    async def get_replicated_resource(self, namespace: str, name: str) -> ReplicatedResource:
        async with self._session() as session:
            stmt = select(ReplicatedResource).where(
                ReplicatedResource.namespace == namespace, ReplicatedResource.name == name
            )
            result = await session.execute(stmt)
            rr = result.scalars().first()
        if rr is None:
            raise ObjectNotFoundError(REPLICATED_RESOURCE_KIND, namespace, name)
        return rr

    async def list_replicated_resources(
        self, field_selector: Optional[Mapping[str, str]] = None
    ) -> List[ReplicatedResource]:
        """
        List declarations, optionally filtered by equality on indexed fields.

        Args:
            field_selector: Mapping of field path (e.g. ".spec.source.name") to
                the required value. All terms must match.
        """
        conditions = []
        for field, value in (field_selector or {}).items():
            if field not in REPLICATED_RESOURCE_FIELDS:
                raise ValueError(f"Field selector {field} is not supported")
            conditions.append(REPLICATED_RESOURCE_FIELDS[field] == value)

        async with self._session() as session:
            stmt = select(ReplicatedResource)
            if conditions:
                stmt = stmt.where(and_(*conditions))
            stmt = stmt.order_by(ReplicatedResource.namespace, ReplicatedResource.name)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def create_replicated_resource(self, rr: ReplicatedResource) -> ReplicatedResource:
        rr.generation = 1
        rr.resource_version = 1
        rr.gmt_created = rr.gmt_updated = utc_now()
        async with self._session() as session:
            session.add(rr)
            await session.commit()
        logger.info(f"Created ReplicatedResource {rr.namespace}/{rr.name}")
        await self._notify(_declaration_event(WatchEventType.ADDED, rr, generation_changed=True))
        return rr

    async def update_replicated_resource_spec(self, rr: ReplicatedResource) -> ReplicatedResource:
        """Write back spec.source; bumps generation only if the source changed"""
        observed = rr.resource_version
        current = await self.get_replicated_resource(rr.namespace, rr.name)
        spec_changed = current.source != rr.source
        async with self._session() as session:
            stmt = (
                update(ReplicatedResource)
                .where(ReplicatedResource.uid == rr.uid, ReplicatedResource.resource_version == observed)
                .values(
                    source_namespace=rr.source_namespace,
                    source_name=rr.source_name,
                    source_kind=rr.source_kind,
                    generation=ReplicatedResource.generation + (1 if spec_changed else 0),
                    resource_version=observed + 1,
                    gmt_updated=utc_now(),
                )
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            if result.rowcount != 1:
                await session.rollback()
                raise ConflictError(f"ReplicatedResource {rr.namespace}/{rr.name} has been modified")
            await session.commit()
            updated = await session.get(ReplicatedResource, rr.uid, populate_existing=True)
        await self._notify(
            _declaration_event(WatchEventType.MODIFIED, updated, old_rv=observed, generation_changed=spec_changed)
        )
        return updated

    async def update_replicated_resource_status(self, rr: ReplicatedResource) -> ReplicatedResource:
        """Write back status.phase and status.conditions (the status subresource)"""
        observed = rr.resource_version
        async with self._session() as session:
            stmt = (
                update(ReplicatedResource)
                .where(ReplicatedResource.uid == rr.uid, ReplicatedResource.resource_version == observed)
                .values(
                    phase=rr.phase,
                    conditions=list(rr.conditions or []),
                    resource_version=observed + 1,
                    gmt_updated=utc_now(),
                )
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            if result.rowcount != 1:
                await session.rollback()
                raise ConflictError(f"ReplicatedResource {rr.namespace}/{rr.name} has been modified")
            await session.commit()
            updated = await session.get(ReplicatedResource, rr.uid, populate_existing=True)
        await self._notify(_declaration_event(WatchEventType.MODIFIED, updated, old_rv=observed))
        return updated

    async def delete_replicated_resource(self, namespace: str, name: str) -> List[StoredObject]:
        """Delete a declaration and garbage-collect the objects it owns"""
        rr = await self.get_replicated_resource(namespace, name)
        async with self._session() as session:
            result = await session.execute(select(StoredObject).where(StoredObject.namespace == namespace))
            dependents = [
                obj for obj in result.scalars().all() if any(ref.uid == rr.uid for ref in obj.get_owner_references())
            ]
            for obj in dependents:
                await session.execute(delete(StoredObject).where(StoredObject.uid == obj.uid))
            await session.execute(delete(ReplicatedResource).where(ReplicatedResource.uid == rr.uid))
            await session.commit()

        logger.info(f"Deleted ReplicatedResource {namespace}/{name} and {len(dependents)} dependent object(s)")
        await self._notify(_declaration_event(WatchEventType.DELETED, rr, old_rv=rr.resource_version))
        for obj in dependents:
            await self._notify(_object_event(WatchEventType.DELETED, obj, old_rv=obj.resource_version))
        return dependents
