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

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, Column, Index
from sqlmodel import Field, SQLModel, UniqueConstraint

from replicator.context import NamespacedName
from replicator.schema.models import (
    API_VERSION,
    REPLICATED_RESOURCE_KIND,
    OwnerReference,
    ReplicatedResourceCondition,
    ReplicatedResourcePhase,
    ReplicatedResourceSource,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def random_uid() -> str:
    return str(uuid.uuid4())


class StoredObject(SQLModel, table=True):
    """A replicable object (Secret, ConfigMap, ...) keyed by kind/namespace/name"""

    __tablename__ = "stored_object"
    __table_args__ = (UniqueConstraint("kind", "namespace", "name", name="uq_stored_object_identity"),)

    uid: str = Field(default_factory=random_uid, primary_key=True, max_length=36)
    kind: str = Field(max_length=63, index=True)
    namespace: str = Field(max_length=253)
    name: str = Field(max_length=253)
    resource_version: int = 1
    type: Optional[str] = Field(default=None, max_length=256)
    data: dict = Field(default_factory=dict, sa_column=Column(JSON))
    annotations: dict = Field(default_factory=dict, sa_column=Column(JSON))
    owner_references: list = Field(default_factory=list, sa_column=Column(JSON))
    gmt_created: datetime = Field(default_factory=utc_now)
    gmt_updated: datetime = Field(default_factory=utc_now)

    @property
    def namespaced_name(self) -> NamespacedName:
        return NamespacedName(self.namespace, self.name)

    @property
    def fingerprint(self) -> str:
        # uid changes when a name is deleted and recreated
        return f"{self.uid}:{self.resource_version}"

    def get_owner_references(self) -> List[OwnerReference]:
        return [OwnerReference.model_validate(ref) for ref in self.owner_references or []]


class ReplicatedResource(SQLModel, table=True):
    """Declaration: mirror spec.source into an object named like this record"""

    __tablename__ = "replicated_resource"
    __table_args__ = (
        UniqueConstraint("namespace", "name", name="uq_replicated_resource_identity"),
        Index("idx_replicated_resource_source", "source_kind", "source_namespace", "source_name"),
    )

    uid: str = Field(default_factory=random_uid, primary_key=True, max_length=36)
    namespace: str = Field(max_length=253)
    name: str = Field(max_length=253)
    source_namespace: str = Field(default="", max_length=253, index=True)
    source_name: str = Field(default="", max_length=253, index=True)
    source_kind: str = Field(default="", max_length=63, index=True)
    # Bumped on spec changes only
    generation: int = 1
    # Bumped on every write, status included
    resource_version: int = 1
    phase: Optional[ReplicatedResourcePhase] = None
    conditions: list = Field(default_factory=list, sa_column=Column(JSON))
    gmt_created: datetime = Field(default_factory=utc_now)
    gmt_updated: datetime = Field(default_factory=utc_now)

    @property
    def namespaced_name(self) -> NamespacedName:
        return NamespacedName(self.namespace, self.name)

    @property
    def source(self) -> ReplicatedResourceSource:
        return ReplicatedResourceSource(
            namespace=self.source_namespace, name=self.source_name, kind=self.source_kind
        )

    @property
    def source_namespaced_name(self) -> NamespacedName:
        return NamespacedName(self.source_namespace, self.source_name)

    def get_conditions(self) -> List[ReplicatedResourceCondition]:
        return [ReplicatedResourceCondition.model_validate(c) for c in self.conditions or []]

    def owner_reference(self) -> OwnerReference:
        """Controlling owner reference for objects materialized from this declaration"""
        return OwnerReference(
            api_version=API_VERSION,
            kind=REPLICATED_RESOURCE_KIND,
            name=self.name,
            uid=self.uid,
            controller=True,
            block_owner_deletion=True,
        )
