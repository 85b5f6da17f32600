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
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from replicator.db.models import ReplicatedResource, StoredObject, utc_now
from replicator.db.ops import ObjectStore
from replicator.exceptions import ObjectNotFoundError, SourceNotFoundError

logger = logging.getLogger(__name__)

RFC3339_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
DEFAULT_ANNOTATION_PREFIX = "replicated-resource"


def replicated_at_annotation(prefix: str = DEFAULT_ANNOTATION_PREFIX) -> str:
    return f"{prefix}/updated"


def replicated_from_version_annotation(prefix: str = DEFAULT_ANNOTATION_PREFIX) -> str:
    return f"{prefix}/version"


class OperationResult(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"

    @property
    def mutating(self) -> bool:
        return self != OperationResult.UNCHANGED


@dataclass
class ReplicationResult:
    operation: OperationResult
    destination: Optional[StoredObject] = None


class Replicator(ABC):
    """Replication capability for one payload kind"""

    kind: str = ""

    @abstractmethod
    async def replicate(self, rr: ReplicatedResource) -> ReplicationResult:
        """
        Bring the object named like rr in line with rr's source.

        Raises:
            SourceNotFoundError: the source object does not exist
            ConflictError: the destination changed while being written
        """


class ObjectReplicator(Replicator):
    """
    Replicator for kinds kept in the object store.

    The destination's version annotation records the source fingerprint
    at the last write; a matching fingerprint means there is nothing to do.
    Subclasses decide which payload fields are mirrored.
    """

    def __init__(
        self,
        store: ObjectStore,
        annotation_prefix: str = DEFAULT_ANNOTATION_PREFIX,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.replicated_at_key = replicated_at_annotation(annotation_prefix)
        self.replicated_from_version_key = replicated_from_version_annotation(annotation_prefix)
        self._clock = clock

    @abstractmethod
    def copy_payload(self, source: StoredObject, dest: StoredObject, creating: bool):
        """Copy the kind-specific payload from source onto dest"""

    async def replicate(self, rr: ReplicatedResource) -> ReplicationResult:
        logger.info(f"Replicating {self.kind} {rr.source_namespace}/{rr.source_name} to {rr.namespace}/{rr.name}")
        try:
            source = await self.store.get_object(self.kind, rr.source_namespace, rr.source_name)
        except ObjectNotFoundError:
            logger.info(f"Could not find source {self.kind} {rr.source_namespace}/{rr.source_name}")
            raise SourceNotFoundError(self.kind, rr.source_namespace, rr.source_name) from None

        try:
            dest = await self.store.get_object(self.kind, rr.namespace, rr.name)
        except ObjectNotFoundError:
            dest = None

        if dest is not None and (dest.annotations or {}).get(self.replicated_from_version_key) == source.fingerprint:
            logger.debug(f"{self.kind} {rr.namespace}/{rr.name} already at source version {source.fingerprint}")
            return ReplicationResult(OperationResult.UNCHANGED, dest)

        creating = dest is None
        if creating:
            dest = StoredObject(kind=self.kind, namespace=rr.namespace, name=rr.name)

        self.copy_payload(source, dest, creating)
        annotations = dict(dest.annotations or {})
        annotations[self.replicated_at_key] = self._clock().strftime(RFC3339_FORMAT)
        annotations[self.replicated_from_version_key] = source.fingerprint
        dest.annotations = annotations
        dest.owner_references = [rr.owner_reference().model_dump()]

        if creating:
            written = await self.store.create_object(dest)
            operation = OperationResult.CREATED
        else:
            written = await self.store.update_object(dest)
            operation = OperationResult.UPDATED

        logger.info(f"{self.kind} {rr.namespace}/{rr.name} {operation.value} from source version {source.fingerprint}")
        return ReplicationResult(operation, written)
