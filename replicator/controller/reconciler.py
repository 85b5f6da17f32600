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

from replicator.context import ReconcileRequest, ReconcileResult
from replicator.controller.status import StatusWriter
from replicator.db.ops import ObjectStore
from replicator.exceptions import ObjectNotFoundError, UnsupportedKindError, is_retryable
from replicator.replication.base import ReplicationResult
from replicator.replication.registry import ReplicatorRegistry

logger = logging.getLogger(__name__)


class ReplicatedResourceReconciler:
    """
    Reconciles one ReplicatedResource per call.

    Terminal failures (missing source, unsupported kind) are recorded in
    status and the call returns normally. Conflicts and store errors are
    recorded as well and then raised, so the scheduler retries the whole
    reconcile. Cancellation is never caught: every store call is an await
    point and asyncio.CancelledError propagates from there.
    """

    def __init__(
        self,
        store: ObjectStore,
        registry: ReplicatorRegistry,
        status_writer: Optional[StatusWriter] = None,
        noop_requeue_after: Optional[float] = None,
    ):
        self.store = store
        self.registry = registry
        self.status_writer = status_writer or StatusWriter(store)
        self.noop_requeue_after = noop_requeue_after

    async def reconcile(self, request: ReconcileRequest) -> ReconcileResult:
        key = request.namespaced_name
        try:
            rr = await self.store.get_replicated_resource(key.namespace, key.name)
        except ObjectNotFoundError:
            logger.info(f"Could not find ReplicatedResource {key}. Ignoring since object must be deleted.")
            return ReconcileResult()

        logger.info(f"Started processing ReplicatedResource {key}")

        if rr.source_namespaced_name == key:
            logger.warning(f"ReplicatedResource {key} names itself as its source, skipping")
            return ReconcileResult()

        error: Optional[Exception] = None
        result: Optional[ReplicationResult] = None
        try:
            replicator = self.registry.get(rr.source_kind)
            if replicator is None:
                raise UnsupportedKindError(rr.source_kind)
            result = await replicator.replicate(rr)
        except Exception as e:
            error = e

        if error is None and not result.operation.mutating:
            # Nothing was written; an optional delayed requeue covers a stale read of the destination
            logger.debug(f"No operation performed for ReplicatedResource {key}")
            return ReconcileResult(requeue_after=self.noop_requeue_after)

        if error is not None:
            logger.error(f"Failed to replicate ReplicatedResource {key}: {error}")

        await self.status_writer.write(rr, error)

        if error is not None and is_retryable(error):
            raise error

        return ReconcileResult()
