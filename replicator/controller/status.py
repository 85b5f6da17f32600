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
from datetime import datetime
from typing import Callable, Optional

from replicator.db.models import ReplicatedResource, utc_now
from replicator.db.ops import ObjectStore
from replicator.exceptions import ReplicatorException, StatusWriteError
from replicator.schema.models import (
    ConditionStatus,
    ConditionType,
    ReplicatedResourceCondition,
    ReplicatedResourcePhase,
)

logger = logging.getLogger(__name__)

REASON_REPLICATED = "Replicated"
REASON_ERROR = "Error"
MESSAGE_REPLICATED = "Successfully Replicated"


class StatusWriter:
    """Overwrites a declaration's status with the outcome of one reconcile"""

    def __init__(self, store: ObjectStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self._clock = clock

    def build_condition(
        self, rr: ReplicatedResource, error: Optional[BaseException] = None
    ) -> ReplicatedResourceCondition:
        now = self._clock()
        status = ConditionStatus.FALSE if error is not None else ConditionStatus.TRUE

        transition_time = now
        previous = rr.get_conditions()
        if previous and previous[-1].type == ConditionType.COMPLETE and previous[-1].status == status:
            transition_time = previous[-1].last_transition_time or now

        return ReplicatedResourceCondition(
            type=ConditionType.COMPLETE,
            status=status,
            last_probe_time=now,
            last_transition_time=transition_time,
            reason=REASON_ERROR if error is not None else REASON_REPLICATED,
            message=str(error) if error is not None else MESSAGE_REPLICATED,
        )

    async def write(self, rr: ReplicatedResource, error: Optional[BaseException] = None) -> ReplicatedResource:
        """
        Record a mutating success (error is None) or a failure.

        Raises:
            StatusWriteError: the status could not be persisted, e.g. on conflict
        """
        condition = self.build_condition(rr, error)
        rr.phase = ReplicatedResourcePhase.FAILED if error is not None else ReplicatedResourcePhase.COMPLETED
        rr.conditions = [condition.model_dump(mode="json")]

        try:
            updated = await self.store.update_replicated_resource_status(rr)
        except ReplicatorException as e:
            logger.info(f"Error updating ReplicatedResource {rr.namespace}/{rr.name}: {e}")
            raise StatusWriteError(f"Failed to update status of {rr.namespace}/{rr.name}: {e}") from e

        logger.info(f"ReplicatedResource {rr.namespace}/{rr.name} is {rr.phase.value}: {condition.message}")
        return updated
