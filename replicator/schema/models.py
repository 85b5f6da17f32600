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

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

API_GROUP = "utils.simopolis.xyz"
API_VERSION = f"{API_GROUP}/v1alpha1"
REPLICATED_RESOURCE_KIND = "ReplicatedResource"


class ReplicatedResourcePhase(str, Enum):
    COMPLETED = "Completed"
    FAILED = "Failed"


class ConditionType(str, Enum):
    COMPLETE = "Complete"
    FAILED = "Failed"


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ReplicatedResourceSource(BaseModel):
    """The object a ReplicatedResource mirrors"""

    model_config = ConfigDict(frozen=True)

    namespace: str = ""
    name: str = ""
    kind: str = ""


class ReplicatedResourceCondition(BaseModel):
    type: ConditionType = ConditionType.COMPLETE
    # One of True, False, Unknown
    status: ConditionStatus
    last_probe_time: Optional[datetime] = None
    last_transition_time: Optional[datetime] = None
    # (brief) reason for the condition's last transition
    reason: str = ""
    # Human readable message indicating details about last transition
    message: str = ""


class OwnerReference(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = False
    block_owner_deletion: bool = False
