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

"""
Replication capabilities, one per payload kind.

New kinds subclass ObjectReplicator, decorate it with
register_replicator("<Kind>") and import the module here; the reconciler
and trigger index need no change.
"""

from replicator.replication.base import (
    ObjectReplicator,
    OperationResult,
    ReplicationResult,
    Replicator,
    replicated_at_annotation,
    replicated_from_version_annotation,
)
from replicator.replication.registry import ReplicatorRegistry, available_kinds, build_registry, register_replicator
from replicator.replication.configmap import ConfigMapReplicator
from replicator.replication.secret import SecretReplicator

__all__ = [
    "ConfigMapReplicator",
    "ObjectReplicator",
    "OperationResult",
    "ReplicationResult",
    "Replicator",
    "ReplicatorRegistry",
    "SecretReplicator",
    "available_kinds",
    "build_registry",
    "register_replicator",
    "replicated_at_annotation",
    "replicated_from_version_annotation",
]
