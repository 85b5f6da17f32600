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


class ReplicatorException(Exception):
    """Base exception for the replication controller"""

    # Whether the scheduler should back off and retry the whole reconcile
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ObjectNotFoundError(ReplicatorException):
    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(f"{kind} {namespace}/{name} not found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class ConflictError(ReplicatorException):
    """The object changed since it was read, or already exists"""

    retryable = True


class StoreUnavailableError(ReplicatorException):
    retryable = True


class ReplicationError(ReplicatorException):
    """Raised by replication capabilities"""


class SourceNotFoundError(ReplicationError):
    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(f"Could not find source {kind} {namespace}/{name}")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class UnsupportedKindError(ReplicationError):
    def __init__(self, kind: str):
        super().__init__(f"Unsupported kind {kind}")
        self.kind = kind


class StatusWriteError(ReplicatorException):
    retryable = True


def is_retryable(error: BaseException) -> bool:
    """Errors outside the taxonomy are treated as transient"""
    if isinstance(error, ReplicatorException):
        return error.retryable
    return True
