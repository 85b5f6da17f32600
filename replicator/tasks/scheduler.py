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
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Tuple

from replicator.context import ReconcileRequest

logger = logging.getLogger(__name__)


class TaskResult:
    """Represents the result of a task execution"""

    def __init__(self, task_id: str, success: bool = True, error: str = None, data: Any = None):
        self.task_id = task_id
        self.success = success
        self.error = error
        self.data = data


class TaskScheduler(ABC):
    """Abstract base class for reconcile request schedulers"""

    @abstractmethod
    def schedule_reconcile(self, request: ReconcileRequest, countdown: Optional[float] = None) -> str:
        """
        Enqueue one reconcile request

        Args:
            request: Declaration identity to reconcile
            countdown: Seconds to wait before the request becomes runnable

        Returns:
            Task ID for tracking
        """
        pass

    @abstractmethod
    def get_task_status(self, task_id: str) -> Optional[TaskResult]:
        pass


class LocalTaskScheduler(TaskScheduler):
    """
    In-process work queue for tests and single-process runs.

    A request already waiting in the queue is not added twice, and requests
    run one after another, so a declaration never has two reconciles in
    flight. Delayed requests wait until release_delayed() is called.
    """

    def __init__(self, reconciler=None, retry_countdown: float = 1.0):
        self.reconciler = reconciler
        self.retry_countdown = retry_countdown
        self._task_counter = 0
        self._queue: Deque[Tuple[str, ReconcileRequest]] = deque()
        self._queued: Dict[ReconcileRequest, str] = {}
        self._delayed: List[Tuple[float, ReconcileRequest]] = []
        self._results: Dict[str, TaskResult] = {}

    def _next_task_id(self) -> str:
        self._task_counter += 1
        return f"local_task_{self._task_counter}"

    def schedule_reconcile(self, request: ReconcileRequest, countdown: Optional[float] = None) -> str:
        if countdown:
            self._delayed.append((countdown, request))
            logger.debug(f"Delayed reconcile of {request.key} by {countdown}s")
            return f"delayed_{request.key}"
        if request in self._queued:
            return self._queued[request]
        task_id = self._next_task_id()
        self._queue.append((task_id, request))
        self._queued[request] = task_id
        return task_id

    @property
    def pending(self) -> List[ReconcileRequest]:
        return [request for _, request in self._queue]

    @property
    def delayed(self) -> List[Tuple[float, ReconcileRequest]]:
        return list(self._delayed)

    def release_delayed(self) -> int:
        delayed, self._delayed = self._delayed, []
        for _, request in delayed:
            self.schedule_reconcile(request)
        return len(delayed)

    async def run_pending(self, max_tasks: int = 1000) -> int:
        """Run queued requests, including ones enqueued meanwhile; returns how many ran"""
        if self.reconciler is None:
            raise RuntimeError("LocalTaskScheduler has no reconciler")

        processed = 0
        while self._queue and processed < max_tasks:
            task_id, request = self._queue.popleft()
            self._queued.pop(request, None)
            processed += 1
            try:
                result = await self.reconciler.reconcile(request)
            except Exception as e:
                logger.error(f"Reconcile of {request.key} failed: {e}")
                self._results[task_id] = TaskResult(task_id, success=False, error=str(e))
                self.schedule_reconcile(request, countdown=self.retry_countdown)
                continue

            self._results[task_id] = TaskResult(task_id, success=True, data=result)
            if result.requeue:
                self.schedule_reconcile(request, countdown=result.requeue_after)
        return processed

    def get_task_status(self, task_id: str) -> Optional[TaskResult]:
        return self._results.get(task_id)


class CeleryTaskScheduler(TaskScheduler):
    """Celery implementation of TaskScheduler"""

    def schedule_reconcile(self, request: ReconcileRequest, countdown: Optional[float] = None) -> str:
        from replicator.tasks.reconcile_tasks import reconcile_replicated_resource_task

        key = request.namespaced_name
        task = reconcile_replicated_resource_task.apply_async(args=(key.namespace, key.name), countdown=countdown)
        logger.debug(f"Scheduled reconcile task {task.id} for ReplicatedResource {key}")
        return task.id

    def get_task_status(self, task_id: str) -> Optional[TaskResult]:
        """Get Celery task status"""
        try:
            from celery.result import AsyncResult

            result = AsyncResult(task_id)

            if result.state == "PENDING":
                return TaskResult(task_id, success=False, error="Task pending")
            elif result.state == "SUCCESS":
                return TaskResult(task_id, success=True, data=result.result)
            elif result.state == "FAILURE":
                return TaskResult(task_id, success=False, error=str(result.info))
            else:
                return TaskResult(task_id, success=False, error=f"Unknown state: {result.state}")

        except Exception as e:
            logger.error(f"Failed to get task status for {task_id}: {str(e)}")
            return TaskResult(task_id, success=False, error=str(e))


def create_task_scheduler(scheduler_type: str = "celery", **kwargs) -> TaskScheduler:
    if scheduler_type == "celery":
        return CeleryTaskScheduler()
    if scheduler_type == "local":
        return LocalTaskScheduler(**kwargs)
    raise ValueError(f"Unknown scheduler type: {scheduler_type}")
