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
Celery tasks entry points
This module only handles task orchestration, locking and retry policy
All reconciliation logic lives in the controller package
"""

import asyncio
import logging
from typing import Any

from celery.utils.time import get_exponential_backoff_interval

from config.celery import app
from replicator.concurrent_control import DistributedLock, LockNotAcquiredError, RedisLock, create_lock
from replicator.config import settings
from replicator.context import ReconcileRequest, ReconcileResult
from replicator.controller.manager import get_manager
from replicator.exceptions import is_retryable

logger = logging.getLogger(__name__)


class TaskConfig:
    # Delay before retrying a request whose lock is held by another worker
    LOCK_BUSY_COUNTDOWN = 1.0


def lock_key(request: ReconcileRequest) -> str:
    return f"replicated-resource:{request.key}"


def _create_request_lock(request: ReconcileRequest) -> DistributedLock:
    if settings.lock_type == "redis":
        return create_lock(
            "redis",
            key=lock_key(request),
            redis_url=settings.redis_url,
            # Outlive the reconcile deadline so the lock never expires mid-reconcile
            expire_time=int(settings.reconcile_timeout) + 5,
            retry_times=0,
        )
    return create_lock("threading", key=lock_key(request))


async def _run_reconcile(request: ReconcileRequest) -> ReconcileResult:
    """Run one reconcile under the per-declaration lock and the reconcile deadline"""
    lock = _create_request_lock(request)
    if not await lock.acquire(timeout=0):
        raise LockNotAcquiredError(lock.key)
    try:
        reconciler = get_manager().reconciler
        return await asyncio.wait_for(reconciler.reconcile(request), timeout=settings.reconcile_timeout)
    finally:
        await lock.release()
        if isinstance(lock, RedisLock):
            await lock.close()


@app.task(bind=True, max_retries=settings.max_retries)
def reconcile_replicated_resource_task(self, namespace: str, name: str) -> Any:
    """
    Reconcile one ReplicatedResource

    Args:
        namespace: Namespace of the ReplicatedResource
        name: Name of the ReplicatedResource
    """
    request = ReconcileRequest.of(namespace, name)
    try:
        result = asyncio.run(_run_reconcile(request))
    except LockNotAcquiredError:
        logger.debug(f"ReplicatedResource {request.key} is being reconciled elsewhere, deferring")
        reconcile_replicated_resource_task.apply_async(
            args=(namespace, name), countdown=TaskConfig.LOCK_BUSY_COUNTDOWN
        )
        return {"namespace": namespace, "name": name, "deferred": True}
    except Exception as e:
        if not is_retryable(e):
            logger.error(f"Reconcile of ReplicatedResource {request.key} failed permanently: {e}", exc_info=True)
            raise
        countdown = get_exponential_backoff_interval(
            factor=settings.retry_backoff_factor,
            retries=self.request.retries,
            maximum=settings.retry_backoff_max,
            full_jitter=True,
        )
        logger.error(f"Reconcile of ReplicatedResource {request.key} failed, retrying in {countdown}s: {e}")
        raise self.retry(exc=e, countdown=countdown)

    if result.requeue:
        reconcile_replicated_resource_task.apply_async(args=(namespace, name), countdown=result.requeue_after)
    return {"namespace": namespace, "name": name, "requeue_after": result.requeue_after}


@app.task
def resync_replicated_resources_task():
    """Periodic task re-enqueueing every ReplicatedResource"""
    try:
        logger.info("Starting ReplicatedResource resync")
        count = asyncio.run(get_manager().enqueue_all())
        logger.info(f"ReplicatedResource resync scheduled {count} reconcile(s)")
        return count
    except Exception as e:
        logger.error(f"ReplicatedResource resync failed: {e}", exc_info=True)
        raise
