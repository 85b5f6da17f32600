"""
Tests for the Celery task entry points.

The tasks are called directly (not through a broker); retry and re-enqueue
are observed by patching Task.retry and Task.apply_async.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from celery.exceptions import Retry

from replicator.concurrent_control import LockNotAcquiredError, RedisLock, ThreadingLock
from replicator.config import settings
from replicator.context import ReconcileRequest, ReconcileResult
from replicator.exceptions import ConflictError, SourceNotFoundError
from replicator.tasks import reconcile_tasks
from replicator.tasks.reconcile_tasks import (
    TaskConfig,
    _create_request_lock,
    _run_reconcile,
    lock_key,
    reconcile_replicated_resource_task,
    resync_replicated_resources_task,
)

RUN_RECONCILE = "replicator.tasks.reconcile_tasks._run_reconcile"


class TestReconcileTask:
    """Test suite for reconcile_replicated_resource_task."""

    def test_success(self):
        """A successful reconcile returns its outcome without re-enqueueing."""
        with (
            patch(RUN_RECONCILE, new=AsyncMock(return_value=ReconcileResult())) as mock_run,
            patch.object(reconcile_replicated_resource_task, "apply_async") as mock_apply,
        ):
            result = reconcile_replicated_resource_task("default", "copy")

        assert result == {"namespace": "default", "name": "copy", "requeue_after": None}
        mock_run.assert_awaited_once_with(ReconcileRequest.of("default", "copy"))
        mock_apply.assert_not_called()

    def test_requeue_after(self):
        """A reconcile asking for a requeue is re-enqueued with that countdown."""
        with (
            patch(RUN_RECONCILE, new=AsyncMock(return_value=ReconcileResult(requeue_after=0.5))),
            patch.object(reconcile_replicated_resource_task, "apply_async") as mock_apply,
        ):
            reconcile_replicated_resource_task("default", "copy")

        mock_apply.assert_called_once_with(args=("default", "copy"), countdown=0.5)

    def test_retryable_error_retries_with_backoff(self):
        """A conflict triggers a Celery retry with a bounded backoff countdown."""
        error = ConflictError("modified")
        with (
            patch(RUN_RECONCILE, new=AsyncMock(side_effect=error)),
            patch.object(reconcile_replicated_resource_task, "retry", side_effect=Retry()) as mock_retry,
        ):
            with pytest.raises(Retry):
                reconcile_replicated_resource_task("default", "copy")

        mock_retry.assert_called_once()
        assert mock_retry.call_args.kwargs["exc"] is error
        assert 0 <= mock_retry.call_args.kwargs["countdown"] <= settings.retry_backoff_max

    def test_timeout_is_retried(self):
        """A reconcile past its deadline is retried like any transient failure."""
        with (
            patch(RUN_RECONCILE, new=AsyncMock(side_effect=asyncio.TimeoutError())),
            patch.object(reconcile_replicated_resource_task, "retry", side_effect=Retry()) as mock_retry,
        ):
            with pytest.raises(Retry):
                reconcile_replicated_resource_task("default", "copy")

        mock_retry.assert_called_once()

    def test_terminal_error_is_not_retried(self):
        """Errors marked non-retryable are raised without a retry."""
        with (
            patch(RUN_RECONCILE, new=AsyncMock(side_effect=SourceNotFoundError("Secret", "default", "absent"))),
            patch.object(reconcile_replicated_resource_task, "retry") as mock_retry,
        ):
            with pytest.raises(SourceNotFoundError):
                reconcile_replicated_resource_task("default", "copy")

        mock_retry.assert_not_called()

    def test_busy_lock_defers(self):
        """A request whose lock is taken is re-enqueued after a short delay."""
        with (
            patch(RUN_RECONCILE, new=AsyncMock(side_effect=LockNotAcquiredError("replicated-resource:default/copy"))),
            patch.object(reconcile_replicated_resource_task, "apply_async") as mock_apply,
            patch.object(reconcile_replicated_resource_task, "retry") as mock_retry,
        ):
            result = reconcile_replicated_resource_task("default", "copy")

        assert result["deferred"] is True
        mock_apply.assert_called_once_with(args=("default", "copy"), countdown=TaskConfig.LOCK_BUSY_COUNTDOWN)
        mock_retry.assert_not_called()


class TestRunReconcile:
    """Test suite for the locked, deadline-bound reconcile run."""

    @pytest.fixture
    def manager(self):
        manager = MagicMock()
        manager.reconciler.reconcile = AsyncMock(return_value=ReconcileResult())
        with patch.object(reconcile_tasks, "get_manager", return_value=manager):
            yield manager

    @pytest.fixture
    def threading_locks(self, monkeypatch):
        monkeypatch.setattr(settings, "lock_type", "threading")

    def test_lock_key(self):
        """Locks are keyed by the declaration identity."""
        assert lock_key(ReconcileRequest.of("team-a", "copy")) == "replicated-resource:team-a/copy"

    def test_redis_lock_outlives_deadline(self, monkeypatch):
        """The Redis lock expires only after the reconcile deadline."""
        monkeypatch.setattr(settings, "lock_type", "redis")
        monkeypatch.setattr(settings, "reconcile_timeout", 30.0)

        lock = _create_request_lock(ReconcileRequest.of("team-a", "copy"))

        assert isinstance(lock, RedisLock)
        assert lock._expire_time == 35
        assert lock._retry_times == 0

    @pytest.mark.asyncio
    async def test_runs_reconcile_and_releases_lock(self, manager, threading_locks):
        """The reconcile runs under the lock, which is free again afterwards."""
        request = ReconcileRequest.of("team-a", "copy")

        result = await _run_reconcile(request)

        assert result == ReconcileResult()
        manager.reconciler.reconcile.assert_awaited_once_with(request)
        probe = ThreadingLock(lock_key(request))
        assert await probe.acquire(timeout=0) is True
        await probe.release()

    @pytest.mark.asyncio
    async def test_held_lock_raises(self, manager, threading_locks):
        """A lock held elsewhere raises LockNotAcquiredError without reconciling."""
        request = ReconcileRequest.of("team-a", "busy")
        holder = ThreadingLock(lock_key(request))
        await holder.acquire()
        try:
            with pytest.raises(LockNotAcquiredError):
                await _run_reconcile(request)
        finally:
            await holder.release()

        manager.reconciler.reconcile.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_deadline_enforced(self, manager, threading_locks, monkeypatch):
        """A reconcile running past the deadline is cancelled and the lock released."""
        monkeypatch.setattr(settings, "reconcile_timeout", 0.05)

        async def slow_reconcile(request):
            await asyncio.sleep(10)

        manager.reconciler.reconcile = slow_reconcile
        request = ReconcileRequest.of("team-a", "slow")

        with pytest.raises(asyncio.TimeoutError):
            await _run_reconcile(request)

        probe = ThreadingLock(lock_key(request))
        assert await probe.acquire(timeout=0) is True
        await probe.release()


class TestResyncTask:
    """Test suite for resync_replicated_resources_task."""

    def test_enqueues_every_declaration(self):
        """The resync task asks the manager to schedule every declaration."""
        manager = MagicMock()
        manager.enqueue_all = AsyncMock(return_value=4)
        with patch.object(reconcile_tasks, "get_manager", return_value=manager):
            assert resync_replicated_resources_task() == 4

        manager.enqueue_all.assert_awaited_once()

    def test_failure_propagates(self):
        """A failing resync is logged and raised."""
        manager = MagicMock()
        manager.enqueue_all = AsyncMock(side_effect=ConflictError("boom"))
        with patch.object(reconcile_tasks, "get_manager", return_value=manager):
            with pytest.raises(ConflictError):
                resync_replicated_resources_task()
