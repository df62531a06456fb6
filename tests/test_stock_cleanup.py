"""
Tests for the stock cleanup scheduler.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from tesoros.jobs.stock_cleanup import StockCleanupScheduler
from tesoros import run_sweeper


def _stats(released=0, errors=0):
    return {
        "reservations_released": released,
        "stock_restored": released,
        "products_restored": 1 if released else 0,
        "errors": errors,
    }


def _service(*results):
    service = MagicMock()
    service.cleanup_expired_reservations = AsyncMock(side_effect=list(results))
    return service


class TestRunOnce:

    @pytest.mark.asyncio
    async def test_successful_pass_updates_heartbeat(self):
        scheduler = StockCleanupScheduler(_service(_stats(released=3)), interval_seconds=60, retry_seconds=1)

        assert await scheduler.run_once() is True

        assert scheduler.heartbeat["records_processed"] == 3
        assert scheduler.heartbeat["errors"] == 0
        assert scheduler.heartbeat["last_run"] is not None
        assert scheduler.heartbeat["last_success"] is not None

    @pytest.mark.asyncio
    async def test_exception_is_swallowed_and_counted(self):
        scheduler = StockCleanupScheduler(
            _service(RuntimeError("database unavailable")), interval_seconds=60, retry_seconds=1
        )

        assert await scheduler.run_once() is False

        assert scheduler.heartbeat["errors"] == 1
        assert scheduler.heartbeat["last_success"] is None

    @pytest.mark.asyncio
    async def test_partial_failure_is_not_a_success(self):
        scheduler = StockCleanupScheduler(
            _service(_stats(released=2, errors=1)), interval_seconds=60, retry_seconds=1
        )

        assert await scheduler.run_once() is False

        assert scheduler.heartbeat["records_processed"] == 2
        assert scheduler.heartbeat["errors"] == 1
        assert scheduler.heartbeat["last_success"] is None


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_runs_immediately_and_stop_interrupts_wait(self):
        service = _service(*[_stats() for _ in range(5)])
        scheduler = StockCleanupScheduler(service, interval_seconds=3600, retry_seconds=3600)

        scheduler.start()
        await asyncio.sleep(0.05)

        assert scheduler.is_running
        assert scheduler.heartbeat["running"] is True
        assert service.cleanup_expired_reservations.await_count == 1

        await asyncio.wait_for(scheduler.stop(timeout=1.0), timeout=2.0)

        assert not scheduler.is_running
        assert scheduler.heartbeat["running"] is False

    @pytest.mark.asyncio
    async def test_failure_waits_retry_interval(self):
        service = _service(RuntimeError("boom"), _stats(), _stats(), _stats(), _stats())
        scheduler = StockCleanupScheduler(service, interval_seconds=3600, retry_seconds=0.01)

        scheduler.start()
        await asyncio.sleep(0.2)
        await scheduler.stop(timeout=1.0)

        # One failure, then a retry shortly after; the success waits the full hour
        assert service.cleanup_expired_reservations.await_count == 2
        assert scheduler.heartbeat["errors"] == 1
        assert scheduler.heartbeat["last_success"] is not None

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        service = _service(*[_stats() for _ in range(5)])
        scheduler = StockCleanupScheduler(service, interval_seconds=3600, retry_seconds=3600)

        first = scheduler.start()
        second = scheduler.start()

        assert first is second
        await scheduler.stop(timeout=1.0)

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        scheduler = StockCleanupScheduler(_service(_stats()), interval_seconds=3600, retry_seconds=3600)

        await scheduler.stop()
        scheduler.start()
        await scheduler.stop(timeout=1.0)
        await scheduler.stop(timeout=1.0)

        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_stop_cancels_pass_that_overruns_timeout(self):
        started = asyncio.Event()

        async def slow_cleanup():
            started.set()
            await asyncio.sleep(3600)

        service = MagicMock()
        service.cleanup_expired_reservations = slow_cleanup
        scheduler = StockCleanupScheduler(service, interval_seconds=3600, retry_seconds=3600)

        task = scheduler.start()
        await started.wait()
        await scheduler.stop(timeout=0.05)

        assert task.cancelled()
        assert scheduler.heartbeat["running"] is False

    @pytest.mark.asyncio
    async def test_in_flight_pass_finishes_within_timeout(self):
        started = asyncio.Event()
        finished = []

        async def short_cleanup():
            started.set()
            await asyncio.sleep(0.05)
            finished.append(True)
            return _stats(released=1)

        service = MagicMock()
        service.cleanup_expired_reservations = short_cleanup
        scheduler = StockCleanupScheduler(service, interval_seconds=3600, retry_seconds=3600)

        scheduler.start()
        await started.wait()
        await scheduler.stop(timeout=1.0)

        assert finished == [True]
        assert scheduler.heartbeat["records_processed"] == 1


class TestSweeperAgainstDatabase:

    @pytest.mark.asyncio
    async def test_scheduler_expires_holds(self, service, clock):
        await service.reserve_stock(1, 1, 4)
        clock.advance(minutes=16)

        scheduler = StockCleanupScheduler(service, interval_seconds=3600, retry_seconds=60)
        assert await scheduler.run_once() is True

        assert scheduler.heartbeat["records_processed"] == 1
        assert await service.get_available_stock(1) == 10


class TestStandaloneSweeper:

    @pytest.mark.asyncio
    async def test_main_runs_until_stopped(self):
        service = _service(*[_stats() for _ in range(5)])
        scheduler = StockCleanupScheduler(service, interval_seconds=3600, retry_seconds=3600)
        stop_event = asyncio.Event()

        runner = asyncio.create_task(run_sweeper.main(stop_event=stop_event, scheduler=scheduler))
        await asyncio.sleep(0.05)
        assert scheduler.is_running

        stop_event.set()
        await asyncio.wait_for(runner, timeout=2.0)

        assert not scheduler.is_running
        assert service.cleanup_expired_reservations.await_count == 1
