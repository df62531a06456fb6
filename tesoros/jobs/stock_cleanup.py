"""
Stock Cleanup Scheduler

Background loop that periodically retires expired stock reservations so the
units they held become available again.

- Runs every STOCK_CLEANUP_INTERVAL_MINUTES
- After a failed (or partially failed) pass, retries after STOCK_CLEANUP_RETRY_SECONDS
- Heartbeat metrics are exposed on /health
"""
import asyncio
import logging
from typing import Optional

from tesoros.core.config import settings
from tesoros.core.utils import utcnow
from tesoros.services.inventory_service import InventoryService

logger = logging.getLogger(__name__)


class StockCleanupScheduler:
    """
    Runs InventoryService.cleanup_expired_reservations on a schedule.

    Call start() from a running event loop and stop() on shutdown.
    """

    def __init__(
        self,
        service: InventoryService,
        interval_seconds: Optional[float] = None,
        retry_seconds: Optional[float] = None,
    ):
        self.service = service
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None
            else settings.STOCK_CLEANUP_INTERVAL_MINUTES * 60
        )
        self.retry_seconds = (
            retry_seconds if retry_seconds is not None
            else settings.STOCK_CLEANUP_RETRY_SECONDS
        )
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self.heartbeat: dict = {
            "last_run": None,
            "last_success": None,
            "records_processed": 0,
            "errors": 0,
            "running": False,
        }

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start the background loop. A second call while running is a no-op."""
        if self.is_running:
            logger.info("Stock cleanup scheduler already running")
            return self._task

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            f"Stock cleanup scheduler started (interval: {self.interval_seconds}s, "
            f"retry: {self.retry_seconds}s)"
        )
        return self._task

    async def run_once(self) -> bool:
        """
        Run a single cleanup pass and update the heartbeat.

        Never raises. Returns False when the pass failed or some records could
        not be expired.
        """
        self.heartbeat["last_run"] = utcnow().isoformat()

        try:
            stats = await self.service.cleanup_expired_reservations()
        except Exception as e:
            self.heartbeat["errors"] += 1
            logger.error(f"Stock cleanup failed: {e}", exc_info=True)
            return False

        released = stats.get("reservations_released", 0)
        self.heartbeat["records_processed"] += released

        if stats.get("errors"):
            self.heartbeat["errors"] += stats["errors"]
            logger.warning(
                f"Stock cleanup finished with {stats['errors']} errors "
                f"({released} reservations released)"
            )
            return False

        self.heartbeat["last_success"] = utcnow().isoformat()
        if released > 0:
            logger.info(
                f"Stock cleanup: released {released} reservations, "
                f"restored {stats['stock_restored']} units"
            )
        return True

    async def _run_loop(self):
        self.heartbeat["running"] = True
        try:
            while not self._stop_event.is_set():
                ok = await self.run_once()
                delay = self.interval_seconds if ok else self.retry_seconds
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    continue
        finally:
            self.heartbeat["running"] = False
            logger.info("Stock cleanup scheduler stopped")

    async def stop(self, timeout: float = 30.0):
        """
        Stop scheduling new passes.

        An in-flight pass gets `timeout` seconds to finish before it is
        cancelled. Safe to call more than once.
        """
        task = self._task
        if task is None:
            return

        self._stop_event.set()
        if not task.done():
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Stock cleanup pass still running after {timeout}s, cancelling")
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    logger.info("Stock cleanup scheduler cancelled")

        self._task = None
