#!/usr/bin/env python3
"""
Tesoros - Standalone Reservation Sweeper

Runs the stock cleanup scheduler as its own process, for deployments where the
API host runs with STOCK_CLEANUP_ENABLED=false.

Uses the same database configuration as the API (DATABASE_URL).
"""
import asyncio
import logging
import signal
import sys
from datetime import datetime, timezone
from typing import Optional

from tesoros.core.config import settings
from tesoros.jobs.stock_cleanup import StockCleanupScheduler
from tesoros.services.inventory_service import InventoryService

logger = logging.getLogger(__name__)


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    """Set stop_event on SIGTERM / SIGINT."""
    loop = asyncio.get_running_loop()

    def handle_shutdown(signum, frame):
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        loop.call_soon_threadsafe(stop_event.set)

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)


async def main(
    stop_event: Optional[asyncio.Event] = None,
    scheduler: Optional[StockCleanupScheduler] = None,
) -> None:
    """Run the sweeper until stop_event is set (by a signal unless one is passed in)."""
    logger.info("=" * 60)
    logger.info("Tesoros Reservation Sweeper")
    logger.info("=" * 60)
    logger.info(f"Started at: {datetime.now(timezone.utc).isoformat()}")
    logger.info(f"Interval: {settings.STOCK_CLEANUP_INTERVAL_MINUTES} minutes")

    if stop_event is None:
        stop_event = asyncio.Event()
        _install_signal_handlers(stop_event)

    if scheduler is None:
        scheduler = StockCleanupScheduler(InventoryService())

    scheduler.start()
    try:
        logger.info("Sweeper running. Press Ctrl+C to stop.")
        await stop_event.wait()
    finally:
        logger.info("Stopping stock cleanup scheduler...")
        await scheduler.stop()
        logger.info("Sweeper stopped.")


def run() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
