"""
Tesoros Inventory
FastAPI application entry point

Hosts the stock reservation engine's background sweeper and exposes health
monitoring:
- Stock cleanup scheduler with heartbeat metrics
- Health endpoint with DB ping and reservation stats
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from tesoros import __version__
from tesoros.api.deps import get_db, get_inventory_service
from tesoros.core.config import settings
from tesoros.core.database import init_db
from tesoros.jobs.stock_cleanup import StockCleanupScheduler
from tesoros.services.inventory_service import InventoryService

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

_cleanup_scheduler: Optional[StockCleanupScheduler] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create tables and start the stock cleanup scheduler on startup;
    stop it on shutdown.
    """
    global _cleanup_scheduler

    await init_db()

    if settings.STOCK_CLEANUP_ENABLED:
        _cleanup_scheduler = StockCleanupScheduler(get_inventory_service())
        _cleanup_scheduler.start()
        logger.info("Stock cleanup scheduler ENABLED")
    else:
        logger.info("Stock cleanup scheduler DISABLED via config")

    yield

    if _cleanup_scheduler is not None:
        await _cleanup_scheduler.stop()
        _cleanup_scheduler = None


app = FastAPI(
    lifespan=lifespan,
    title=settings.APP_NAME,
    version=__version__,
)


def _cleanup_heartbeat() -> dict:
    if _cleanup_scheduler is None:
        return {
            "enabled": settings.STOCK_CLEANUP_ENABLED,
            "running": False,
        }
    return {"enabled": True, **_cleanup_scheduler.heartbeat}


@app.get("/", tags=["Health"])
async def root():
    return {
        "message": settings.APP_NAME,
        "version": __version__,
        "status": "operational",
    }


@app.get("/health", tags=["Health"])
async def health_check(
    db: AsyncSession = Depends(get_db),
    service: InventoryService = Depends(get_inventory_service),
):
    """
    Health check with an actual DB ping, cleanup heartbeat and reservation stats.
    Returns 503 if the database is unreachable.
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "stock_cleanup": _cleanup_heartbeat(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        await db.execute(text("SELECT 1"))
        health_status["reservations"] = await service.reservation_stats(db=db)
        health_status["database"] = "connected"
    except Exception as e:
        health_status["database"] = f"error: {type(e).__name__}: {str(e)[:100]}"
        health_status["status"] = "unhealthy"
        return JSONResponse(status_code=503, content=health_status)

    return health_status
