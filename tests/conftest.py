"""
Pytest configuration and fixtures for Tesoros inventory tests.

Each test gets a fresh in-memory SQLite database and a controllable clock.
"""
import os
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["STOCK_CLEANUP_ENABLED"] = "false"

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.pool import StaticPool

from tesoros.core.database import build_engine, build_session_factory, init_db
from tesoros.core.unit_of_work import ProductLockRegistry
from tesoros.models import Product
from tesoros.services.inventory_service import InventoryService
from tesoros.services.reservation_store import ReservationStore

HOLD = timedelta(minutes=15)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = None):
        self.current = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def engine():
    """In-memory database shared by every session of one test."""
    engine = build_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def products(session_factory):
    """Seed the catalog: product 1 has 10 units, product 2 has 1, product 3 has 5."""
    async with session_factory() as db:
        async with db.begin():
            db.add_all([
                Product(id=1, sku="TES-001", name="Amazing Fantasy #15 (facsimile)", stock=10),
                Product(id=2, sku="TES-002", name="Signed variant cover", stock=1),
                Product(id=3, sku="TES-003", name="Graded slab case", stock=5),
            ])
    return {1: 10, 2: 1, 3: 5}


@pytest.fixture
def store(clock) -> ReservationStore:
    return ReservationStore(clock=clock, default_duration=HOLD)


@pytest.fixture
def service(session_factory, store, products) -> InventoryService:
    return InventoryService(
        session_factory=session_factory,
        store=store,
        hold_duration=HOLD,
        lock_timeout=5.0,
        enforce_confirm_quantity=True,
        locks=ProductLockRegistry(),
    )


@pytest.fixture
def on_hand(session_factory):
    """Read Product.stock straight from the database."""

    async def _on_hand(product_id: int) -> int:
        async with session_factory() as db:
            result = await db.execute(select(Product.stock).where(Product.id == product_id))
            return result.scalar_one()

    return _on_hand
