"""
Unit of Work and per-product reservation locks

The reservation engine wraps every check-then-act sequence in a UnitOfWork
(one database transaction) held under a ProductLockRegistry lock, so that two
concurrent reservations for the same product cannot both observe enough
availability. The row lock (SELECT ... FOR UPDATE) taken inside the transaction
extends the guarantee across processes sharing a PostgreSQL database.
"""
import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tesoros.core.exceptions import ReservationLockTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class UnitOfWork:
    """
    Executes an async callable inside a single transaction.

    Usage:
        uow = UnitOfWork(session_factory=AsyncSessionLocal)
        created = await uow.run_atomically(lambda db: store.create(db, ...))

    When constructed with a caller-owned session that already has a transaction
    in progress, the work joins that transaction and commit/rollback stay with
    the caller. Otherwise a transaction is begun, committed on success and
    rolled back on any exception.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        session: Optional[AsyncSession] = None,
    ):
        if session_factory is None and session is None:
            raise ValueError("UnitOfWork requires a session_factory or a session")
        self._session_factory = session_factory
        self._session = session

    @property
    def joins_caller_transaction(self) -> bool:
        return self._session is not None and self._session.in_transaction()

    async def run_atomically(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        if self._session is not None:
            if self._session.in_transaction():
                return await fn(self._session)
            async with self._session.begin():
                return await fn(self._session)

        async with self._session_factory() as session:
            async with session.begin():
                return await fn(session)


class ProductLockRegistry:
    """
    In-process mutual exclusion keyed by product id.

    Locks are weakly referenced: once no coroutine holds or waits on a
    product's lock it is dropped from the registry.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, product_id: int) -> asyncio.Lock:
        lock = self._locks.get(product_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[product_id] = lock
        return lock

    def is_locked(self, product_id: int) -> bool:
        lock = self._locks.get(product_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, product_id: int, timeout: Optional[float] = None):
        """Hold the product's lock, waiting at most `timeout` seconds for it."""
        lock = self._lock_for(product_id)
        try:
            async with asyncio.timeout(timeout):
                await lock.acquire()
        except TimeoutError:
            logger.warning(
                "Reservation lock wait exceeded %ss for product_id=%s",
                timeout,
                product_id,
            )
            raise ReservationLockTimeoutError(
                f"Timed out waiting for reservation lock on product {product_id}",
                product_id=product_id,
                timeout_seconds=timeout,
            )
        try:
            yield
        finally:
            lock.release()
