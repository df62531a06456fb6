"""
Tests for transaction boundaries and per-product locks.
"""
import asyncio

import pytest
from sqlalchemy import select

from tesoros.core.exceptions import ReservationLockTimeoutError
from tesoros.core.unit_of_work import ProductLockRegistry, UnitOfWork
from tesoros.models import Product


class Boom(Exception):
    pass


async def _product_names(session_factory):
    async with session_factory() as db:
        result = await db.execute(select(Product.name).order_by(Product.id))
        return list(result.scalars().all())


class TestUnitOfWork:

    def test_requires_factory_or_session(self):
        with pytest.raises(ValueError):
            UnitOfWork()

    @pytest.mark.asyncio
    async def test_commits_on_success(self, session_factory):
        async def work(db):
            db.add(Product(id=10, sku="UOW-1", name="committed", stock=1))
            return "done"

        result = await UnitOfWork(session_factory=session_factory).run_atomically(work)

        assert result == "done"
        assert await _product_names(session_factory) == ["committed"]

    @pytest.mark.asyncio
    async def test_rolls_back_on_error(self, session_factory):
        async def work(db):
            db.add(Product(id=10, sku="UOW-1", name="discarded", stock=1))
            await db.flush()
            raise Boom()

        with pytest.raises(Boom):
            await UnitOfWork(session_factory=session_factory).run_atomically(work)

        assert await _product_names(session_factory) == []

    @pytest.mark.asyncio
    async def test_joins_open_transaction(self, session_factory):
        async def work(db):
            db.add(Product(id=10, sku="UOW-1", name="joined", stock=1))

        with pytest.raises(Boom):
            async with session_factory() as db:
                async with db.begin():
                    uow = UnitOfWork(session_factory=session_factory, session=db)
                    assert uow.joins_caller_transaction is True
                    await uow.run_atomically(work)
                    raise Boom()

        # Work done in the caller's transaction goes down with it
        assert await _product_names(session_factory) == []

    @pytest.mark.asyncio
    async def test_begins_on_idle_session(self, session_factory):
        async def work(db):
            db.add(Product(id=10, sku="UOW-1", name="own transaction", stock=1))

        async with session_factory() as db:
            uow = UnitOfWork(session=db)
            assert uow.joins_caller_transaction is False
            await uow.run_atomically(work)

        assert await _product_names(session_factory) == ["own transaction"]


class TestProductLockRegistry:

    @pytest.mark.asyncio
    async def test_hold_and_release(self):
        locks = ProductLockRegistry()

        async with locks.hold(1):
            assert locks.is_locked(1) is True
            assert locks.is_locked(2) is False

        assert locks.is_locked(1) is False

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        locks = ProductLockRegistry()

        with pytest.raises(Boom):
            async with locks.hold(1):
                raise Boom()

        assert locks.is_locked(1) is False

    @pytest.mark.asyncio
    async def test_products_do_not_block_each_other(self):
        locks = ProductLockRegistry()

        async with locks.hold(1):
            async with locks.hold(2, timeout=0.05):
                assert locks.is_locked(2) is True

    @pytest.mark.asyncio
    async def test_same_product_is_serialized(self):
        locks = ProductLockRegistry()
        order = []

        async def worker(name):
            async with locks.hold(1):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_timeout_raises(self):
        locks = ProductLockRegistry()

        async with locks.hold(7):
            with pytest.raises(ReservationLockTimeoutError) as exc_info:
                async with locks.hold(7, timeout=0.05):
                    pass

        assert exc_info.value.code == "RESERVATION_LOCK_TIMEOUT"
        assert exc_info.value.details == {"product_id": 7, "timeout_seconds": 0.05}

    @pytest.mark.asyncio
    async def test_waiter_cancelled_at_handover_leaves_lock_free(self):
        locks = ProductLockRegistry()
        entered = []

        async def waiter():
            async with locks.hold(1, timeout=5):
                entered.append(True)

        async with locks.hold(1):
            task = asyncio.create_task(waiter())
            await asyncio.sleep(0)

        # The lock was just handed to the waiter, which has not resumed yet
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert entered == []
        async with locks.hold(1, timeout=0.05):
            assert locks.is_locked(1) is True

    @pytest.mark.asyncio
    async def test_timed_out_waiter_leaves_lock_free(self):
        locks = ProductLockRegistry()

        async with locks.hold(3):
            with pytest.raises(ReservationLockTimeoutError):
                async with locks.hold(3, timeout=0.01):
                    pass

        async with locks.hold(3, timeout=0.05):
            assert locks.is_locked(3) is True
