"""Tests for available stock calculation."""
import pytest

from tesoros.services.availability import AvailabilityCalculator, calculate_available


class TestCalculateAvailable:

    @pytest.mark.parametrize(
        "on_hand, held, expected",
        [
            (10, 0, 10),
            (10, 4, 6),
            (10, 10, 0),
            (3, 5, 0),
            (0, 0, 0),
        ],
    )
    def test_calculate_available(self, on_hand, held, expected):
        assert calculate_available(on_hand, held) == expected


class TestAvailabilityCalculator:

    @pytest.mark.asyncio
    async def test_recomputes_from_store(self, session_factory, store, products, clock):
        calculator = AvailabilityCalculator(store)

        async with session_factory() as db:
            async with db.begin():
                await store.create(db, product_id=1, user_id=1, quantity=3)
                await store.create(db, product_id=1, user_id=2, quantity=2)

        async with session_factory() as db:
            assert await calculator.available(db, 1, on_hand=10) == 5

        # Both holds lapse; no sweep needed for them to stop counting
        clock.advance(minutes=15)
        async with session_factory() as db:
            assert await calculator.available(db, 1, on_hand=10) == 10

    @pytest.mark.asyncio
    async def test_never_negative(self, session_factory, store, products):
        calculator = AvailabilityCalculator(store)

        async with session_factory() as db:
            async with db.begin():
                await store.create(db, product_id=2, user_id=1, quantity=4)

        async with session_factory() as db:
            assert await calculator.available(db, 2, on_hand=1) == 0
