"""Tests for balance mutations and the points ledger."""

import asyncio

import pytest
from sqlalchemy import func, select

from src.database.models import PointTransaction, ProcessedOrder, TransactionKind, User
from src.modules.billing.points.service import PointsService, UserNotFoundError
from src.modules.billing.pricing import PRICE_TABLE


async def _transactions(session, user_id: str) -> list[PointTransaction]:
    result = await session.execute(
        select(PointTransaction).where(PointTransaction.user_id == user_id)
    )
    return list(result.scalars().all())


class TestDeduct:
    async def test_deduct_updates_balance_and_ledger(
        self, db_session, points_service, user_factory
    ):
        user = await user_factory.create_async(db_session, points_balance=50)

        result = await points_service.deduct(
            user.id,
            12,
            "Analysis: link",
            metadata={"service_type": "link"},
            reference_id="analysis-1",
        )

        assert result.success
        assert result.new_balance == 38
        assert await points_service.get_balance(user.id) == 38

        [transaction] = await _transactions(db_session, user.id)
        assert transaction.id == result.transaction_id
        assert transaction.kind == TransactionKind.DEDUCTION
        assert transaction.amount == -12
        assert transaction.description == "Analysis: link"
        assert transaction.reference_id == "analysis-1"
        assert transaction.extra_metadata == {"service_type": "link"}

    async def test_insufficient_points_leaves_no_trace(
        self, db_session, points_service, user_factory
    ):
        user = await user_factory.create_async(db_session, points_balance=4)

        result = await points_service.deduct(user.id, 5, "Analysis: video")

        assert not result.success
        assert result.new_balance == 4
        assert result.transaction_id is None
        assert await points_service.get_balance(user.id) == 4
        assert await _transactions(db_session, user.id) == []

    async def test_deduct_entire_balance(self, db_session, points_service, user_factory):
        user = await user_factory.create_async(db_session, points_balance=10)

        result = await points_service.deduct(user.id, 10, "Analysis: video")

        assert result.success
        assert result.new_balance == 0

    async def test_deduct_unknown_user(self, points_service):
        with pytest.raises(UserNotFoundError):
            await points_service.deduct("user_missing", 5, "Analysis: video")

    @pytest.mark.parametrize("points", [0, -3])
    async def test_deduct_rejects_non_positive(
        self, db_session, points_service, user_factory, points
    ):
        user = await user_factory.create_async(db_session)

        with pytest.raises(ValueError):
            await points_service.deduct(user.id, points, "Analysis: video")

    async def test_concurrent_deductions_cannot_overdraw(
        self, session_factory, db_session, user_factory
    ):
        user = await user_factory.create_async(db_session, points_balance=30)

        async def deduct_once():
            async with session_factory() as session:
                return await PointsService(session).deduct(
                    user.id, 30, "Analysis: video"
                )

        results = await asyncio.gather(deduct_once(), deduct_once())

        assert sorted(r.success for r in results) == [False, True]
        assert all(r.new_balance == 0 for r in results)

        async with session_factory() as session:
            assert await PointsService(session).get_balance(user.id) == 0
            assert len(await _transactions(session, user.id)) == 1


class TestCredit:
    async def test_credit_adds_points(self, db_session, points_service, user_factory):
        user = await user_factory.create_async(db_session, points_balance=5)

        result = await points_service.credit(
            user.id, 100, "Purchase: starter", metadata={"package": "starter"}
        )

        assert result.credited
        assert result.new_balance == 105

        [transaction] = await _transactions(db_session, user.id)
        assert transaction.kind == TransactionKind.PURCHASE
        assert transaction.amount == 100
        assert transaction.extra_metadata == {"package": "starter"}

    async def test_credit_is_idempotent_per_order(
        self, db_session, points_service, user_factory
    ):
        user = await user_factory.create_async(db_session, points_balance=0)

        first = await points_service.credit(user.id, 100, "purchase", idempotency_key="X")
        second = await points_service.credit(user.id, 100, "purchase", idempotency_key="X")

        assert first.credited
        assert not second.credited
        assert await points_service.get_balance(user.id) == 100

        transactions = await _transactions(db_session, user.id)
        assert [t.reference_id for t in transactions] == ["X"]
        marker_count = await db_session.scalar(
            select(func.count()).select_from(ProcessedOrder)
        )
        assert marker_count == 1

    async def test_concurrent_duplicate_credits_apply_once(
        self, session_factory, db_session, user_factory
    ):
        user = await user_factory.create_async(db_session, points_balance=0)

        async def credit_once():
            async with session_factory() as session:
                return await PointsService(session).credit(
                    user.id, 250, "purchase", idempotency_key="order-42"
                )

        results = await asyncio.gather(credit_once(), credit_once())

        assert sorted(r.credited for r in results) == [False, True]
        async with session_factory() as session:
            assert await PointsService(session).get_balance(user.id) == 250

    async def test_distinct_orders_both_credit(
        self, db_session, points_service, user_factory
    ):
        user = await user_factory.create_async(db_session, points_balance=0)

        await points_service.credit(user.id, 100, "purchase", idempotency_key="A")
        await points_service.credit(user.id, 100, "purchase", idempotency_key="B")

        assert await points_service.get_balance(user.id) == 200

    async def test_credit_unknown_user(self, points_service):
        with pytest.raises(UserNotFoundError):
            await points_service.credit("user_missing", 100, "purchase", idempotency_key="Y")


class TestAccounts:
    async def test_ensure_account_grants_welcome_bonus_once(
        self, db_session, points_service
    ):
        user = await points_service.ensure_account("user_new", "new@example.com")
        again = await points_service.ensure_account("user_new", "new@example.com")

        assert user.points_balance == PRICE_TABLE.welcome_bonus
        assert again.points_balance == PRICE_TABLE.welcome_bonus

        [transaction] = await _transactions(db_session, "user_new")
        assert transaction.kind == TransactionKind.BONUS
        assert transaction.amount == PRICE_TABLE.welcome_bonus

    async def test_ensure_account_keeps_existing_balance(
        self, db_session, points_service, user_factory
    ):
        existing = await user_factory.create_async(db_session, points_balance=7)

        user = await points_service.ensure_account(existing.id)

        assert user.points_balance == 7
        assert await db_session.scalar(select(func.count()).select_from(User)) == 1

    async def test_get_balance_unknown_user(self, points_service):
        with pytest.raises(UserNotFoundError):
            await points_service.get_balance("user_missing")

    async def test_list_transactions_newest_first(
        self, db_session, points_service, user_factory
    ):
        user = await user_factory.create_async(db_session, points_balance=100)
        for points in (5, 6, 7):
            await points_service.deduct(user.id, points, f"Analysis {points}")

        transactions = await points_service.list_transactions(user.id, limit=2)

        assert [t.amount for t in transactions] == [-7, -6]

    async def test_list_transactions_is_scoped_to_the_user(
        self, db_session, points_service, user_factory, transaction_factory
    ):
        owner = await user_factory.create_async(db_session, points_balance=90)
        other = await user_factory.create_async(db_session, points_balance=50)
        await transaction_factory.create_async(db_session, user_id=owner.id, amount=-10)
        await transaction_factory.create_batch_async(db_session, 3, user_id=other.id)

        transactions = await points_service.list_transactions(owner.id)

        assert [(t.user_id, t.amount) for t in transactions] == [(owner.id, -10)]
