"""Atomic points balance mutations and the transaction ledger."""

from dataclasses import dataclass
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from src.core.base import BaseService
from src.database.models import (
    PointTransaction,
    ProcessedOrder,
    TransactionKind,
    User,
)
from src.modules.billing.pricing import PRICE_TABLE


class UserNotFoundError(LookupError):
    """Raised when a balance operation targets a user that does not exist."""

    def __init__(self, user_id: str):
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


@dataclass(frozen=True)
class DeductionResult:
    success: bool
    new_balance: int
    transaction_id: UUID | None = None


@dataclass(frozen=True)
class CreditResult:
    credited: bool
    new_balance: int | None = None
    transaction_id: UUID | None = None


class PointsService(BaseService):
    """Reads and mutates user point balances.

    Every mutation is a single conditional UPDATE plus a ledger row in the
    same database transaction, so concurrent requests for the same user can
    never overdraw the balance.
    """

    async def get_balance(self, user_id: str) -> int:
        balance = await self.db.scalar(
            select(User.points_balance).where(User.id == user_id)
        )
        if balance is None:
            raise UserNotFoundError(user_id)
        return balance

    async def ensure_account(self, user_id: str, email: str | None = None) -> User:
        """Return the user, creating it with the welcome bonus on first sight."""
        user = await self.db.get(User, user_id)
        if user is not None:
            return user

        bonus = PRICE_TABLE.welcome_bonus
        user = User(
            id=user_id,
            email=email,
            points_balance=bonus,
            last_points_update=self.utcnow(),
        )
        self.db.add(user)
        self.db.add(
            PointTransaction(
                user_id=user_id,
                kind=TransactionKind.BONUS,
                amount=bonus,
                description="Welcome bonus",
            )
        )
        try:
            await self.db.commit()
        except IntegrityError:
            # Another request provisioned the same account first
            await self.db.rollback()
            existing = await self.db.get(User, user_id)
            if existing is None:
                raise
            return existing

        self.logger.info("Provisioned points account", user_id=user_id, bonus=bonus)
        return user

    async def deduct(
        self,
        user_id: str,
        points: int,
        description: str,
        metadata: dict | None = None,
        reference_id: str | None = None,
    ) -> DeductionResult:
        """Remove ``points`` from the balance if it covers them.

        Insufficient funds is an expected outcome and is reported through
        ``DeductionResult.success`` rather than raised.

        Raises:
            UserNotFoundError: If the user does not exist.
        """
        if points <= 0:
            raise ValueError(f"Deduction must be positive, got {points}")

        stmt = (
            update(User)
            .where(User.id == user_id, User.points_balance >= points)
            .values(
                points_balance=User.points_balance - points,
                last_points_update=self.utcnow(),
            )
            .returning(User.points_balance)
            .execution_options(synchronize_session=False)
        )
        new_balance = (await self.db.execute(stmt)).scalar_one_or_none()

        if new_balance is None:
            current = await self.db.scalar(
                select(User.points_balance).where(User.id == user_id)
            )
            await self.db.rollback()
            if current is None:
                raise UserNotFoundError(user_id)
            self.logger.info(
                "Deduction refused, insufficient points",
                user_id=user_id,
                requested=points,
                balance=current,
            )
            return DeductionResult(success=False, new_balance=current)

        transaction = PointTransaction(
            id=uuid4(),
            user_id=user_id,
            kind=TransactionKind.DEDUCTION,
            amount=-points,
            description=description,
            reference_id=reference_id,
            extra_metadata=metadata,
        )
        self.db.add(transaction)
        await self.db.commit()

        self.logger.info(
            "Points deducted",
            user_id=user_id,
            points=points,
            new_balance=new_balance,
        )
        return DeductionResult(
            success=True, new_balance=new_balance, transaction_id=transaction.id
        )

    async def credit(
        self,
        user_id: str,
        points: int,
        description: str,
        idempotency_key: str | None = None,
        metadata: dict | None = None,
    ) -> CreditResult:
        """Add ``points`` to the balance.

        With an ``idempotency_key`` (the payment provider's order id) the
        credit happens at most once; repeated calls return
        ``credited=False``.

        Raises:
            UserNotFoundError: If the user does not exist.
        """
        if points <= 0:
            raise ValueError(f"Credit must be positive, got {points}")

        if idempotency_key is not None:
            if await self._order_processed(idempotency_key):
                self.logger.info("Order already credited", order_id=idempotency_key)
                return CreditResult(credited=False)

            self.db.add(
                ProcessedOrder(order_id=idempotency_key, user_id=user_id, points=points)
            )
            try:
                await self.db.flush()
            except IntegrityError:
                await self.db.rollback()
                if await self._order_processed(idempotency_key):
                    self.logger.info(
                        "Order credited concurrently", order_id=idempotency_key
                    )
                    return CreditResult(credited=False)
                if await self.db.get(User, user_id) is None:
                    raise UserNotFoundError(user_id)
                raise

        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(
                points_balance=User.points_balance + points,
                last_points_update=self.utcnow(),
            )
            .returning(User.points_balance)
            .execution_options(synchronize_session=False)
        )
        new_balance = (await self.db.execute(stmt)).scalar_one_or_none()
        if new_balance is None:
            await self.db.rollback()
            raise UserNotFoundError(user_id)

        transaction = PointTransaction(
            id=uuid4(),
            user_id=user_id,
            kind=TransactionKind.PURCHASE,
            amount=points,
            description=description,
            reference_id=idempotency_key,
            extra_metadata=metadata,
        )
        self.db.add(transaction)
        await self.db.commit()

        self.logger.info(
            "Points credited",
            user_id=user_id,
            points=points,
            new_balance=new_balance,
            order_id=idempotency_key,
        )
        return CreditResult(
            credited=True, new_balance=new_balance, transaction_id=transaction.id
        )

    async def list_transactions(
        self, user_id: str, limit: int = 50
    ) -> list[PointTransaction]:
        """Most recent ledger entries for a user, newest first."""
        stmt = (
            select(PointTransaction)
            .where(PointTransaction.user_id == user_id)
            .order_by(PointTransaction.created_at.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _order_processed(self, order_id: str) -> bool:
        marker = await self.db.scalar(
            select(ProcessedOrder.order_id).where(ProcessedOrder.order_id == order_id)
        )
        return marker is not None
