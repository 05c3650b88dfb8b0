"""Append-only ledger of points movements."""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class TransactionKind(str, Enum):
    PURCHASE = "purchase"
    DEDUCTION = "deduction"
    BONUS = "bonus"


class PointTransaction(Base):
    __tablename__ = "point_transactions"
    __table_args__ = (
        Index("ix_point_transactions_user_created", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[TransactionKind] = mapped_column(String, nullable=False)
    amount: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Signed: negative for deductions"
    )
    description: Mapped[str] = mapped_column(String, nullable=False)
    reference_id: Mapped[str | None] = mapped_column(
        String, nullable=True, comment="Analysis id or payment order id"
    )
    extra_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    user = relationship("User", back_populates="transactions")
