"""User model holding the points balance."""

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("points_balance >= 0", name="ck_users_points_balance_non_negative"),
    )

    id: Mapped[str] = mapped_column(
        String, primary_key=True, comment="Auth provider subject"
    )
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    points_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_points_update: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    transactions = relationship(
        "PointTransaction", back_populates="user", cascade="all, delete-orphan"
    )
