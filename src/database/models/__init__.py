"""Database models for the fact-check API."""

from .base import Base
from .processed_orders import ProcessedOrder
from .transactions import PointTransaction, TransactionKind
from .users import User

# Export all models and enums
__all__ = [
    # Base
    "Base",
    # Enums
    "TransactionKind",
    # Models
    "User",
    "PointTransaction",
    "ProcessedOrder",
]
