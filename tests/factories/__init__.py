"""Test factories for FactCheck API models."""

from .base import AsyncSQLAlchemyModelFactory
from .transactions import PointTransactionFactory
from .users import UserFactory

__all__ = [
    "AsyncSQLAlchemyModelFactory",
    "PointTransactionFactory",
    "UserFactory",
]
