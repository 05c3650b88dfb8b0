"""Points and payments API schemas."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class BalanceModel(BaseModel):
    user_id: str
    balance: int
    last_points_update: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class PointTransactionModel(BaseModel):
    id: UUID
    kind: str
    amount: int
    description: str
    reference_id: str | None = None
    metadata: dict | None = Field(
        default=None, validation_alias="extra_metadata"
    )
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionListModel(BaseModel):
    transactions: list[PointTransactionModel]
    count: int


class CostEstimateModel(BaseModel):
    duration_seconds: float
    mode: Literal["standard", "deep"]
    estimated_input_tokens: int
    estimated_output_tokens: int
    estimated_points: int
    price_table_version: str


class PointPackageModel(BaseModel):
    price_id: str
    points: int
    bonus_points: int
    total_points: int
    price: float
    name: str


class PackageCatalogModel(BaseModel):
    currency: str
    packages: dict[str, PointPackageModel]


class CheckoutSessionRequest(BaseModel):
    package: str
    success_url: str | None = None
    cancel_url: str | None = None


class CheckoutSessionResponse(BaseModel):
    session_id: str
    url: str | None
