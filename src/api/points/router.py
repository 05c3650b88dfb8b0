from fastapi import APIRouter, Query

from src.api.core.constants import (
    DEFAULT_TRANSACTIONS_LIMIT,
    MAX_ESTIMATE_DURATION_SECONDS,
    MAX_TRANSACTIONS_LIMIT,
)
from src.api.core.dependencies import CurrentUserAuthDep, PointsServiceDep
from src.api.core.messages import APIResponse
from src.api.points.schemas import (
    BalanceModel,
    CostEstimateModel,
    PackageCatalogModel,
    PointTransactionModel,
    TransactionListModel,
)
from src.modules.analysis.service_types import AnalysisMode
from src.modules.billing.constants import get_all_packages
from src.modules.billing.pricing import (
    PRICE_TABLE_VERSION,
    estimate_video_cost,
    estimate_video_tokens,
)

router = APIRouter(prefix="/points", tags=["points"])


@router.get("/balance", response_model=APIResponse[BalanceModel])
async def get_balance(
    current_user: CurrentUserAuthDep,
    points_service: PointsServiceDep,
) -> APIResponse[BalanceModel]:
    """Current balance. First access provisions the account."""
    user = await points_service.ensure_account(current_user.user_id, current_user.email)
    return APIResponse.success(
        data=BalanceModel(
            user_id=user.id,
            balance=user.points_balance,
            last_points_update=user.last_points_update,
        )
    )


@router.get("/transactions", response_model=APIResponse[TransactionListModel])
async def list_transactions(
    current_user: CurrentUserAuthDep,
    points_service: PointsServiceDep,
    limit: int = Query(default=DEFAULT_TRANSACTIONS_LIMIT, ge=1, le=MAX_TRANSACTIONS_LIMIT),
) -> APIResponse[TransactionListModel]:
    transactions = await points_service.list_transactions(current_user.user_id, limit)
    items = [PointTransactionModel.model_validate(t) for t in transactions]
    return APIResponse.success(
        data=TransactionListModel(transactions=items, count=len(items))
    )


@router.get("/estimate", response_model=APIResponse[CostEstimateModel])
async def estimate_cost(
    duration_seconds: float = Query(
        ge=0, le=MAX_ESTIMATE_DURATION_SECONDS, allow_inf_nan=False
    ),
    mode: AnalysisMode = Query(default=AnalysisMode.STANDARD),
    model: str | None = Query(default=None),
) -> APIResponse[CostEstimateModel]:
    """Approximate points for analysing a video of the given length."""
    input_tokens, output_tokens = estimate_video_tokens(duration_seconds, mode)
    return APIResponse.success(
        data=CostEstimateModel(
            duration_seconds=duration_seconds,
            mode=mode.value,
            estimated_input_tokens=input_tokens,
            estimated_output_tokens=output_tokens,
            estimated_points=estimate_video_cost(duration_seconds, mode, model=model),
            price_table_version=PRICE_TABLE_VERSION,
        )
    )


@router.get("/packages", response_model=APIResponse[PackageCatalogModel])
async def get_packages() -> APIResponse[PackageCatalogModel]:
    return APIResponse.success(data=get_all_packages())
