"""Points pricing for model usage and fixed-price services.

Every price the service charges comes from ``PRICE_TABLE``. Bump
``PRICE_TABLE_VERSION`` whenever any number in it changes; the version is
stored with each deduction so historical charges stay explainable.
"""

import math
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal

from src.modules.analysis.service_types import AnalysisMode, ServiceType
from src.utils.logger import get_logger

logger = get_logger(__name__)

PRICE_TABLE_VERSION = "2026-02"

MILLION = Decimal(1_000_000)


class UnknownServiceTypeError(LookupError):
    """Raised when a service type has no fixed price configured."""


@dataclass(frozen=True)
class ModelRates:
    """USD cost per million tokens for one model."""

    input_per_million: Decimal
    output_per_million: Decimal
    audio_per_million: Decimal


@dataclass(frozen=True)
class PriceTable:
    version: str
    default_model: str
    models: dict[str, ModelRates]
    usd_to_eur: Decimal
    points_per_eur: Decimal
    profit_multipliers: dict[AnalysisMode, Decimal]
    minimum_points: dict[AnalysisMode, int]
    batch_discount: Decimal
    fixed_prices: dict[ServiceType, int]
    welcome_bonus: int

    def rates_for(self, model: str | None) -> ModelRates:
        """Rates for ``model``, falling back to the default model."""
        if model and model in self.models:
            return self.models[model]
        if model:
            logger.warning(
                "Unknown model, using default rates",
                model=model,
                default_model=self.default_model,
            )
        return self.models[self.default_model]


PRICE_TABLE = PriceTable(
    version=PRICE_TABLE_VERSION,
    default_model="gemini-2.5-flash",
    models={
        "gemini-2.5-flash": ModelRates(
            input_per_million=Decimal("0.50"),
            output_per_million=Decimal("2.00"),
            audio_per_million=Decimal("1.00"),
        ),
        "gemini-2.5-pro": ModelRates(
            input_per_million=Decimal("1.25"),
            output_per_million=Decimal("5.00"),
            audio_per_million=Decimal("2.00"),
        ),
    },
    usd_to_eur=Decimal("0.95"),
    points_per_eur=Decimal("100"),
    profit_multipliers={
        AnalysisMode.STANDARD: Decimal("2.0"),
        AnalysisMode.DEEP: Decimal("3.0"),
    },
    minimum_points={
        AnalysisMode.STANDARD: 5,
        AnalysisMode.DEEP: 10,
    },
    batch_discount=Decimal("0.5"),
    fixed_prices={
        ServiceType.LINK: 12,
        ServiceType.SOCIAL_POST: 12,
        ServiceType.COMMENTS: 15,
        ServiceType.SOCIAL_FULL_AUDIT: 20,
    },
    welcome_bonus=100,
)


@dataclass(frozen=True)
class UsageQuote:
    """Breakdown of a token-metered charge."""

    cost_usd: Decimal
    cost_eur: Decimal
    points: int
    model: str
    mode: AnalysisMode
    is_batch: bool


def _mode(is_deep: bool) -> AnalysisMode:
    return AnalysisMode.DEEP if is_deep else AnalysisMode.STANDARD


def quote_usage(
    prompt_tokens: int,
    output_tokens: int,
    is_deep: bool = False,
    is_batch: bool = False,
    model: str | None = None,
    table: PriceTable = PRICE_TABLE,
) -> UsageQuote:
    """Convert token usage into points, keeping the intermediate amounts."""
    rates = table.rates_for(model)
    mode = _mode(is_deep)
    discount = table.batch_discount if is_batch else Decimal(1)

    prompt = Decimal(max(int(prompt_tokens or 0), 0))
    output = Decimal(max(int(output_tokens or 0), 0))

    cost_usd = (prompt / MILLION) * rates.input_per_million * discount + (
        output / MILLION
    ) * rates.output_per_million * discount
    cost_eur = cost_usd * table.usd_to_eur

    raw_points = cost_eur * table.points_per_eur * table.profit_multipliers[mode]
    points = int(raw_points.to_integral_value(rounding=ROUND_CEILING))

    return UsageQuote(
        cost_usd=cost_usd,
        cost_eur=cost_eur,
        points=max(table.minimum_points[mode], points),
        model=model if model in table.models else table.default_model,
        mode=mode,
        is_batch=is_batch,
    )


def price_by_usage(
    prompt_tokens: int,
    output_tokens: int,
    is_deep: bool = False,
    is_batch: bool = False,
    model: str | None = None,
    table: PriceTable = PRICE_TABLE,
) -> int:
    """Points owed for a token-metered generation."""
    return quote_usage(
        prompt_tokens, output_tokens, is_deep, is_batch, model, table
    ).points


def price_fixed(
    service_type: ServiceType | str, table: PriceTable = PRICE_TABLE
) -> int:
    """Flat price for a service that is not billed by token count.

    Raises:
        UnknownServiceTypeError: If the service has no fixed price.
    """
    try:
        resolved = ServiceType(service_type)
    except ValueError:
        raise UnknownServiceTypeError(f"Unknown service type: {service_type}")

    if resolved not in table.fixed_prices:
        raise UnknownServiceTypeError(f"Unknown service type: {service_type}")
    return table.fixed_prices[resolved]


def minimum_charge(
    service_type: ServiceType, is_deep: bool, table: PriceTable = PRICE_TABLE
) -> int:
    """Smallest amount a request of this kind can possibly cost."""
    if service_type.is_token_metered:
        return table.minimum_points[_mode(is_deep)]
    return price_fixed(service_type, table)


def estimate_video_tokens(
    duration_seconds: float, mode: AnalysisMode
) -> tuple[int, int]:
    """Rough (input, output) token counts for analysing a video.

    Standard mode works from the transcript (about 150 words a minute at
    1.3 tokens per word). Deep mode samples the video frames and audio
    track (2500 + 1920 tokens a minute). Both carry a 3000 token prompt.
    """
    if not math.isfinite(duration_seconds):
        raise ValueError(f"Duration must be finite, got {duration_seconds}")
    minutes = max(duration_seconds, 0) / 60
    if mode == AnalysisMode.DEEP:
        input_tokens = round(minutes * 2500 + minutes * 1920 + 3000)
        output_tokens = round(5000 + minutes * 100)
    else:
        input_tokens = round(minutes * 150 * 1.3 + 3000)
        output_tokens = round(4000 + minutes * 50)
    return input_tokens, output_tokens


def estimate_video_cost(
    duration_seconds: float,
    mode: AnalysisMode,
    model: str | None = None,
    table: PriceTable = PRICE_TABLE,
) -> int:
    input_tokens, output_tokens = estimate_video_tokens(duration_seconds, mode)
    return price_by_usage(
        input_tokens,
        output_tokens,
        is_deep=mode == AnalysisMode.DEEP,
        model=model,
        table=table,
    )
