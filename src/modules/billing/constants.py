"""Point packages sold through Stripe checkout."""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from src.api.points.schemas import PackageCatalogModel, PointPackageModel
from src.utils.settings.stripe import StripeSettings

_stripe_settings = StripeSettings()


class PointPackage(str, Enum):
    """Available point package types."""

    STARTER = "starter"
    STANDARD = "standard"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


class StripeProductType(str, Enum):
    POINTS_PACKAGE = "points_package"


PRICE_POINTS_STARTER_EUR = _stripe_settings.STRIPE_PRICE_POINTS_STARTER_EUR
PRICE_POINTS_STANDARD_EUR = _stripe_settings.STRIPE_PRICE_POINTS_STANDARD_EUR
PRICE_POINTS_PROFESSIONAL_EUR = _stripe_settings.STRIPE_PRICE_POINTS_PROFESSIONAL_EUR
PRICE_POINTS_ENTERPRISE_EUR = _stripe_settings.STRIPE_PRICE_POINTS_ENTERPRISE_EUR


@dataclass(frozen=True)
class PointPackageConfig:
    """Configuration for a point package."""

    price_id: str
    points: int
    bonus_points: int
    price: Decimal
    name: str

    @property
    def total_points(self) -> int:
        return self.points + self.bonus_points


POINT_PACKAGES: dict[PointPackage, PointPackageConfig] = {
    PointPackage.STARTER: PointPackageConfig(
        price_id=PRICE_POINTS_STARTER_EUR,
        points=500,
        bonus_points=0,
        price=Decimal("5.00"),
        name="Starter",
    ),
    PointPackage.STANDARD: PointPackageConfig(
        price_id=PRICE_POINTS_STANDARD_EUR,
        points=1500,
        bonus_points=200,
        price=Decimal("15.00"),
        name="Standard",
    ),
    PointPackage.PROFESSIONAL: PointPackageConfig(
        price_id=PRICE_POINTS_PROFESSIONAL_EUR,
        points=4500,
        bonus_points=1000,
        price=Decimal("44.00"),
        name="Professional",
    ),
    PointPackage.ENTERPRISE: PointPackageConfig(
        price_id=PRICE_POINTS_ENTERPRISE_EUR,
        points=10000,
        bonus_points=2500,
        price=Decimal("99.00"),
        name="Enterprise",
    ),
}


def get_all_packages() -> PackageCatalogModel:
    """Get all package configurations for API responses."""
    return PackageCatalogModel(
        currency="EUR",
        packages={
            package.value: PointPackageModel(
                price_id=config.price_id,
                points=config.points,
                bonus_points=config.bonus_points,
                total_points=config.total_points,
                price=float(config.price),
                name=config.name,
            )
            for package, config in POINT_PACKAGES.items()
        },
    )
