"""Plan definitions: pricing tiers and usage limits."""

from dataclasses import dataclass

from dashboard.billing.errors import PlanNotFound
from dashboard.config import settings


@dataclass(frozen=True)
class PlanLimits:
    """Usage limits for a subscription plan."""

    name: str
    display_name: str
    max_pages: int | None  # None = unlimited
    max_credits: int | None
    max_seats: int | None
    max_sites: int | None
    white_label: bool
    price_monthly_cents: int  # in cents (e.g., 2900 = $29.00)
    stripe_price_id: str | None


PLANS: dict[str, PlanLimits] = {
    "starter": PlanLimits(
        name="starter",
        display_name="Starter",
        max_pages=10,
        max_credits=50_000,
        max_seats=2,
        max_sites=1,
        white_label=False,
        price_monthly_cents=2900,
        stripe_price_id=settings.stripe_starter_price_id or None,
    ),
    "growth": PlanLimits(
        name="growth",
        display_name="Growth",
        max_pages=100,
        max_credits=500_000,
        max_seats=10,
        max_sites=5,
        white_label=False,
        price_monthly_cents=9900,
        stripe_price_id=settings.stripe_growth_price_id or None,
    ),
    "enterprise": PlanLimits(
        name="enterprise",
        display_name="Enterprise",
        max_pages=None,
        max_credits=None,
        max_seats=None,
        max_sites=None,
        white_label=True,
        price_monthly_cents=29900,
        stripe_price_id=settings.stripe_enterprise_price_id or None,
    ),
}


def get_plan(plan_name: str) -> PlanLimits:
    """Get plan limits by name.

    Raises:
        PlanNotFound: If no plan with that name is configured.
    """
    try:
        return PLANS[plan_name]
    except KeyError:
        raise PlanNotFound(plan_name) from None
