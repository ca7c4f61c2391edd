"""Billing provider boundary: the only place lifecycle code reaches Stripe through.

Mutating calls answer ``True``/``False``; fetches answer a snapshot or ``None``.
Implementations log provider errors and timeouts themselves and never raise
for them, so callers decide how a failure is surfaced.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Provider-side view of a subscription at fetch time."""

    status: str
    current_period_start: datetime | None
    current_period_end: datetime | None
    cancel_at_period_end: bool
    trial_start: datetime | None = None
    trial_end: datetime | None = None
    collection_paused: bool = False
    canceled_at: datetime | None = None


@dataclass(frozen=True)
class InvoicePreview:
    """Next invoice the provider will issue for a customer."""

    amount_due: int  # in cents
    period_end: datetime | None
    currency: str = "usd"


class BillingGateway(Protocol):
    async def cancel_at_period_end(self, subscription_ref: str) -> bool:
        ...

    async def resume_auto_renew(self, subscription_ref: str) -> bool:
        ...

    async def pause_collection(self, subscription_ref: str) -> bool:
        ...

    async def resume_collection(self, subscription_ref: str) -> bool:
        ...

    async def fetch_subscription(self, subscription_ref: str) -> SubscriptionSnapshot | None:
        ...

    async def fetch_upcoming_invoice(self, customer_ref: str) -> InvoicePreview | None:
        ...
