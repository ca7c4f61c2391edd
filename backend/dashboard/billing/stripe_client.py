"""Async Stripe implementation of the billing gateway."""

import asyncio
import logging
from collections.abc import Awaitable
from datetime import datetime, timezone
from typing import TypeVar

import stripe
from stripe import StripeClient

from dashboard.billing.gateway import InvoicePreview, SubscriptionSnapshot
from dashboard.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Collection is suspended and draft invoices are voided while paused.
PAUSE_BEHAVIOR = "void"


def get_stripe_client() -> StripeClient:
    """Create a StripeClient instance with async HTTP support.

    Retries are disabled: a failed call is reported to the caller, and retrying
    is left to the next request or the next scheduled reconciliation run.
    """
    return StripeClient(
        settings.stripe_secret_key,
        http_client=stripe.HTTPXClient(timeout=settings.stripe_request_timeout_seconds),
        max_network_retries=0,
    )


def _ts_to_naive(ts: int | None) -> datetime | None:
    """Convert Stripe Unix timestamp to naive UTC datetime."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def _get_first_item(stripe_sub: stripe.Subscription):
    """Get the first subscription item, using bracket notation to avoid
    collision with Python dict .items() in newer Stripe API versions.
    """
    sub_items = stripe_sub["items"]
    if sub_items and sub_items.data:
        return sub_items.data[0]
    return None


def _get_period(stripe_sub: stripe.Subscription) -> tuple[datetime | None, datetime | None]:
    """Extract current period start/end.

    In Stripe API 2025-08-27 (basil), current_period_start/end moved
    from the subscription object to the subscription item.
    """
    item = _get_first_item(stripe_sub)
    source = item if item is not None else stripe_sub
    return (
        _ts_to_naive(getattr(source, "current_period_start", None)),
        _ts_to_naive(getattr(source, "current_period_end", None)),
    )


def snapshot_from_stripe(stripe_sub: stripe.Subscription) -> SubscriptionSnapshot:
    """Map a Stripe subscription object onto a SubscriptionSnapshot."""
    period_start, period_end = _get_period(stripe_sub)
    return SubscriptionSnapshot(
        status=stripe_sub.status,
        current_period_start=period_start,
        current_period_end=period_end,
        cancel_at_period_end=bool(stripe_sub.cancel_at_period_end),
        trial_start=_ts_to_naive(getattr(stripe_sub, "trial_start", None)),
        trial_end=_ts_to_naive(getattr(stripe_sub, "trial_end", None)),
        collection_paused=getattr(stripe_sub, "pause_collection", None) is not None,
        canceled_at=_ts_to_naive(getattr(stripe_sub, "canceled_at", None)),
    )


class StripeBillingGateway:
    """BillingGateway backed by the Stripe v1 API."""

    def __init__(
        self,
        client: StripeClient | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._client = client or get_stripe_client()
        self._timeout = timeout_seconds or settings.stripe_request_timeout_seconds

    async def _call(self, operation: str, ref: str, call: Awaitable[T]) -> T | None:
        """Await a Stripe call under the request timeout.

        Returns None (after logging) on a Stripe error or timeout.
        """
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.error("Stripe %s timed out for %s after %.1fs", operation, ref, self._timeout)
        except stripe.StripeError as e:
            logger.error(
                "Stripe %s failed for %s: %s (code=%s)",
                operation,
                ref,
                e.user_message or str(e),
                getattr(e, "code", None),
            )
        return None

    async def _update(self, operation: str, subscription_ref: str, params: dict) -> bool:
        result = await self._call(
            operation,
            subscription_ref,
            self._client.v1.subscriptions.update_async(subscription_ref, params=params),
        )
        if result is None:
            return False
        logger.info("Stripe %s succeeded for %s", operation, subscription_ref)
        return True

    async def cancel_at_period_end(self, subscription_ref: str) -> bool:
        return await self._update("cancel_at_period_end", subscription_ref, {"cancel_at_period_end": True})

    async def resume_auto_renew(self, subscription_ref: str) -> bool:
        return await self._update("resume_auto_renew", subscription_ref, {"cancel_at_period_end": False})

    async def pause_collection(self, subscription_ref: str) -> bool:
        return await self._update(
            "pause_collection",
            subscription_ref,
            {"pause_collection": {"behavior": PAUSE_BEHAVIOR}},
        )

    async def resume_collection(self, subscription_ref: str) -> bool:
        # An empty string unsets pause_collection on the Stripe side
        return await self._update("resume_collection", subscription_ref, {"pause_collection": ""})

    async def fetch_subscription(self, subscription_ref: str) -> SubscriptionSnapshot | None:
        stripe_sub = await self._call(
            "fetch_subscription",
            subscription_ref,
            self._client.v1.subscriptions.retrieve_async(subscription_ref),
        )
        if stripe_sub is None:
            return None
        return snapshot_from_stripe(stripe_sub)

    async def fetch_upcoming_invoice(self, customer_ref: str) -> InvoicePreview | None:
        invoice = await self._call(
            "fetch_upcoming_invoice",
            customer_ref,
            self._client.v1.invoices.create_preview_async(params={"customer": customer_ref}),
        )
        if invoice is None:
            return None
        return InvoicePreview(
            amount_due=invoice.amount_due,
            period_end=_ts_to_naive(getattr(invoice, "period_end", None)),
            currency=getattr(invoice, "currency", None) or "usd",
        )
