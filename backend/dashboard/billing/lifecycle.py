"""Lifecycle service: user-initiated subscription transitions.

Each operation follows the same sequence: authorize the caller, lock and load
the row, let the state machine decide, run the provider calls in order, and
only then write the local mirror with a version check. A failed provider call
leaves the row untouched.
"""

import logging
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dashboard.auth.roles import RoleChecker, db_role_checker
from dashboard.billing.errors import (
    ConcurrentUpdateError,
    GatewayError,
    PermissionDenied,
    SubscriptionNotFound,
)
from dashboard.billing.gateway import BillingGateway, InvoicePreview, SubscriptionSnapshot
from dashboard.billing.plans import PlanLimits, get_plan
from dashboard.billing.state_machine import (
    CancelAtPeriodEnd,
    GatewayCall,
    Pause,
    Resume,
    SubscriptionState,
    Transition,
    UndoCancelAtPeriodEnd,
    decide,
)
from dashboard.billing.store import SubscriptionStore
from dashboard.database import utcnow
from dashboard.models.subscription import Subscription

logger = logging.getLogger(__name__)


async def run_gateway_calls(
    gateway: BillingGateway,
    subscription_ref: str,
    calls: Sequence[GatewayCall],
) -> None:
    """Issue ``calls`` one after another, stopping at the first failure.

    Raises:
        GatewayError: Naming the call that failed.
    """
    for position, call in enumerate(calls):
        ok = await getattr(gateway, call.value)(subscription_ref)
        if not ok:
            if position:
                logger.warning(
                    "Stripe %s failed for %s after %s already succeeded",
                    call.value,
                    subscription_ref,
                    ", ".join(c.value for c in calls[:position]),
                )
            raise GatewayError(call.value)


@dataclass
class SubscriptionDetails:
    """Subscription as shown to the owner, preferring provider values when available."""

    subscription: Subscription
    plan: PlanLimits
    status: str
    current_period_end: datetime | None
    cancel_at_period_end: bool
    canceled_at: datetime | None = None
    next_payment_amount_cents: int | None = None
    next_payment_date: datetime | None = None
    provider_synced: bool = False


class LifecycleService:
    """Pause, resume, cancel and undo-cancel for an owner's subscription."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: BillingGateway,
        role_checker: RoleChecker | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.store = SubscriptionStore(db)
        self.gateway = gateway
        self.role_checker = role_checker or db_role_checker(db)
        self.clock = clock

    # --- Transitions ---

    async def pause(self, owner_id: uuid.UUID, duration_months: int) -> Subscription:
        return await self._transition(owner_id, Pause(duration_months))

    async def resume(self, owner_id: uuid.UUID) -> Subscription:
        return await self._transition(owner_id, Resume())

    async def cancel(self, owner_id: uuid.UUID) -> Subscription:
        return await self._transition(owner_id, CancelAtPeriodEnd())

    async def undo_cancel(self, owner_id: uuid.UUID) -> Subscription:
        return await self._transition(owner_id, UndoCancelAtPeriodEnd())

    # --- Read paths ---

    async def refresh(self, owner_id: uuid.UUID) -> Subscription:
        """Re-sync the local row from the provider (no-op for trials)."""
        await self._authorize(owner_id)
        subscription = await self._load(owner_id, lock=True)
        if not subscription.has_billing_reference:
            return subscription
        subscription, _ = await self._sync_from_provider(subscription)
        return subscription

    async def get_details(self, owner_id: uuid.UUID) -> SubscriptionDetails:
        """Subscription, plan and next payment, refreshed from the provider when possible.

        Provider failures degrade to the local mirror instead of failing the read.
        """
        await self._authorize(owner_id)
        subscription = await self._load(owner_id, lock=False)
        plan = get_plan(subscription.plan)

        details = SubscriptionDetails(
            subscription=subscription,
            plan=plan,
            status=subscription.status,
            current_period_end=subscription.current_period_end,
            cancel_at_period_end=subscription.cancel_at_period_end,
        )
        if not subscription.has_billing_reference:
            return details

        subscription, snapshot = await self._sync_from_provider(subscription)
        details.subscription = subscription
        details.status = subscription.status
        details.cancel_at_period_end = subscription.cancel_at_period_end
        details.current_period_end = subscription.current_period_end
        if snapshot is not None:
            details.provider_synced = True
            details.canceled_at = snapshot.canceled_at

        invoice: InvoicePreview | None = None
        if subscription.stripe_customer_id:
            invoice = await self.gateway.fetch_upcoming_invoice(subscription.stripe_customer_id)
        if invoice is not None:
            details.next_payment_amount_cents = invoice.amount_due
            details.next_payment_date = invoice.period_end or details.current_period_end
        else:
            details.next_payment_date = details.current_period_end
        return details

    # --- Internals ---

    async def _authorize(self, owner_id: uuid.UUID) -> None:
        if not await self.role_checker(owner_id, "owner"):
            logger.warning("User %s attempted a billing operation without the owner role", owner_id)
            raise PermissionDenied()

    async def _load(self, owner_id: uuid.UUID, *, lock: bool) -> Subscription:
        subscription = await self.store.get_by_owner(owner_id, for_update=lock)
        if subscription is None:
            raise SubscriptionNotFound()
        return subscription

    async def _transition(self, owner_id: uuid.UUID, transition: Transition) -> Subscription:
        await self._authorize(owner_id)
        subscription = await self._load(owner_id, lock=True)

        decision = decide(SubscriptionState.from_subscription(subscription), transition, self.clock())

        if decision.gateway_calls:
            await run_gateway_calls(
                self.gateway, subscription.stripe_subscription_id, decision.gateway_calls
            )

        updated = await self._persist(subscription, decision.changes)
        logger.info(
            "%s applied to subscription %s (owner %s)",
            type(transition).__name__,
            updated.id,
            owner_id,
        )
        return updated

    async def _persist(self, subscription: Subscription, changes: dict[str, Any]) -> Subscription:
        """Write ``changes`` after the provider already accepted them."""
        subscription_id = subscription.id
        stripe_ref = subscription.stripe_subscription_id
        try:
            return await self.store.update(subscription_id, changes, subscription.version)
        except (ConcurrentUpdateError, SQLAlchemyError):
            logger.error(
                "Stripe subscription %s was updated but local subscription %s was not "
                "(pending fields: %s); the next refresh or reconciliation run re-syncs it",
                stripe_ref,
                subscription_id,
                sorted(changes),
            )
            raise

    async def _sync_from_provider(
        self, subscription: Subscription
    ) -> tuple[Subscription, SubscriptionSnapshot | None]:
        snapshot = await self.gateway.fetch_subscription(subscription.stripe_subscription_id)
        if snapshot is None:
            logger.warning(
                "Could not refresh subscription %s from Stripe, serving local copy",
                subscription.id,
            )
            return subscription, None

        changes = mirror_changes(subscription, snapshot)
        if not changes:
            return subscription, snapshot
        try:
            subscription = await self.store.update(subscription.id, changes, subscription.version)
        except ConcurrentUpdateError:
            await self.db.refresh(subscription)
            return subscription, snapshot
        logger.info("Refreshed subscription %s from Stripe: %s", subscription.id, sorted(changes))
        return subscription, snapshot


def mirror_changes(subscription: Subscription, snapshot: SubscriptionSnapshot) -> dict[str, Any]:
    """Fields of ``subscription`` that differ from the provider snapshot.

    A recorded pause window keeps the local ``paused`` status while the
    provider still has collection paused; a window the provider dropped is
    cleared. A provider-side pause the row has no window for is only logged,
    because its end date is unknown.
    """
    target: dict[str, Any] = {"cancel_at_period_end": snapshot.cancel_at_period_end}
    if snapshot.current_period_start is not None:
        target["current_period_start"] = snapshot.current_period_start
    if snapshot.current_period_end is not None:
        target["current_period_end"] = snapshot.current_period_end
    if snapshot.status == "trialing" and snapshot.trial_end is not None:
        target["trial_ends_at"] = snapshot.trial_end

    status = snapshot.status
    keep_pause = subscription.is_paused and snapshot.collection_paused and not snapshot.cancel_at_period_end
    if keep_pause:
        if status == "active":
            status = "paused"
    elif subscription.is_paused:
        target["paused_at"] = None
        target["pause_ends_at"] = None
    elif snapshot.collection_paused:
        logger.warning(
            "Stripe subscription %s has collection paused but local subscription %s records no pause",
            subscription.stripe_subscription_id,
            subscription.id,
        )
    target["status"] = status

    return {key: value for key, value in target.items() if getattr(subscription, key) != value}
