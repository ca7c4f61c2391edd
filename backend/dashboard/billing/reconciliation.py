"""Reconciliation job: auto-resume subscriptions whose pause window has ended.

Stateless: every run re-derives its work from the database, so a scheduler
may trigger it at least once per day, on demand, or twice in a row. Rows that
were resumed no longer match the query; rows that failed are retried on the
next run.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dashboard.billing.gateway import BillingGateway
from dashboard.billing.lifecycle import run_gateway_calls
from dashboard.billing.state_machine import Resume, SubscriptionState, decide
from dashboard.billing.store import SubscriptionStore
from dashboard.config import settings
from dashboard.database import utcnow

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationSummary:
    """Outcome of one auto-resume run."""

    ran_at: datetime
    checked: int = 0
    resumed: int = 0
    failed: int = 0
    skipped: int = 0  # changed by someone else between the scan and the resume
    errors: list[str] = field(default_factory=list)


class ReconciliationJob:
    """Drives expired pauses through the resume transition.

    Each subscription is handled in its own session and transaction, so one
    owner's failure never rolls back or blocks another's resume.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: BillingGateway,
        max_concurrency: int | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.max_concurrency = max_concurrency or settings.reconciliation_max_concurrency

    async def run_auto_resume(self, now: datetime | None = None) -> ReconciliationSummary:
        now = now or utcnow()
        summary = ReconciliationSummary(ran_at=now)

        async with self.session_factory() as session:
            expired = await SubscriptionStore(session).list_expired_pauses(now)
            subscription_ids = [subscription.id for subscription in expired]

        summary.checked = len(subscription_ids)
        logger.info("Found %d expired pauses to resume", summary.checked)
        if not subscription_ids:
            return summary

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def limited_resume(subscription_id: uuid.UUID) -> bool:
            async with semaphore:
                return await self._resume_one(subscription_id, now)

        results = await asyncio.gather(
            *(limited_resume(subscription_id) for subscription_id in subscription_ids),
            return_exceptions=True,
        )

        for subscription_id, result in zip(subscription_ids, results):
            if isinstance(result, Exception):
                summary.failed += 1
                summary.errors.append(f"Failed to resume subscription {subscription_id}: {result}")
                logger.error(
                    "Error resuming subscription %s",
                    subscription_id,
                    exc_info=result,
                )
            elif isinstance(result, BaseException):
                raise result
            elif result:
                summary.resumed += 1
            else:
                summary.skipped += 1

        logger.info(
            "Auto-resume finished: checked=%d resumed=%d failed=%d skipped=%d",
            summary.checked,
            summary.resumed,
            summary.failed,
            summary.skipped,
        )
        return summary

    async def _resume_one(self, subscription_id: uuid.UUID, now: datetime) -> bool:
        """Resume one subscription. Returns False when it no longer needs resuming."""
        async with self.session_factory() as session, session.begin():
            store = SubscriptionStore(session)
            subscription = await store.get(subscription_id, for_update=True)
            if (
                subscription is None
                or subscription.pause_ends_at is None
                or subscription.pause_ends_at > now
            ):
                logger.info("Subscription %s no longer has an expired pause, skipping", subscription_id)
                return False

            pause_ended_at = subscription.pause_ends_at
            decision = decide(SubscriptionState.from_subscription(subscription), Resume(), now)
            if subscription.has_billing_reference:
                await run_gateway_calls(
                    self.gateway, subscription.stripe_subscription_id, decision.gateway_calls
                )

            await store.update(subscription.id, decision.changes, subscription.version)
            logger.info(
                "Resumed subscription %s for owner %s (pause ended %s)",
                subscription.id,
                subscription.owner_id,
                pause_ended_at.isoformat(),
            )
        return True
