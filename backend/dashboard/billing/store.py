"""Subscription store: persistence for the local subscription mirror."""

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dashboard.billing.errors import ConcurrentUpdateError, SubscriptionAlreadyExists
from dashboard.models.subscription import Subscription

logger = logging.getLogger(__name__)

# SQLSTATE for unique_violation (PostgreSQL / asyncpg)
_UNIQUE_VIOLATION = "23505"


def is_unique_violation(error: IntegrityError) -> bool:
    """True when ``error`` comes from a unique constraint rather than a FK or NOT NULL one."""
    orig = error.orig
    if getattr(orig, "sqlstate", None) == _UNIQUE_VIOLATION:
        return True
    # sqlite3 reports "UNIQUE constraint failed: <table>.<column>"
    return "unique constraint" in str(orig).lower()


class SubscriptionStore:
    """Reads and version-checked writes of ``subscriptions`` rows in one session."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(
        self, subscription_id: uuid.UUID, *, for_update: bool = False
    ) -> Subscription | None:
        return await self.db.get(
            Subscription, subscription_id, with_for_update=True if for_update else None
        )

    async def get_by_owner(
        self, owner_id: uuid.UUID, *, for_update: bool = False
    ) -> Subscription | None:
        """Look up the owner's subscription.

        ``for_update`` takes a row lock (``SELECT ... FOR UPDATE``) held until the
        session's transaction ends; dialects without row locks ignore it.
        """
        stmt = select(Subscription).where(Subscription.owner_id == owner_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, subscription: Subscription) -> Subscription:
        """Insert a new row (flush only; the caller owns the transaction).

        Raises:
            SubscriptionAlreadyExists: The owner already has a subscription.
            IntegrityError: Any other constraint failure, e.g. an unknown owner.
        """
        self.db.add(subscription)
        try:
            await self.db.flush()
        except IntegrityError as e:
            if not is_unique_violation(e):
                logger.error(
                    "Could not insert subscription for owner %s: %s", subscription.owner_id, e.orig
                )
                raise
            logger.warning(
                "Rejected second subscription for owner %s", subscription.owner_id
            )
            raise SubscriptionAlreadyExists() from e
        logger.info(
            "Created subscription %s for owner %s (plan=%s, status=%s)",
            subscription.id,
            subscription.owner_id,
            subscription.plan,
            subscription.status,
        )
        return subscription

    async def update(
        self,
        subscription_id: uuid.UUID,
        changes: dict[str, Any],
        expected_version: int,
    ) -> Subscription:
        """Compare-and-set update keyed on the ``version`` column.

        Raises:
            ConcurrentUpdateError: The row is gone or its version moved on.
        """
        result = await self.db.execute(
            update(Subscription)
            .where(
                Subscription.id == subscription_id,
                Subscription.version == expected_version,
            )
            .values(**changes, version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "Version conflict updating subscription %s (expected version %s)",
                subscription_id,
                expected_version,
            )
            raise ConcurrentUpdateError()

        subscription = await self.db.get(
            Subscription, subscription_id, populate_existing=True
        )
        logger.debug(
            "Updated subscription %s to version %s: %s",
            subscription_id,
            expected_version + 1,
            sorted(changes),
        )
        return subscription

    async def list_expired_pauses(self, now: datetime) -> list[Subscription]:
        """Subscriptions whose pause window ended at or before ``now``."""
        result = await self.db.execute(
            select(Subscription)
            .where(
                Subscription.paused_at.is_not(None),
                Subscription.pause_ends_at.is_not(None),
                Subscription.pause_ends_at <= now,
            )
            .order_by(Subscription.pause_ends_at)
        )
        return list(result.scalars().all())
