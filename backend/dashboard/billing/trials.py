"""Trial provisioning: the subscription row every new account starts with."""

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from dashboard.billing.errors import SubscriptionAlreadyExists
from dashboard.billing.plans import get_plan
from dashboard.billing.store import SubscriptionStore
from dashboard.config import settings
from dashboard.database import utcnow
from dashboard.models.subscription import Subscription

logger = logging.getLogger(__name__)


class TrialProvisioner:
    """Creates ``trialing`` subscriptions inside the caller's transaction.

    Nothing here commits: signup adds the user and the trial in one session
    and commits once, so neither can exist without the other.
    """

    def __init__(self, db: AsyncSession, trial_days: int | None = None) -> None:
        self.store = SubscriptionStore(db)
        self.trial_days = trial_days or settings.trial_days

    async def provision_trial(
        self,
        owner_id: uuid.UUID,
        plan_name: str,
        now: datetime | None = None,
    ) -> Subscription:
        """Insert a trial subscription for ``owner_id`` on ``plan_name``.

        Raises:
            PlanNotFound: The plan is not configured. Fatal for the signup.
            SubscriptionAlreadyExists: The owner already has a subscription.
        """
        plan = get_plan(plan_name)

        existing = await self.store.get_by_owner(owner_id)
        if existing is not None:
            logger.warning(
                "Owner %s already has subscription %s, not provisioning a trial",
                owner_id,
                existing.id,
            )
            raise SubscriptionAlreadyExists()

        now = now or utcnow()
        trial_ends_at = now + timedelta(days=self.trial_days)
        subscription = Subscription(
            owner_id=owner_id,
            plan=plan.name,
            status="trialing",
            current_period_start=now,
            current_period_end=trial_ends_at,
            trial_ends_at=trial_ends_at,
            cancel_at_period_end=False,
            version=1,
        )
        subscription = await self.store.create(subscription)
        logger.info(
            "Provisioned %s-day %s trial for owner %s (ends %s)",
            self.trial_days,
            plan.display_name,
            owner_id,
            trial_ends_at.isoformat(),
        )
        return subscription
