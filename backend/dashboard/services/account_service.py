"""Account service: signup creates the user and its trial subscription together."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dashboard.auth.passwords import hash_password, verify_password
from dashboard.billing.trials import TrialProvisioner
from dashboard.config import settings
from dashboard.models.user import User

logger = logging.getLogger(__name__)


class EmailAlreadyRegistered(Exception):
    pass


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def register_account(
    db: AsyncSession,
    email: str,
    name: str,
    password: str,
    plan_name: str | None = None,
) -> User:
    """Create an owner account with a trial subscription in the current transaction.

    Only flushes. The caller commits both rows together or rolls both back;
    a PlanNotFound from provisioning must abort the whole signup.

    Raises:
        EmailAlreadyRegistered: The email is taken.
        PlanNotFound: ``plan_name`` (or the default trial plan) is not configured.
    """
    if await get_user_by_email(db, email) is not None:
        raise EmailAlreadyRegistered(email)

    user = User(
        email=email,
        hashed_password=hash_password(password),
        name=name,
        role="owner",
    )
    db.add(user)
    await db.flush()

    await TrialProvisioner(db).provision_trial(user.id, plan_name or settings.default_trial_plan)

    # Refresh so the subscription relationship is loaded
    await db.refresh(user)
    logger.info("Registered owner %s (%s)", user.id, email)
    return user


async def authenticate(db: AsyncSession, email: str, password: str) -> User | None:
    """Return the user when the password matches, else None."""
    user = await get_user_by_email(db, email)
    if user is None or user.hashed_password is None:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user
