"""Role lookups used to gate billing operations."""

import uuid
from collections.abc import Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dashboard.models.user import User

# Higher rank includes every permission of the lower ranks.
ROLE_HIERARCHY: dict[str, int] = {
    "member": 1,
    "admin": 2,
    "owner": 3,
}

RoleChecker = Callable[[uuid.UUID, str], Awaitable[bool]]


def role_satisfies(user_role: str, required_role: str) -> bool:
    """True when ``user_role`` ranks at or above ``required_role``."""
    return ROLE_HIERARCHY.get(user_role, 0) >= ROLE_HIERARCHY.get(required_role, len(ROLE_HIERARCHY) + 1)


async def has_role(db: AsyncSession, user_id: uuid.UUID, role: str) -> bool:
    """Check whether an active user holds ``role`` (or a higher one)."""
    result = await db.execute(
        select(User.role).where(User.id == user_id, User.is_active.is_(True))
    )
    user_role = result.scalar_one_or_none()
    if user_role is None:
        return False
    return role_satisfies(user_role, role)


def db_role_checker(db: AsyncSession) -> RoleChecker:
    """Bind ``has_role`` to a session."""

    async def check(user_id: uuid.UUID, role: str) -> bool:
        return await has_role(db, user_id, role)

    return check
