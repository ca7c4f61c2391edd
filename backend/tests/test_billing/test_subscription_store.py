"""Tests for SubscriptionStore: lookups, one-per-owner, version-checked updates."""

from datetime import datetime

import pytest
from sqlalchemy.exc import IntegrityError

from dashboard.billing.errors import ConcurrentUpdateError, SubscriptionAlreadyExists
from dashboard.billing.store import SubscriptionStore, is_unique_violation
from dashboard.models.subscription import Subscription


class _DriverError(Exception):
    """Stand-in for a DBAPI error carrying a SQLSTATE, like asyncpg's."""

    def __init__(self, sqlstate, message):
        super().__init__(message)
        self.sqlstate = sqlstate


class TestLookups:
    @pytest.mark.asyncio
    async def test_get_by_owner(self, db_session, make_subscription):
        sub = await make_subscription()
        store = SubscriptionStore(db_session)

        assert (await store.get_by_owner(sub.owner_id)).id == sub.id
        assert (await store.get_by_owner(sub.owner_id, for_update=True)).id == sub.id

    @pytest.mark.asyncio
    async def test_get_by_owner_missing(self, db_session, make_user):
        owner = await make_user()
        assert await SubscriptionStore(db_session).get_by_owner(owner.id) is None

    @pytest.mark.asyncio
    async def test_get_by_id(self, db_session, make_subscription):
        sub = await make_subscription()
        found = await SubscriptionStore(db_session).get(sub.id, for_update=True)
        assert found is sub


class TestCreate:
    @pytest.mark.asyncio
    async def test_one_subscription_per_owner(self, db_session, make_subscription):
        sub = await make_subscription()

        with pytest.raises(SubscriptionAlreadyExists):
            await SubscriptionStore(db_session).create(
                Subscription(owner_id=sub.owner_id, plan="starter", status="trialing")
            )

    @pytest.mark.asyncio
    async def test_other_constraint_failures_propagate(self, db_session, make_user, monkeypatch):
        """Only unique violations mean "already exists"; a FK failure must surface as-is."""
        owner = await make_user()

        async def failing_flush(*args, **kwargs):
            raise IntegrityError("INSERT INTO subscriptions ...", {}, _DriverError("23503", "violates foreign key constraint"))

        monkeypatch.setattr(db_session, "flush", failing_flush)

        with pytest.raises(IntegrityError):
            await SubscriptionStore(db_session).create(
                Subscription(owner_id=owner.id, plan="starter", status="trialing")
            )


class TestUniqueViolation:
    @pytest.mark.parametrize(
        "orig, expected",
        [
            (_DriverError("23505", 'duplicate key value violates unique constraint "subscriptions_owner_id_key"'), True),
            (_DriverError("23503", 'insert or update on table "subscriptions" violates foreign key constraint'), False),
            (_DriverError(None, "UNIQUE constraint failed: subscriptions.owner_id"), True),
            (_DriverError(None, "NOT NULL constraint failed: subscriptions.plan"), False),
        ],
    )
    def test_classifies_driver_errors(self, orig, expected):
        assert is_unique_violation(IntegrityError("INSERT ...", {}, orig)) is expected


class TestUpdate:
    @pytest.mark.asyncio
    async def test_update_bumps_version(self, db_session, make_subscription):
        sub = await make_subscription()

        updated = await SubscriptionStore(db_session).update(sub.id, {"cancel_at_period_end": True}, 1)

        assert updated.cancel_at_period_end is True
        assert updated.version == 2

    @pytest.mark.asyncio
    async def test_stale_version_rejected(self, db_session, make_subscription):
        sub = await make_subscription()
        store = SubscriptionStore(db_session)
        await store.update(sub.id, {"status": "past_due"}, 1)

        with pytest.raises(ConcurrentUpdateError):
            await store.update(sub.id, {"status": "active"}, 1)

        await db_session.refresh(sub)
        assert sub.status == "past_due"
        assert sub.version == 2


class TestExpiredPauses:
    @pytest.mark.asyncio
    async def test_boundary_is_inclusive(self, db_session, make_subscription):
        now = datetime(2026, 5, 1)
        due = await make_subscription(status="paused", paused_at=datetime(2026, 3, 1), pause_ends_at=now)
        await make_subscription(
            status="paused", paused_at=datetime(2026, 3, 1), pause_ends_at=datetime(2026, 5, 2)
        )
        await make_subscription()

        expired = await SubscriptionStore(db_session).list_expired_pauses(now)

        assert [s.id for s in expired] == [due.id]
