"""Tests for the Stripe-backed billing gateway with a mocked StripeClient."""

import asyncio
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
import stripe

from dashboard.billing.stripe_client import (
    PAUSE_BEHAVIOR,
    StripeBillingGateway,
    _ts_to_naive,
    snapshot_from_stripe,
)

# 2026-03-15 00:00:00 UTC / 2026-04-15 00:00:00 UTC
PERIOD_START = 1773532800
PERIOD_END = 1776211200


class _StripeObj(SimpleNamespace):
    """SimpleNamespace with bracket notation support (like Stripe API objects)."""

    def __getitem__(self, key: str):
        return getattr(self, key)


def _make_stripe_sub(**overrides) -> _StripeObj:
    fields = {
        "id": "sub_test123",
        "status": "active",
        "cancel_at_period_end": False,
        "pause_collection": None,
        "trial_start": None,
        "trial_end": None,
        "canceled_at": None,
        "items": _StripeObj(
            data=[_StripeObj(current_period_start=PERIOD_START, current_period_end=PERIOD_END)]
        ),
    }
    fields.update(overrides)
    return _StripeObj(**fields)


@pytest.fixture
def stripe_client() -> MagicMock:
    client = MagicMock()
    client.v1.subscriptions.update_async = AsyncMock(return_value=_make_stripe_sub())
    client.v1.subscriptions.retrieve_async = AsyncMock(return_value=_make_stripe_sub())
    client.v1.invoices.create_preview_async = AsyncMock(
        return_value=_StripeObj(amount_due=9900, period_end=PERIOD_END, currency="usd")
    )
    return client


@pytest.fixture
def stripe_gateway(stripe_client) -> StripeBillingGateway:
    return StripeBillingGateway(client=stripe_client, timeout_seconds=0.5)


class TestMutations:
    @pytest.mark.asyncio
    async def test_pause_collection_voids_invoices(self, stripe_gateway, stripe_client):
        assert await stripe_gateway.pause_collection("sub_test123") is True
        stripe_client.v1.subscriptions.update_async.assert_awaited_once_with(
            "sub_test123", params={"pause_collection": {"behavior": PAUSE_BEHAVIOR}}
        )

    @pytest.mark.asyncio
    async def test_resume_collection_unsets_pause(self, stripe_gateway, stripe_client):
        assert await stripe_gateway.resume_collection("sub_test123") is True
        stripe_client.v1.subscriptions.update_async.assert_awaited_once_with(
            "sub_test123", params={"pause_collection": ""}
        )

    @pytest.mark.asyncio
    async def test_cancel_and_undo(self, stripe_gateway, stripe_client):
        assert await stripe_gateway.cancel_at_period_end("sub_test123") is True
        assert await stripe_gateway.resume_auto_renew("sub_test123") is True

        calls = stripe_client.v1.subscriptions.update_async.await_args_list
        assert calls[0].kwargs["params"] == {"cancel_at_period_end": True}
        assert calls[1].kwargs["params"] == {"cancel_at_period_end": False}

    @pytest.mark.asyncio
    async def test_stripe_error_returns_false(self, stripe_gateway, stripe_client):
        stripe_client.v1.subscriptions.update_async.side_effect = stripe.APIConnectionError(
            "Network error"
        )
        assert await stripe_gateway.pause_collection("sub_test123") is False

    @pytest.mark.asyncio
    async def test_timeout_returns_false(self, stripe_client):
        async def never_answers(*args, **kwargs):
            await asyncio.sleep(5)

        stripe_client.v1.subscriptions.update_async.side_effect = never_answers
        gateway = StripeBillingGateway(client=stripe_client, timeout_seconds=0.01)

        assert await gateway.cancel_at_period_end("sub_test123") is False


class TestFetches:
    @pytest.mark.asyncio
    async def test_fetch_subscription(self, stripe_gateway, stripe_client):
        snapshot = await stripe_gateway.fetch_subscription("sub_test123")

        stripe_client.v1.subscriptions.retrieve_async.assert_awaited_once_with("sub_test123")
        assert snapshot.status == "active"
        assert snapshot.current_period_start == datetime(2026, 3, 15)
        assert snapshot.current_period_end == datetime(2026, 4, 15)
        assert snapshot.collection_paused is False

    @pytest.mark.asyncio
    async def test_fetch_subscription_error(self, stripe_gateway, stripe_client):
        stripe_client.v1.subscriptions.retrieve_async.side_effect = stripe.APIConnectionError("down")
        assert await stripe_gateway.fetch_subscription("sub_test123") is None

    @pytest.mark.asyncio
    async def test_fetch_upcoming_invoice(self, stripe_gateway, stripe_client):
        invoice = await stripe_gateway.fetch_upcoming_invoice("cus_test123")

        stripe_client.v1.invoices.create_preview_async.assert_awaited_once_with(
            params={"customer": "cus_test123"}
        )
        assert invoice.amount_due == 9900
        assert invoice.period_end == datetime(2026, 4, 15)

    @pytest.mark.asyncio
    async def test_fetch_upcoming_invoice_error(self, stripe_gateway, stripe_client):
        stripe_client.v1.invoices.create_preview_async.side_effect = stripe.APIConnectionError("down")
        assert await stripe_gateway.fetch_upcoming_invoice("cus_test123") is None


class TestSnapshotMapping:
    def test_paused_and_cancelling(self):
        snapshot = snapshot_from_stripe(
            _make_stripe_sub(
                cancel_at_period_end=True,
                pause_collection=_StripeObj(behavior="void", resumes_at=None),
                canceled_at=PERIOD_START,
            )
        )
        assert snapshot.collection_paused is True
        assert snapshot.cancel_at_period_end is True
        assert snapshot.canceled_at == datetime(2026, 3, 15)

    def test_period_falls_back_to_subscription_level(self):
        sub = _make_stripe_sub(
            items=_StripeObj(data=[]),
            current_period_start=PERIOD_START,
            current_period_end=PERIOD_END,
        )
        snapshot = snapshot_from_stripe(sub)
        assert snapshot.current_period_start == datetime(2026, 3, 15)
        assert snapshot.current_period_end == datetime(2026, 4, 15)

    def test_trial_dates(self):
        snapshot = snapshot_from_stripe(
            _make_stripe_sub(status="trialing", trial_start=PERIOD_START, trial_end=PERIOD_END)
        )
        assert snapshot.trial_end == datetime(2026, 4, 15)

    def test_ts_to_naive(self):
        assert _ts_to_naive(None) is None
        assert _ts_to_naive(0) == datetime(1970, 1, 1)
