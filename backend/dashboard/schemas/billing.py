"""Pydantic v2 request/response schemas for billing endpoints."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from dashboard.billing.state_machine import MAX_PAUSE_MONTHS, MIN_PAUSE_MONTHS

# --- Request schemas ---


class PauseRequest(BaseModel):
    """Request to pause payment collection for a number of months."""

    duration: int = Field(..., ge=MIN_PAUSE_MONTHS, le=MAX_PAUSE_MONTHS)


# --- Response schemas ---


class PlanResponse(BaseModel):
    """Plan details for display."""

    name: str
    display_name: str
    max_pages: int | None  # None = unlimited
    max_credits: int | None
    max_seats: int | None
    max_sites: int | None
    white_label: bool
    price_monthly_cents: int


class PlansListResponse(BaseModel):
    """All available plans."""

    plans: list[PlanResponse]


class PauseResponse(BaseModel):
    """Active collection pause window."""

    paused_at: datetime
    pause_ends_at: datetime
    days_remaining: int


class SubscriptionResponse(BaseModel):
    """Full subscription status for the authenticated owner."""

    id: uuid.UUID
    plan: PlanResponse
    status: str
    stripe_subscription_id: str | None
    current_period_start: datetime | None
    current_period_end: datetime | None
    trial_ends_at: datetime | None
    cancel_at_period_end: bool
    canceled_at: datetime | None = None
    pause: PauseResponse | None = None
    next_payment_amount_cents: int | None = None
    next_payment_date: datetime | None = None
    provider_synced: bool = False


class SubscriptionStateResponse(BaseModel):
    """Lifecycle fields of a subscription after a transition."""

    id: uuid.UUID
    status: str
    paused_at: datetime | None
    pause_ends_at: datetime | None
    cancel_at_period_end: bool
    current_period_end: datetime | None

    model_config = ConfigDict(from_attributes=True)


class LifecycleResponse(BaseModel):
    """Result of pause / resume / cancel / undo-cancel."""

    success: bool = True
    message: str
    subscription: SubscriptionStateResponse


class ReconciliationCounts(BaseModel):
    checked: int
    resumed: int
    failed: int
    skipped: int


class AutoResumeResponse(BaseModel):
    """Summary returned to the scheduler after an auto-resume run."""

    success: bool = True
    message: str
    summary: ReconciliationCounts
    errors: list[str] | None = None
    timestamp: datetime
