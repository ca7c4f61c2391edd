"""Billing API endpoints: plans, subscription details and lifecycle transitions."""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status

from dashboard.api.deps import get_current_active_user, get_lifecycle_service
from dashboard.billing.errors import (
    ConcurrentUpdateError,
    GatewayError,
    PermissionDenied,
    PlanNotFound,
    SubscriptionError,
    SubscriptionNotFound,
    TransitionRejected,
)
from dashboard.billing.lifecycle import LifecycleService
from dashboard.billing.plans import PLANS, PlanLimits
from dashboard.database import utcnow
from dashboard.models.subscription import Subscription
from dashboard.models.user import User
from dashboard.schemas.billing import (
    LifecycleResponse,
    PauseRequest,
    PauseResponse,
    PlanResponse,
    PlansListResponse,
    SubscriptionResponse,
    SubscriptionStateResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])

# Checked in order, so subclasses must come before their bases.
_ERROR_STATUS: list[tuple[type[SubscriptionError], int]] = [
    (TransitionRejected, status.HTTP_400_BAD_REQUEST),
    (SubscriptionNotFound, status.HTTP_404_NOT_FOUND),
    (PermissionDenied, status.HTTP_403_FORBIDDEN),
    (ConcurrentUpdateError, status.HTTP_409_CONFLICT),
    (GatewayError, status.HTTP_502_BAD_GATEWAY),
]


def _to_http_error(error: SubscriptionError, operation: str) -> HTTPException:
    """Map a lifecycle error onto an HTTP response without leaking provider detail."""
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(error, error_type):
            if isinstance(error, GatewayError):
                logger.error("Billing provider failure during %s (%s)", operation, error.operation)
            return HTTPException(status_code=status_code, detail=error.detail)

    logger.error("Unexpected subscription error during %s: %s", operation, error)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {operation} subscription",
    )


def _plan_response(plan: PlanLimits) -> PlanResponse:
    return PlanResponse(
        name=plan.name,
        display_name=plan.display_name,
        max_pages=plan.max_pages,
        max_credits=plan.max_credits,
        max_seats=plan.max_seats,
        max_sites=plan.max_sites,
        white_label=plan.white_label,
        price_monthly_cents=plan.price_monthly_cents,
    )


def _pause_response(subscription: Subscription, now: datetime) -> PauseResponse | None:
    if subscription.paused_at is None or subscription.pause_ends_at is None:
        return None
    remaining = subscription.pause_ends_at - now
    return PauseResponse(
        paused_at=subscription.paused_at,
        pause_ends_at=subscription.pause_ends_at,
        days_remaining=max(0, remaining.days),
    )


def _lifecycle_response(subscription: Subscription, message: str) -> LifecycleResponse:
    return LifecycleResponse(
        message=message,
        subscription=SubscriptionStateResponse.model_validate(subscription),
    )


@router.get("/plans", response_model=PlansListResponse)
async def list_plans() -> PlansListResponse:
    """List available plans (public, no auth required)."""
    return PlansListResponse(plans=[_plan_response(p) for p in PLANS.values()])


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    current_user: User = Depends(get_current_active_user),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> SubscriptionResponse:
    """Get the owner's subscription, refreshed from Stripe when it has a billing account."""
    try:
        details = await service.get_details(current_user.id)
    except PlanNotFound as e:
        logger.error("Subscription for owner %s references unknown plan %s", current_user.id, e.plan_name)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Subscription plan is not configured",
        ) from e
    except SubscriptionError as e:
        raise _to_http_error(e, "fetch") from e

    subscription = details.subscription
    return SubscriptionResponse(
        id=subscription.id,
        plan=_plan_response(details.plan),
        status=details.status,
        stripe_subscription_id=subscription.stripe_subscription_id,
        current_period_start=subscription.current_period_start,
        current_period_end=details.current_period_end,
        trial_ends_at=subscription.trial_ends_at,
        cancel_at_period_end=details.cancel_at_period_end,
        canceled_at=details.canceled_at,
        pause=_pause_response(subscription, utcnow()),
        next_payment_amount_cents=details.next_payment_amount_cents,
        next_payment_date=details.next_payment_date,
        provider_synced=details.provider_synced,
    )


@router.post("/subscription/pause", response_model=LifecycleResponse)
async def pause_subscription(
    body: PauseRequest,
    current_user: User = Depends(get_current_active_user),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> LifecycleResponse:
    """Pause payment collection for 1-3 months (owner only)."""
    try:
        subscription = await service.pause(current_user.id, body.duration)
    except SubscriptionError as e:
        raise _to_http_error(e, "pause") from e

    plural = "s" if body.duration > 1 else ""
    return _lifecycle_response(subscription, f"Subscription paused for {body.duration} month{plural}")


@router.post("/subscription/resume", response_model=LifecycleResponse)
async def resume_subscription(
    current_user: User = Depends(get_current_active_user),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> LifecycleResponse:
    """Resume payment collection on a paused subscription (owner only)."""
    try:
        subscription = await service.resume(current_user.id)
    except SubscriptionError as e:
        raise _to_http_error(e, "resume") from e

    return _lifecycle_response(subscription, "Subscription resumed successfully")


@router.post("/subscription/cancel", response_model=LifecycleResponse)
async def cancel_subscription(
    current_user: User = Depends(get_current_active_user),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> LifecycleResponse:
    """Cancel at the end of the billing period, lifting any pause first (owner only)."""
    try:
        subscription = await service.cancel(current_user.id)
    except SubscriptionError as e:
        raise _to_http_error(e, "cancel") from e

    return _lifecycle_response(
        subscription, "Subscription will be canceled at the end of the billing period"
    )


@router.delete("/subscription/cancel", response_model=LifecycleResponse)
async def undo_cancel_subscription(
    current_user: User = Depends(get_current_active_user),
    service: LifecycleService = Depends(get_lifecycle_service),
) -> LifecycleResponse:
    """Withdraw a pending cancellation (owner only)."""
    try:
        subscription = await service.undo_cancel(current_user.id)
    except SubscriptionError as e:
        raise _to_http_error(e, "reactivate") from e

    return _lifecycle_response(subscription, "Subscription has been resumed")
