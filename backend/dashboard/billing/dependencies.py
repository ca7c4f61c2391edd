"""Billing dependencies: wire the lifecycle components into FastAPI routes."""

import logging
import secrets
from functools import lru_cache

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from dashboard.billing.gateway import BillingGateway
from dashboard.billing.lifecycle import LifecycleService
from dashboard.billing.reconciliation import ReconciliationJob
from dashboard.billing.stripe_client import StripeBillingGateway
from dashboard.config import settings
from dashboard.database import async_session_factory, get_db

logger = logging.getLogger(__name__)


@lru_cache
def get_billing_gateway() -> BillingGateway:
    """Process-wide Stripe gateway (the underlying HTTPX client is reusable)."""
    return StripeBillingGateway()


async def get_lifecycle_service(
    db: AsyncSession = Depends(get_db),
    gateway: BillingGateway = Depends(get_billing_gateway),
) -> LifecycleService:
    return LifecycleService(db, gateway)


async def get_reconciliation_job(
    gateway: BillingGateway = Depends(get_billing_gateway),
) -> ReconciliationJob:
    return ReconciliationJob(async_session_factory, gateway)


async def verify_cron_secret(request: Request) -> None:
    """Accept ``Authorization: Bearer <CRON_SECRET>`` (or the bare secret).

    Raises:
        HTTPException 500: CRON_SECRET is not configured.
        HTTPException 401: The header does not carry the secret.
    """
    if not settings.cron_secret:
        logger.error("CRON_SECRET not configured, refusing cron request")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Cron endpoint not configured",
        )

    provided = request.headers.get("authorization", "").removeprefix("Bearer ").strip()
    if not secrets.compare_digest(provided, settings.cron_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
