"""Scheduler-facing endpoints, authenticated with the shared CRON_SECRET."""

import logging

from fastapi import APIRouter, Depends

from dashboard.api.deps import get_reconciliation_job, verify_cron_secret
from dashboard.billing.reconciliation import ReconciliationJob
from dashboard.schemas.billing import AutoResumeResponse, ReconciliationCounts

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/cron",
    tags=["cron"],
    dependencies=[Depends(verify_cron_secret)],
)


@router.api_route("/resume-subscriptions", methods=["GET", "POST"], response_model=AutoResumeResponse)
async def resume_expired_pauses(
    job: ReconciliationJob = Depends(get_reconciliation_job),
) -> AutoResumeResponse:
    """Auto-resume every subscription whose pause window has ended.

    Idempotent, so the scheduler may retry or call it more than once a day.
    """
    summary = await job.run_auto_resume()
    return AutoResumeResponse(
        message="Auto-resume cron completed",
        summary=ReconciliationCounts(
            checked=summary.checked,
            resumed=summary.resumed,
            failed=summary.failed,
            skipped=summary.skipped,
        ),
        errors=summary.errors or None,
        timestamp=summary.ran_at,
    )
