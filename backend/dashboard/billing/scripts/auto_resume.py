"""Resume every subscription whose pause window has ended.

Meant for a daily cron entry (safe to run more often or by hand):
    python -m dashboard.billing.scripts.auto_resume

Exits non-zero when any subscription failed to resume so the scheduler
can alert; the failed rows are picked up again on the next run.
"""

import asyncio
import logging
import sys

from dashboard.billing.reconciliation import ReconciliationJob
from dashboard.billing.stripe_client import StripeBillingGateway
from dashboard.config import settings
from dashboard.database import async_session_factory, engine


async def main() -> int:
    if not settings.stripe_secret_key:
        print("ERROR: STRIPE_SECRET_KEY is not set in .env")
        return 2

    job = ReconciliationJob(async_session_factory, StripeBillingGateway())
    try:
        summary = await job.run_auto_resume()
    finally:
        await engine.dispose()

    print(
        f"checked={summary.checked} resumed={summary.resumed} "
        f"failed={summary.failed} skipped={summary.skipped}"
    )
    for error in summary.errors:
        print(f"  {error}")
    return 1 if summary.failed else 0


if __name__ == "__main__":
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(main()))
