"""Shared API dependencies: single import point for all routers.

Re-exports database session, authentication and billing dependencies so that
router modules can import everything they need from one place::

    from dashboard.api.deps import get_db, get_current_active_user
"""

from dashboard.auth.dependencies import (
    get_current_active_user,
    get_current_user,
)
from dashboard.billing.dependencies import (
    get_billing_gateway,
    get_lifecycle_service,
    get_reconciliation_job,
    verify_cron_secret,
)
from dashboard.database import get_db

__all__ = [
    "get_db",
    "get_current_user",
    "get_current_active_user",
    "get_billing_gateway",
    "get_lifecycle_service",
    "get_reconciliation_job",
    "verify_cron_secret",
]
