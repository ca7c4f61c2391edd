"""SQLAlchemy models for the dashboard backend.

All models are imported here so that ``Base.metadata`` sees every table
(``create_all`` in tests, Alembic autogenerate). If you add a new model,
import it in this file.
"""

from dashboard.models.subscription import Subscription
from dashboard.models.user import User

__all__ = [
    "Subscription",
    "User",
]
