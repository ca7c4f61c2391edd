"""Subscription model: local mirror of the owner's Stripe subscription."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Integer, String, false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dashboard.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Tracks an owner's plan, Stripe references and lifecycle flags."""

    __tablename__ = "subscriptions"

    # One subscription per owner (UNIQUE enforces one-to-one)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        index=True,
    )

    # Stripe identifiers; together they form the billing reference
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)

    # Plan & status
    plan: Mapped[str] = mapped_column(String(50), nullable=False, server_default="starter")
    status: Mapped[str] = mapped_column(String(50), nullable=False, server_default="trialing")

    # Billing period
    current_period_start: Mapped[datetime | None] = mapped_column(nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(nullable=True)
    trial_ends_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Collection pause window, both set or both null
    paused_at: Mapped[datetime | None] = mapped_column(nullable=True, index=True)
    pause_ends_at: Mapped[datetime | None] = mapped_column(nullable=True, index=True)

    cancel_at_period_end: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )

    # Optimistic lock, bumped by every SubscriptionStore.update
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    # Relationships
    owner: Mapped["User"] = relationship(back_populates="subscription", lazy="selectin")  # type: ignore[name-defined]  # noqa: F821

    @property
    def has_billing_reference(self) -> bool:
        return self.stripe_subscription_id is not None

    @property
    def is_paused(self) -> bool:
        return self.paused_at is not None

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, owner_id={self.owner_id}, plan={self.plan}, "
            f"status={self.status}, version={self.version})>"
        )
