"""Subscription state machine: decides transitions without touching I/O.

``decide`` takes the current state, a requested transition and the clock, and
returns the field changes to persist plus the ordered gateway calls that must
succeed first. Every precondition lives here; the caller executes the plan.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from dateutil.relativedelta import relativedelta

from dashboard.billing.errors import (
    AlreadyCancelling,
    AlreadyPaused,
    InvalidPauseDuration,
    InvariantViolation,
    NoBillingReference,
    NotCancelling,
    NotPaused,
    TrialCannotPause,
)
from dashboard.models.subscription import Subscription

MIN_PAUSE_MONTHS = 1
MAX_PAUSE_MONTHS = 3


class GatewayCall(str, Enum):
    """Provider mutations a transition may require. Values are BillingGateway method names."""

    PAUSE_COLLECTION = "pause_collection"
    RESUME_COLLECTION = "resume_collection"
    CANCEL_AT_PERIOD_END = "cancel_at_period_end"
    RESUME_AUTO_RENEW = "resume_auto_renew"


# --- Transitions ---


@dataclass(frozen=True)
class Pause:
    duration_months: int


@dataclass(frozen=True)
class Resume:
    pass


@dataclass(frozen=True)
class CancelAtPeriodEnd:
    pass


@dataclass(frozen=True)
class UndoCancelAtPeriodEnd:
    pass


Transition = Pause | Resume | CancelAtPeriodEnd | UndoCancelAtPeriodEnd


@dataclass(frozen=True)
class SubscriptionState:
    """The slice of a subscription row the state machine reasons about."""

    status: str
    has_billing_reference: bool
    paused_at: datetime | None = None
    pause_ends_at: datetime | None = None
    cancel_at_period_end: bool = False

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> "SubscriptionState":
        return cls(
            status=subscription.status,
            has_billing_reference=subscription.has_billing_reference,
            paused_at=subscription.paused_at,
            pause_ends_at=subscription.pause_ends_at,
            cancel_at_period_end=subscription.cancel_at_period_end,
        )

    @property
    def is_paused(self) -> bool:
        return self.paused_at is not None

    def apply(self, changes: dict[str, Any]) -> "SubscriptionState":
        known = {k: v for k, v in changes.items() if k in self.__dataclass_fields__}
        return replace(self, **known)

    def invariant_violations(self) -> list[str]:
        """Return a description of every broken row invariant (empty when consistent)."""
        problems = []
        if (self.paused_at is None) != (self.pause_ends_at is None):
            problems.append("paused_at and pause_ends_at must be set together")
        if self.cancel_at_period_end and self.paused_at is not None:
            problems.append("a subscription cancelling at period end cannot stay paused")
        if not self.has_billing_reference and self.status != "trialing":
            problems.append("a subscription without a billing reference must be trialing")
        if self.status == "paused" and self.paused_at is None:
            problems.append("status is paused but no pause window is recorded")
        return problems


@dataclass(frozen=True)
class Decision:
    """Outcome of a permitted transition."""

    changes: dict[str, Any] = field(default_factory=dict)
    gateway_calls: tuple[GatewayCall, ...] = ()


_CLEAR_PAUSE: dict[str, Any] = {"paused_at": None, "pause_ends_at": None}


def _lift_pause(state: SubscriptionState) -> dict[str, Any]:
    """Clear the pause window; only the local ``paused`` status reverts to ``active``."""
    if state.status == "paused":
        return {**_CLEAR_PAUSE, "status": "active"}
    return dict(_CLEAR_PAUSE)


def _decide_pause(state: SubscriptionState, months: int, now: datetime) -> Decision:
    if not MIN_PAUSE_MONTHS <= months <= MAX_PAUSE_MONTHS:
        raise InvalidPauseDuration()
    if state.is_paused:
        raise AlreadyPaused()
    if state.status == "trialing":
        raise TrialCannotPause()
    if not state.has_billing_reference:
        raise NoBillingReference()
    if state.cancel_at_period_end:
        raise AlreadyCancelling("Cannot pause a subscription scheduled to cancel")

    changes: dict[str, Any] = {
        "paused_at": now,
        "pause_ends_at": now + relativedelta(months=months),
    }
    # past_due / unpaid keep the provider's status while collection is paused
    if state.status == "active":
        changes["status"] = "paused"
    return Decision(changes=changes, gateway_calls=(GatewayCall.PAUSE_COLLECTION,))


def _decide_resume(state: SubscriptionState) -> Decision:
    if not state.is_paused:
        raise NotPaused()
    return Decision(
        changes=_lift_pause(state),
        gateway_calls=(GatewayCall.RESUME_COLLECTION,),
    )


def _decide_cancel(state: SubscriptionState) -> Decision:
    if not state.has_billing_reference:
        raise NoBillingReference()
    if state.cancel_at_period_end:
        raise AlreadyCancelling()

    # Stripe keeps pause_collection after cancel_at_period_end is set, so the
    # pause has to be lifted on the provider before cancelling.
    if state.is_paused:
        return Decision(
            changes={**_lift_pause(state), "cancel_at_period_end": True},
            gateway_calls=(GatewayCall.RESUME_COLLECTION, GatewayCall.CANCEL_AT_PERIOD_END),
        )
    return Decision(
        changes={**_CLEAR_PAUSE, "cancel_at_period_end": True},
        gateway_calls=(GatewayCall.CANCEL_AT_PERIOD_END,),
    )


def _decide_undo_cancel(state: SubscriptionState) -> Decision:
    if not state.has_billing_reference:
        raise NoBillingReference()
    if not state.cancel_at_period_end:
        raise NotCancelling()
    return Decision(
        changes={"cancel_at_period_end": False},
        gateway_calls=(GatewayCall.RESUME_AUTO_RENEW,),
    )


def _plan(state: SubscriptionState, transition: Transition, now: datetime) -> Decision:
    match transition:
        case Pause(duration_months=months):
            return _decide_pause(state, months, now)
        case Resume():
            return _decide_resume(state)
        case CancelAtPeriodEnd():
            return _decide_cancel(state)
        case UndoCancelAtPeriodEnd():
            return _decide_undo_cancel(state)
        case _:
            raise TypeError(f"Unknown subscription transition: {transition!r}")


def decide(state: SubscriptionState, transition: Transition, now: datetime) -> Decision:
    """Validate ``transition`` against ``state`` and plan its effects.

    A plan that would leave the row breaking an invariant it did not already
    break is refused before any provider call is made.

    Raises:
        TransitionRejected: A subclass naming the violated precondition.
        InvariantViolation: The planned changes would corrupt the row.
    """
    decision = _plan(state, transition, now)

    introduced = [
        problem
        for problem in state.apply(decision.changes).invariant_violations()
        if problem not in state.invariant_violations()
    ]
    if introduced:
        raise InvariantViolation(type(transition).__name__, introduced)
    return decision
