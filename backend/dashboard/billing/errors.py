"""Subscription lifecycle exceptions.

``TransitionRejected`` subclasses are precondition failures decided before any
I/O; their messages are safe to show to users. ``GatewayError`` is retryable
and deliberately carries no provider detail.
"""


class SubscriptionError(Exception):
    """Base class for every subscription lifecycle error."""

    message = "Subscription operation failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)

    @property
    def detail(self) -> str:
        return str(self)


# --- Precondition violations (client errors, never retried) ---


class TransitionRejected(SubscriptionError):
    """The requested transition is not allowed from the current state."""


class AlreadyPaused(TransitionRejected):
    message = "Subscription is already paused"


class NotPaused(TransitionRejected):
    message = "Subscription is not paused"


class TrialCannotPause(TransitionRejected):
    message = "Cannot pause trial subscriptions"


class NoBillingReference(TransitionRejected):
    message = "Subscription has no billing account yet. Upgrade to a paid plan first."


class AlreadyCancelling(TransitionRejected):
    message = "Subscription is already scheduled to cancel at the end of the billing period"


class NotCancelling(TransitionRejected):
    message = "Subscription is not scheduled to cancel"


class InvalidPauseDuration(TransitionRejected):
    message = "Pause duration must be between 1 and 3 months"


# --- Lookup / authorization ---


class SubscriptionNotFound(SubscriptionError):
    message = "No subscription found"


class PermissionDenied(SubscriptionError):
    message = "Only the account owner can manage billing"


class SubscriptionAlreadyExists(SubscriptionError):
    message = "Subscription already exists for this owner"


class PlanNotFound(SubscriptionError):
    """Unknown plan name. Signals misconfiguration, so callers treat it as fatal."""

    def __init__(self, plan_name: str) -> None:
        self.plan_name = plan_name
        super().__init__(f"Plan {plan_name!r} is not configured")


# --- I/O failures ---


class GatewayError(SubscriptionError):
    """The billing provider call failed or timed out. Safe to retry later."""

    message = "Billing provider is unavailable. Please try again later."

    def __init__(self, operation: str, message: str | None = None) -> None:
        self.operation = operation
        super().__init__(message)


class InvariantViolation(SubscriptionError):
    """A planned transition would leave the row inconsistent. Indicates a bug, never shown to users."""

    def __init__(self, transition: str, problems: list[str]) -> None:
        self.transition = transition
        self.problems = problems
        super().__init__(f"{transition} would break subscription invariants: {'; '.join(problems)}")


class ConcurrentUpdateError(SubscriptionError):
    """The row changed between read and write (version mismatch)."""

    message = "Subscription was modified concurrently. Please retry."
