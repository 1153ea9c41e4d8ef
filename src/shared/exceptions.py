"""Error taxonomy for the order-risk pipeline.

Errors subclass the builtin whose HTTP meaning they share, so the global
exception handler maps them without special cases (ValueError -> 400,
LookupError -> 404). Transition conflicts carry their own status code.
"""


class OrderRiskError(Exception):
    """Base class for all pipeline errors."""

    status_code: int = 500


class InputValidationError(OrderRiskError, ValueError):
    """Order context is missing required fields. Rejected before scoring."""

    status_code = 400

    def __init__(self, message: str, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = fields or []


class PolicyMisconfiguration(OrderRiskError, ValueError):
    """A MerchantPolicy failed validation at load time."""

    status_code = 400


class DetectorUnavailable(OrderRiskError):
    """An external lookup behind a detector failed or timed out."""

    status_code = 503

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source} unavailable: {reason}")
        self.source = source
        self.reason = reason


class IllegalTransition(OrderRiskError):
    """A lifecycle transition not present in the transition table."""

    status_code = 409

    def __init__(self, entity: str, current: str, target: str, reason: str = "") -> None:
        message = f"{entity} cannot move from {current} to {target}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.entity = entity
        self.current = current
        self.target = target


class DuplicateTransitionAttempt(IllegalTransition):
    """The record already reached the requested state. Callers treat it as a no-op."""


class OrderNotFound(OrderRiskError, LookupError):
    status_code = 404

    def __init__(self, order_id: str, kind: str = "order") -> None:
        super().__init__(f"{kind} {order_id} not found")
        self.order_id = order_id


class SchedulerSweepFailure(OrderRiskError):
    """Advancing one order during a sweep failed. Isolated and retried next run."""

    def __init__(self, order_id: str, day_key: str, cause: Exception) -> None:
        super().__init__(f"sweep failed for {order_id} on {day_key}: {cause}")
        self.order_id = order_id
        self.day_key = day_key
        self.cause = cause
