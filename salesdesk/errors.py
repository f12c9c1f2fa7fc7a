"""Typed failures raised by the order core and mapped to responses in main."""


class SalesDeskError(Exception):
    """Base class for every failure the core reports to its callers."""

    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ValidationError(SalesDeskError, ValueError):
    """Bad input, rejected before any write."""


class AuthorizationError(SalesDeskError):
    """The acting principal may not perform the operation."""


class AccessRevokedError(AuthorizationError):
    """The principal is blocked; any session it holds is void."""


class NotFoundError(SalesDeskError):
    pass


class StoreError(SalesDeskError):
    """The backing store failed or timed out. Safe to retry except for order creation."""

    retryable = True


class PartialWriteError(SalesDeskError):
    """A multi-step write stopped after some steps were already applied.

    `step` names the step that failed, `applied` the steps that stay in place.
    """

    def __init__(self, message: str, order_id: str, step: str, applied: list[str], intent_id: int | None = None):
        super().__init__(message, details={"order_id": order_id, "step": step, "applied": applied, "intent_id": intent_id})
        self.order_id = order_id
        self.step = step
        self.applied = applied
        self.intent_id = intent_id
