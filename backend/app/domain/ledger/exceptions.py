"""Domain-level exceptions for the points and connection ledger."""

from __future__ import annotations

from app.infra.rate_limit import RateLimitExceeded


class LedgerError(Exception):
    """Base class for ledger errors. `reason` is what the API returns."""

    reason: str = "ledger_error"

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or self.reason)
        if reason:
            self.reason = reason


class LedgerValidationError(LedgerError):
    reason = "invalid"


class SelfConnection(LedgerValidationError):
    reason = "self_connection"


class BelowMinimum(LedgerValidationError):
    reason = "below_minimum"


class InvalidAmount(LedgerValidationError):
    reason = "invalid_amount"


class AwardOverCap(LedgerValidationError):
    reason = "award_over_cap"


class LedgerNotFound(LedgerError):
    reason = "not_found"


class UserNotFound(LedgerNotFound):
    reason = "user_not_found"


class LedgerConflict(LedgerError):
    reason = "conflict"


class DuplicateConnection(LedgerConflict):
    reason = "duplicate_connection"


class LedgerForbidden(LedgerError):
    reason = "forbidden"


class Unauthorized(LedgerForbidden):
    reason = "unauthorized"


class InsufficientPoints(LedgerError):
    """Debit larger than the balance. The shortfall is never reported."""

    reason = "insufficient_points"


class LedgerIntegrityError(LedgerError):
    """The unit of work could not commit; the caller may retry."""

    reason = "retry"


class ConnectRateLimitExceeded(RateLimitExceeded):
    """Raised when a caller creates connections too quickly."""

    def __init__(self, retry_after: int = 60) -> None:
        super().__init__("connect", retry_after)
