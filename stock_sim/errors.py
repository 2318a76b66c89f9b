"""Error taxonomy for the day-control, scheduler and trading core.

Every failure a caller is expected to handle carries a stable ``code``. The
``category`` tells callers how to react: configuration and confirmation errors
need a human, state conflicts are benign races, validation errors go back to
the participant verbatim.
"""

from decimal import Decimal
from enum import Enum


class ErrorCategory(str, Enum):
    """How a caller should treat an error."""

    CONFIGURATION = "configuration"
    STATE_CONFLICT = "state_conflict"
    VALIDATION = "validation"
    CONFIRMATION = "confirmation"
    CONCURRENCY = "concurrency"


class ErrorCode(str, Enum):
    """Stable error codes surfaced to collaborators."""

    NOT_CONFIGURED = "NOT_CONFIGURED"
    ALREADY_STARTED = "ALREADY_STARTED"
    NOT_ACTIVE = "NOT_ACTIVE"
    LIMIT_REACHED = "LIMIT_REACHED"
    ALREADY_PAUSED = "ALREADY_PAUSED"
    NOT_PAUSED = "NOT_PAUSED"
    DAILY_LIMIT_REACHED = "DAILY_LIMIT_REACHED"
    BAD_CONFIRMATION = "BAD_CONFIRMATION"
    NO_BROKER = "NO_BROKER"
    TRADING_CLOSED = "TRADING_CLOSED"
    INVALID_STOCK = "INVALID_STOCK"
    PRICE_UNAVAILABLE = "PRICE_UNAVAILABLE"
    INSUFFICIENT_SHARES = "INSUFFICIENT_SHARES"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    INVALID_ORDER = "INVALID_ORDER"
    PARTICIPANT_NOT_FOUND = "PARTICIPANT_NOT_FOUND"
    BROKER_NOT_FOUND = "BROKER_NOT_FOUND"
    BROKER_ALREADY_ASSIGNED = "BROKER_ALREADY_ASSIGNED"
    CONFLICT = "CONFLICT"


_CATEGORIES: dict[ErrorCode, ErrorCategory] = {
    ErrorCode.NOT_CONFIGURED: ErrorCategory.CONFIGURATION,
    ErrorCode.ALREADY_STARTED: ErrorCategory.STATE_CONFLICT,
    ErrorCode.NOT_ACTIVE: ErrorCategory.STATE_CONFLICT,
    ErrorCode.LIMIT_REACHED: ErrorCategory.STATE_CONFLICT,
    ErrorCode.ALREADY_PAUSED: ErrorCategory.STATE_CONFLICT,
    ErrorCode.NOT_PAUSED: ErrorCategory.STATE_CONFLICT,
    ErrorCode.DAILY_LIMIT_REACHED: ErrorCategory.STATE_CONFLICT,
    ErrorCode.BAD_CONFIRMATION: ErrorCategory.CONFIRMATION,
    ErrorCode.CONFLICT: ErrorCategory.CONCURRENCY,
}


class SimulationError(Exception):
    """Base class for all coded simulator errors."""

    default_code = ErrorCode.NOT_CONFIGURED

    def __init__(self, code: ErrorCode | None = None, message: str | None = None):
        self.code = code or self.default_code
        self.message = message or self.code.value
        super().__init__(self.message)

    @property
    def category(self) -> ErrorCategory:
        """Category derived from the code; anything unlisted is validation."""
        return _CATEGORIES.get(self.code, ErrorCategory.VALIDATION)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class DaySimulationError(SimulationError):
    """Raised by day-control transitions."""


class TradeRejectedError(SimulationError):
    """Raised when a trade batch fails a precondition.

    Nothing is written when this is raised.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str | None = None,
        *,
        required: Decimal | None = None,
        available: Decimal | None = None,
    ):
        super().__init__(code, message)
        self.required = required
        self.available = available

    @property
    def shortfall(self) -> Decimal | None:
        """Missing cash for INSUFFICIENT_BALANCE rejections."""
        if self.required is None or self.available is None:
            return None
        return self.required - self.available


class ParticipantError(SimulationError):
    """Raised by participant/broker assignment."""


class ConcurrentModificationError(SimulationError):
    """Raised when a concurrent writer changed a row this transaction read."""

    default_code = ErrorCode.CONFLICT
