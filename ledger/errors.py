from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    ALREADY_REDEEMED = "already_redeemed"
    ALREADY_COMPLETED = "already_completed"
    EXPIRED = "expired"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    COOLDOWN_ACTIVE = "cooldown_active"
    DAILY_CAP_EXCEEDED = "daily_cap_exceeded"
    MONTHLY_CAP_EXCEEDED = "monthly_cap_exceeded"
    RULE_INACTIVE = "rule_inactive"
    CONCURRENCY_CONFLICT = "concurrency_conflict"
    OUT_OF_STOCK = "out_of_stock"
    SYSTEM_DISABLED = "system_disabled"


class CoinEngineError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION_ERROR

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.kind.value, "message": self.message, "details": self.details}


class ValidationError(CoinEngineError):
    kind = ErrorKind.VALIDATION_ERROR


class NotFoundError(CoinEngineError):
    kind = ErrorKind.NOT_FOUND


class AlreadyRedeemedError(CoinEngineError):
    kind = ErrorKind.ALREADY_REDEEMED


class AlreadyCompletedError(CoinEngineError):
    kind = ErrorKind.ALREADY_COMPLETED


class ExpiredError(CoinEngineError):
    kind = ErrorKind.EXPIRED


class InsufficientBalanceError(CoinEngineError):
    kind = ErrorKind.INSUFFICIENT_BALANCE


class RuleRejectedError(CoinEngineError):
    """Base for the reasons an earn event can be refused by a rule."""


class RuleInactiveError(RuleRejectedError):
    kind = ErrorKind.RULE_INACTIVE


class CooldownActiveError(RuleRejectedError):
    kind = ErrorKind.COOLDOWN_ACTIVE


class DailyCapExceededError(RuleRejectedError):
    kind = ErrorKind.DAILY_CAP_EXCEEDED


class MonthlyCapExceededError(RuleRejectedError):
    kind = ErrorKind.MONTHLY_CAP_EXCEEDED


class ConcurrencyConflictError(CoinEngineError):
    kind = ErrorKind.CONCURRENCY_CONFLICT


class OutOfStockError(CoinEngineError):
    kind = ErrorKind.OUT_OF_STOCK


class SystemDisabledError(CoinEngineError):
    kind = ErrorKind.SYSTEM_DISABLED
