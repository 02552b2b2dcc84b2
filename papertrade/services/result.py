"""Structured results shared by the ledger and the order lifecycle.

Business-rule failures never raise across these boundaries; every operation
returns a ``Result`` carrying either a value or a ``TradingError`` with a
stable machine-readable code.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    INSUFFICIENT_HOLDINGS = "INSUFFICIENT_HOLDINGS"
    PRICE_ABOVE_LIMIT = "PRICE_ABOVE_LIMIT"
    PRICE_BELOW_LIMIT = "PRICE_BELOW_LIMIT"
    ORDER_NOT_CANCELLABLE = "ORDER_NOT_CANCELLABLE"
    ORDER_NOT_FILLABLE = "ORDER_NOT_FILLABLE"
    ORDER_NOT_REJECTABLE = "ORDER_NOT_REJECTABLE"
    ORDER_NOT_OPENABLE = "ORDER_NOT_OPENABLE"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    IDEMPOTENCY_CONFLICT = "IDEMPOTENCY_CONFLICT"
    INFRASTRUCTURE_ERROR = "INFRASTRUCTURE_ERROR"


# Codes a caller may retry with the same idempotency key
RETRYABLE_CODES = frozenset({ErrorCode.INFRASTRUCTURE_ERROR})


@dataclass(frozen=True)
class TradingError:
    code: ErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES

    def to_dict(self) -> dict:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": {k: str(v) if not isinstance(v, (int, str, bool)) else v for k, v in self.details.items()},
        }


@dataclass
class Result(Generic[T]):
    success: bool
    value: T | None = None
    error: TradingError | None = None

    @classmethod
    def ok(cls, value: T | None = None) -> "Result[T]":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, code: ErrorCode, message: str, value: Any = None, **details) -> "Result[T]":
        return cls(success=False, value=value, error=TradingError(code, message, details))

    @classmethod
    def from_error(cls, error: TradingError, value: Any = None) -> "Result[T]":
        return cls(success=False, value=value, error=error)

    @property
    def code(self) -> ErrorCode | None:
        return self.error.code if self.error else None
