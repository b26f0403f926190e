from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    OUT_OF_STOCK = "out_of_stock"
    LOAN_LIMIT_EXCEEDED = "loan_limit_exceeded"
    NOT_LOGGED_IN = "not_logged_in"
    ALREADY_ENDED = "already_ended"
    PAYMENT_GATEWAY_FAILURE = "payment_gateway_failure"
    VALIDATION_ERROR = "validation_error"


STATUS_CODES = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.OUT_OF_STOCK: 409,
    ErrorKind.LOAN_LIMIT_EXCEEDED: 409,
    ErrorKind.NOT_LOGGED_IN: 401,
    ErrorKind.ALREADY_ENDED: 409,
    ErrorKind.PAYMENT_GATEWAY_FAILURE: 502,
    ErrorKind.VALIDATION_ERROR: 400,
}


class LendingError(Exception):
    """Base class for every failure the lending core reports to its callers."""

    kind: ErrorKind = ErrorKind.VALIDATION_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.kind]

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"{type(self).__name__}({self.message!r})"


class NotFound(LendingError):
    kind = ErrorKind.NOT_FOUND


class OutOfStock(LendingError):
    kind = ErrorKind.OUT_OF_STOCK


class LoanLimitExceeded(LendingError):
    kind = ErrorKind.LOAN_LIMIT_EXCEEDED


class NotLoggedIn(LendingError):
    kind = ErrorKind.NOT_LOGGED_IN


class AlreadyEnded(LendingError):
    kind = ErrorKind.ALREADY_ENDED


class PaymentGatewayFailure(LendingError):
    kind = ErrorKind.PAYMENT_GATEWAY_FAILURE


class ValidationError(LendingError):
    kind = ErrorKind.VALIDATION_ERROR


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a lending operation: either a value or a LendingError.

    Callers branch on ``ok``; ``unwrap()`` re-raises the error for code paths
    that prefer exceptions (tests, the CLI).
    """

    value: Optional[T] = None
    error: Optional[LendingError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: LendingError) -> "Outcome[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
