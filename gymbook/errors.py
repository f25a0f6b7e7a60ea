from __future__ import annotations

import functools
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from gymbook.logger import logger

T = TypeVar("T")

STORE_UNAVAILABLE_MESSAGE = "Booking service is temporarily unavailable"


class ErrorKind(str, Enum):
    slot_unavailable = "slot_unavailable"
    slot_full = "slot_full"
    not_found = "not_found"
    validation_error = "validation_error"
    store_unavailable = "store_unavailable"


class ServiceError(Exception):
    def __init__(self, kind: ErrorKind, message: str, detail: Optional[str] = None):
        self.kind = kind
        self.message = message
        # Underlying store message, for logs only
        self.detail = detail
        super().__init__(message)


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[ServiceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, detail: Optional[str] = None) -> "Result[T]":
        return cls(error=ServiceError(kind, message, detail))

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value


def store_guard(operation: str) -> Callable:
    """Turn store failures inside a mutating operation into a store_unavailable result.

    The wrapped function must take the session as its first argument; the
    session is rolled back so a failed operation leaves nothing behind.
    """

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(session, *args, **kwargs):
            try:
                return fn(session, *args, **kwargs)
            except SQLAlchemyError as exc:
                session.rollback()
                logger.error(f"Store failure during {operation}: {exc}")
                return Result.failure(
                    ErrorKind.store_unavailable, STORE_UNAVAILABLE_MESSAGE, detail=str(exc)
                )

        return wrapper

    return decorator
