#!/usr/bin/env python3
"""
Tagged success/failure values

Operations that can fail for expected reasons (pattern miss, missing file,
disk full) return Ok(value) or Err(kind, message) instead of raising.
Callers branch on is_ok / is_err, or unwrap() when failure is a bug.
"""

from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar, Union

from mediasorter.errors import ErrorKind, ResultError

T = TypeVar('T')
U = TypeVar('U')


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful result"""
    value: T

    @property
    def is_ok(self) -> bool:
        return True

    @property
    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: Any) -> T:
        return self.value

    def map(self, fn: Callable[[T], U]) -> 'Ok[U]':
        return Ok(fn(self.value))


@dataclass(frozen=True)
class Err:
    """Failed result carrying an ErrorKind and a human-readable message"""
    kind: ErrorKind
    message: str
    cause: Optional[BaseException] = None

    @property
    def is_ok(self) -> bool:
        return False

    @property
    def is_err(self) -> bool:
        return True

    def unwrap(self):
        raise ResultError(self.kind, self.message)

    def unwrap_or(self, default: Any) -> Any:
        return default

    def map(self, fn: Callable) -> 'Err':
        return self


Result = Union[Ok[T], Err]
