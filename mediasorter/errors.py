#!/usr/bin/env python3
"""
Error taxonomy for the media sorting pipeline

Expected failures travel as Result values (see mediasorter.result) tagged with
an ErrorKind. Exceptions are reserved for invariant violations.
"""

from enum import Enum


class ErrorKind(Enum):
    """Kinds of failure carried by Err results"""
    VALIDATION = 'validation'
    PARSE = 'parse'
    NOT_FOUND = 'not_found'
    INVALID_ARGUMENT = 'invalid_argument'
    FILE_ACCESS = 'file_access'
    FILE_SYSTEM = 'file_system'
    CLASSIFICATION = 'classification'
    ROLLBACK_INTEGRITY = 'rollback_integrity'
    ALREADY_ROLLED_BACK = 'already_rolled_back'
    ALREADY_EXISTS = 'already_exists'
    CONCURRENCY = 'concurrency'
    CANCELLED = 'cancelled'


class MediaSorterError(Exception):
    """Base class for all mediasorter exceptions"""


class ValidationError(MediaSorterError):
    """Raised when an object would be built in an invalid state"""


class ConcurrencyError(MediaSorterError):
    """Raised when a per-file lock cannot be acquired in time"""

    def __init__(self, key: str, timeout: float):
        super().__init__(f"Timed out after {timeout}s waiting for lock on {key}")
        self.key = key
        self.timeout = timeout


class ResultError(MediaSorterError):
    """Raised by Result.unwrap() on a failure value"""

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind
        self.message = message


class OperationCancelled(MediaSorterError):
    """Raised inside a copy loop when its cancel event is set"""

    def __init__(self, path: str):
        super().__init__(f"Operation cancelled: {path}")
        self.path = path
