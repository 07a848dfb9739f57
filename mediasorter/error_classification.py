#!/usr/bin/env python3
"""
Classify filesystem failures and decide how to recover

Each failure maps to an error type (transient, permission, space, path,
unknown) and a recovery action. Outcomes of past recoveries are kept in a
bounded, time-windowed buffer; when retries of one error type keep failing,
that type is escalated from automatic retry to manual intervention.
"""

import re
import errno
import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Deque, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class FileOperationErrorType(Enum):
    TRANSIENT = 'transient'
    PERMISSION = 'permission'
    SPACE = 'space'
    PATH = 'path'
    UNKNOWN = 'unknown'


class RecoveryAction(Enum):
    RETRY_WITH_BACKOFF = 'retry-with-backoff'
    MANUAL_INTERVENTION = 'manual-intervention'
    IGNORE = 'ignore'


SPACE_MESSAGE = re.compile(r'insufficient.*space|disk.*full|no space|quota.*exceeded', re.IGNORECASE)

# Checked in order after the exception type
MESSAGE_PATTERNS = (
    (re.compile(r'access.*denied|permission.*denied|unauthorized', re.IGNORECASE), FileOperationErrorType.PERMISSION),
    (re.compile(r'path.*too.*long|name.*too.*long|invalid.*path|illegal.*character', re.IGNORECASE),
     FileOperationErrorType.PATH),
    (re.compile(r'file.*not.*found|directory.*not.*found|path.*not.*found|no such file', re.IGNORECASE),
     FileOperationErrorType.PATH),
    (re.compile(r'timeout|timed.*out|network.*error', re.IGNORECASE), FileOperationErrorType.TRANSIENT),
    (re.compile(r'file.*in.*use|sharing.*violation|locked|resource busy', re.IGNORECASE),
     FileOperationErrorType.TRANSIENT),
)


def _errnos(*names: str) -> frozenset:
    return frozenset(getattr(errno, name) for name in names if hasattr(errno, name))


SPACE_ERRNOS = _errnos('ENOSPC', 'EDQUOT')
PATH_ERRNOS = _errnos('ENAMETOOLONG', 'ENOENT', 'ENOTDIR', 'EISDIR')
TRANSIENT_ERRNOS = _errnos('EBUSY', 'EAGAIN', 'ETXTBSY', 'EIO', 'EINTR')

# (base delay ms, max retries)
RETRY_SETTINGS = {
    FileOperationErrorType.TRANSIENT: (1000, 3),
    FileOperationErrorType.PERMISSION: (0, 0),
    FileOperationErrorType.SPACE: (0, 0),
    FileOperationErrorType.PATH: (0, 0),
    FileOperationErrorType.UNKNOWN: (0, 0),
}

USER_MESSAGES = {
    FileOperationErrorType.TRANSIENT: 'A temporary error occurred. The operation will be retried automatically.',
    FileOperationErrorType.PERMISSION: 'Permission denied. Check file and folder permissions.',
    FileOperationErrorType.SPACE: 'Insufficient disk space available for this operation.',
    FileOperationErrorType.PATH: 'Invalid or missing file path.',
    FileOperationErrorType.UNKNOWN: 'An unexpected error occurred that requires investigation.',
}


@dataclass(frozen=True)
class ErrorContext:
    """A failure plus what we know about the operation that hit it"""
    error: BaseException
    operation_type: str = 'move'
    file_hash: Optional[str] = None
    path: Optional[str] = None
    retry_count: int = 0
    required_bytes: Optional[int] = None
    available_bytes: Optional[int] = None


@dataclass(frozen=True)
class ErrorClassification:
    error_type: FileOperationErrorType
    recovery_action: RecoveryAction
    confidence: float
    should_retry: bool
    retry_delay_ms: int
    max_retries: int
    user_message: str
    technical_details: str
    escalated: bool = False


class ErrorStatsBuffer:
    """
    Ring buffer of (timestamp, error type, succeeded) samples

    Holds at most `capacity` samples. compact() drops samples older than the
    window; callers decide when it runs.
    """

    def __init__(self, capacity: int = 1000, window: timedelta = timedelta(minutes=60)):
        self.window = window
        self._samples: Deque[Tuple[datetime, FileOperationErrorType, bool]] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)

    def append(self, error_type: FileOperationErrorType, succeeded: bool,
               at: Optional[datetime] = None) -> None:
        with self._lock:
            self._samples.append((at or datetime.now(timezone.utc), error_type, succeeded))

    def compact(self, now: Optional[datetime] = None) -> int:
        """Drop expired samples; returns how many were removed"""
        cutoff = (now or datetime.now(timezone.utc)) - self.window
        removed = 0
        with self._lock:
            # Samples arrive in time order, so expired ones sit at the left
            while self._samples and self._samples[0][0] < cutoff:
                self._samples.popleft()
                removed += 1
        return removed

    def samples(self) -> List[Tuple[datetime, FileOperationErrorType, bool]]:
        with self._lock:
            return list(self._samples)


class ErrorClassificationService:
    """Map exceptions to error types and recovery actions"""

    def __init__(self, buffer_size: int = 1000, window_minutes: float = 60,
                 min_success_rate: float = 0.5, min_samples: int = 5):
        self.min_success_rate = min_success_rate
        self.min_samples = min_samples
        self.buffer = ErrorStatsBuffer(buffer_size, timedelta(minutes=window_minutes))
        self._error_counts: Dict[FileOperationErrorType, int] = {t: 0 for t in FileOperationErrorType}
        self._lock = threading.Lock()

    def classify_error(self, context: ErrorContext) -> ErrorClassification:
        """
        Decide error type, confidence and recovery for one failure

        Order: disk space first (numbers or message), then exception type,
        then message patterns. A transient type whose recent retries mostly
        failed is escalated to manual intervention.
        """
        error_type, confidence = self._determine_type(context)

        with self._lock:
            self._error_counts[error_type] += 1

        delay_ms, max_retries = RETRY_SETTINGS[error_type]
        escalated = False

        if error_type == FileOperationErrorType.TRANSIENT:
            if self.is_escalated(error_type):
                action = RecoveryAction.MANUAL_INTERVENTION
                escalated = True
            else:
                action = RecoveryAction.RETRY_WITH_BACKOFF
        elif error_type == FileOperationErrorType.UNKNOWN:
            action = RecoveryAction.IGNORE
        else:
            action = RecoveryAction.MANUAL_INTERVENTION

        should_retry = action == RecoveryAction.RETRY_WITH_BACKOFF and context.retry_count < max_retries

        classification = ErrorClassification(
            error_type=error_type,
            recovery_action=action,
            confidence=confidence,
            should_retry=should_retry,
            retry_delay_ms=delay_ms * (2 ** context.retry_count) if should_retry else 0,
            max_retries=max_retries,
            user_message=USER_MESSAGES[error_type],
            technical_details=self._technical_details(context, error_type),
            escalated=escalated,
        )

        logger.info(f"Error classified as {error_type.value} ({confidence:.0%}) -> {action.value}"
                    f"{' [escalated]' if escalated else ''}")
        return classification

    def _determine_type(self, context: ErrorContext) -> Tuple[FileOperationErrorType, float]:
        error = context.error
        message = str(error)
        code = getattr(error, 'errno', None)

        if (context.available_bytes is not None and context.required_bytes is not None
                and context.available_bytes < context.required_bytes):
            return FileOperationErrorType.SPACE, 0.90
        if code in SPACE_ERRNOS:
            return FileOperationErrorType.SPACE, 0.95
        if SPACE_MESSAGE.search(message):
            return FileOperationErrorType.SPACE, 0.85

        by_type = self._type_from_exception(error)
        if by_type is not None:
            return by_type, 0.95

        for pattern, error_type in MESSAGE_PATTERNS:
            if pattern.search(message):
                return error_type, 0.85

        # Any other OS-level failure is assumed to be temporary
        if isinstance(error, OSError):
            return FileOperationErrorType.TRANSIENT, 0.95

        return FileOperationErrorType.UNKNOWN, 0.5

    @staticmethod
    def _type_from_exception(error: BaseException) -> Optional[FileOperationErrorType]:
        if isinstance(error, PermissionError):
            return FileOperationErrorType.PERMISSION
        if isinstance(error, (FileNotFoundError, NotADirectoryError, IsADirectoryError)):
            return FileOperationErrorType.PATH
        if isinstance(error, (TimeoutError, BlockingIOError, InterruptedError)):
            return FileOperationErrorType.TRANSIENT
        if isinstance(error, OSError):
            code = error.errno
            if code in PATH_ERRNOS:
                return FileOperationErrorType.PATH
            if code in TRANSIENT_ERRNOS:
                return FileOperationErrorType.TRANSIENT
        return None

    @staticmethod
    def _technical_details(context: ErrorContext, error_type: FileOperationErrorType) -> str:
        if error_type == FileOperationErrorType.SPACE and context.available_bytes is not None:
            return (f"Required: {context.required_bytes or 0:,} bytes, "
                    f"Available: {context.available_bytes:,} bytes")
        return f"{type(context.error).__name__}: {context.error}"

    # Outcome tracking

    def record_outcome(self, error_type: FileOperationErrorType, succeeded: bool,
                       at: Optional[datetime] = None) -> None:
        """Record whether a recovery attempt for error_type worked"""
        self.buffer.append(error_type, succeeded, at)
        self.buffer.compact()

    def success_rate(self, error_type: FileOperationErrorType) -> Optional[float]:
        """Recent recovery success rate, or None with too few samples"""
        outcomes = [ok for _, t, ok in self.buffer.samples() if t == error_type]
        if len(outcomes) < self.min_samples:
            return None
        return sum(1 for ok in outcomes if ok) / len(outcomes)

    def is_escalated(self, error_type: FileOperationErrorType) -> bool:
        rate = self.success_rate(error_type)
        return rate is not None and rate < self.min_success_rate

    def get_statistics(self) -> Dict:
        with self._lock:
            counts = {t.value: c for t, c in self._error_counts.items() if c}

        rates = {}
        for error_type in FileOperationErrorType:
            outcomes = [ok for _, t, ok in self.buffer.samples() if t == error_type]
            if outcomes:
                rates[error_type.value] = sum(1 for ok in outcomes if ok) / len(outcomes)

        return {
            'total_errors': sum(counts.values()),
            'errors_by_type': counts,
            'retry_success_rates': rates,
            'escalated_types': sorted(t.value for t in FileOperationErrorType if self.is_escalated(t)),
            'samples_in_window': len(self.buffer),
        }
