#!/usr/bin/env python3
"""
FileRecord: the lifecycle record for one discovered media file

Lifecycle:
    NEW -> PROCESSING -> CLASSIFIED -> READY_TO_MOVE -> MOVED
    RETRY and ERROR are reachable from any post-NEW state on failure.

Fields are read-only from outside. Every change goes through a transition
method so that status, timestamps and data move together, and each
transition queues domain events for whoever persists the record.
"""

import logging
from enum import Enum
from dataclasses import dataclass, field, replace, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from mediasorter.errors import ErrorKind, ValidationError
from mediasorter.result import Ok, Err, Result

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileStatus(Enum):
    NEW = 'new'
    PROCESSING = 'processing'
    CLASSIFIED = 'classified'
    READY_TO_MOVE = 'ready_to_move'
    MOVED = 'moved'
    RETRY = 'retry'
    ERROR = 'error'
    IGNORED = 'ignored'


# Domain events

@dataclass(frozen=True)
class DomainEvent:
    file_hash: str
    filename: str
    occurred_at: datetime = field(default_factory=utcnow, compare=False)


@dataclass(frozen=True)
class FileDiscovered(DomainEvent):
    original_path: str = ''
    file_size: int = 0


@dataclass(frozen=True)
class FileClassified(DomainEvent):
    suggested_category: str = ''
    confidence: float = 0.0


@dataclass(frozen=True)
class CategoryConfirmed(DomainEvent):
    category: str = ''
    target_path: str = ''
    previous_suggestion: Optional[str] = None


@dataclass(frozen=True)
class FileMoved(DomainEvent):
    original_path: str = ''
    final_path: str = ''
    category: str = ''


@dataclass(frozen=True)
class ProcessingError(DomainEvent):
    message: str = ''
    retry_count: int = 0
    new_status: Optional[FileStatus] = None


@dataclass(frozen=True)
class RetryScheduled(DomainEvent):
    reason: str = ''
    attempt: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES


@dataclass(frozen=True)
class StatusChanged(DomainEvent):
    previous_status: Optional[FileStatus] = None
    new_status: Optional[FileStatus] = None
    reason: str = ''


@dataclass(frozen=True)
class FileRecordState:
    """Immutable snapshot of a FileRecord"""
    file_hash: str
    filename: str
    original_path: str
    file_size: int
    status: FileStatus = FileStatus.NEW
    suggested_category: Optional[str] = None
    confidence: float = 0.0
    category: Optional[str] = None
    target_path: Optional[str] = None
    moved_to_path: Optional[str] = None
    classified_at: Optional[datetime] = None
    moved_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None
    retry_count: int = 0
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


_DATETIME_FIELDS = ('classified_at', 'moved_at', 'last_error_at', 'created_at', 'updated_at')


class FileRecord:
    """
    Lifecycle record keyed by content hash

    Attribute reads (record.status, record.confidence, ...) go to the current
    snapshot. Attribute writes are rejected: use the transition methods.
    """

    def __init__(self, file_hash: str, filename: str, original_path: str, file_size: int = 0,
                 max_retries: int = DEFAULT_MAX_RETRIES):
        if not file_hash or not file_hash.strip():
            raise ValidationError('File hash is required')
        if not filename:
            raise ValidationError('Filename is required')
        if not original_path:
            raise ValidationError('Original path is required')

        self._max_retries = max_retries
        self._events: List[DomainEvent] = []
        self._state = FileRecordState(
            file_hash=file_hash,
            filename=filename,
            original_path=str(original_path),
            file_size=file_size,
        )
        self._events.append(FileDiscovered(file_hash, filename, original_path=str(original_path),
                                           file_size=file_size))

    def __getattr__(self, name: str) -> Any:
        # Only called when normal lookup fails, i.e. for snapshot fields
        if name.startswith('_'):
            raise AttributeError(name)
        return getattr(self._state, name)

    def __setattr__(self, name: str, value: Any) -> None:
        if not name.startswith('_'):
            raise AttributeError(f"FileRecord.{name} can only change through a transition method")
        object.__setattr__(self, name, value)

    def __repr__(self) -> str:
        return f"FileRecord({self._state.file_hash[:12]}, {self._state.filename!r}, {self._state.status.name})"

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def current_path(self) -> str:
        """Where the file is now: the move destination once moved, else the original path"""
        return self._state.moved_to_path or self._state.original_path

    def snapshot(self) -> FileRecordState:
        return self._state

    def pull_events(self) -> List[DomainEvent]:
        """Return and clear the queued domain events"""
        events, self._events = self._events, []
        return events

    def _transition(self, reason: str, **changes) -> None:
        previous = self._state.status
        self._state = replace(self._state, updated_at=utcnow(), **changes)
        if self._state.status != previous:
            self._events.append(StatusChanged(
                self.file_hash, self.filename,
                previous_status=previous, new_status=self._state.status, reason=reason,
            ))
            logger.debug(f"{self.filename}: {previous.name} -> {self._state.status.name} ({reason})")

    # Transitions

    def mark_as_processing(self) -> Result[None]:
        if self.status not in (FileStatus.NEW, FileStatus.RETRY):
            return Err(ErrorKind.VALIDATION, f"Cannot start processing from {self.status.name}")
        self._transition('Classification started', status=FileStatus.PROCESSING)
        return Ok(None)

    def mark_as_classified(self, category: str, confidence: float) -> Result[None]:
        """Valid from any state; confidence must lie in [0.0, 1.0]"""
        if category is None:
            raise ValidationError('Suggested category is required')
        if not 0.0 <= confidence <= 1.0:
            return Err(ErrorKind.VALIDATION, f"Confidence must be between 0.0 and 1.0, got {confidence}")

        now = utcnow()
        self._transition('Classification completed', status=FileStatus.CLASSIFIED,
                         suggested_category=category, confidence=float(confidence), classified_at=now)
        self._events.append(FileClassified(self.file_hash, self.filename,
                                           suggested_category=category, confidence=float(confidence)))
        return Ok(None)

    def confirm_category(self, category: str, target_path: str) -> Result[None]:
        """Accept a category and destination; only valid from CLASSIFIED"""
        if category is None or target_path is None:
            raise ValidationError('Category and target path are required')
        if self.status != FileStatus.CLASSIFIED:
            return Err(ErrorKind.VALIDATION,
                       f"Category can only be confirmed for a classified file, not {self.status.name}")
        if not category.strip() or not str(target_path).strip():
            return Err(ErrorKind.VALIDATION, 'Category and target path cannot be empty')

        previous_suggestion = self.suggested_category
        self._transition('Category confirmed', status=FileStatus.READY_TO_MOVE,
                         category=category, target_path=str(target_path))
        self._events.append(CategoryConfirmed(self.file_hash, self.filename, category=category,
                                              target_path=str(target_path),
                                              previous_suggestion=previous_suggestion))
        return Ok(None)

    def mark_as_moved(self, final_path: str) -> Result[None]:
        if final_path is None:
            raise ValidationError('Final path is required')
        if self.status != FileStatus.READY_TO_MOVE:
            return Err(ErrorKind.VALIDATION, f"Only a file ready to move can be marked moved, not {self.status.name}")

        self._transition('File moved to final location', status=FileStatus.MOVED,
                         moved_to_path=str(final_path), moved_at=utcnow())
        self._events.append(FileMoved(self.file_hash, self.filename, original_path=self.original_path,
                                      final_path=str(final_path), category=self.category or 'UNKNOWN'))
        return Ok(None)

    def record_error(self, message: str, should_retry: bool = True,
                     resume_status: Optional[FileStatus] = None) -> FileStatus:
        """
        Count a failure and decide between RETRY and ERROR

        The retry count always increments. Once it passes max_retries the
        record goes to ERROR even when should_retry is True.

        Args:
            message: Error description stored on the record
            should_retry: Caller's hint that the failure is recoverable
            resume_status: State to re-enter instead of RETRY when a retry is
                granted (a failed move stays READY_TO_MOVE)

        Returns:
            The new status
        """
        if message is None:
            raise ValidationError('Error message is required')

        retry_count = self.retry_count + 1
        retry_granted = should_retry and retry_count <= self._max_retries
        if retry_granted:
            new_status = resume_status or FileStatus.RETRY
        else:
            new_status = FileStatus.ERROR

        self._transition(f"Error occurred: {message}", status=new_status, last_error=message,
                         last_error_at=utcnow(), retry_count=retry_count)
        self._events.append(ProcessingError(self.file_hash, self.filename, message=message,
                                            retry_count=retry_count, new_status=new_status))
        if retry_granted:
            self._events.append(RetryScheduled(self.file_hash, self.filename, reason=message,
                                               attempt=retry_count, max_retries=self._max_retries))
        elif should_retry:
            logger.warning(f"{self.filename}: retry ceiling ({self._max_retries}) reached - marking as error")

        return new_status

    def reset_for_retry(self) -> Result[None]:
        """Send a RETRY record back through the pipeline"""
        if self.status != FileStatus.RETRY:
            return Err(ErrorKind.VALIDATION, f"Only RETRY records can be requeued, not {self.status.name}")
        self._transition('Requeued for processing', status=FileStatus.NEW)
        return Ok(None)

    def reset_from_error(self) -> Result[None]:
        """Manual intervention: clear the error and retry budget"""
        if self.status != FileStatus.ERROR:
            return Err(ErrorKind.VALIDATION, f"Only ERROR records can be reset, not {self.status.name}")
        self._transition('Reset after manual intervention', status=FileStatus.NEW,
                         retry_count=0, last_error=None, last_error_at=None)
        return Ok(None)

    def restore_after_rollback(self) -> Result[None]:
        """Undo mark_as_moved once the file is back at its original path"""
        if self.status != FileStatus.MOVED:
            return Err(ErrorKind.VALIDATION, f"Only MOVED records can be rolled back, not {self.status.name}")
        self._transition('Move rolled back', status=FileStatus.READY_TO_MOVE,
                         moved_to_path=None, moved_at=None)
        return Ok(None)

    def ignore(self, reason: str = 'Ignored by user') -> None:
        self._transition(reason, status=FileStatus.IGNORED)

    def soft_delete(self) -> None:
        self._transition('Deleted', is_active=False)

    def restore(self) -> None:
        self._transition('Restored', is_active=True)

    # Persistence helpers

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self._state)
        data['status'] = self._state.status.value
        for name in _DATETIME_FIELDS:
            value = data[name]
            data[name] = value.isoformat() if value else None
        return data

    @classmethod
    def from_state(cls, state: FileRecordState, max_retries: int = DEFAULT_MAX_RETRIES) -> 'FileRecord':
        """Rehydrate a stored record without replaying transitions or events"""
        record = cls.__new__(cls)
        record._max_retries = max_retries
        record._events = []
        record._state = state
        return record

    @classmethod
    def from_dict(cls, data: Dict[str, Any], max_retries: int = DEFAULT_MAX_RETRIES) -> 'FileRecord':
        values = dict(data)
        values['status'] = FileStatus(values['status'])
        for name in _DATETIME_FIELDS:
            if values.get(name):
                values[name] = datetime.fromisoformat(values[name])
        return cls.from_state(FileRecordState(**values), max_retries=max_retries)


class OperationType(Enum):
    MOVE = 'move'
    COPY = 'copy'
    RENAME = 'rename'


@dataclass(frozen=True)
class RollbackPoint:
    """Pre-operation state needed to reverse one filesystem mutation"""
    id: str
    file_hash: str
    operation_type: OperationType
    original_path: str
    target_path: str
    created_at: datetime
    expires_at: datetime
    extra: Optional[Dict[str, Any]] = None
    can_rollback: bool = True
    rolled_back_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['operation_type'] = self.operation_type.value
        for name in ('created_at', 'expires_at', 'rolled_back_at'):
            data[name] = data[name].isoformat() if data[name] else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RollbackPoint':
        values = dict(data)
        values['operation_type'] = OperationType(values['operation_type'])
        for name in ('created_at', 'expires_at', 'rolled_back_at'):
            if values.get(name):
                values[name] = datetime.fromisoformat(values[name])
        return cls(**values)
