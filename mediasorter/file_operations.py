#!/usr/bin/env python3
"""
Moving classified files into the library

Safety:
- validate_operation() is a side-effect-free pre-flight check
- A rollback point is written before anything on disk changes
- Same filesystem: os.rename(); cross filesystem: copy + verify + delete
- Moves and rollbacks of one file hash are serialized by a keyed lock
- Failures go through ErrorClassificationService and record_error(); a
  retryable failure leaves the record READY_TO_MOVE, never MOVED
"""

import os
import time
import uuid
import shutil
import logging
import threading
from collections import deque
from pathlib import Path
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, List, Optional, Tuple

from mediasorter.config import FilesConfig
from mediasorter.errors import ErrorKind, ConcurrencyError, OperationCancelled
from mediasorter.error_classification import (
    ErrorClassificationService, ErrorContext, FileOperationErrorType,
)
from mediasorter.fs import nearest_existing_parent, relocate, same_filesystem
from mediasorter.records import FileRecord, FileStatus, OperationType, utcnow
from mediasorter.repository import FileRecordRepository
from mediasorter.result import Ok, Err, Result
from mediasorter.rollback import RollbackService

logger = logging.getLogger(__name__)

STATS_WINDOW = 100


@dataclass(frozen=True)
class ValidationReport:
    is_valid: bool
    errors: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    requires_directory_creation: bool = False
    is_cross_volume: bool = False
    required_bytes: int = 0
    available_bytes: Optional[int] = None


@dataclass(frozen=True)
class DirectoryCreationResult:
    path: str
    created: Tuple[str, ...]
    already_existed: bool


@dataclass(frozen=True)
class MoveOutcome:
    operation_id: str
    file_hash: str
    source_path: str
    target_path: str
    bytes_moved: int
    duration_ms: float
    is_cross_volume: bool
    rollback_point_id: str


@dataclass(frozen=True)
class OperationRecord:
    """One audit log entry"""
    operation_id: str
    file_hash: str
    operation_type: OperationType
    source_path: str
    target_path: str
    succeeded: bool
    bytes_moved: int = 0
    duration_ms: float = 0.0
    error: Optional[str] = None
    recorded_at: datetime = field(default_factory=utcnow)


class FileOperationService:
    """Validated, rollback-capable moves of FileRecords"""

    def __init__(self, repository: FileRecordRepository, rollback_service: RollbackService,
                 error_service: Optional[ErrorClassificationService] = None,
                 config: Optional[FilesConfig] = None):
        self.repository = repository
        self.rollback_service = rollback_service
        self.error_service = error_service or ErrorClassificationService()
        self.config = config or FilesConfig()
        # Shared with the rollback service so move and rollback of one hash never overlap
        self.locks = rollback_service.locks

        self._audit: List[OperationRecord] = []
        self._recent: Deque[OperationRecord] = deque(maxlen=STATS_WINDOW)
        self._audit_lock = threading.Lock()
        # Error type of the last retryable failure per hash, settled by the next attempt
        self._pending_recovery: Dict[str, FileOperationErrorType] = {}

    # Pre-flight

    def validate_operation(self, file_hash: str, target_path: str) -> Result[ValidationReport]:
        """
        Check that a file could be moved to target_path, without touching disk

        Covers source existence and readability, destination conflicts,
        write permission, free space and path length.
        """
        record = self.repository.get_by_hash(file_hash)
        if record is None:
            return Err(ErrorKind.NOT_FOUND, f"No file record for {file_hash}")
        if not target_path or not str(target_path).strip():
            return Err(ErrorKind.VALIDATION, 'Target path cannot be empty')

        errors: List[str] = []
        warnings: List[str] = []
        source = Path(record.current_path)
        target = Path(target_path)

        source_exists = source.is_file()
        if not source_exists:
            errors.append(f"Source file not found: {source}")
        elif not os.access(source, os.R_OK):
            errors.append(f"Source file is not readable: {source}")

        if target.exists():
            if source_exists and target.resolve() == source.resolve():
                errors.append('Source and target are the same file')
            else:
                errors.append(f"Target already exists: {target}")

        if len(str(target.absolute())) > self.config.max_path_length:
            warnings.append(f"Target path is longer than {self.config.max_path_length} characters")

        requires_directory_creation = not target.parent.is_dir()
        existing_parent = nearest_existing_parent(target.parent)
        if existing_parent is None or not existing_parent.is_dir():
            errors.append(f"No usable directory above {target.parent}")
        elif not os.access(existing_parent, os.W_OK):
            errors.append(f"No write permission for {existing_parent}")

        is_cross_volume = False
        file_size = source.stat().st_size if source_exists else record.file_size
        required = self.config.min_free_space_mb * 1024 * 1024
        available = None
        if existing_parent is not None and existing_parent.is_dir():
            if source_exists:
                is_cross_volume = not same_filesystem(source, existing_parent)
            if is_cross_volume:
                required += file_size
            available = shutil.disk_usage(existing_parent).free
            if available < required:
                errors.append(f"Insufficient disk space: {required:,} bytes needed, {available:,} available")

        for warning in warnings:
            logger.warning(f"{record.filename}: {warning}")

        return Ok(ValidationReport(
            is_valid=not errors,
            errors=tuple(errors),
            warnings=tuple(warnings),
            requires_directory_creation=requires_directory_creation,
            is_cross_volume=is_cross_volume,
            required_bytes=required,
            available_bytes=available,
        ))

    def create_directory_structure(self, path: str) -> Result[DirectoryCreationResult]:
        """Create path and any missing parents with the configured mode; idempotent"""
        path = Path(path)
        if path.is_dir():
            return Ok(DirectoryCreationResult(str(path), (), True))
        if path.exists():
            return Err(ErrorKind.FILE_SYSTEM, f"Path exists and is not a directory: {path}")

        missing = []
        current = path.absolute()
        while not current.exists():
            missing.append(current)
            current = current.parent

        created = []
        try:
            for directory in reversed(missing):
                directory.mkdir(mode=self.config.directory_mode, exist_ok=True)
                created.append(str(directory))
        except OSError as e:
            logger.error(f"Could not create {path}: {e}")
            return Err(ErrorKind.FILE_SYSTEM, f"Could not create directory {path}: {e}", cause=e)

        logger.debug(f"Created {len(created)} directories for {path}")
        return Ok(DirectoryCreationResult(str(path), tuple(created), False))

    # Moves

    def move_file(self, file_hash: str, target_path: str, create_directories: bool = True,
                  cancel_event: Optional[threading.Event] = None) -> Result[MoveOutcome]:
        """
        Move a READY_TO_MOVE file to target_path

        Args:
            file_hash: Record to move
            target_path: Full destination file path
            create_directories: Create missing target directories
            cancel_event: Set it to stop a cross-volume copy; the source is kept

        Returns:
            Ok(MoveOutcome), or Err with the failure kind
        """
        try:
            with self.locks.hold(file_hash, self.config.lock_timeout_seconds):
                return self._move(file_hash, Path(target_path), create_directories, cancel_event)
        except ConcurrencyError as e:
            return Err(ErrorKind.CONCURRENCY, str(e), cause=e)

    def _move(self, file_hash: str, target: Path, create_directories: bool,
              cancel_event: Optional[threading.Event]) -> Result[MoveOutcome]:
        record = self.repository.get_by_hash(file_hash)
        if record is None:
            return Err(ErrorKind.NOT_FOUND, f"No file record for {file_hash}")
        if record.status != FileStatus.READY_TO_MOVE:
            return Err(ErrorKind.VALIDATION, f"{record.filename} is {record.status.name}, not READY_TO_MOVE")

        validation = self.validate_operation(file_hash, str(target))
        if validation.is_err:
            return validation
        report = validation.value
        if not report.is_valid:
            message = '; '.join(report.errors)
            logger.warning(f"Move of {record.filename} rejected: {message}")
            kind = ErrorKind.FILE_ACCESS if not Path(record.current_path).is_file() else ErrorKind.VALIDATION
            return Err(kind, message)

        source = Path(record.current_path)
        file_size = source.stat().st_size

        created_directories: Tuple[str, ...] = ()
        if report.requires_directory_creation:
            if not create_directories:
                return Err(ErrorKind.VALIDATION, f"Target directory does not exist: {target.parent}")
            created = self.create_directory_structure(str(target.parent))
            if created.is_err:
                return self._fail(record, created.cause or OSError(created.message), source, target, file_size)
            created_directories = created.value.created

        point = self.rollback_service.create_rollback_point(
            file_hash, OperationType.MOVE, str(source), str(target),
            extra={'created_directories': list(created_directories), 'file_size': file_size},
        )
        if point.is_err:
            return point
        point_id = point.value.id

        started = time.monotonic()
        try:
            is_cross_volume = relocate(source, target, self.config.buffer_size, cancel_event)
        except OperationCancelled:
            self.repository.remove_rollback_point(point_id)
            self._remove_directories(created_directories)
            logger.info(f"Move of {record.filename} cancelled; source kept at {source}")
            self.record_operation(OperationRecord(uuid.uuid4().hex, file_hash, OperationType.MOVE,
                                                  str(source), str(target), False, error='cancelled'))
            return Err(ErrorKind.CANCELLED, f"Move of {record.filename} was cancelled")
        except OSError as e:
            self.repository.remove_rollback_point(point_id)
            self._remove_directories(created_directories)
            return self._fail(record, e, source, target, file_size)

        duration_ms = (time.monotonic() - started) * 1000
        marked = record.mark_as_moved(str(target))
        if marked.is_err:
            # Only reachable if the record was changed outside the lock
            logger.error(f"{record.filename} moved to {target} but record not updated: {marked.message}")
            return marked
        self.repository.update(record)
        self._settle_recovery(file_hash, succeeded=True)

        # A successful move is identified by its rollback point
        operation_id = point_id
        self.record_operation(OperationRecord(operation_id, file_hash, OperationType.MOVE, str(source),
                                              str(target), True, bytes_moved=file_size,
                                              duration_ms=duration_ms))
        logger.info(f"Moved: {record.filename} -> {target} "
                    f"({'copy' if is_cross_volume else 'rename'}, {duration_ms:.0f} ms)")

        return Ok(MoveOutcome(
            operation_id=operation_id,
            file_hash=file_hash,
            source_path=str(source),
            target_path=str(target),
            bytes_moved=file_size,
            duration_ms=duration_ms,
            is_cross_volume=is_cross_volume,
            rollback_point_id=point_id,
        ))

    def _fail(self, record: FileRecord, error: BaseException, source: Path, target: Path,
              file_size: int) -> Err:
        """Classify a failed move and record it on the FileRecord"""
        available = None
        parent = nearest_existing_parent(target.parent)
        if parent is not None:
            try:
                available = shutil.disk_usage(parent).free
            except OSError as e:
                logger.debug(f"Could not read free space for {parent}: {e}")

        classification = self.error_service.classify_error(ErrorContext(
            error=error,
            operation_type=OperationType.MOVE.value,
            file_hash=record.file_hash,
            path=str(target),
            retry_count=record.retry_count,
            required_bytes=file_size,
            available_bytes=available,
        ))

        self._settle_recovery(record.file_hash, succeeded=False)
        if classification.should_retry:
            self._pending_recovery[record.file_hash] = classification.error_type

        message = f"{classification.user_message} ({classification.technical_details})"
        new_status = record.record_error(message, should_retry=classification.should_retry,
                                         resume_status=FileStatus.READY_TO_MOVE)
        self.repository.update(record)

        self.record_operation(OperationRecord(uuid.uuid4().hex, record.file_hash, OperationType.MOVE,
                                              str(source), str(target), False, error=str(error)))
        logger.error(f"Error moving {record.filename}: {error} -> {new_status.name}")

        if classification.error_type == FileOperationErrorType.PATH:
            kind = ErrorKind.FILE_ACCESS
        else:
            kind = ErrorKind.FILE_SYSTEM
        return Err(kind, message, cause=error)

    def _settle_recovery(self, file_hash: str, succeeded: bool) -> None:
        """Report how the retry of an earlier failure on this hash turned out"""
        error_type = self._pending_recovery.pop(file_hash, None)
        if error_type is not None:
            self.error_service.record_outcome(error_type, succeeded)

    @staticmethod
    def _remove_directories(directories: Tuple[str, ...]) -> None:
        for directory in reversed(directories):
            path = Path(directory)
            try:
                if path.is_dir() and not any(path.iterdir()):
                    path.rmdir()
            except OSError as e:
                logger.warning(f"Could not remove directory {path}: {e}")

    # Audit log

    def record_operation(self, entry: OperationRecord) -> None:
        """Append an audit entry; earlier entries are never modified"""
        with self._audit_lock:
            self._audit.append(entry)
            self._recent.append(entry)

    def get_audit_log(self, file_hash: Optional[str] = None) -> List[OperationRecord]:
        with self._audit_lock:
            entries = list(self._audit)
        if file_hash is not None:
            entries = [e for e in entries if e.file_hash == file_hash]
        return entries

    def get_operation_stats(self) -> Dict:
        """Counts, success rate and mean duration over the most recent operations"""
        with self._audit_lock:
            recent = list(self._recent)

        completed = [e for e in recent if e.succeeded]
        failed = len(recent) - len(completed)
        return {
            'total': len(recent),
            'completed': len(completed),
            'failed': failed,
            'success_rate': len(completed) / len(recent) if recent else 0.0,
            'mean_duration_ms': sum(e.duration_ms for e in completed) / len(completed) if completed else 0.0,
            'bytes_moved': sum(e.bytes_moved for e in completed),
        }
