#!/usr/bin/env python3
"""
Rollback points for file moves

A rollback point is written immediately before a filesystem mutation.
Retention policy: every point expires `retention_hours` after creation and
can be executed at most once. Executing it moves the file back, clears
can_rollback and returns the FileRecord to READY_TO_MOVE.
"""

import uuid
import logging
from pathlib import Path
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from mediasorter.errors import ErrorKind, ConcurrencyError
from mediasorter.fs import DEFAULT_BUFFER_SIZE, relocate
from mediasorter.locks import KeyedLock
from mediasorter.records import FileStatus, OperationType, RollbackPoint, utcnow
from mediasorter.repository import FileRecordRepository
from mediasorter.result import Ok, Err, Result

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RollbackValidation:
    operation_id: str
    is_valid: bool
    messages: Tuple[str, ...]
    original_location_accessible: bool
    target_file_exists: bool
    success_probability: float


@dataclass(frozen=True)
class RollbackOutcome:
    operation_id: str
    file_hash: str
    operation_type: OperationType
    restored_path: str
    removed_path: str


class RollbackService:
    """Create, validate and execute rollback points"""

    def __init__(self, repository: FileRecordRepository, retention_hours: float = 24,
                 locks: Optional[KeyedLock] = None, buffer_size: int = DEFAULT_BUFFER_SIZE):
        self.repository = repository
        self.retention = timedelta(hours=retention_hours)
        self.locks = locks or KeyedLock()
        self.buffer_size = buffer_size

    def create_rollback_point(self, file_hash: str, operation_type: OperationType,
                              original_path: str, target_path: str,
                              extra: Optional[Dict[str, Any]] = None) -> Result[RollbackPoint]:
        if not file_hash or not file_hash.strip():
            return Err(ErrorKind.VALIDATION, 'File hash cannot be empty')
        if not original_path or not str(original_path).strip():
            return Err(ErrorKind.VALIDATION, 'Original path cannot be empty')
        if not target_path or not str(target_path).strip():
            return Err(ErrorKind.VALIDATION, 'Target path cannot be empty')

        now = utcnow()
        point = RollbackPoint(
            id=uuid.uuid4().hex,
            file_hash=file_hash,
            operation_type=operation_type,
            original_path=str(original_path),
            target_path=str(target_path),
            created_at=now,
            expires_at=now + self.retention,
            extra=dict(extra) if extra else None,
        )
        self.repository.add_rollback_point(point)
        logger.info(f"Created rollback point {point.id} for {file_hash[:12]} ({operation_type.value})")
        return Ok(point)

    def validate_rollback_integrity(self, operation_id: str) -> Result[RollbackValidation]:
        """
        Check that a rollback could run right now, without changing anything

        Success probability: 0.95 when the original directory is reachable
        and the target file exists, 0.3 when only the directory is
        reachable, 0.1 otherwise.
        """
        point = self.repository.get_rollback_point(operation_id)
        if point is None:
            return Err(ErrorKind.NOT_FOUND, f"Rollback point {operation_id} not found")

        messages: List[str] = []
        if not point.can_rollback:
            messages.append('Rollback point has already been used')
        if point.is_expired():
            messages.append(f"Rollback point expired at {point.expires_at.isoformat()}")

        original = Path(point.original_path)
        target = Path(point.target_path)

        original_accessible = original.parent.is_dir()
        if not original_accessible:
            messages.append(f"Original directory does not exist: {original.parent}")

        target_exists = target.is_file()
        if not target_exists:
            messages.append(f"Target file does not exist: {target}")

        if point.operation_type != OperationType.COPY and original.exists():
            messages.append(f"Original path is occupied: {original}")

        if original_accessible and target_exists:
            probability = 0.95
        elif original_accessible:
            probability = 0.3
        else:
            probability = 0.1

        return Ok(RollbackValidation(
            operation_id=operation_id,
            is_valid=not messages,
            messages=tuple(messages),
            original_location_accessible=original_accessible,
            target_file_exists=target_exists,
            success_probability=probability,
        ))

    def execute_rollback(self, operation_id: str) -> Result[RollbackOutcome]:
        """
        Reverse one recorded operation

        A point that was already executed gives ALREADY_ROLLED_BACK, so
        calling this twice never moves the file twice.
        """
        point = self.repository.get_rollback_point(operation_id)
        if point is None:
            return Err(ErrorKind.NOT_FOUND, f"Rollback point {operation_id} not found")

        try:
            with self.locks.hold(point.file_hash):
                return self._execute(operation_id)
        except ConcurrencyError as e:
            return Err(ErrorKind.CONCURRENCY, str(e), cause=e)

    def _execute(self, operation_id: str) -> Result[RollbackOutcome]:
        # Re-read under the lock; a concurrent rollback may have consumed it
        point = self.repository.get_rollback_point(operation_id)
        if point is None:
            return Err(ErrorKind.NOT_FOUND, f"Rollback point {operation_id} not found")
        if not point.can_rollback:
            return Err(ErrorKind.ALREADY_ROLLED_BACK, f"Rollback point {operation_id} was already executed")

        validation = self.validate_rollback_integrity(operation_id)
        if validation.is_err:
            return validation
        report = validation.value
        if not report.is_valid:
            logger.error(f"Rollback {operation_id} not possible: {'; '.join(report.messages)} "
                         f"(original: {point.original_path}, target: {point.target_path})")
            return Err(ErrorKind.ROLLBACK_INTEGRITY, '; '.join(report.messages))

        original = Path(point.original_path)
        target = Path(point.target_path)
        try:
            if point.operation_type == OperationType.COPY:
                target.unlink()
            else:
                relocate(target, original, self.buffer_size)
        except OSError as e:
            logger.error(f"Rollback {operation_id} failed, manual reconciliation needed: {e} "
                         f"(original: {original}, target: {target})")
            return Err(ErrorKind.FILE_SYSTEM, f"Rollback failed: {e}", cause=e)

        self._remove_created_directories(point)

        self.repository.update_rollback_point(replace(point, can_rollback=False, rolled_back_at=utcnow()))

        record = self.repository.get_by_hash(point.file_hash)
        if record is None:
            logger.warning(f"Rolled back {operation_id} but no record exists for {point.file_hash[:12]}")
        elif point.operation_type != OperationType.COPY and record.status == FileStatus.MOVED:
            restored = record.restore_after_rollback()
            if restored.is_ok:
                self.repository.update(record)
            else:
                logger.error(f"File restored but record not updated: {restored.message}")

        logger.info(f"Rolled back {point.operation_type.value}: {target} -> {original}")
        return Ok(RollbackOutcome(
            operation_id=operation_id,
            file_hash=point.file_hash,
            operation_type=point.operation_type,
            restored_path=str(original),
            removed_path=str(target),
        ))

    @staticmethod
    def _remove_created_directories(point: RollbackPoint) -> None:
        """Remove directories the operation created, if they are now empty"""
        created = (point.extra or {}).get('created_directories') or []
        for directory in reversed(created):
            path = Path(directory)
            try:
                if path.is_dir() and not any(path.iterdir()):
                    path.rmdir()
                    logger.debug(f"Removed empty directory {path}")
            except OSError as e:
                logger.warning(f"Could not remove directory {path}: {e}")

    def rollback_last_operation(self, file_hash: str) -> Result[RollbackOutcome]:
        """Execute the most recent rollback point for a file"""
        history = self.get_rollback_history(file_hash)
        if history.is_err:
            return history
        if not history.value:
            return Err(ErrorKind.NOT_FOUND, f"No rollback points found for {file_hash}")
        return self.execute_rollback(history.value[0].id)

    def cleanup_rollback_history(self, older_than: Optional[datetime] = None) -> int:
        """
        Delete rollback points created before older_than

        Defaults to the retention window. FileRecords are not touched.

        Returns:
            Number of points removed
        """
        cutoff = older_than or (utcnow() - self.retention)
        stale = [p for p in self.repository.all_rollback_points() if p.created_at < cutoff]
        for point in stale:
            self.repository.remove_rollback_point(point.id)

        logger.info(f"Cleaned up {len(stale)} rollback points older than {cutoff.isoformat()}")
        return len(stale)

    def get_rollback_history(self, file_hash: str) -> Result[List[RollbackPoint]]:
        """Rollback points for one file, newest first"""
        if not file_hash or not file_hash.strip():
            return Err(ErrorKind.VALIDATION, 'File hash cannot be empty')
        return Ok(self.repository.get_rollback_points(file_hash))
