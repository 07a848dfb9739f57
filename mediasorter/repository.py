#!/usr/bin/env python3
"""
Storage for FileRecords and RollbackPoints

FileRecordRepository is the interface the services depend on.
InMemoryRepository keeps everything in dicts; JsonRepository adds a JSON
state file so the command-line tools can classify, move and roll back
across separate runs.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from mediasorter.records import FileRecord, FileStatus, RollbackPoint, DEFAULT_MAX_RETRIES

logger = logging.getLogger(__name__)


class FileRecordRepository(ABC):
    """Read-your-writes store for FileRecords and RollbackPoints"""

    @abstractmethod
    def get_by_hash(self, file_hash: str, include_deleted: bool = False) -> Optional[FileRecord]:
        ...

    @abstractmethod
    def add(self, record: FileRecord) -> None:
        ...

    @abstractmethod
    def update(self, record: FileRecord) -> None:
        ...

    @abstractmethod
    def query(self, status: Optional[FileStatus] = None, category: Optional[str] = None,
              include_deleted: bool = False, skip: int = 0, take: Optional[int] = None) -> List[FileRecord]:
        ...

    @abstractmethod
    def add_rollback_point(self, point: RollbackPoint) -> None:
        ...

    @abstractmethod
    def update_rollback_point(self, point: RollbackPoint) -> None:
        ...

    @abstractmethod
    def get_rollback_point(self, operation_id: str) -> Optional[RollbackPoint]:
        ...

    @abstractmethod
    def all_rollback_points(self) -> List[RollbackPoint]:
        ...

    @abstractmethod
    def remove_rollback_point(self, operation_id: str) -> None:
        ...

    def get_by_status(self, status: FileStatus) -> List[FileRecord]:
        return self.query(status=status)

    def get_rollback_points(self, file_hash: str) -> List[RollbackPoint]:
        """All points for one file, newest first"""
        points = [p for p in self.all_rollback_points() if p.file_hash == file_hash]
        return sorted(points, key=lambda p: p.created_at, reverse=True)

    def soft_delete(self, file_hash: str) -> bool:
        record = self.get_by_hash(file_hash)
        if record is None:
            return False
        record.soft_delete()
        self.update(record)
        return True

    def restore(self, file_hash: str) -> bool:
        record = self.get_by_hash(file_hash, include_deleted=True)
        if record is None or record.is_active:
            return False
        record.restore()
        self.update(record)
        return True

    def count_by_status(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for record in self.query():
            counts[record.status.name] = counts.get(record.status.name, 0) + 1
        return counts


class InMemoryRepository(FileRecordRepository):
    """Thread-safe dict-backed repository"""

    def __init__(self):
        self._lock = threading.RLock()
        self._records: Dict[str, FileRecord] = {}
        self._rollback_points: Dict[str, RollbackPoint] = {}

    def get_by_hash(self, file_hash: str, include_deleted: bool = False) -> Optional[FileRecord]:
        with self._lock:
            record = self._records.get(file_hash)
        if record is not None and not record.is_active and not include_deleted:
            return None
        return record

    def add(self, record: FileRecord) -> None:
        with self._lock:
            if record.file_hash in self._records:
                raise KeyError(f"Record already exists: {record.file_hash}")
            self._records[record.file_hash] = record
            self._save()

    def update(self, record: FileRecord) -> None:
        with self._lock:
            if record.file_hash not in self._records:
                raise KeyError(f"No such record: {record.file_hash}")
            self._records[record.file_hash] = record
            self._save()

    def query(self, status: Optional[FileStatus] = None, category: Optional[str] = None,
              include_deleted: bool = False, skip: int = 0, take: Optional[int] = None) -> List[FileRecord]:
        with self._lock:
            records = list(self._records.values())

        if not include_deleted:
            records = [r for r in records if r.is_active]
        if status is not None:
            records = [r for r in records if r.status == status]
        if category is not None:
            wanted = category.upper()
            records = [r for r in records
                       if (r.category or r.suggested_category or '').upper() == wanted]

        records.sort(key=lambda r: (r.created_at, r.file_hash))
        end = None if take is None else skip + take
        return records[skip:end]

    def add_rollback_point(self, point: RollbackPoint) -> None:
        with self._lock:
            self._rollback_points[point.id] = point
            self._save()

    def update_rollback_point(self, point: RollbackPoint) -> None:
        with self._lock:
            if point.id not in self._rollback_points:
                raise KeyError(f"No such rollback point: {point.id}")
            self._rollback_points[point.id] = point
            self._save()

    def get_rollback_point(self, operation_id: str) -> Optional[RollbackPoint]:
        with self._lock:
            return self._rollback_points.get(operation_id)

    def all_rollback_points(self) -> List[RollbackPoint]:
        with self._lock:
            return list(self._rollback_points.values())

    def remove_rollback_point(self, operation_id: str) -> None:
        with self._lock:
            self._rollback_points.pop(operation_id, None)
            self._save()

    def _save(self) -> None:
        """Hook for persistent subclasses"""


class JsonRepository(InMemoryRepository):
    """InMemoryRepository mirrored to a JSON file after every write"""

    def __init__(self, state_path: Path, max_retries: int = DEFAULT_MAX_RETRIES):
        super().__init__()
        self.state_path = Path(state_path)
        self.max_retries = max_retries
        self._load()

    def _load(self) -> None:
        if not self.state_path.exists():
            return
        try:
            with open(self.state_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not load state from {self.state_path}: {e}. Starting fresh.")
            return

        for item in data.get('records', []):
            record = FileRecord.from_dict(item, max_retries=self.max_retries)
            self._records[record.file_hash] = record
        for item in data.get('rollback_points', []):
            point = RollbackPoint.from_dict(item)
            self._rollback_points[point.id] = point

        logger.info(f"Loaded {len(self._records)} records and "
                    f"{len(self._rollback_points)} rollback points from {self.state_path}")

    def _save(self) -> None:
        data = {
            'records': [r.to_dict() for r in self._records.values()],
            'rollback_points': [p.to_dict() for p in self._rollback_points.values()],
        }
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.state_path.with_suffix(self.state_path.suffix + '.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        tmp_path.replace(self.state_path)
        logger.debug(f"Saved state to {self.state_path}")
