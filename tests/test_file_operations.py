#!/usr/bin/env python3
"""
Test suite for mediasorter/file_operations.py: pre-flight validation,
directory creation, same/cross-volume moves, failure handling and the
audit log

All moves happen inside temporary directories.
"""

import errno
import tempfile
import threading
import pytest
import sys
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent.parent))

from builders import DEFAULT_FILENAME, build_classified_record, build_ready_record, write_media_file
from mediasorter.config import FilesConfig
from mediasorter.error_classification import ErrorClassificationService
from mediasorter.errors import ErrorKind
from mediasorter.file_operations import FileOperationService
from mediasorter.records import FileStatus
from mediasorter.repository import InMemoryRepository
from mediasorter.rollback import RollbackService

# Keep tests independent of how full the temp filesystem is
TEST_CONFIG = FilesConfig(min_free_space_mb=0, lock_timeout_seconds=0.05)


@pytest.fixture
def workspace():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def make_service(config=TEST_CONFIG, error_service=None):
    repository = InMemoryRepository()
    rollback = RollbackService(repository)
    return FileOperationService(repository, rollback, error_service, config)


def add_ready_file(service, workspace, name=DEFAULT_FILENAME):
    source = write_media_file(workspace / 'downloads', name)
    target = workspace / 'library' / 'BREAKING BAD' / name
    record = build_ready_record(target_path=str(target), filename=name, original_path=str(source))
    service.repository.add(record)
    return record, source, target


class TestValidateOperation:
    """Side-effect-free pre-flight checks"""

    def test_valid_move(self, workspace):
        service = make_service()
        record, source, target = add_ready_file(service, workspace)

        report = service.validate_operation(record.file_hash, str(target)).unwrap()

        assert report.is_valid
        assert report.requires_directory_creation
        assert not report.is_cross_volume
        assert not target.parent.exists()

    def test_unknown_hash(self, workspace):
        result = make_service().validate_operation('missing', str(workspace / 'x.mkv'))
        assert result.kind == ErrorKind.NOT_FOUND

    def test_empty_target(self, workspace):
        service = make_service()
        record, _, _ = add_ready_file(service, workspace)
        assert service.validate_operation(record.file_hash, '  ').kind == ErrorKind.VALIDATION

    def test_missing_source(self, workspace):
        service = make_service()
        record, source, target = add_ready_file(service, workspace)
        source.unlink()

        report = service.validate_operation(record.file_hash, str(target)).unwrap()

        assert not report.is_valid
        assert any('Source file not found' in e for e in report.errors)

    def test_target_exists(self, workspace):
        service = make_service()
        record, _, target = add_ready_file(service, workspace)
        write_media_file(target.parent, target.name, size=10)

        report = service.validate_operation(record.file_hash, str(target)).unwrap()

        assert not report.is_valid
        assert any('Target already exists' in e for e in report.errors)

    def test_same_file(self, workspace):
        service = make_service()
        record, source, _ = add_ready_file(service, workspace)
        report = service.validate_operation(record.file_hash, str(source)).unwrap()
        assert 'Source and target are the same file' in report.errors

    def test_long_path_warns(self, workspace):
        service = make_service(FilesConfig(min_free_space_mb=0, max_path_length=10))
        record, _, target = add_ready_file(service, workspace)

        report = service.validate_operation(record.file_hash, str(target)).unwrap()

        assert report.is_valid
        assert report.warnings

    def test_insufficient_space(self, workspace):
        service = make_service(FilesConfig(min_free_space_mb=10 ** 12))
        record, _, target = add_ready_file(service, workspace)

        report = service.validate_operation(record.file_hash, str(target)).unwrap()

        assert not report.is_valid
        assert any('Insufficient disk space' in e for e in report.errors)
        assert report.available_bytes < report.required_bytes


class TestCreateDirectoryStructure:
    """Idempotent directory creation"""

    def test_creates_missing_parents(self, workspace):
        path = workspace / 'library' / 'OFFICE' / 'Season 2'
        result = make_service().create_directory_structure(str(path)).unwrap()

        assert path.is_dir()
        assert not result.already_existed
        assert result.created == (str(workspace / 'library'), str(workspace / 'library' / 'OFFICE'), str(path))

    def test_idempotent(self, workspace):
        service = make_service()
        path = workspace / 'library' / 'OFFICE'
        service.create_directory_structure(str(path))

        again = service.create_directory_structure(str(path)).unwrap()

        assert again.already_existed
        assert again.created == ()

    def test_file_in_the_way(self, workspace):
        blocker = write_media_file(workspace, 'library', size=1)
        result = make_service().create_directory_structure(str(blocker))
        assert result.kind == ErrorKind.FILE_SYSTEM


class TestMoveFile:
    """Successful moves"""

    def test_same_volume_move(self, workspace):
        service = make_service()
        record, source, target = add_ready_file(service, workspace)

        outcome = service.move_file(record.file_hash, str(target)).unwrap()

        assert target.exists()
        assert not source.exists()
        assert not outcome.is_cross_volume
        assert outcome.bytes_moved == 4096

        stored = service.repository.get_by_hash(record.file_hash)
        assert stored.status == FileStatus.MOVED
        assert stored.current_path == str(target)

        point = service.repository.get_rollback_point(outcome.rollback_point_id)
        assert point.original_path == str(source)
        assert point.extra['created_directories'] == [str(workspace / 'library'), str(target.parent)]

    def test_cross_volume_move(self, workspace):
        service = make_service()
        record, source, target = add_ready_file(service, workspace)
        content = source.read_bytes()

        with patch('mediasorter.fs.same_filesystem', return_value=False):
            outcome = service.move_file(record.file_hash, str(target)).unwrap()

        assert outcome.is_cross_volume
        assert target.read_bytes() == content
        assert not source.exists()

    def test_operation_id_rolls_back(self, workspace):
        service = make_service()
        record, source, target = add_ready_file(service, workspace)

        outcome = service.move_file(record.file_hash, str(target)).unwrap()

        assert outcome.operation_id == outcome.rollback_point_id
        assert service.get_audit_log(record.file_hash)[-1].operation_id == outcome.operation_id
        service.rollback_service.execute_rollback(outcome.operation_id).unwrap()
        assert source.exists()
        assert not target.exists()

    def test_requires_ready_to_move(self, workspace):
        service = make_service()
        record = build_classified_record()
        service.repository.add(record)

        result = service.move_file(record.file_hash, str(workspace / 'x.mkv'))

        assert result.kind == ErrorKind.VALIDATION
        assert record.status == FileStatus.CLASSIFIED

    def test_missing_source_is_file_access(self, workspace):
        service = make_service()
        record, source, target = add_ready_file(service, workspace)
        source.unlink()

        result = service.move_file(record.file_hash, str(target))

        assert result.kind == ErrorKind.FILE_ACCESS
        assert service.repository.get_rollback_points(record.file_hash) == []

    def test_no_directory_creation(self, workspace):
        service = make_service()
        record, _, target = add_ready_file(service, workspace)

        result = service.move_file(record.file_hash, str(target), create_directories=False)

        assert result.kind == ErrorKind.VALIDATION
        assert not target.parent.exists()

    def test_lock_contention(self, workspace):
        service = make_service()
        record, source, target = add_ready_file(service, workspace)

        with service.locks.hold(record.file_hash):
            result = service.move_file(record.file_hash, str(target))

        assert result.kind == ErrorKind.CONCURRENCY
        assert source.exists()


class TestMoveFailures:
    """A failed or cancelled move keeps the source and never marks MOVED"""

    def test_mid_copy_failure(self, workspace):
        service = make_service()
        record, source, target = add_ready_file(service, workspace)

        with patch('mediasorter.fs.same_filesystem', return_value=False), \
             patch('mediasorter.fs.shutil.copystat', side_effect=OSError(errno.EIO, 'Input/output error')):
            result = service.move_file(record.file_hash, str(target))

        assert result.is_err
        assert result.kind == ErrorKind.FILE_SYSTEM
        assert source.exists()
        assert not target.exists()
        assert not target.parent.exists()

        stored = service.repository.get_by_hash(record.file_hash)
        assert stored.status == FileStatus.READY_TO_MOVE
        assert stored.retry_count == 1
        assert stored.last_error
        assert service.repository.get_rollback_points(record.file_hash) == []

    def test_retry_after_failure_settles_outcome(self, workspace):
        errors = ErrorClassificationService()
        service = make_service(error_service=errors)
        record, source, target = add_ready_file(service, workspace)

        with patch('mediasorter.fs.same_filesystem', return_value=False), \
             patch('mediasorter.fs.shutil.copystat', side_effect=OSError(errno.EIO, 'Input/output error')):
            service.move_file(record.file_hash, str(target))

        assert service.move_file(record.file_hash, str(target)).is_ok
        assert errors.buffer.samples()[0][2] is True

    def test_permanent_failure_goes_to_error(self, workspace):
        service = make_service()
        record, source, target = add_ready_file(service, workspace)

        with patch('mediasorter.file_operations.relocate',
                   side_effect=PermissionError(errno.EACCES, 'Permission denied')):
            result = service.move_file(record.file_hash, str(target))

        assert result.kind == ErrorKind.FILE_SYSTEM
        assert service.repository.get_by_hash(record.file_hash).status == FileStatus.ERROR
        assert source.exists()

    def test_source_delete_failure_leaves_single_copy(self, workspace):
        service = make_service()
        record, source, target = add_ready_file(service, workspace)
        real_unlink = Path.unlink

        def unlink(path, *args, **kwargs):
            if path == source:
                raise PermissionError(errno.EACCES, 'Permission denied')
            return real_unlink(path, *args, **kwargs)

        with patch('mediasorter.fs.same_filesystem', return_value=False), \
             patch.object(Path, 'unlink', autospec=True, side_effect=unlink):
            result = service.move_file(record.file_hash, str(target))

        assert result.is_err
        assert source.exists()
        assert not target.exists()
        assert service.repository.get_by_hash(record.file_hash).status != FileStatus.MOVED
        assert service.repository.get_rollback_points(record.file_hash) == []
        assert service.validate_operation(record.file_hash, str(target)).unwrap().is_valid

    def test_cancelled_copy(self, workspace):
        service = make_service()
        record, source, target = add_ready_file(service, workspace)
        cancel = threading.Event()
        cancel.set()

        with patch('mediasorter.fs.same_filesystem', return_value=False):
            result = service.move_file(record.file_hash, str(target), cancel_event=cancel)

        assert result.kind == ErrorKind.CANCELLED
        assert source.exists()
        assert not target.exists()
        stored = service.repository.get_by_hash(record.file_hash)
        assert stored.status == FileStatus.READY_TO_MOVE
        assert stored.retry_count == 0


class TestAuditLog:
    """Append-only audit entries and rolling statistics"""

    def test_entries_and_stats(self, workspace):
        service = make_service()
        good, _, good_target = add_ready_file(service, workspace, 'Office.S01E01.mkv')
        bad, _, bad_target = add_ready_file(service, workspace, 'Office.S01E02.mkv')

        service.move_file(good.file_hash, str(good_target))
        with patch('mediasorter.file_operations.relocate', side_effect=OSError(errno.EIO, 'I/O error')):
            service.move_file(bad.file_hash, str(bad_target))

        assert len(service.get_audit_log()) == 2
        entries = service.get_audit_log(bad.file_hash)
        assert len(entries) == 1
        assert not entries[0].succeeded

        stats = service.get_operation_stats()
        assert stats['total'] == 2
        assert stats['completed'] == 1
        assert stats['failed'] == 1
        assert stats['success_rate'] == pytest.approx(0.5)
        assert stats['bytes_moved'] == 4096

    def test_empty_stats(self):
        stats = make_service().get_operation_stats()
        assert stats['total'] == 0
        assert stats['success_rate'] == 0.0
