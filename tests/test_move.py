#!/usr/bin/env python3
"""
Test suite for move.py and mediasorter/fs.py: same-FS detection, verified
copies, manifest processing and rolling a run back
"""

import pytest
import sys
import csv
import errno
import tempfile
import threading
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent.parent))

from builders import DEFAULT_FILENAME, write_media_file
from classify import discover_files, register_files, build_manifest_rows, write_manifest
from mediasorter.categories import CategoryService
from mediasorter.classifier import Classifier
from mediasorter.config import config_from_dict
from mediasorter.errors import OperationCancelled
from mediasorter.fs import same_filesystem, copy_file, relocate
from mediasorter.pipeline import ClassificationPipeline
from mediasorter.records import FileStatus
from mediasorter.repository import JsonRepository
from mediasorter.rollback import RollbackService
from move import process_manifest
from rollback_moves import read_move_log, rollback_points


class TestSameFilesystem:
    """Test same-filesystem detection"""

    def test_same_directory(self):
        """Files in same directory are on same filesystem"""
        with tempfile.TemporaryDirectory() as tmpdir:
            p = Path(tmpdir)
            (p / "a").touch()
            (p / "b").touch()
            assert same_filesystem(p / "a", p / "b")

    def test_nonexistent_path_returns_false(self):
        """Non-existent paths should return False (not crash)"""
        assert same_filesystem(Path("/nonexistent/a"), Path("/nonexistent/b")) is False


class TestCopyAndRelocate:
    """Test file move mechanics"""

    def test_rename_move(self):
        """Same-FS move via os.rename"""
        with tempfile.TemporaryDirectory() as tmpdir:
            p = Path(tmpdir)
            source = p / "source.txt"
            (p / "subdir").mkdir()
            dest = p / "subdir" / "dest.txt"
            source.write_text("hello")

            assert relocate(source, dest) is False
            assert dest.read_text() == "hello"
            assert not source.exists()

    def test_copy_move(self):
        """Cross-FS move via copy+verify+delete"""
        with tempfile.TemporaryDirectory() as tmpdir:
            p = Path(tmpdir)
            source = write_media_file(p, "source.mkv", size=200000)
            content = source.read_bytes()
            (p / "subdir").mkdir()
            dest = p / "subdir" / "dest.mkv"

            with patch('mediasorter.fs.same_filesystem', return_value=False):
                assert relocate(source, dest, buffer_size=4096) is True

            assert dest.read_bytes() == content
            assert not source.exists()

    def test_copy_refuses_existing_destination(self):
        """copy_file never overwrites, and leaves the existing file alone"""
        with tempfile.TemporaryDirectory() as tmpdir:
            p = Path(tmpdir)
            source = write_media_file(p, "source.mkv")
            dest = write_media_file(p, "dest.mkv", size=10)

            with pytest.raises(FileExistsError):
                copy_file(source, dest)
            assert dest.stat().st_size == 10

    def test_failed_verification_removes_partial_copy(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            p = Path(tmpdir)
            source = write_media_file(p, "source.mkv")
            dest = p / "dest.mkv"

            with patch('mediasorter.fs.shutil.copystat', side_effect=OSError(errno.EIO, 'I/O error')):
                with pytest.raises(OSError):
                    copy_file(source, dest)

            assert not dest.exists()
            assert source.exists()

    def test_cancelled_copy(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            p = Path(tmpdir)
            source = write_media_file(p, "source.mkv")
            dest = p / "dest.mkv"
            cancel = threading.Event()
            cancel.set()

            with pytest.raises(OperationCancelled):
                copy_file(source, dest, cancel_event=cancel)

            assert not dest.exists()
            assert source.exists()


@pytest.fixture
def library_setup():
    """Downloads with one classified file, an empty library and a manifest"""
    with tempfile.TemporaryDirectory() as tmpdir:
        p = Path(tmpdir)
        downloads = p / "downloads"
        library = p / "library"
        library.mkdir()
        write_media_file(downloads, DEFAULT_FILENAME)
        write_media_file(downloads, "Zorblax.Quintessa.S01E01.mkv")

        state_path = p / "state.json"
        repository = JsonRepository(state_path)
        categories = CategoryService()
        pipeline = ClassificationPipeline(repository, Classifier(categories=categories))
        register_files(repository, discover_files(downloads), downloads, max_retries=3)
        results = pipeline.process_pending()

        manifest = p / "sorting_manifest.csv"
        write_manifest(build_manifest_rows(repository, categories, results), manifest)

        yield {
            'root': p,
            'downloads': downloads,
            'library': library,
            'state': state_path,
            'manifest': manifest,
            'config': config_from_dict({'files': {'min_free_space_mb': 0}}),
        }


class TestProcessManifest:
    """Dry run, execution and rollback of a whole run"""

    def test_manifest_rows(self, library_setup):
        with open(library_setup['manifest'], encoding='utf-8') as f:
            rows = {Path(r['filename']).name: r for r in csv.DictReader(f)}

        assert rows[DEFAULT_FILENAME]['category'] == 'BREAKING BAD'
        assert rows[DEFAULT_FILENAME]['reliable'] == 'yes'
        assert rows["Zorblax.Quintessa.S01E01.mkv"]['reliable'] == 'no'

    def test_dry_run_does_not_move(self, library_setup):
        """Dry run should not move any files"""
        s = library_setup
        stats = process_manifest(s['manifest'], s['library'], s['config'], s['state'], dry_run=True)

        assert stats['moved'] == 1
        assert stats['skipped_unreliable'] == 1
        assert (s['downloads'] / DEFAULT_FILENAME).exists()
        assert list(s['library'].iterdir()) == []

    def test_execute_moves_and_logs(self, library_setup):
        s = library_setup
        move_log = s['root'] / "move_log.csv"

        stats = process_manifest(s['manifest'], s['library'], s['config'], s['state'],
                                 dry_run=False, move_log=move_log)

        target = s['library'] / "BREAKING BAD" / DEFAULT_FILENAME
        assert stats['moved'] == 1
        assert stats['errors'] == 0
        assert target.exists()
        assert not (s['downloads'] / DEFAULT_FILENAME).exists()

        rows = read_move_log(move_log)
        assert len(rows) == 1
        assert rows[0]['target'] == str(target)

        record = JsonRepository(s['state']).get_by_hash(rows[0]['hash'])
        assert record.status == FileStatus.MOVED

    def test_second_run_skips_moved(self, library_setup):
        s = library_setup
        process_manifest(s['manifest'], s['library'], s['config'], s['state'], dry_run=False)
        stats = process_manifest(s['manifest'], s['library'], s['config'], s['state'], dry_run=False)

        assert stats['moved'] == 0
        assert stats['skipped_exists'] == 1

    def test_rollback_run(self, library_setup):
        s = library_setup
        move_log = s['root'] / "move_log.csv"
        process_manifest(s['manifest'], s['library'], s['config'], s['state'],
                         dry_run=False, move_log=move_log)
        point_ids = [row['rollback_point_id'] for row in read_move_log(move_log)]

        service = RollbackService(JsonRepository(s['state']))
        dry = rollback_points(service, point_ids, dry_run=True)
        assert dry['rolled_back'] == 1
        assert not (s['downloads'] / DEFAULT_FILENAME).exists()

        stats = rollback_points(service, point_ids, dry_run=False)

        assert stats['rolled_back'] == 1
        assert (s['downloads'] / DEFAULT_FILENAME).exists()
        assert list(s['library'].iterdir()) == []

        again = rollback_points(service, point_ids, dry_run=False)
        assert again['not_possible'] == 1
