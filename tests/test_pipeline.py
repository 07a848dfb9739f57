#!/usr/bin/env python3
"""
Test suite for mediasorter/pipeline.py: classification lifecycle,
failure recording and category confirmation
"""

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from builders import DEFAULT_FILENAME, build_record, build_classified_record
from mediasorter.categories import CategoryService
from mediasorter.classifier import Classifier
from mediasorter.errors import ErrorKind
from mediasorter.pipeline import ClassificationPipeline, target_path_for
from mediasorter.records import FileStatus
from mediasorter.repository import InMemoryRepository


class BrokenModel:
    version = 'broken'

    def predict(self, vector):
        raise RuntimeError("model weights missing")


class BadConfidenceModel:
    version = 'bad'

    def predict(self, vector):
        return 'OFFICE', 1.7


@pytest.fixture
def categories():
    return CategoryService()


def make_pipeline(categories, model=None):
    repository = InMemoryRepository()
    return ClassificationPipeline(repository, Classifier(categories=categories, model=model))


class TestProcess:
    """NEW -> PROCESSING -> CLASSIFIED, or a recorded failure"""

    def test_classifies_new_record(self, categories):
        pipeline = make_pipeline(categories)
        record = build_record()
        pipeline.repository.add(record)

        result = pipeline.process(record).unwrap()

        stored = pipeline.repository.get_by_hash(record.file_hash)
        assert stored.status == FileStatus.CLASSIFIED
        assert stored.suggested_category == result.predicted_category == 'BREAKING BAD'
        assert stored.confidence == result.confidence

    def test_refuses_wrong_state(self, categories):
        pipeline = make_pipeline(categories)
        record = build_classified_record()
        pipeline.repository.add(record)
        assert pipeline.process(record).kind == ErrorKind.VALIDATION

    def test_model_failure_is_not_retried(self, categories):
        pipeline = make_pipeline(categories, BrokenModel())
        record = build_record()
        pipeline.repository.add(record)

        result = pipeline.process(record)

        assert result.kind == ErrorKind.CLASSIFICATION
        stored = pipeline.repository.get_by_hash(record.file_hash)
        assert stored.status == FileStatus.ERROR
        assert 'model weights missing' in stored.last_error

    def test_invalid_confidence_is_recorded(self, categories):
        pipeline = make_pipeline(categories, BadConfidenceModel())
        record = build_record()
        pipeline.repository.add(record)

        assert pipeline.process(record).kind == ErrorKind.CLASSIFICATION
        assert record.status == FileStatus.ERROR
        assert record.retry_count == 1

    def test_process_pending(self, categories):
        pipeline = make_pipeline(categories)
        new = build_record('Office.S02E03.720p.mkv')
        done = build_classified_record(filename='One.Piece.1089.mkv')
        pipeline.repository.add(new)
        pipeline.repository.add(done)

        results = pipeline.process_pending()

        assert list(results) == [new.file_hash]
        assert results[new.file_hash].is_ok
        assert done.status == FileStatus.CLASSIFIED


class TestConfirm:
    """Accepting a category fixes the target path"""

    def test_target_path(self):
        path = target_path_for(Path('/library'), 'OFFICE', 'downloads/Office.S01E01.mkv')
        assert path == Path('/library/OFFICE/Office.S01E01.mkv')

    def test_confirm_suggestion(self, categories):
        pipeline = make_pipeline(categories)
        record = build_classified_record()
        pipeline.repository.add(record)

        target = pipeline.confirm(record.file_hash, 'breaking.bad', Path('/library')).unwrap()

        assert target == Path('/library/BREAKING BAD') / DEFAULT_FILENAME
        assert record.status == FileStatus.READY_TO_MOVE
        assert record.category == 'BREAKING BAD'
        assert categories.get_statistics()['total_feedback'] == 1

    def test_alias_resolves_to_canonical(self, categories):
        pipeline = make_pipeline(categories)
        record = build_classified_record(category='OFFICE')
        pipeline.repository.add(record)

        pipeline.confirm(record.file_hash, 'Game of Thrones', Path('/library')).unwrap()

        assert record.category == 'IL TRONO DI SPADE'
        stats = categories.get_statistics()
        assert stats['categories']['IL TRONO DI SPADE']['user_corrections'] == 1

    def test_invalid_category(self, categories):
        pipeline = make_pipeline(categories)
        record = build_classified_record()
        pipeline.repository.add(record)

        result = pipeline.confirm(record.file_hash, 'unknown', Path('/library'))

        assert result.kind == ErrorKind.VALIDATION
        assert record.status == FileStatus.CLASSIFIED

    def test_confirm_requires_classified(self, categories):
        pipeline = make_pipeline(categories)
        record = build_record()
        pipeline.repository.add(record)
        assert pipeline.confirm(record.file_hash, 'OFFICE', Path('/library')).kind == ErrorKind.VALIDATION

    def test_unknown_hash(self, categories):
        result = make_pipeline(categories).confirm('missing', 'OFFICE', Path('/library'))
        assert result.kind == ErrorKind.NOT_FOUND
