#!/usr/bin/env python3
"""
Test suite for mediasorter/classifier.py: confidence validation, decision
thresholds, model failures and batch classification
"""

import math
import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from builders import DEFAULT_FILENAME, build_feature_vector
from mediasorter.categories import CategoryService
from mediasorter.classifier import (
    Classifier, ClassificationDecision, KeywordModel, validate_confidence,
)
from mediasorter.config import ClassificationConfig
from mediasorter.errors import ErrorKind


class FixedModel:
    """Model double returning a fixed prediction"""
    version = 'fixed-1'

    def __init__(self, category='BREAKING BAD', confidence=0.95, alternatives=None):
        self.category = category
        self.confidence = confidence
        self.alternatives = alternatives

    def predict(self, vector):
        return self.category, self.confidence

    def predict_alternatives(self, vector, limit=3):
        return (self.alternatives or [])[:limit]


class BrokenModel:
    version = 'broken'

    def predict(self, vector):
        raise RuntimeError("model weights missing")


@pytest.fixture
def categories():
    return CategoryService()


class TestValidateConfidence:
    """Model output must be a finite number in [0, 1]"""

    @pytest.mark.parametrize("value", [float('nan'), float('inf'), 1.5, -0.1, "high", None])
    def test_rejected(self, value):
        result = validate_confidence(value)
        assert result.is_err
        assert result.kind == ErrorKind.CLASSIFICATION

    @pytest.mark.parametrize("value", [0, 0.0, 0.5, 1, 1.0])
    def test_accepted(self, value):
        assert validate_confidence(value).unwrap() == float(value)

    def test_float_noise_is_clamped(self):
        assert validate_confidence(1.0 + 1e-9).unwrap() == 1.0
        assert validate_confidence(-1e-9).unwrap() == 0.0


class TestDecide:
    """Threshold mapping with per-category downgrade"""

    @pytest.fixture
    def classifier(self, categories):
        return Classifier(categories=categories, model=FixedModel())

    @pytest.mark.parametrize("category,confidence,expected", [
        ('BREAKING BAD', 0.95, ClassificationDecision.AUTO_CLASSIFY),
        ('OFFICE', 0.86, ClassificationDecision.AUTO_CLASSIFY),
        ('BREAKING BAD', 0.87, ClassificationDecision.SUGGEST_WITH_ALTERNATIVES),
        ('UNKNOWN', 0.99, ClassificationDecision.SUGGEST_WITH_ALTERNATIVES),
        ('OFFICE', 0.50, ClassificationDecision.SUGGEST_WITH_ALTERNATIVES),
        ('OFFICE', 0.30, ClassificationDecision.REQUEST_MANUAL),
        ('OFFICE', 0.25, ClassificationDecision.REQUEST_MANUAL),
        ('OFFICE', 0.10, ClassificationDecision.UNRELIABLE),
    ])
    def test_decision(self, classifier, category, confidence, expected):
        assert classifier.decide(category, confidence) == expected

    def test_custom_thresholds(self, categories):
        config = ClassificationConfig(auto_threshold=0.7, suggest_threshold=0.4, manual_threshold=0.2)
        classifier = Classifier(categories=categories, model=FixedModel(), config=config)
        assert classifier.decide('ONE PIECE', 0.45) == ClassificationDecision.SUGGEST_WITH_ALTERNATIVES
        assert classifier.decide('ONE PIECE', 0.21) == ClassificationDecision.REQUEST_MANUAL


class TestClassify:
    """Single filename classification"""

    def test_keyword_model_breaking_bad(self, categories):
        result = Classifier(categories=categories).classify(DEFAULT_FILENAME).unwrap()
        assert result.predicted_category == 'BREAKING BAD'
        assert result.confidence == 1.0
        assert result.decision == ClassificationDecision.AUTO_CLASSIFY
        assert not result.requires_review
        assert result.model_version == KeywordModel.version

    def test_unrelated_name_is_unknown(self, categories):
        result = Classifier(categories=categories).classify('Zorblax.Quintessa.S01E01.mkv').unwrap()
        assert result.predicted_category == 'UNKNOWN'
        assert result.confidence == 0.0
        assert result.decision == ClassificationDecision.UNRELIABLE
        assert result.requires_review

    def test_model_category_is_normalized(self, categories):
        classifier = Classifier(categories=categories, model=FixedModel('the.office_tv', 0.9))
        assert classifier.classify(DEFAULT_FILENAME).unwrap().predicted_category == 'OFFICE'

    def test_empty_model_category_becomes_unknown(self, categories):
        classifier = Classifier(categories=categories, model=FixedModel('', 0.9))
        result = classifier.classify(DEFAULT_FILENAME).unwrap()
        assert result.predicted_category == 'UNKNOWN'
        assert result.decision == ClassificationDecision.SUGGEST_WITH_ALTERNATIVES

    @pytest.mark.parametrize("confidence", [math.nan, 1.5, -0.1])
    def test_invalid_model_confidence(self, categories, confidence):
        classifier = Classifier(categories=categories, model=FixedModel(confidence=confidence))
        result = classifier.classify(DEFAULT_FILENAME)
        assert result.is_err
        assert result.kind == ErrorKind.CLASSIFICATION

    def test_model_exception(self, categories):
        result = Classifier(categories=categories, model=BrokenModel()).classify(DEFAULT_FILENAME)
        assert result.is_err
        assert result.kind == ErrorKind.CLASSIFICATION
        assert isinstance(result.cause, RuntimeError)

    def test_empty_filename(self, categories):
        result = Classifier(categories=categories).classify('')
        assert result.is_err
        assert result.kind == ErrorKind.PARSE

    def test_alternatives_exclude_prediction_and_are_capped(self, categories):
        model = FixedModel('BREAKING BAD', 0.7, alternatives=[
            ('BREAKING BAD', 0.7), ('OFFICE', 0.6), ('ONE PIECE', 0.5), ('MY HERO ACADEMIA', 0.4),
        ])
        config = ClassificationConfig(max_alternatives=2)
        result = Classifier(categories=categories, model=model, config=config).classify(DEFAULT_FILENAME).unwrap()
        assert [a.category for a in result.alternatives] == ['OFFICE', 'ONE PIECE']

    def test_classify_vector(self, categories):
        classifier = Classifier(categories=categories, model=FixedModel())
        result = classifier.classify_vector(build_feature_vector()).unwrap()
        assert result.filename == DEFAULT_FILENAME
        assert result.processing_time_ms >= 0


class TestClassifyBatch:
    """Bounded, order-preserving batch classification"""

    def test_order_and_failures(self, categories):
        names = [DEFAULT_FILENAME, '', 'Zorblax.Quintessa.S01E01.mkv']
        results = Classifier(categories=categories).classify_batch(names).unwrap()

        assert [r.filename for r in results] == names
        assert results[0].predicted_category == 'BREAKING BAD'
        assert results[1].decision == ClassificationDecision.FAILED
        assert results[1].predicted_category == 'UNKNOWN'
        assert results[1].error
        assert results[2].decision == ClassificationDecision.UNRELIABLE

    def test_empty_batch(self, categories):
        assert Classifier(categories=categories).classify_batch([]).unwrap() == []

    def test_oversize_batch(self, categories):
        classifier = Classifier(categories=categories, config=ClassificationConfig(max_batch_size=2))
        result = classifier.classify_batch(['a.mkv', 'b.mkv', 'c.mkv'])
        assert result.is_err
        assert result.kind == ErrorKind.INVALID_ARGUMENT

    def test_model_failure_does_not_stop_batch(self, categories):
        classifier = Classifier(categories=categories, model=BrokenModel())
        results = classifier.classify_batch([DEFAULT_FILENAME, DEFAULT_FILENAME]).unwrap()
        assert all(r.decision == ClassificationDecision.FAILED for r in results)
