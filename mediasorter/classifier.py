#!/usr/bin/env python3
"""
Category prediction from feature vectors

The model is an external, opaque predict(FeatureVector) -> (category,
confidence) function. Classifier wraps it with confidence validation,
decision thresholds and a bounded worker pool for batches. KeywordModel
is the built-in model used when no trained artifact is supplied.
"""

import math
import time
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Protocol, Sequence, Tuple

from fuzzywuzzy import fuzz

from mediasorter.categories import CategoryService
from mediasorter.config import ClassificationConfig
from mediasorter.constants import UNKNOWN_CATEGORY
from mediasorter.errors import ErrorKind
from mediasorter.feature_models import FeatureVector
from mediasorter.features import FeatureEngineering
from mediasorter.result import Ok, Err, Result
from mediasorter.tokenizer import FilenameTokenizer

logger = logging.getLogger(__name__)

# Tolerance for float noise just outside [0, 1]
CONFIDENCE_EPSILON = 1e-6
MIN_KEYWORD_MODEL_SCORE = 0.6
KEYWORD_BONUS = 0.05


class ClassificationDecision(Enum):
    AUTO_CLASSIFY = 'auto_classify'
    SUGGEST_WITH_ALTERNATIVES = 'suggest_with_alternatives'
    REQUEST_MANUAL = 'request_manual'
    UNRELIABLE = 'unreliable'
    FAILED = 'failed'


@dataclass(frozen=True)
class CategoryPrediction:
    category: str
    confidence: float


@dataclass(frozen=True)
class ClassificationResult:
    filename: str
    predicted_category: str
    confidence: float
    decision: ClassificationDecision
    alternatives: Tuple[CategoryPrediction, ...] = ()
    model_version: str = ''
    classified_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    processing_time_ms: float = 0.0
    error: Optional[str] = None

    @property
    def requires_review(self) -> bool:
        return self.decision != ClassificationDecision.AUTO_CLASSIFY


class PredictionModel(Protocol):
    """What the classifier needs from a trained model"""
    version: str

    def predict(self, vector: FeatureVector) -> Tuple[str, float]:
        ...


class KeywordModel:
    """
    Score registered categories against the series tokens

    Fuzzy token-set similarity against the category name and its aliases,
    plus a small bonus per matched keyword.
    """

    version = 'keyword-1.0'

    def __init__(self, categories: CategoryService):
        self.categories = categories

    def predict(self, vector: FeatureVector) -> Tuple[str, float]:
        ranked = self.predict_alternatives(vector, limit=1)
        if not ranked:
            return UNKNOWN_CATEGORY, 0.0
        return ranked[0]

    def predict_alternatives(self, vector: FeatureVector, limit: int = 3) -> List[Tuple[str, float]]:
        text = ' '.join(vector.series_tokens).upper()
        if not text:
            return []

        scores = []
        for category in self.categories.get_categories(active_only=True):
            names = (category.name,) + tuple(category.aliases)
            similarity = max(fuzz.token_set_ratio(text, name) for name in names) / 100.0
            hits = sum(1 for keyword in category.keywords if keyword.upper() in text)
            score = min(similarity + KEYWORD_BONUS * hits, 1.0)
            if score >= MIN_KEYWORD_MODEL_SCORE:
                scores.append((category.name, round(score, 4)))

        scores.sort(key=lambda s: (-s[1], s[0]))
        return scores[:limit]


def validate_confidence(value) -> Result[float]:
    """Accept a finite number in [0, 1]; values within float noise are clamped"""
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return Err(ErrorKind.CLASSIFICATION, f"Confidence is not a number: {value!r}")
    if not math.isfinite(confidence):
        return Err(ErrorKind.CLASSIFICATION, f"Confidence is not finite: {confidence}")
    if confidence < -CONFIDENCE_EPSILON or confidence > 1.0 + CONFIDENCE_EPSILON:
        return Err(ErrorKind.CLASSIFICATION, f"Confidence out of range [0, 1]: {confidence}")
    return Ok(min(max(confidence, 0.0), 1.0))


class Classifier:
    """Tokenize, extract features and predict a category for filenames"""

    def __init__(self, categories: Optional[CategoryService] = None,
                 model: Optional[PredictionModel] = None,
                 config: Optional[ClassificationConfig] = None,
                 tokenizer: Optional[FilenameTokenizer] = None,
                 features: Optional[FeatureEngineering] = None):
        self.config = config or ClassificationConfig()
        self.categories = categories or CategoryService(default_threshold=self.config.suggest_threshold)
        self.model = model or KeywordModel(self.categories)
        self.tokenizer = tokenizer or FilenameTokenizer()
        self.features = features or FeatureEngineering()

    def decide(self, category: str, confidence: float) -> ClassificationDecision:
        """
        Map a confidence to a decision

        An auto-classification is downgraded to a suggestion when the
        category's own threshold is stricter than the global one.
        """
        if confidence >= self.config.auto_threshold:
            if category != UNKNOWN_CATEGORY and self.categories.is_reliable(category, confidence):
                return ClassificationDecision.AUTO_CLASSIFY
            return ClassificationDecision.SUGGEST_WITH_ALTERNATIVES
        if confidence >= self.config.suggest_threshold:
            return ClassificationDecision.SUGGEST_WITH_ALTERNATIVES
        if confidence >= self.config.manual_threshold:
            return ClassificationDecision.REQUEST_MANUAL
        return ClassificationDecision.UNRELIABLE

    def classify(self, filename: str) -> Result[ClassificationResult]:
        started = time.monotonic()

        tokenized = self.tokenizer.tokenize(filename)
        if tokenized.is_err:
            return tokenized

        vector = self.features.extract_features(tokenized.value)
        if vector.is_err:
            return vector

        return self.classify_vector(vector.value, started)

    def classify_vector(self, vector: FeatureVector, started: Optional[float] = None) -> Result[ClassificationResult]:
        """Run the model on an already extracted feature vector"""
        started = time.monotonic() if started is None else started
        filename = vector.original_filename

        try:
            raw_category, raw_confidence = self.model.predict(vector)
        except Exception as e:
            logger.error(f"Model failed on {filename}: {e}")
            return Err(ErrorKind.CLASSIFICATION, f"Prediction failed for {filename}: {e}", cause=e)

        confidence = validate_confidence(raw_confidence)
        if confidence.is_err:
            logger.error(f"Rejected prediction for {filename}: {confidence.message}")
            return confidence

        category = self.categories.normalize_category(raw_category or '').unwrap_or(UNKNOWN_CATEGORY)
        alternatives = self._alternatives(vector, category)

        elapsed_ms = (time.monotonic() - started) * 1000
        if elapsed_ms > self.config.max_prediction_ms:
            logger.warning(f"Slow prediction for {filename}: {elapsed_ms:.0f} ms "
                           f"(limit {self.config.max_prediction_ms} ms)")

        result = ClassificationResult(
            filename=filename,
            predicted_category=category,
            confidence=confidence.value,
            decision=self.decide(category, confidence.value),
            alternatives=alternatives,
            model_version=getattr(self.model, 'version', 'unknown'),
            processing_time_ms=elapsed_ms,
        )
        logger.debug(f"{filename} -> {category} ({confidence.value:.2f}, {result.decision.value})")
        return Ok(result)

    def _alternatives(self, vector: FeatureVector, predicted: str) -> Tuple[CategoryPrediction, ...]:
        predict_alternatives = getattr(self.model, 'predict_alternatives', None)
        if predict_alternatives is None:
            return ()

        try:
            ranked = predict_alternatives(vector, self.config.max_alternatives + 1)
        except Exception as e:
            logger.warning(f"Could not get alternatives for {vector.original_filename}: {e}")
            return ()

        alternatives = []
        for category, confidence in ranked:
            checked = validate_confidence(confidence)
            if checked.is_err or category == predicted:
                continue
            alternatives.append(CategoryPrediction(category, checked.value))
        return tuple(alternatives[:self.config.max_alternatives])

    def classify_batch(self, filenames: Sequence[str]) -> Result[List[ClassificationResult]]:
        """
        Classify many filenames on a bounded worker pool

        Results come back in input order. A failed item becomes an UNKNOWN
        result with decision FAILED; it does not stop the batch.
        """
        filenames = list(filenames)
        if len(filenames) > self.config.max_batch_size:
            return Err(ErrorKind.INVALID_ARGUMENT,
                       f"Batch of {len(filenames)} exceeds limit of {self.config.max_batch_size}")
        if not filenames:
            return Ok([])

        workers = max(1, min(self.config.max_workers, len(filenames)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(self._classify_or_fail, filenames))

        failed = sum(1 for r in results if r.decision == ClassificationDecision.FAILED)
        logger.info(f"Classified batch of {len(results)} ({failed} failed)")
        return Ok(results)

    def _classify_or_fail(self, filename: str) -> ClassificationResult:
        result = self.classify(filename)
        if result.is_ok:
            return result.value
        return ClassificationResult(
            filename=filename,
            predicted_category=UNKNOWN_CATEGORY,
            confidence=0.0,
            decision=ClassificationDecision.FAILED,
            model_version=getattr(self.model, 'version', 'unknown'),
            error=result.message,
        )
