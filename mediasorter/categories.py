#!/usr/bin/env python3
"""
Category registry: name normalization, validation and per-category
confidence thresholds

Category names are stored in normalized form (upper case, single spaces,
no leading article, no trailing TV/SERIES/SHOW). Aliases resolve to a
canonical name. A prediction whose confidence falls below the category's
threshold is a suggestion, not a confirmed category.
"""

import re
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Tuple

from fuzzywuzzy import fuzz

from mediasorter.constants import DEFAULT_CATEGORIES, RESERVED_CATEGORY_NAMES, ITALIAN_RELEASE_GROUPS
from mediasorter.errors import ErrorKind
from mediasorter.result import Ok, Err, Result
from mediasorter.tokenizer import FilenameTokenizer

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 100
VALID_NAME_PATTERN = re.compile(r"^[A-Z0-9\s\-&'!]+$")

# Fuzzy ratio (0-100) above which a registered name is offered as a suggestion
SIMILAR_NAME_RATIO = 80
MAX_FEEDBACK = 10000


def normalize_category_name(name: str) -> str:
    """
    Canonical form used for every registry lookup

    "the.office_tv" -> "OFFICE", "  Breaking   Bad " -> "BREAKING BAD"
    """
    normalized = name.strip().upper()
    normalized = re.sub(r'[._\-]+', ' ', normalized)
    normalized = re.sub(r'\s+', ' ', normalized).strip()
    normalized = re.sub(r'^(THE|A)\s+', '', normalized)
    normalized = re.sub(r'\s+(TV|SERIES|SHOW)$', '', normalized)
    return normalized


@dataclass(frozen=True)
class CategoryDefinition:
    name: str
    confidence_threshold: float
    display_name: Optional[str] = None
    aliases: Tuple[str, ...] = ()
    keywords: Tuple[str, ...] = ()
    is_active: bool = True
    file_count: int = 0
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class CategoryValidationResult:
    is_valid: bool
    normalized_name: str
    issues: Tuple[str, ...] = ()
    suggestions: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CategorySuggestion:
    category: str
    confidence: float
    source: str                      # pattern, keyword or similarity
    reasons: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CategoryFeedback:
    filename: str
    predicted_category: str
    actual_category: str
    confidence: float

    @property
    def was_correct(self) -> bool:
        return normalize_category_name(self.predicted_category) == normalize_category_name(self.actual_category)


@dataclass(frozen=True)
class MergeResult:
    source: str
    target: str
    files_transferred: int
    aliases_transferred: int


class CategoryService:
    """Thread-safe category registry with alias resolution"""

    def __init__(self, default_threshold: float = 0.50, seed_defaults: bool = True,
                 tokenizer: Optional[FilenameTokenizer] = None, feedback_limit: int = MAX_FEEDBACK):
        self.default_threshold = default_threshold
        self.tokenizer = tokenizer or FilenameTokenizer()
        self._categories: Dict[str, CategoryDefinition] = {}
        self._aliases: Dict[str, str] = {}
        # Oldest feedback is dropped once the limit is reached
        self._feedback: Deque[CategoryFeedback] = deque(maxlen=feedback_limit)
        self._lock = threading.RLock()

        if seed_defaults:
            for name, (threshold, aliases, keywords) in DEFAULT_CATEGORIES.items():
                self.register_category(CategoryDefinition(
                    name=name, confidence_threshold=threshold,
                    aliases=aliases, keywords=keywords,
                ))

    # Normalization and validation

    def normalize_category(self, name: str) -> Result[str]:
        if not name or not name.strip():
            return Err(ErrorKind.VALIDATION, 'Category name cannot be empty')
        return Ok(normalize_category_name(name))

    def validate_category(self, name: str) -> CategoryValidationResult:
        """Check length, characters and reserved words; offer similar names"""
        if not name or not name.strip():
            return CategoryValidationResult(False, '', ('Category name cannot be empty',))

        normalized = normalize_category_name(name)
        issues = []
        suggestions = []

        if len(normalized) < MIN_NAME_LENGTH:
            issues.append(f"Category name must be at least {MIN_NAME_LENGTH} characters long")
        elif len(normalized) > MAX_NAME_LENGTH:
            issues.append(f"Category name must be no more than {MAX_NAME_LENGTH} characters long")
            suggestions.append('Consider using an abbreviation or a shorter form')

        if not VALID_NAME_PATTERN.match(normalized):
            issues.append('Category name contains invalid characters')
            suggestions.append('Use only letters, numbers, spaces, hyphens, ampersands, '
                               'apostrophes and exclamation marks')

        if normalized in RESERVED_CATEGORY_NAMES:
            issues.append(f"'{normalized}' is a reserved category name")
            suggestions.append('Choose a more specific category name')

        # Near-duplicates of existing categories
        with self._lock:
            existing = [c.name for c in self._categories.values() if c.is_active]
        for candidate in existing:
            if candidate != normalized and fuzz.ratio(candidate, normalized) >= SIMILAR_NAME_RATIO:
                suggestions.append(f"Did you mean '{candidate}'?")

        return CategoryValidationResult(
            is_valid=not issues,
            normalized_name=normalized,
            issues=tuple(issues),
            suggestions=tuple(suggestions),
        )

    # Registry

    def _resolve(self, name: str) -> Optional[str]:
        normalized = normalize_category_name(name)
        category = self._categories.get(normalized)
        if category is not None and category.is_active:
            return normalized
        # Merged categories are inactive and alias to their target
        return self._aliases.get(normalized, normalized if category else None)

    def get_category(self, name: str) -> Optional[CategoryDefinition]:
        """Look up by canonical name or alias"""
        if not name or not name.strip():
            return None
        with self._lock:
            canonical = self._resolve(name)
            return self._categories.get(canonical) if canonical else None

    def get_categories(self, active_only: bool = True) -> List[CategoryDefinition]:
        with self._lock:
            categories = list(self._categories.values())
        if active_only:
            categories = [c for c in categories if c.is_active]
        return sorted(categories, key=lambda c: c.name)

    def register_category(self, category: CategoryDefinition) -> Result[CategoryDefinition]:
        validation = self.validate_category(category.name)
        if not validation.is_valid:
            return Err(ErrorKind.VALIDATION, f"Invalid category name: {'; '.join(validation.issues)}")
        if not 0.0 <= category.confidence_threshold <= 1.0:
            return Err(ErrorKind.VALIDATION, 'Confidence threshold must be between 0.0 and 1.0')

        normalized = validation.normalized_name
        with self._lock:
            if normalized in self._categories:
                return Err(ErrorKind.ALREADY_EXISTS, f"Category '{normalized}' already exists")

            registered = replace(
                category,
                name=normalized,
                display_name=category.display_name or category.name,
                last_updated=datetime.now(timezone.utc),
            )
            self._categories[normalized] = registered
            for alias in category.aliases:
                alias_key = normalize_category_name(alias)
                if alias_key != normalized:
                    self._aliases.setdefault(alias_key, normalized)

        logger.info(f"Registered category '{normalized}' with {len(category.aliases)} aliases")
        return Ok(registered)

    def update_category(self, name: str, *, threshold: Optional[float] = None,
                        display_name: Optional[str] = None,
                        add_aliases: Iterable[str] = (), remove_aliases: Iterable[str] = (),
                        add_keywords: Iterable[str] = (), remove_keywords: Iterable[str] = (),
                        is_active: Optional[bool] = None) -> Result[CategoryDefinition]:
        if threshold is not None and not 0.0 <= threshold <= 1.0:
            return Err(ErrorKind.VALIDATION, 'Confidence threshold must be between 0.0 and 1.0')

        with self._lock:
            canonical = self._resolve(name) if name else None
            if canonical is None:
                return Err(ErrorKind.NOT_FOUND, f"Category '{name}' not found")

            existing = self._categories[canonical]
            removed_aliases = {a.upper() for a in remove_aliases}
            removed_keywords = {k.lower() for k in remove_keywords}

            aliases = [a for a in existing.aliases if a.upper() not in removed_aliases]
            aliases.extend(a for a in add_aliases if a not in aliases)
            keywords = [k for k in existing.keywords if k.lower() not in removed_keywords]
            keywords.extend(k for k in add_keywords if k not in keywords)

            updated = replace(
                existing,
                confidence_threshold=existing.confidence_threshold if threshold is None else threshold,
                display_name=display_name or existing.display_name,
                aliases=tuple(aliases),
                keywords=tuple(keywords),
                is_active=existing.is_active if is_active is None else is_active,
                last_updated=datetime.now(timezone.utc),
            )
            self._categories[canonical] = updated

            for alias in add_aliases:
                self._aliases.setdefault(normalize_category_name(alias), canonical)
            for alias in remove_aliases:
                alias_key = normalize_category_name(alias)
                if self._aliases.get(alias_key) == canonical:
                    del self._aliases[alias_key]

        logger.info(f"Updated category '{canonical}'")
        return Ok(updated)

    def merge_categories(self, source: str, target: str) -> Result[MergeResult]:
        """Fold source into target: aliases and file counts move, source is deactivated"""
        if not source or not target:
            return Err(ErrorKind.VALIDATION, 'Source and target categories cannot be empty')

        source_key = normalize_category_name(source)
        target_key = normalize_category_name(target)
        if source_key == target_key:
            return Err(ErrorKind.VALIDATION, 'Source and target categories cannot be the same')

        with self._lock:
            if source_key not in self._categories:
                return Err(ErrorKind.NOT_FOUND, f"Source category '{source}' not found")
            if target_key not in self._categories:
                return Err(ErrorKind.NOT_FOUND, f"Target category '{target}' not found")

            source_def = self._categories[source_key]
            target_def = self._categories[target_key]
            now = datetime.now(timezone.utc)

            moved_aliases = [a for a, canonical in self._aliases.items() if canonical == source_key]
            for alias in moved_aliases:
                self._aliases[alias] = target_key
            # The old name keeps resolving, to the new home
            self._aliases[source_key] = target_key

            self._categories[source_key] = replace(source_def, is_active=False, last_updated=now)
            self._categories[target_key] = replace(
                target_def,
                file_count=target_def.file_count + source_def.file_count,
                aliases=target_def.aliases + tuple(a for a in source_def.aliases if a not in target_def.aliases),
                last_updated=now,
            )

        logger.info(f"Merged category '{source_key}' into '{target_key}': "
                    f"{source_def.file_count} files, {len(moved_aliases)} aliases")
        return Ok(MergeResult(source_key, target_key, source_def.file_count, len(moved_aliases)))

    # Thresholds

    def get_threshold(self, name: str) -> float:
        """Per-category threshold; unknown categories use the default"""
        category = self.get_category(name)
        if category is None:
            return self.default_threshold
        return category.confidence_threshold

    def is_reliable(self, name: str, confidence: float) -> bool:
        """True when confidence clears the category's own threshold"""
        return confidence >= self.get_threshold(name)

    def increment_file_count(self, name: str) -> None:
        with self._lock:
            canonical = self._resolve(name)
            if canonical:
                existing = self._categories[canonical]
                self._categories[canonical] = replace(existing, file_count=existing.file_count + 1)

    # Suggestions

    def suggest_categories(self, filename: str, limit: int = 5) -> List[CategorySuggestion]:
        """
        Rank registered categories against a filename

        Combines pattern overlap with the category name, keyword hits and
        fuzzy token similarity. Each category appears once, with its best
        score.
        """
        if not filename or not filename.strip():
            return []
        limit = limit if limit > 0 else 5

        tokenized = self.tokenizer.tokenize(filename)
        if tokenized.is_err:
            logger.warning(f"Could not tokenize {filename} for suggestions: {tokenized.message}")
            return []

        series_tokens = [t.upper() for t in tokenized.value.series_tokens]
        if not series_tokens:
            return []
        series_text = ' '.join(series_tokens)
        italian_group = bool(tokenized.value.release_group in ITALIAN_RELEASE_GROUPS)

        candidates: List[CategorySuggestion] = []
        for category in self.get_categories(active_only=True):
            name_tokens = category.name.split()

            matching = len(set(series_tokens) & set(name_tokens))
            pattern_score = matching / max(len(series_tokens), len(name_tokens))
            if pattern_score > 0.3:
                reasons = ['Series name matches category name']
                if italian_group:
                    pattern_score += 0.1
                    reasons.append('Italian release group detected')
                candidates.append(CategorySuggestion(category.name, min(pattern_score, 1.0), 'pattern', tuple(reasons)))

            hits = [k for k in category.keywords if any(k.upper() in t for t in series_tokens)]
            if hits:
                keyword_score = max(min(len(hits) / len(category.keywords), 1.0), 0.4)
                candidates.append(CategorySuggestion(
                    category.name, keyword_score, 'keyword', (f"Matched keywords: {', '.join(hits)}",)))

            similarity = fuzz.token_set_ratio(series_text, category.name) / 100.0
            if similarity > 0.4:
                candidates.append(CategorySuggestion(category.name, similarity, 'similarity',
                                                     ('Token similarity match',)))

        best: Dict[str, CategorySuggestion] = {}
        for suggestion in candidates:
            current = best.get(suggestion.category)
            if current is None or suggestion.confidence > current.confidence:
                best[suggestion.category] = suggestion

        ranked = sorted(best.values(), key=lambda s: (-s.confidence, s.category))
        logger.debug(f"{len(ranked)} category suggestions for {filename}")
        return ranked[:limit]

    # Feedback and statistics

    def record_feedback(self, feedback: CategoryFeedback) -> None:
        with self._lock:
            self._feedback.append(feedback)
        logger.info(f"Feedback for {feedback.filename}: predicted '{feedback.predicted_category}', "
                    f"actual '{feedback.actual_category}', correct: {feedback.was_correct}")

        if not feedback.was_correct:
            logger.debug(f"Incorrect prediction '{feedback.predicted_category}' "
                         f"at confidence {feedback.confidence:.2f}")
        self.increment_file_count(feedback.actual_category)

    def get_statistics(self) -> Dict:
        """Per-category accuracy from feedback, plus overall totals"""
        with self._lock:
            feedback = list(self._feedback)
        categories = self.get_categories(active_only=True)

        per_category = {}
        correct_total = 0
        for category in categories:
            entries = [f for f in feedback if normalize_category_name(f.actual_category) == category.name]
            correct = sum(1 for f in entries if f.was_correct)
            correct_total += correct
            per_category[category.name] = {
                'file_count': category.file_count,
                'feedback_count': len(entries),
                'accuracy': correct / len(entries) if entries else 1.0,
                'user_corrections': len(entries) - correct,
                'average_confidence': (sum(f.confidence for f in entries) / len(entries)) if entries else None,
            }

        return {
            'total_categories': len(categories),
            'total_feedback': len(feedback),
            'overall_accuracy': correct_total / len(feedback) if feedback else 1.0,
            'categories': per_category,
        }
