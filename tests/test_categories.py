#!/usr/bin/env python3
"""
Test suite for mediasorter/categories.py: name normalization, validation,
registry operations, thresholds and feedback
"""

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from mediasorter.categories import (
    CategoryService, CategoryDefinition, CategoryFeedback, normalize_category_name,
)
from mediasorter.errors import ErrorKind


@pytest.fixture
def service():
    return CategoryService()


class TestNormalization:
    """Canonical category names"""

    @pytest.mark.parametrize("raw,expected", [
        ("the.office_tv", "OFFICE"),
        ("  Breaking   Bad ", "BREAKING BAD"),
        ("A Team", "TEAM"),
        ("Lost Series", "LOST"),
        ("one-piece", "ONE PIECE"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_category_name(raw) == expected

    def test_normalize_is_idempotent(self):
        once = normalize_category_name("the.walking_dead")
        assert normalize_category_name(once) == once

    def test_empty_name_is_rejected(self, service):
        result = service.normalize_category("   ")
        assert result.is_err
        assert result.kind == ErrorKind.VALIDATION


class TestValidation:
    """Length, character set and reserved words"""

    def test_valid_name(self, service):
        validation = service.validate_category("Doctor Who")
        assert validation.is_valid
        assert validation.normalized_name == "DOCTOR WHO"

    def test_too_short(self, service):
        assert not service.validate_category("x").is_valid

    def test_too_long(self, service):
        validation = service.validate_category("A" * 101)
        assert not validation.is_valid
        assert validation.suggestions

    def test_invalid_characters(self, service):
        validation = service.validate_category("What?")
        assert not validation.is_valid
        assert any("invalid characters" in issue for issue in validation.issues)

    @pytest.mark.parametrize("name", ["unknown", "Temp", "TEST"])
    def test_reserved_names(self, service, name):
        validation = service.validate_category(name)
        assert not validation.is_valid
        assert any("reserved" in issue for issue in validation.issues)

    def test_near_duplicate_gets_suggestion(self, service):
        validation = service.validate_category("Breaking Baad")
        assert "Did you mean 'BREAKING BAD'?" in validation.suggestions


class TestRegistry:
    """Register, look up, update and merge"""

    def test_seeded_catalogue(self, service):
        names = [c.name for c in service.get_categories()]
        assert "BREAKING BAD" in names
        assert "IL TRONO DI SPADE" in names

    def test_alias_lookup(self, service):
        assert service.get_category("game of thrones").name == "IL TRONO DI SPADE"
        assert service.get_category("The Office").name == "OFFICE"

    def test_register_duplicate(self, service):
        result = service.register_category(CategoryDefinition("breaking bad", 0.8))
        assert result.is_err
        assert result.kind == ErrorKind.ALREADY_EXISTS

    def test_register_rejects_bad_threshold(self, service):
        result = service.register_category(CategoryDefinition("Doctor Who", 1.5))
        assert result.kind == ErrorKind.VALIDATION

    def test_register_normalizes(self, service):
        registered = service.register_category(
            CategoryDefinition("doctor.who", 0.8, aliases=("DW",))).unwrap()
        assert registered.name == "DOCTOR WHO"
        assert registered.display_name == "doctor.who"
        assert service.get_category("dw").name == "DOCTOR WHO"

    def test_update_threshold_and_aliases(self, service):
        updated = service.update_category("ONE PIECE", threshold=0.7, add_aliases=("OP",)).unwrap()
        assert updated.confidence_threshold == 0.7
        assert service.get_category("op").name == "ONE PIECE"

    def test_update_unknown(self, service):
        assert service.update_category("NOPE").kind == ErrorKind.NOT_FOUND

    def test_merge_moves_counts_and_aliases(self, service):
        service.register_category(CategoryDefinition("Trono", 0.8, aliases=("IL TRONO",)))
        service.increment_file_count("TRONO")
        service.increment_file_count("TRONO")

        merged = service.merge_categories("Trono", "Il Trono di Spade").unwrap()

        assert merged.files_transferred == 2
        assert merged.aliases_transferred == 1
        target = service.get_category("IL TRONO DI SPADE")
        assert target.file_count == 2
        assert service.get_category("il trono").name == "IL TRONO DI SPADE"
        assert service.get_category("trono").name == "IL TRONO DI SPADE"
        assert "TRONO" not in [c.name for c in service.get_categories()]

    def test_merge_into_itself(self, service):
        assert service.merge_categories("Office", "the office").kind == ErrorKind.VALIDATION

    def test_merge_missing_source(self, service):
        assert service.merge_categories("Nope", "Office").kind == ErrorKind.NOT_FOUND


class TestThresholds:
    """Per-category reliability"""

    def test_category_threshold(self, service):
        assert service.get_threshold("BREAKING BAD") == 0.90
        assert service.is_reliable("BREAKING BAD", 0.90)
        assert not service.is_reliable("BREAKING BAD", 0.89)

    def test_unknown_category_uses_default(self):
        service = CategoryService(default_threshold=0.6)
        assert service.get_threshold("DOCTOR WHO") == 0.6


class TestSuggestions:
    """Ranking registered categories against filenames"""

    def test_keyword_and_similarity(self, service):
        suggestions = service.suggest_categories("Il.Trono.di.Spade.S01E01.ITA.720p-NovaRip.mkv")
        assert suggestions
        assert suggestions[0].category == "IL TRONO DI SPADE"

    def test_each_category_once(self, service):
        suggestions = service.suggest_categories("Breaking.Bad.S01E01.720p.HDTV.x264-NovaRip.mkv")
        names = [s.category for s in suggestions]
        assert len(names) == len(set(names))

    def test_limit(self, service):
        assert len(service.suggest_categories("One.Piece.Hero.Office.Bad.mkv", limit=2)) <= 2

    def test_empty_filename(self, service):
        assert service.suggest_categories("") == []


class TestFeedback:
    """Accuracy statistics from user confirmations"""

    def test_statistics(self, service):
        service.record_feedback(CategoryFeedback("a.mkv", "BREAKING BAD", "Breaking Bad", 0.8))
        service.record_feedback(CategoryFeedback("b.mkv", "OFFICE", "BREAKING BAD", 0.4))

        stats = service.get_statistics()

        assert stats['total_feedback'] == 2
        assert stats['overall_accuracy'] == pytest.approx(0.5)
        breaking = stats['categories']['BREAKING BAD']
        assert breaking['feedback_count'] == 2
        assert breaking['user_corrections'] == 1
        assert breaking['file_count'] == 2
        assert breaking['average_confidence'] == pytest.approx(0.6)

    def test_feedback_is_bounded(self):
        service = CategoryService(feedback_limit=2)
        for name in ("a.mkv", "b.mkv", "c.mkv"):
            service.record_feedback(CategoryFeedback(name, "OFFICE", "OFFICE", 0.9))

        assert service.get_statistics()["total_feedback"] == 2

    def test_no_feedback_is_fully_accurate(self, service):
        stats = service.get_statistics()
        assert stats['overall_accuracy'] == 1.0
        assert stats['categories']['OFFICE']['average_confidence'] is None
