#!/usr/bin/env python3
"""
Feature containers produced by FeatureEngineering

All models are frozen. Each exposes FEATURE_NAMES and to_feature_array() so
an external model can consume them as a flat numeric vector.
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass, field


class NGramContext(Enum):
    SERIES_NAME = 'series_name'
    QUALITY = 'quality'
    EPISODE = 'episode'
    LANGUAGE = 'language'
    TECHNICAL = 'technical'


class SourceTier(Enum):
    BLURAY = 'bluray'
    WEB = 'web'
    HDTV = 'hdtv'
    DVD = 'dvd'
    OTHER = 'other'
    UNKNOWN = 'unknown'


class LengthCategory(Enum):
    SHORT = 'short'
    MEDIUM = 'medium'
    LONG = 'long'
    VERY_LONG = 'very_long'


class SeriesMaturity(Enum):
    NEW = 'new'
    DEVELOPING = 'developing'
    MATURE = 'mature'
    ESTABLISHED = 'established'
    LONG_RUNNING = 'long_running'
    VERY_LONG_RUNNING = 'very_long_running'


class GroupReputation(Enum):
    PREMIUM = 'premium'
    GOOD = 'good'
    AVERAGE = 'average'
    UNKNOWN = 'unknown'


class GroupRegion(Enum):
    ITALIAN = 'italian'
    ENGLISH = 'english'
    INTERNATIONAL = 'international'


class GroupSpecialization(Enum):
    TV = 'tv'
    ANIME = 'anime'
    MOVIES = 'movies'
    GENERAL = 'general'


def _flag(value: bool) -> float:
    return 1.0 if value else 0.0


@dataclass(frozen=True)
class TokenFrequencyAnalysis:
    """Occurrence counts and importance weights for series tokens"""
    token_counts: Dict[str, int]
    importance_scores: Dict[str, float]
    most_frequent: Tuple[Tuple[str, int], ...]
    rare_tokens: Tuple[str, ...]
    total_tokens: int
    unique_tokens: int
    diversity_score: float
    average_token_length: float
    alpha_numeric_ratio: float
    language_indicators: Tuple[str, ...] = ()

    FEATURE_NAMES = (
        'token_total', 'token_unique', 'token_diversity', 'token_avg_length',
        'token_alpha_numeric_ratio', 'token_max_importance', 'token_language_count',
    )

    def to_feature_array(self) -> List[float]:
        max_importance = max(self.importance_scores.values(), default=0.0)
        return [
            float(self.total_tokens),
            float(self.unique_tokens),
            self.diversity_score,
            self.average_token_length,
            self.alpha_numeric_ratio,
            max_importance,
            float(len(self.language_indicators)),
        ]


@dataclass(frozen=True)
class NGramFeature:
    """A contiguous token window with its discriminative weight"""
    text: str
    n: int
    tokens: Tuple[str, ...]
    frequency: int
    relative_frequency: float
    discriminative_power: float
    context: NGramContext
    is_cross_boundary: bool = False

    FEATURE_NAMES = ('ngram_n', 'ngram_frequency', 'ngram_relative_frequency',
                     'ngram_power', 'ngram_cross_boundary')

    def to_feature_array(self) -> List[float]:
        return [float(self.n), float(self.frequency), self.relative_frequency,
                self.discriminative_power, _flag(self.is_cross_boundary)]


@dataclass(frozen=True)
class QualityFeatures:
    resolution: Optional[str]
    source: Optional[str]
    codec: Optional[str]
    quality_score: int
    source_tier: SourceTier
    has_hdr: bool = False
    has_multi_audio: bool = False

    FEATURE_NAMES = ('quality_score', 'quality_is_high', 'quality_is_low',
                     'quality_hdr', 'quality_multi_audio')

    @property
    def is_high_quality(self) -> bool:
        return self.quality_score >= 75

    @property
    def is_low_quality(self) -> bool:
        return self.quality_score <= 25

    def to_feature_array(self) -> List[float]:
        return [float(self.quality_score), _flag(self.is_high_quality), _flag(self.is_low_quality),
                _flag(self.has_hdr), _flag(self.has_multi_audio)]


@dataclass(frozen=True)
class PatternMatchingFeatures:
    """Structural signals from the raw filename"""
    has_year: bool
    has_episode_pattern: bool
    has_quality_pattern: bool
    has_language_pattern: bool
    has_release_group_marker: bool
    structure_complexity: int
    separator_count: int
    length_category: LengthCategory

    FEATURE_NAMES = (
        'pattern_year', 'pattern_episode', 'pattern_quality', 'pattern_language',
        'pattern_release_group', 'pattern_complexity', 'pattern_separators', 'pattern_length',
    )

    def to_feature_array(self) -> List[float]:
        length_index = list(LengthCategory).index(self.length_category)
        return [
            _flag(self.has_year), _flag(self.has_episode_pattern),
            _flag(self.has_quality_pattern), _flag(self.has_language_pattern),
            _flag(self.has_release_group_marker), float(self.structure_complexity),
            float(self.separator_count), float(length_index),
        ]


@dataclass(frozen=True)
class EpisodeFeatures:
    season: Optional[int]
    episode: int
    pattern_type: str
    is_multi_part: bool
    is_special: bool
    numbering_confidence: float
    maturity: SeriesMaturity

    FEATURE_NAMES = ('episode_season', 'episode_number', 'episode_multi_part',
                     'episode_special', 'episode_confidence', 'episode_maturity')

    def to_feature_array(self) -> List[float]:
        return [float(self.season or 0), float(self.episode), _flag(self.is_multi_part),
                _flag(self.is_special), self.numbering_confidence,
                float(list(SeriesMaturity).index(self.maturity))]


@dataclass(frozen=True)
class ReleaseGroupFeatures:
    name: str
    is_known: bool
    reputation: GroupReputation
    region: GroupRegion
    specialization: GroupSpecialization
    has_typical_pattern: bool
    confidence: float

    FEATURE_NAMES = ('group_known', 'group_reputation', 'group_typical', 'group_confidence')

    def to_feature_array(self) -> List[float]:
        reputation_index = list(GroupReputation).index(self.reputation)
        return [_flag(self.is_known), float(reputation_index),
                _flag(self.has_typical_pattern), self.confidence]


@dataclass(frozen=True)
class FeatureVector:
    """Everything derived from one filename, in a fixed order"""
    original_filename: str
    series_tokens: Tuple[str, ...]
    token_frequency: TokenFrequencyAnalysis
    ngrams: Tuple[NGramFeature, ...]
    quality: QualityFeatures
    pattern: PatternMatchingFeatures
    episode: Optional[EpisodeFeatures] = None
    release_group: Optional[ReleaseGroupFeatures] = None
    extracted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc), compare=False)

    def feature_names(self) -> List[str]:
        return (list(TokenFrequencyAnalysis.FEATURE_NAMES)
                + ['ngram_count', 'ngram_max_power', 'ngram_mean_power']
                + list(QualityFeatures.FEATURE_NAMES)
                + list(PatternMatchingFeatures.FEATURE_NAMES)
                + list(EpisodeFeatures.FEATURE_NAMES)
                + list(ReleaseGroupFeatures.FEATURE_NAMES))

    def to_feature_array(self) -> List[float]:
        """Concatenate all sub-features; absent optional parts become zeros"""
        powers = [g.discriminative_power for g in self.ngrams]
        ngram_summary = [
            float(len(powers)),
            max(powers, default=0.0),
            sum(powers) / len(powers) if powers else 0.0,
        ]

        episode = (self.episode.to_feature_array() if self.episode
                   else [0.0] * len(EpisodeFeatures.FEATURE_NAMES))
        group = (self.release_group.to_feature_array() if self.release_group
                 else [0.0] * len(ReleaseGroupFeatures.FEATURE_NAMES))

        return (self.token_frequency.to_feature_array()
                + ngram_summary
                + self.quality.to_feature_array()
                + self.pattern.to_feature_array()
                + episode
                + group)
