#!/usr/bin/env python3
"""
Feature engineering for filename classification

Turns a TokenizedFilename into a FeatureVector without any learned
embedding: token frequency statistics, weighted n-grams, quality scoring
and structural pattern flags. Every function here is pure.
"""

import re
import math
import logging
from collections import Counter
from typing import Dict, List, Optional, Sequence

from mediasorter.constants import (
    HIGH_VALUE_TOKENS, VERY_COMMON_WORDS, LANGUAGE_INDICATORS,
    KNOWN_RELEASE_GROUPS, PREMIUM_RELEASE_GROUPS, GOOD_RELEASE_GROUPS,
    UNKNOWN_RELEASE_GROUPS, SPECIAL_EPISODE_KEYWORDS, MULTI_PART_MARKERS,
    RESOLUTION_POINTS,
)
from mediasorter.errors import ErrorKind
from mediasorter.feature_models import (
    FeatureVector, TokenFrequencyAnalysis, NGramFeature, NGramContext,
    QualityFeatures, SourceTier, PatternMatchingFeatures, LengthCategory,
    EpisodeFeatures, SeriesMaturity, ReleaseGroupFeatures, GroupReputation,
    GroupRegion, GroupSpecialization,
)
from mediasorter.result import Ok, Err, Result
from mediasorter.tokenizer import TokenizedFilename, QualityInfo, EpisodeInfo, EpisodePatternType

logger = logging.getLogger(__name__)

MAX_IMPORTANCE = 10.0
MAX_ALPHA_NUMERIC_RATIO = 10.0
TOP_FREQUENT = 10
MAX_RARE = 5
MAX_NGRAMS = 20
MIN_NGRAM_SIZE = 1
MAX_NGRAM_SIZE = 5

YEAR_PATTERN = re.compile(r'\b(19|20)\d{2}\b')
EPISODE_PATTERN = re.compile(r'[Ss]\d{1,2}[Ee]\d{1,2}|(?<!\d)\d{1,2}x\d{1,2}(?!\d)')
QUALITY_PATTERN = re.compile(r'\b(1080p|720p|480p|2160p|4K)\b', re.IGNORECASE)
LANGUAGE_PATTERN = re.compile(r'\b(ITA|ENG|SUB|DUB)\b', re.IGNORECASE)
HDR_PATTERN = re.compile(r'(?<![A-Za-z0-9])(HDR10|HDR|DV|DOLBY)(?![A-Za-z])', re.IGNORECASE)
MULTI_AUDIO_PATTERN = re.compile(r'(?<![A-Za-z0-9])(MULTI|DUAL|TRUEHD|DTS)(?![A-Za-z])', re.IGNORECASE)


class FeatureEngineering:
    """Build FeatureVectors from tokenized filenames"""

    def extract_features(self, tokenized: TokenizedFilename) -> Result[FeatureVector]:
        """
        Run the full extraction for one filename

        Series tokens drive the frequency analysis; when the tokenizer found
        no series name the full token list is used instead.

        Returns:
            Ok(FeatureVector), or Err when there are no tokens at all
        """
        tokens = list(tokenized.series_tokens) or list(tokenized.all_tokens)

        frequency = self.analyze_token_frequency(tokens)
        if frequency.is_err:
            return frequency

        ngrams = self.generate_ngrams(tokens, 2) if len(tokens) >= 2 else self.generate_ngrams(tokens, 1)
        if ngrams.is_err:
            return ngrams

        quality_info = tokenized.quality_info or QualityInfo()
        vector = FeatureVector(
            original_filename=tokenized.original_filename,
            series_tokens=tuple(tokens),
            token_frequency=frequency.value,
            ngrams=tuple(ngrams.value),
            quality=self.extract_quality_features(quality_info, tokenized.original_filename),
            pattern=self.extract_pattern_features(tokenized.original_filename),
            episode=(self.extract_episode_features(tokenized.episode_info)
                     if tokenized.episode_info else None),
            release_group=(self.extract_release_group_features(tokenized.release_group)
                           if tokenized.release_group else None),
        )

        logger.debug(f"Extracted {len(vector.to_feature_array())} features for {tokenized.original_filename}")
        return Ok(vector)

    def analyze_token_frequency(self, series_tokens: Sequence[str]) -> Result[TokenFrequencyAnalysis]:
        """
        Count tokens (case-insensitive) and weight them by importance

        Args:
            series_tokens: Tokens from the series part of the filename

        Returns:
            Ok(TokenFrequencyAnalysis), or Err(VALIDATION) for an empty list
        """
        if not series_tokens:
            return Err(ErrorKind.VALIDATION, 'Series tokens cannot be empty')

        counts = Counter(t.lower() for t in series_tokens)
        total = len(series_tokens)

        # Sort by count, then token, so ties come out the same every run
        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        rare = [token for token, count in counts.items() if count == 1][:MAX_RARE]

        alpha_tokens = sum(1 for t in series_tokens if t.isalpha())
        numeric_tokens = sum(1 for t in series_tokens if any(c.isdigit() for c in t))
        if numeric_tokens:
            ratio = min(alpha_tokens / numeric_tokens, MAX_ALPHA_NUMERIC_RATIO)
        else:
            ratio = MAX_ALPHA_NUMERIC_RATIO

        return Ok(TokenFrequencyAnalysis(
            token_counts=dict(counts),
            importance_scores={t: token_importance(t, c) for t, c in counts.items()},
            most_frequent=tuple(ranked[:TOP_FREQUENT]),
            rare_tokens=tuple(rare),
            total_tokens=total,
            unique_tokens=len(counts),
            diversity_score=diversity_score(counts, total),
            average_token_length=sum(len(t) for t in series_tokens) / total,
            alpha_numeric_ratio=ratio,
            language_indicators=tuple(detect_language_indicators(series_tokens)),
        ))

    def generate_ngrams(self, tokens: Sequence[str], n: int) -> Result[List[NGramFeature]]:
        """
        Build sliding-window n-grams with discriminative weights

        Duplicates (case-insensitive) are merged: frequencies summed, power
        averaged. At most 20 n-grams are returned, strongest first.

        Args:
            tokens: Ordered tokens
            n: Window size, 1..5

        Returns:
            Ok(list of NGramFeature), or Err(INVALID_ARGUMENT) for a bad n
        """
        if not MIN_NGRAM_SIZE <= n <= MAX_NGRAM_SIZE:
            return Err(ErrorKind.INVALID_ARGUMENT, f"N-gram size must be between 1 and 5, got {n}")
        if len(tokens) < n:
            return Ok([])

        window_count = len(tokens) - n + 1
        merged: Dict[str, dict] = {}

        for i in range(window_count):
            window = list(tokens[i:i + n])
            key = ' '.join(window).lower()
            power = discriminative_power(window)

            if key in merged:
                merged[key]['frequency'] += 1
                merged[key]['powers'].append(power)
                continue

            merged[key] = {
                'text': ' '.join(window),
                'tokens': tuple(window),
                'frequency': 1,
                'powers': [power],
            }

        ngrams = []
        for entry in merged.values():
            window = list(entry['tokens'])
            ngrams.append(NGramFeature(
                text=entry['text'],
                n=n,
                tokens=entry['tokens'],
                frequency=entry['frequency'],
                relative_frequency=entry['frequency'] / window_count,
                discriminative_power=sum(entry['powers']) / len(entry['powers']),
                context=ngram_context(window),
                is_cross_boundary=len({categorize_token(t) for t in window}) > 1,
            ))

        # Stable sort keeps window order among equal powers
        ngrams.sort(key=lambda g: g.discriminative_power, reverse=True)
        return Ok(ngrams[:MAX_NGRAMS])

    def extract_quality_features(self, quality: QualityInfo, filename: str = '') -> QualityFeatures:
        """Score resolution, source and codec into a 0-100 quality score"""
        score = (RESOLUTION_POINTS[quality.tier.name]
                 + source_points(quality.source)
                 + codec_points(quality.codec))

        return QualityFeatures(
            resolution=quality.resolution,
            source=quality.source,
            codec=quality.codec,
            quality_score=min(score, 100),
            source_tier=source_tier(quality.source),
            has_hdr=bool(HDR_PATTERN.search(filename)),
            has_multi_audio=bool(MULTI_AUDIO_PATTERN.search(filename)),
        )

    def extract_pattern_features(self, filename: str) -> PatternMatchingFeatures:
        """Structural flags computed from the raw filename"""
        structure_chars = sum(1 for c in filename if c in '._-')
        return PatternMatchingFeatures(
            has_year=bool(YEAR_PATTERN.search(filename)),
            has_episode_pattern=bool(EPISODE_PATTERN.search(filename)),
            has_quality_pattern=bool(QUALITY_PATTERN.search(filename)),
            has_language_pattern=bool(LANGUAGE_PATTERN.search(filename)),
            has_release_group_marker='[' in filename or '-' in filename,
            structure_complexity=min(structure_chars // 2, 10),
            separator_count=sum(1 for c in filename if c in '._- '),
            length_category=length_category(len(filename)),
        )

    def extract_episode_features(self, info: EpisodeInfo) -> EpisodeFeatures:
        raw = info.raw_pattern.lower()
        title = (info.episode_title or '').lower()

        return EpisodeFeatures(
            season=info.season,
            episode=info.episode,
            pattern_type=info.pattern_type.value,
            is_multi_part=any(marker in raw for marker in MULTI_PART_MARKERS),
            is_special=any(keyword in title or keyword in raw for keyword in SPECIAL_EPISODE_KEYWORDS),
            numbering_confidence=numbering_confidence(info),
            maturity=series_maturity(info.season, info.episode),
        )

    def extract_release_group_features(self, group: str) -> ReleaseGroupFeatures:
        typical = has_typical_group_pattern(group)
        is_known = group in KNOWN_RELEASE_GROUPS

        confidence = 0.5
        if is_known:
            confidence += 0.3
        if typical:
            confidence += 0.2
        if len(group) < 3:
            confidence -= 0.3
        if group.isdigit() or 'x264' in group.lower() or 'x265' in group.lower():
            confidence -= 0.2

        return ReleaseGroupFeatures(
            name=group,
            is_known=is_known,
            reputation=group_reputation(group),
            region=group_region(group),
            specialization=group_specialization(group),
            has_typical_pattern=typical,
            confidence=_clamp(confidence, 0.1, 1.0),
        )


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def token_importance(token: str, count: int) -> float:
    """log(count+1), boosted for high-value and long tokens, damped for filler words"""
    score = math.log(count + 1)
    if token in HIGH_VALUE_TOKENS:
        score *= 2.0
    if len(token) > 5:
        score *= 1.5
    if token in VERY_COMMON_WORDS:
        score *= 0.5
    return min(score, MAX_IMPORTANCE)


def diversity_score(counts: Counter, total: int) -> float:
    """Shannon entropy normalised by its maximum (0 for one unique token)"""
    if len(counts) <= 1:
        return 0.0
    entropy = 0.0
    for count in counts.values():
        probability = count / total
        entropy -= probability * math.log2(probability)
    return entropy / math.log2(len(counts))


def detect_language_indicators(tokens: Sequence[str]) -> List[str]:
    found = []
    for indicator in sorted(LANGUAGE_INDICATORS):
        if any(indicator in t.lower() for t in tokens):
            found.append(indicator)
    return found


def categorize_token(token: str) -> str:
    """Coarse per-token context used for cross-boundary detection"""
    lower = token.lower()
    if any(marker in lower for marker in ('1080', '720', 'web', 'hdtv')):
        return 'quality'
    if any(marker in lower for marker in ('ita', 'eng', 'sub', 'dub')):
        return 'language'
    if lower[:1].isdigit() or 'season' in lower or 'episode' in lower:
        return 'episode'
    return 'series_name'


def ngram_context(tokens: Sequence[str]) -> NGramContext:
    text = ' '.join(tokens).lower()
    if any(marker in text for marker in ('1080', '720', 'web', 'hdtv')):
        return NGramContext.QUALITY
    if any(c.isdigit() for c in text) and ('x' in text or 'season' in text or 'episode' in text):
        return NGramContext.EPISODE
    if any(marker in text for marker in ('ita', 'eng', 'sub')):
        return NGramContext.LANGUAGE
    if any(marker in text for marker in ('x264', 'x265', 'mux')):
        return NGramContext.TECHNICAL
    return NGramContext.SERIES_NAME


def discriminative_power(tokens: Sequence[str]) -> float:
    """0.5 base, +0.1 per token, +0.3 per high-value token, -0.2 with filler words"""
    lowered = [t.lower() for t in tokens]
    power = 0.5 + 0.1 * len(lowered)
    power += 0.3 * sum(1 for t in lowered if t in HIGH_VALUE_TOKENS)
    if any(t in VERY_COMMON_WORDS for t in lowered):
        power -= 0.2
    return _clamp(power, 0.1, 1.0)


def source_points(source: Optional[str]) -> int:
    if not source:
        return 0
    upper = source.upper()
    if upper in ('BLURAY', 'BDRIP', 'BRRIP'):
        return 35
    if 'WEB' in upper:
        return 25
    if 'HDTV' in upper:
        return 20
    if 'DVD' in upper:
        return 15
    return 10


def codec_points(codec: Optional[str]) -> int:
    if not codec:
        return 0
    upper = codec.upper().replace('.', '')
    if upper in ('HEVC', 'H265', 'X265'):
        return 25
    if upper in ('AVC', 'H264', 'X264'):
        return 20
    return 10


def source_tier(source: Optional[str]) -> SourceTier:
    if not source:
        return SourceTier.UNKNOWN
    upper = source.upper()
    if upper in ('BLURAY', 'BDRIP', 'BRRIP'):
        return SourceTier.BLURAY
    if 'WEB' in upper:
        return SourceTier.WEB
    if 'HDTV' in upper:
        return SourceTier.HDTV
    if 'DVD' in upper:
        return SourceTier.DVD
    return SourceTier.OTHER


def length_category(length: int) -> LengthCategory:
    if length < 20:
        return LengthCategory.SHORT
    if length < 50:
        return LengthCategory.MEDIUM
    if length < 100:
        return LengthCategory.LONG
    return LengthCategory.VERY_LONG


def numbering_confidence(info: EpisodeInfo) -> float:
    confidence = 0.5
    if info.pattern_type == EpisodePatternType.STANDARD:
        confidence += 0.3
    elif info.pattern_type == EpisodePatternType.EPISODE_ONLY:
        confidence += 0.2
    elif info.pattern_type == EpisodePatternType.DATE_BASED:
        confidence -= 0.2
    if info.season is not None and info.episode:
        confidence += 0.2
    return _clamp(confidence, 0.0, 1.0)


def series_maturity(season: Optional[int], episode: int) -> SeriesMaturity:
    if episode > 500:
        return SeriesMaturity.VERY_LONG_RUNNING
    if episode > 100:
        return SeriesMaturity.LONG_RUNNING
    season = season or 0
    if season > 10:
        return SeriesMaturity.ESTABLISHED
    if season > 5:
        return SeriesMaturity.MATURE
    if season > 2:
        return SeriesMaturity.DEVELOPING
    return SeriesMaturity.NEW


def group_reputation(group: str) -> GroupReputation:
    lower = group.lower()
    if lower in PREMIUM_RELEASE_GROUPS:
        return GroupReputation.PREMIUM
    if lower in GOOD_RELEASE_GROUPS:
        return GroupReputation.GOOD
    if lower in UNKNOWN_RELEASE_GROUPS:
        return GroupReputation.UNKNOWN
    if 4 <= len(group) <= 8 and group[0].isupper():
        return GroupReputation.AVERAGE
    return GroupReputation.UNKNOWN


def group_region(group: str) -> GroupRegion:
    upper = group.upper()
    if any(marker in upper for marker in ('ITA', 'NOVARIP', 'DARKSIDEMUX', 'PIR8')):
        return GroupRegion.ITALIAN
    if any(marker in upper for marker in ('ENG', 'PROPER', 'REPACK')):
        return GroupRegion.ENGLISH
    return GroupRegion.INTERNATIONAL


def group_specialization(group: str) -> GroupSpecialization:
    upper = group.upper()
    if any(marker in upper for marker in ('TV', 'HDTV', 'SERIES')):
        return GroupSpecialization.TV
    if any(marker in upper for marker in ('ANIME', 'SUB', 'FANSUB')):
        return GroupSpecialization.ANIME
    if any(marker in upper for marker in ('BLURAY', 'BDRIP', 'MOVIE')):
        return GroupSpecialization.MOVIES
    return GroupSpecialization.GENERAL


def has_typical_group_pattern(group: str) -> bool:
    """3-15 chars, at least one letter, no more than half digits"""
    if not 3 <= len(group) <= 15:
        return False
    if not any(c.isalpha() for c in group):
        return False
    digits = sum(1 for c in group if c.isdigit())
    return digits / len(group) <= 0.5
