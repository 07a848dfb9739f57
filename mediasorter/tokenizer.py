#!/usr/bin/env python3
"""
Filename tokenizer for extracting series, episode, quality and release
information from scene-style media filenames

Every operation is a pure function of its input: the same filename always
produces the same TokenizedFilename.
"""

import re
import logging
from enum import Enum
from pathlib import PurePath
from typing import Dict, Iterable, List, Optional, Tuple
from dataclasses import dataclass, field

from mediasorter.constants import (
    VIDEO_EXTENSIONS, SUBTITLE_EXTENSIONS, SEPARATORS, STOPWORDS,
    RESOLUTION_PATTERNS, SOURCE_PATTERNS, CODEC_PATTERNS,
    LANGUAGE_PATTERNS, RELEASE_PATTERNS, ITALIAN_RELEASE_GROUPS,
)
from mediasorter.errors import ErrorKind
from mediasorter.result import Ok, Err, Result

logger = logging.getLogger(__name__)

MAX_SERIES_NAME_LENGTH = 100


class EpisodePatternType(Enum):
    """Which numbering convention matched"""
    ALTERNATIVE = 'alternative'      # 8x04
    STANDARD = 'standard'            # S01E01
    VERBOSE = 'verbose'              # Season 1 Episode 1
    EPISODE_ONLY = 'episode_only'    # E01, Ep01
    DATE_BASED = 'date_based'        # 2023.07.14
    ABSOLUTE = 'absolute'            # 1089 (long-running anime)


class QualityTier(Enum):
    PREMIUM = 'premium'
    ULTRA_HIGH = 'ultra_high'
    HIGH = 'high'
    STANDARD = 'standard'
    LOW = 'low'
    UNKNOWN = 'unknown'


@dataclass(frozen=True)
class EpisodeInfo:
    """Season/episode numbering found in a filename"""
    episode: int
    pattern_type: EpisodePatternType
    raw_pattern: str
    season: Optional[int] = None
    episode_title: Optional[str] = None


@dataclass(frozen=True)
class QualityInfo:
    """Resolution, source, codec and language markers"""
    resolution: Optional[str] = None
    source: Optional[str] = None
    codec: Optional[str] = None
    tier: QualityTier = QualityTier.UNKNOWN
    languages: Tuple[str, ...] = ()
    additional_indicators: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TokenizedFilename:
    """Full decomposition of one filename"""
    original_filename: str
    series_tokens: Tuple[str, ...]
    all_tokens: Tuple[str, ...]
    filtered_tokens: Tuple[str, ...] = ()
    file_extension: str = ''
    episode_info: Optional[EpisodeInfo] = None
    quality_info: Optional[QualityInfo] = None
    release_group: Optional[str] = None
    series_name: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


def _boundary(pattern: str, flags: int = re.IGNORECASE) -> 're.Pattern':
    return re.compile(rf'\b{pattern}\b', flags)


class FilenameTokenizer:
    """Tokenize media filenames into structured components"""

    # Episode patterns - order matters! First match wins.
    EPISODE_PATTERNS = [
        (re.compile(r'(?<!\d)(\d{1,2})x(\d{1,2})(?!\d)', re.IGNORECASE), EpisodePatternType.ALTERNATIVE),
        (re.compile(r'[Ss](\d{1,2})[Ee](\d{1,2})'), EpisodePatternType.STANDARD),
        (re.compile(r'Season\s*(\d{1,2}).*?Episode\s*(\d{1,2})', re.IGNORECASE), EpisodePatternType.VERBOSE),
        (re.compile(r'\b[Ee]p?(\d{1,2})\b'), EpisodePatternType.EPISODE_ONLY),
        (re.compile(r'(\d{4})[.\-_](\d{2})[.\-_](\d{2})'), EpisodePatternType.DATE_BASED),
        # Years are not absolute episode numbers
        (re.compile(r'\b(?!(?:19|20)\d{2}\b)(\d{3,4})\b'), EpisodePatternType.ABSOLUTE),
    ]

    RESOLUTION = [_boundary(p) for p in RESOLUTION_PATTERNS]
    SOURCE = [_boundary(p) for p in SOURCE_PATTERNS]
    CODEC = [_boundary(p) for p in CODEC_PATTERNS]
    LANGUAGE = [_boundary(p) for p in LANGUAGE_PATTERNS]
    RELEASE = [_boundary(p) for p in RELEASE_PATTERNS]

    # Known groups must stand alone: "UBi" must not fire inside "Rubicon"
    KNOWN_GROUPS = [
        (group, re.compile(r'(?<![a-zA-Z0-9])' + re.escape(group) + r'(?![a-zA-Z0-9])', re.IGNORECASE))
        for group in ITALIAN_RELEASE_GROUPS
    ]
    TRAILING_GROUP = re.compile(r'-([A-Za-z0-9]+)$')

    def tokenize(self, filename: str) -> Result[TokenizedFilename]:
        """
        Decompose a filename into series tokens, markers and metadata

        Args:
            filename: Raw filename (a leading directory part is ignored)

        Returns:
            Ok(TokenizedFilename), or Err(PARSE) for empty input
        """
        if not filename or not filename.strip():
            return Err(ErrorKind.PARSE, 'Filename cannot be empty')

        stem, extension = self._split_extension(filename)

        series_result = self.extract_series_name(filename)
        series_name = series_result.unwrap_or(None)
        series_tokens = self._tokenize_string(series_name) if series_name else []

        release_group = self._extract_release_group(stem)

        result = TokenizedFilename(
            original_filename=filename,
            series_tokens=tuple(series_tokens),
            all_tokens=tuple(self._tokenize_string(stem)),
            filtered_tokens=tuple(self._identify_filtered_tokens(stem)),
            file_extension=extension,
            episode_info=self._extract_episode(stem),
            quality_info=self._extract_quality(stem),
            release_group=release_group,
            series_name=series_name,
            metadata=self._extract_metadata(stem, release_group),
        )

        logger.debug(f"Tokenized {filename}: {len(result.all_tokens)} tokens, "
                     f"{len(result.series_tokens)} series tokens")
        return Ok(result)

    def tokenize_batch(self, filenames: Iterable[str]) -> List[Result[TokenizedFilename]]:
        """Tokenize several filenames, one Result per input"""
        return [self.tokenize(name) for name in filenames]

    def extract_series_name(self, filename: str) -> Result[str]:
        """
        Extract a display series name

        Takes the text before the first episode marker. When no marker is
        present, strips quality, language and release markers from the whole
        name instead.

        Returns:
            Ok(series name), or Err(PARSE) if nothing usable remains
        """
        if not filename or not filename.strip():
            return Err(ErrorKind.PARSE, 'Filename cannot be empty')

        stem, _ = self._split_extension(filename)
        series_part = self._text_before_episode(stem)
        if not series_part.strip():
            series_part = self._strip_markers(stem)

        cleaned = self._clean_series_name(series_part)
        if not cleaned:
            return Err(ErrorKind.PARSE, f"Could not extract a series name from {filename}")

        logger.debug(f"Series name '{cleaned}' from {filename}")
        return Ok(cleaned)

    def extract_episode_info(self, filename: str) -> Result[EpisodeInfo]:
        """Returns Ok(EpisodeInfo), or Err(NOT_FOUND) when no numbering matches"""
        if not filename or not filename.strip():
            return Err(ErrorKind.PARSE, 'Filename cannot be empty')

        stem, _ = self._split_extension(filename)
        info = self._extract_episode(stem)
        if info is None:
            return Err(ErrorKind.NOT_FOUND, f"No episode information in {filename}")
        return Ok(info)

    def extract_quality_info(self, filename: str) -> Result[QualityInfo]:
        """Returns Ok(QualityInfo); fields are None when a marker is absent"""
        if not filename or not filename.strip():
            return Err(ErrorKind.PARSE, 'Filename cannot be empty')

        stem, _ = self._split_extension(filename)
        return Ok(self._extract_quality(stem))

    # Internal helpers

    @staticmethod
    def _split_extension(filename: str) -> Tuple[str, str]:
        """Split off a known media/subtitle extension, keep anything else"""
        name = PurePath(filename).name
        suffix = PurePath(name).suffix.lower()
        if suffix in VIDEO_EXTENSIONS or suffix in SUBTITLE_EXTENSIONS:
            return name[:-len(suffix)], suffix[1:]
        return name, ''

    def _text_before_episode(self, stem: str) -> str:
        for pattern, _ in self.EPISODE_PATTERNS:
            match = pattern.search(stem)
            if match:
                return stem[:match.start()].strip()
        return ''

    def _strip_markers(self, text: str) -> str:
        for pattern in self.RESOLUTION + self.SOURCE + self.CODEC + self.LANGUAGE + self.RELEASE:
            text = pattern.sub(' ', text)
        return text

    def _clean_series_name(self, text: str) -> str:
        # Leading collection tags like [SubsPlease], brackets anywhere
        text = re.sub(r'^\s*\[[^\]]+\]\s*', '', text)
        text = re.sub(r'[\[\](){}]', ' ', text)
        for separator in SEPARATORS:
            text = text.replace(separator, ' ')

        words = [w for w in text.split() if w.lower() not in STOPWORDS]
        words = [self._capitalize(w) for w in words]

        name = ' '.join(words)
        if len(name) > MAX_SERIES_NAME_LENGTH:
            name = name[:MAX_SERIES_NAME_LENGTH].strip()
        return name

    @staticmethod
    def _capitalize(word: str) -> str:
        # Keep acronyms like NCIS, FBI, 24
        if len(word) <= 4 and all(c.isupper() or c.isdigit() for c in word):
            return word.upper()
        return word[0].upper() + word[1:].lower()

    @staticmethod
    def _tokenize_string(text: str) -> List[str]:
        for separator in SEPARATORS:
            text = text.replace(separator, ' ')
        tokens = [t.lower() for t in text.split() if len(t) >= 2]
        return [t for t in tokens if t not in STOPWORDS]

    def _extract_episode(self, stem: str) -> Optional[EpisodeInfo]:
        for pattern, pattern_type in self.EPISODE_PATTERNS:
            match = pattern.search(stem)
            if not match:
                continue

            groups = match.groups()
            if len(groups) >= 2:
                season, episode = int(groups[0]), int(groups[1])
            else:
                season, episode = None, int(groups[0])

            return EpisodeInfo(
                episode=episode,
                pattern_type=pattern_type,
                raw_pattern=match.group(0),
                season=season,
                episode_title=self._extract_episode_title(stem, match),
            )
        return None

    def _extract_episode_title(self, stem: str, match: 're.Match') -> Optional[str]:
        after = stem[match.end():]
        for part in re.split(r'[._\-]+', after):
            part = part.strip()
            if len(part) > 2 and not self._is_marker(part):
                return part
        return None

    def _is_marker(self, token: str) -> bool:
        patterns = self.RESOLUTION + self.SOURCE + self.CODEC + self.LANGUAGE + self.RELEASE
        return any(p.search(token) for p in patterns)

    @staticmethod
    def _first_match(text: str, patterns) -> Optional[str]:
        for pattern in patterns:
            match = pattern.search(text)
            if match:
                return match.group(0)
        return None

    def _extract_quality(self, stem: str) -> QualityInfo:
        resolution = self._first_match(stem, self.RESOLUTION)
        source = self._first_match(stem, self.SOURCE)

        return QualityInfo(
            resolution=resolution,
            source=source,
            codec=self._first_match(stem, self.CODEC),
            tier=determine_quality_tier(resolution, source),
            languages=tuple(self._find_languages(stem)),
            additional_indicators=tuple(
                m.group(0).upper() for p in self.RELEASE for m in p.finditer(stem)
            ),
        )

    def _find_languages(self, stem: str) -> List[str]:
        return [m.group(0).upper() for p in self.LANGUAGE for m in p.finditer(stem)]

    def _identify_filtered_tokens(self, stem: str) -> List[str]:
        """Quality, language and release markers, deduplicated case-insensitively"""
        seen = set()
        filtered = []
        patterns = self.RESOLUTION + self.SOURCE + self.CODEC + self.LANGUAGE + self.RELEASE
        for pattern in patterns:
            for match in pattern.finditer(stem):
                value = match.group(0)
                if value.lower() not in seen:
                    seen.add(value.lower())
                    filtered.append(value)
        return filtered

    def _extract_release_group(self, stem: str) -> Optional[str]:
        for group, pattern in self.KNOWN_GROUPS:
            if pattern.search(stem):
                return group

        match = self.TRAILING_GROUP.search(stem)
        if match:
            return match.group(1)
        return None

    def _extract_metadata(self, stem: str, release_group: Optional[str]) -> Dict[str, str]:
        metadata = {}

        languages = list(dict.fromkeys(self._find_languages(stem)))
        if languages:
            metadata['languages'] = ', '.join(languages)
        if release_group:
            metadata['release_group'] = release_group
        if 'forced' in stem.lower():
            metadata['subtitle_type'] = 'forced'

        return metadata


def determine_quality_tier(resolution: Optional[str], source: Optional[str]) -> QualityTier:
    """Map resolution (and source, for 1080p) to a quality tier"""
    resolution = (resolution or '').upper()
    source = (source or '').upper()

    if resolution in ('2160P', '4K', 'UHD'):
        return QualityTier.PREMIUM
    if resolution in ('1080P', 'FHD'):
        if source in ('BLURAY', 'BDRIP'):
            return QualityTier.ULTRA_HIGH
        return QualityTier.HIGH
    if resolution in ('720P', 'HD'):
        return QualityTier.STANDARD
    if resolution in ('480P', 'SD'):
        return QualityTier.LOW
    return QualityTier.UNKNOWN
