#!/usr/bin/env python3
"""
Shared vocabulary tables for the media sorting pipeline

Single source of truth for release groups, high-value tokens, stopwords and
quality/language markers. DO NOT duplicate these tables in other modules -
import from here instead.

Every table is a tuple, frozenset or read-only mapping so it can be shared
across worker threads without copying.
"""

from types import MappingProxyType

# Video container extensions picked up by the classify scan
VIDEO_EXTENSIONS = frozenset({
    '.mkv', '.mp4', '.avi', '.mov', '.wmv', '.m4v', '.ts', '.m2ts', '.mpg', '.mpeg', '.webm',
})

# Sidecar extensions stripped along with video extensions
SUBTITLE_EXTENSIONS = frozenset({'.srt', '.sub', '.idx', '.ass', '.ssa'})

# Separators used by scene release names
SEPARATORS = ('.', '_', '-', ' ')

# Words dropped from series names and token lists
STOPWORDS = frozenset({
    'pack', 'complete', 'season', 'serie', 'series', 'vol', 'volume', 'of',
})

# Tokens that strongly identify either a series or a release convention.
# Used to boost token importance and n-gram discriminative power.
HIGH_VALUE_TOKENS = frozenset({
    # Series name fragments from the seeded catalogue
    'trono', 'spade', 'giganti', 'attacco', 'piece', 'hero', 'academia',
    # Quality / source
    '1080p', '720p', 'webmux', 'hdtv', 'bluray', 'x264', 'x265',
    # Language
    'ita', 'italian', 'eng', 'sub', 'dub',
})

# Release groups with a track record (order matters for Italian groups:
# first match wins when scanning a filename)
ITALIAN_RELEASE_GROUPS = ('UBi', 'NovaRip', 'DarkSideMux', 'Pir8', 'iGM')

KNOWN_RELEASE_GROUPS = frozenset({
    'NovaRip', 'DarkSideMux', 'Pir8', 'iGM', 'UBi', 'NTb', 'MIXED', 'IGM',
    'BaMax', 'FoV', 'KILLERS', 'LOL', 'DIMENSION', 'SVA', 'AFG',
})

PREMIUM_RELEASE_GROUPS = frozenset({'novarip', 'darksidemux', 'pir8', 'igm', 'ubi'})
GOOD_RELEASE_GROUPS = frozenset({'ntb', 'mixed'})
# Names that look like groups but are really codecs or anonymous re-encoders
UNKNOWN_RELEASE_GROUPS = frozenset({'x264', 'bamax', 'fov'})

# Very common words penalised in importance scoring and n-gram power
VERY_COMMON_WORDS = frozenset({
    'the', 'and', 'of', 'in', 'on', 'at', 'to', 'for', 'with', 'by',
})

# Words shared by many unrelated series (English and Italian)
COMMON_ACROSS_SERIES = frozenset({
    'the', 'and', 'of', 'in', 'la', 'il', 'di', 'e', 'season', 'episode',
})

LANGUAGE_INDICATORS = frozenset({
    'ita', 'italian', 'eng', 'english', 'sub', 'dub', 'multi',
})

# Episode-level keywords that mark special content
SPECIAL_EPISODE_KEYWORDS = (
    'pilot', 'finale', 'special', 'ova', 'movie', 'film',
    'recap', 'summary', 'extra', 'bonus', 'director',
)

MULTI_PART_MARKERS = ('-', 'pt', 'part', 'parte')

# Resolution, source and codec regex tables. Matched case-insensitively on
# word boundaries; the first matching pattern wins within its table.
RESOLUTION_PATTERNS = (
    r'(2160p|4K|UHD)',
    r'(1080p|FHD)',
    r'(720p|HD)',
    r'(480p|SD)',
)

SOURCE_PATTERNS = (
    r'(WEBMux|WEBDL|WEB-DL|WEB-DLMux)',
    r'(HDTVMux|HDTV)',
    r'(DLMux|DL)',
    r'(BluRay|BDRip|BRRip)',
    r'(DVDRip|DVD)',
)

CODEC_PATTERNS = (
    r'(x264|H\.264|AVC)',
    r'(x265|H\.265|HEVC|h264)',
    r'(XviD|DivX)',
)

LANGUAGE_PATTERNS = (
    r'(ITA|iTALiAN|ITALIAN)',
    r'(ITA_ENG|ENG_ITA)',
    r'(ENG|EN|ENGLISH)',
    r'(SUB|SUBS|SUBTITLES|forced)',
    r'(DUB|DUBBED)',
)

RELEASE_PATTERNS = (
    r'(REPACK|PROPER|REAL|FINAL)',
    r'(EXTENDED|UNCUT|DIRECTORS?\.CUT)',
    r'(LIMITED|INTERNAL)',
)

# Per-component quality points (summed, capped at 100)
RESOLUTION_POINTS = MappingProxyType({
    'PREMIUM': 40,
    'ULTRA_HIGH': 35,
    'HIGH': 30,
    'STANDARD': 20,
    'LOW': 10,
    'UNKNOWN': 0,
})

# Category names that can never be registered
RESERVED_CATEGORY_NAMES = frozenset({'NEW', 'UNKNOWN', 'OTHER', 'TEMP', 'TEST'})

UNKNOWN_CATEGORY = 'UNKNOWN'

# Seed catalogue: normalized name -> (threshold, aliases, keywords)
DEFAULT_CATEGORIES = MappingProxyType({
    'IL TRONO DI SPADE': (0.90, ('GAME OF THRONES', 'GOT'), ('trono', 'spade', 'thrones')),
    'ONE PIECE': (0.85, (), ('one', 'piece')),
    'MY HERO ACADEMIA': (0.85, ('BOKU NO HERO ACADEMIA', 'MHA'), ('hero', 'academia', 'boku')),
    'BREAKING BAD': (0.90, (), ('breaking', 'bad')),
    'OFFICE': (0.85, ('THE OFFICE',), ('office',)),
})
