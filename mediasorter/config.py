#!/usr/bin/env python3
"""
Configuration loading

Thresholds, retry ceiling and retention windows come from a YAML file.
Missing files or keys fall back to DEFAULT_CONFIG. The core only reads
configuration, it never writes it.
"""

import copy
import logging
from pathlib import Path
from typing import Dict, Optional
from dataclasses import dataclass, field, fields

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    'source_path': '',
    'library_path': '',
    'state_path': 'output/mediasorter_state.json',
    'classification': {
        'auto_threshold': 0.85,
        'suggest_threshold': 0.50,
        'manual_threshold': 0.25,
        'max_alternatives': 3,
        'max_batch_size': 50,
        'max_workers': 4,
        'max_prediction_ms': 500,
    },
    'files': {
        'max_retries': 3,
        'min_free_space_mb': 100,
        'max_path_length': 260,
        'buffer_size': 64 * 1024,
        'lock_timeout_seconds': 30.0,
        'directory_mode': 0o755,
    },
    'rollback': {
        'retention_hours': 24,
    },
    'errors': {
        'window_minutes': 60,
        'buffer_size': 1000,
        'min_success_rate': 0.5,
        'min_samples': 5,
    },
}


@dataclass(frozen=True)
class ClassificationConfig:
    auto_threshold: float = 0.85
    suggest_threshold: float = 0.50
    manual_threshold: float = 0.25
    max_alternatives: int = 3
    max_batch_size: int = 50
    max_workers: int = 4
    max_prediction_ms: int = 500


@dataclass(frozen=True)
class FilesConfig:
    max_retries: int = 3
    min_free_space_mb: int = 100
    max_path_length: int = 260
    buffer_size: int = 64 * 1024
    lock_timeout_seconds: float = 30.0
    directory_mode: int = 0o755


@dataclass(frozen=True)
class RollbackConfig:
    retention_hours: float = 24


@dataclass(frozen=True)
class ErrorsConfig:
    window_minutes: float = 60
    buffer_size: int = 1000
    min_success_rate: float = 0.5
    min_samples: int = 5


@dataclass(frozen=True)
class MediaSorterConfig:
    """Read-only view over the merged YAML configuration"""
    source_path: str = ''
    library_path: str = ''
    state_path: str = 'output/mediasorter_state.json'
    classification: ClassificationConfig = field(default_factory=ClassificationConfig)
    files: FilesConfig = field(default_factory=FilesConfig)
    rollback: RollbackConfig = field(default_factory=RollbackConfig)
    errors: ErrorsConfig = field(default_factory=ErrorsConfig)


def _merge(base: Dict, override: Dict) -> Dict:
    """Recursively overlay override onto a copy of base"""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _section(cls, name: str, merged: Dict):
    values = merged[name]
    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        logger.warning(f"Ignoring unknown keys in {name}: {', '.join(sorted(unknown))}")
    return cls(**{k: v for k, v in values.items() if k in known})


def config_from_dict(data: Optional[Dict]) -> MediaSorterConfig:
    """Build a MediaSorterConfig from a (possibly partial) dict"""
    merged = _merge(DEFAULT_CONFIG, data or {})

    # YAML has no 0o literal; accept "755" or "0o755" as octal
    mode = merged['files']['directory_mode']
    if isinstance(mode, str):
        merged['files']['directory_mode'] = int(mode, 8)

    unknown = set(merged) - set(DEFAULT_CONFIG)
    if unknown:
        logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")

    return MediaSorterConfig(
        source_path=merged['source_path'] or '',
        library_path=merged['library_path'] or '',
        state_path=merged['state_path'],
        classification=_section(ClassificationConfig, 'classification', merged),
        files=_section(FilesConfig, 'files', merged),
        rollback=_section(RollbackConfig, 'rollback', merged),
        errors=_section(ErrorsConfig, 'errors', merged),
    )


def load_config(config_path: Optional[Path] = None) -> MediaSorterConfig:
    """Load configuration from YAML file, or defaults when it is absent"""
    if config_path is None or not Path(config_path).exists():
        if config_path is not None:
            logger.info(f"Config file not found: {config_path} - using defaults")
        return config_from_dict({})

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    logger.debug(f"Loaded config from {config_path}")
    return config_from_dict(data)
