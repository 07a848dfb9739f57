#!/usr/bin/env python3
"""
Test data builders

Every builder goes through the public constructor and transition methods,
so records built here obey the same invariants as records in production.
"""

import hashlib
from pathlib import Path
from typing import Optional

from mediasorter.feature_models import FeatureVector
from mediasorter.features import FeatureEngineering
from mediasorter.records import FileRecord
from mediasorter.tokenizer import FilenameTokenizer

DEFAULT_FILENAME = 'Breaking.Bad.S01E01.720p.HDTV.x264-NovaRip.mkv'


def hash_for(filename: str) -> str:
    return hashlib.sha256(filename.encode('utf-8')).hexdigest()


def write_media_file(directory: Path, name: str = DEFAULT_FILENAME, size: int = 4096) -> Path:
    """Create a file of `size` bytes with non-repeating content"""
    path = Path(directory) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(bytes(i % 251 for i in range(size)))
    return path


def build_record(filename: str = DEFAULT_FILENAME, original_path: Optional[str] = None,
                 file_hash: Optional[str] = None, file_size: int = 4096,
                 max_retries: int = 3) -> FileRecord:
    return FileRecord(
        file_hash=file_hash or hash_for(filename),
        filename=filename,
        original_path=original_path or f"/downloads/{filename}",
        file_size=file_size,
        max_retries=max_retries,
    )


def build_classified_record(category: str = 'BREAKING BAD', confidence: float = 0.92,
                            **kwargs) -> FileRecord:
    record = build_record(**kwargs)
    record.mark_as_classified(category, confidence).unwrap()
    return record


def build_ready_record(target_path: Optional[str] = None, category: str = 'BREAKING BAD',
                       confidence: float = 0.92, **kwargs) -> FileRecord:
    record = build_classified_record(category, confidence, **kwargs)
    target = target_path or f"/library/{category}/{record.filename}"
    record.confirm_category(category, target).unwrap()
    return record


def build_moved_record(final_path: Optional[str] = None, **kwargs) -> FileRecord:
    record = build_ready_record(target_path=final_path, **kwargs)
    record.mark_as_moved(final_path or record.target_path).unwrap()
    return record


def build_feature_vector(filename: str = DEFAULT_FILENAME) -> FeatureVector:
    tokenized = FilenameTokenizer().tokenize(filename).unwrap()
    return FeatureEngineering().extract_features(tokenized).unwrap()
