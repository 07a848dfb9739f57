#!/usr/bin/env python3
"""
classify.py - Media classification pipeline

NEVER moves files. Only reads filenames, updates the state file and writes CSV.

Steps:
1. Scan source directory for video files
2. Register new files in the state file (keyed by a size+path digest)
3. Tokenize -> feature vector -> category prediction for every NEW/RETRY file
4. Write manifest: filename, hash, category, confidence, decision, reliable
"""

import sys
import csv
import hashlib
import logging
import argparse
from pathlib import Path
from typing import Dict, List
from collections import defaultdict

from mediasorter.categories import CategoryService
from mediasorter.classifier import Classifier, ClassificationDecision, ClassificationResult
from mediasorter.config import load_config
from mediasorter.constants import VIDEO_EXTENSIONS
from mediasorter.error_classification import ErrorClassificationService
from mediasorter.pipeline import ClassificationPipeline
from mediasorter.records import FileRecord
from mediasorter.repository import FileRecordRepository, JsonRepository
from mediasorter.result import Result

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

MANIFEST_FIELDS = ['filename', 'hash', 'category', 'confidence', 'decision', 'reliable']


def discover_files(source_dir: Path) -> List[Path]:
    """All video files under source_dir, skipping macOS resource forks"""
    video_files = []
    for file_path in sorted(source_dir.rglob('*')):
        if file_path.is_file() and file_path.suffix.lower() in VIDEO_EXTENSIONS:
            if not file_path.name.startswith('._'):
                video_files.append(file_path)
    logger.info(f"Found {len(video_files)} video files")
    return video_files


def file_hash_for(file_path: Path, source_dir: Path) -> str:
    """Identity digest from size and relative path (content hashing happens upstream)"""
    relative = file_path.relative_to(source_dir).as_posix()
    size = file_path.stat().st_size
    return hashlib.sha256(f"{size}:{relative}".encode('utf-8')).hexdigest()


def register_files(repository: FileRecordRepository, files: List[Path], source_dir: Path,
                   max_retries: int) -> int:
    """Add a FileRecord for every file not yet in the state; returns how many were added"""
    added = 0
    for file_path in files:
        file_hash = file_hash_for(file_path, source_dir)
        if repository.get_by_hash(file_hash, include_deleted=True) is not None:
            continue
        record = FileRecord(file_hash, file_path.name, str(file_path.absolute()),
                            file_size=file_path.stat().st_size, max_retries=max_retries)
        repository.add(record)
        added += 1
    logger.info(f"Registered {added} new files")
    return added


def build_manifest_rows(repository: FileRecordRepository, categories: CategoryService,
                        results: Dict[str, Result[ClassificationResult]]) -> List[Dict]:
    """One manifest row per successful classification"""
    rows = []
    for file_hash, result in results.items():
        if result.is_err:
            continue
        classification = result.value
        record = repository.get_by_hash(file_hash)
        reliable = categories.is_reliable(classification.predicted_category, classification.confidence)
        rows.append({
            'filename': record.original_path,
            'hash': file_hash,
            'category': classification.predicted_category,
            'confidence': f"{classification.confidence:.4f}",
            'decision': classification.decision.value,
            'reliable': 'yes' if reliable else 'no',
        })
    return rows


def write_manifest(rows: List[Dict], output_path: Path):
    """Write classification results to properly-quoted CSV manifest"""
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.DictWriter(f, fieldnames=MANIFEST_FIELDS, quoting=csv.QUOTE_ALL)
        writer.writeheader()
        for row in rows:
            writer.writerow(row)

    logger.info(f"Wrote manifest to {output_path}")


def print_stats(rows: List[Dict], errors: int):
    """Print classification statistics"""
    decision_counts = defaultdict(int)
    for row in rows:
        decision_counts[row['decision']] += 1

    total = len(rows)
    print("\n" + "=" * 60)
    print("CLASSIFICATION STATISTICS")
    print("=" * 60)
    print(f"Total files classified: {total}\n")

    print("BY DECISION:")
    for decision in ClassificationDecision:
        count = decision_counts.get(decision.value, 0)
        pct = (count / total * 100) if total > 0 else 0
        print(f"  {decision.value:26s}: {count:4d} ({pct:5.1f}%)")

    reliable = sum(1 for r in rows if r['reliable'] == 'yes')
    print(f"\nReliable categories: {reliable}/{total}")
    if errors:
        print(f"Errors: {errors}")
    print("=" * 60)


def main():
    parser = argparse.ArgumentParser(
        description='Classify media files and generate sorting manifest',
        epilog="""
NEVER moves files. Only reads filenames and writes CSV.

Examples:
  python classify.py /path/to/downloads
  python classify.py /path/to/downloads --output output/my_manifest.csv
  python classify.py /path/to/downloads --config config.yaml --verbose
        """
    )
    parser.add_argument('source_dir', type=Path,
                       help='Directory containing media files')
    parser.add_argument('--output', '-o', type=Path,
                       default=Path('output/sorting_manifest.csv'),
                       help='Output CSV manifest path (default: output/sorting_manifest.csv)')
    parser.add_argument('--config', type=Path, default=Path('config.yaml'),
                       help='Configuration file (default: config.yaml, defaults if missing)')
    parser.add_argument('--state', type=Path, default=None,
                       help='State file (default: from config)')
    parser.add_argument('--verbose', '-v', action='store_true',
                       help='Debug logging')

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if not args.source_dir.exists():
        logger.error(f"Source directory does not exist: {args.source_dir}")
        sys.exit(1)

    config = load_config(args.config)
    state_path = args.state or Path(config.state_path)

    repository = JsonRepository(state_path, max_retries=config.files.max_retries)
    categories = CategoryService(default_threshold=config.classification.suggest_threshold)
    classifier = Classifier(categories=categories, config=config.classification)
    error_service = ErrorClassificationService(
        buffer_size=config.errors.buffer_size,
        window_minutes=config.errors.window_minutes,
        min_success_rate=config.errors.min_success_rate,
        min_samples=config.errors.min_samples,
    )
    pipeline = ClassificationPipeline(repository, classifier, error_service)

    # Process
    logger.info(f"Scanning: {args.source_dir}")
    files = discover_files(args.source_dir)
    register_files(repository, files, args.source_dir, config.files.max_retries)
    results = pipeline.process_pending()

    rows = build_manifest_rows(repository, categories, results)
    errors = sum(1 for r in results.values() if r.is_err)

    write_manifest(rows, args.output)
    print_stats(rows, errors)

    return 0 if errors == 0 else 1


if __name__ == '__main__':
    sys.exit(main())
