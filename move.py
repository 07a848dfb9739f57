#!/usr/bin/env python3
"""
move.py - Move classified media files into the library

Pure PRECISION operation. Reads manifest CSV, moves files. Never classifies.

Safety:
- --dry-run is the DEFAULT (must pass --execute to actually move)
- Only reliable categories are moved unless --include-suggested is given
- Every move writes a rollback point first (see rollback_moves.py)
- Same filesystem: os.rename(); cross filesystem: copy + verify + delete
- Resumable: files already moved are skipped, failed moves stay READY_TO_MOVE
"""

import sys
import csv
import logging
import argparse
from pathlib import Path
from typing import Dict, Optional

from mediasorter.categories import CategoryService
from mediasorter.classifier import Classifier, ClassificationDecision
from mediasorter.config import MediaSorterConfig, load_config
from mediasorter.error_classification import ErrorClassificationService
from mediasorter.file_operations import FileOperationService
from mediasorter.locks import KeyedLock
from mediasorter.pipeline import ClassificationPipeline, target_path_for
from mediasorter.records import FileStatus
from mediasorter.repository import JsonRepository
from mediasorter.rollback import RollbackService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

MOVE_LOG_FIELDS = ['hash', 'filename', 'source', 'target', 'rollback_point_id']


def build_services(config: MediaSorterConfig, state_path: Path):
    """Repository, pipeline and file operation service sharing one lock table"""
    repository = JsonRepository(state_path, max_retries=config.files.max_retries)
    categories = CategoryService(default_threshold=config.classification.suggest_threshold)
    classifier = Classifier(categories=categories, config=config.classification)
    error_service = ErrorClassificationService(
        buffer_size=config.errors.buffer_size,
        window_minutes=config.errors.window_minutes,
        min_success_rate=config.errors.min_success_rate,
        min_samples=config.errors.min_samples,
    )
    locks = KeyedLock(config.files.lock_timeout_seconds)
    rollback = RollbackService(repository, config.rollback.retention_hours, locks, config.files.buffer_size)
    operations = FileOperationService(repository, rollback, error_service, config.files)
    pipeline = ClassificationPipeline(repository, classifier, error_service)
    return repository, pipeline, operations


def process_manifest(
    manifest_path: Path,
    library_base: Path,
    config: MediaSorterConfig,
    state_path: Path,
    dry_run: bool = True,
    include_suggested: bool = False,
    move_log: Optional[Path] = None,
) -> Dict[str, int]:
    """
    Process manifest and move (or dry-run) files.

    Args:
        manifest_path: Path to sorting_manifest.csv
        library_base: Base directory for organized library
        config: Loaded configuration
        state_path: State file written by classify.py
        dry_run: If True, only report what would happen
        include_suggested: Also move suggestions that are not reliable
        move_log: CSV receiving one row per completed move

    Returns:
        Statistics dict
    """
    stats = {
        'total': 0,
        'moved': 0,
        'skipped_unreliable': 0,
        'skipped_exists': 0,
        'skipped_missing': 0,
        'errors': 0,
    }

    repository, pipeline, operations = build_services(config, state_path)
    log_rows = []

    with open(manifest_path, 'r', encoding='utf-8') as f:
        reader = csv.DictReader(f)

        for row in reader:
            stats['total'] += 1
            file_hash = row['hash']
            category = row['category']
            suggested = row['decision'] == ClassificationDecision.SUGGEST_WITH_ALTERNATIVES.value

            if row['reliable'] != 'yes' and not (include_suggested and suggested):
                stats['skipped_unreliable'] += 1
                continue

            record = repository.get_by_hash(file_hash)
            if record is None:
                stats['skipped_missing'] += 1
                logger.warning(f"Not in state file: {row['filename']}")
                continue

            # Resumable: already moved
            if record.status == FileStatus.MOVED:
                stats['skipped_exists'] += 1
                logger.debug(f"Already moved: {record.filename}")
                continue

            if not Path(record.current_path).exists():
                stats['skipped_missing'] += 1
                logger.warning(f"Source not found: {record.current_path}")
                continue

            if dry_run:
                target = target_path_for(library_base, category, record.filename)
                print(f"[DRY RUN] {record.filename}")
                print(f"  -> {target}")
                stats['moved'] += 1
                continue

            if record.status == FileStatus.CLASSIFIED:
                confirmed = pipeline.confirm(file_hash, category, library_base)
                if confirmed.is_err:
                    stats['errors'] += 1
                    logger.error(f"Could not confirm {record.filename}: {confirmed.message}")
                    continue
                record = repository.get_by_hash(file_hash)

            if record.status != FileStatus.READY_TO_MOVE:
                stats['errors'] += 1
                logger.error(f"{record.filename} is {record.status.name}, cannot move")
                continue

            outcome = operations.move_file(file_hash, record.target_path)
            if outcome.is_err:
                stats['errors'] += 1
                continue

            stats['moved'] += 1
            log_rows.append({
                'hash': file_hash,
                'filename': record.filename,
                'source': outcome.value.source_path,
                'target': outcome.value.target_path,
                'rollback_point_id': outcome.value.rollback_point_id,
            })

    if move_log is not None and log_rows:
        write_move_log(log_rows, move_log)

    return stats


def write_move_log(rows, output_path: Path):
    """Append completed moves so rollback_moves.py can undo a whole run"""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    new_file = not output_path.exists()

    with open(output_path, 'a', newline='', encoding='utf-8') as f:
        writer = csv.DictWriter(f, fieldnames=MOVE_LOG_FIELDS, quoting=csv.QUOTE_ALL)
        if new_file:
            writer.writeheader()
        for row in rows:
            writer.writerow(row)

    logger.info(f"Logged {len(rows)} moves to {output_path}")


def print_stats(stats: Dict[str, int], dry_run: bool):
    """Print summary statistics"""
    print("\n" + "=" * 60)
    if dry_run:
        print("DRY RUN SUMMARY (no files were moved)")
    else:
        print("MOVE SUMMARY")
    print("=" * 60)
    print(f"  Total in manifest:     {stats['total']:5d}")
    print(f"  {'Would move' if dry_run else 'Moved'}:            {stats['moved']:5d}")
    print(f"  Skipped (unreliable):  {stats['skipped_unreliable']:5d}")
    print(f"  Skipped (moved):       {stats['skipped_exists']:5d}")
    print(f"  Skipped (missing):     {stats['skipped_missing']:5d}")
    print(f"  Errors:                {stats['errors']:5d}")
    print("=" * 60)

    if dry_run:
        print("\nTo execute, run again with --execute")


def main():
    parser = argparse.ArgumentParser(
        description='Move classified media files into the library',
        epilog="""
SAFETY: Defaults to --dry-run. You must pass --execute to actually move files.

Examples:
  python move.py                           # Dry run with defaults
  python move.py --execute                 # Actually move files
  python move.py --include-suggested --execute
  python move.py --manifest output/sorting_manifest.csv --library /mnt/media --execute
        """
    )
    parser.add_argument('--manifest', '-m', type=Path,
                       default=Path('output/sorting_manifest.csv'),
                       help='Manifest CSV path (default: output/sorting_manifest.csv)')
    parser.add_argument('--library', '-l', type=Path, default=None,
                       help='Library base directory (default: from config)')
    parser.add_argument('--config', type=Path, default=Path('config.yaml'),
                       help='Configuration file (default: config.yaml)')
    parser.add_argument('--state', type=Path, default=None,
                       help='State file (default: from config)')
    parser.add_argument('--move-log', type=Path, default=Path('output/move_log.csv'),
                       help='CSV of completed moves (default: output/move_log.csv)')
    parser.add_argument('--include-suggested', action='store_true',
                       help='Also move files whose category is only a suggestion')
    parser.add_argument('--execute', action='store_true',
                       help='Actually move files (default is dry-run)')
    parser.add_argument('--dry-run', action='store_true', default=True,
                       help='Show what would be done without moving (default)')
    parser.add_argument('--verbose', '-v', action='store_true',
                       help='Debug logging')

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # If --execute is passed, disable dry-run
    dry_run = not args.execute

    # Check manifest exists
    if not args.manifest.exists():
        logger.error(f"Manifest not found: {args.manifest}")
        sys.exit(1)

    config = load_config(args.config)
    library_base = args.library or (Path(config.library_path) if config.library_path else None)
    state_path = args.state or Path(config.state_path)

    # Hard gate: verify paths
    if library_base is None:
        logger.error("Provide --library, or library_path in --config")
        sys.exit(1)

    if not library_base.exists():
        logger.error(f"Library directory not found: {library_base}")
        logger.error("Is the destination drive mounted?")
        sys.exit(1)

    if not state_path.exists():
        logger.error(f"State file not found: {state_path} (run classify.py first)")
        sys.exit(1)

    # Execute
    if dry_run:
        print("\n" + "=" * 60)
        print("DRY RUN MODE - no files will be moved")
        print("=" * 60 + "\n")
    else:
        print("\n" + "=" * 60)
        print("EXECUTING MOVES")
        print(f"Library: {library_base}")
        print("=" * 60 + "\n")

    stats = process_manifest(args.manifest, library_base, config, state_path, dry_run,
                             include_suggested=args.include_suggested,
                             move_log=None if dry_run else args.move_log)
    print_stats(stats, dry_run)

    return 0 if stats['errors'] == 0 else 1


if __name__ == '__main__':
    sys.exit(main())
