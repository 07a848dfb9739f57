#!/usr/bin/env python3
"""
rollback_moves.py - Undo moves made by move.py

Safety:
- --dry-run is the DEFAULT (must pass --execute to actually roll back)
- Each rollback point works once and expires after rollback.retention_hours
- Integrity is checked before anything moves; failures are reported with
  both paths so the library can be reconciled by hand
"""

import sys
import csv
import logging
import argparse
from pathlib import Path
from typing import Dict, List

from mediasorter.config import load_config
from mediasorter.locks import KeyedLock
from mediasorter.repository import JsonRepository
from mediasorter.rollback import RollbackService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def read_move_log(log_path: Path) -> List[Dict[str, str]]:
    with open(log_path, 'r', encoding='utf-8') as f:
        return list(csv.DictReader(f))


def rollback_points(service: RollbackService, point_ids: List[str], dry_run: bool) -> Dict[str, int]:
    """Execute (or check) each rollback point, newest first"""
    stats = {'total': len(point_ids), 'rolled_back': 0, 'not_possible': 0, 'errors': 0}

    for point_id in reversed(point_ids):
        validation = service.validate_rollback_integrity(point_id)
        if validation.is_err:
            stats['errors'] += 1
            logger.error(f"{point_id}: {validation.message}")
            continue

        report = validation.value
        if dry_run:
            if report.is_valid:
                point = service.repository.get_rollback_point(point_id)
                print(f"[DRY RUN] {point.target_path}")
                print(f"  -> {point.original_path}")
                stats['rolled_back'] += 1
            else:
                print(f"[DRY RUN] cannot roll back {point_id}: {'; '.join(report.messages)}")
                stats['not_possible'] += 1
            continue

        result = service.execute_rollback(point_id)
        if result.is_ok:
            stats['rolled_back'] += 1
        elif not report.is_valid:
            stats['not_possible'] += 1
            logger.warning(f"{point_id}: {result.message}")
        else:
            stats['errors'] += 1
            logger.error(f"{point_id}: {result.message}")

    return stats


def print_stats(stats: Dict[str, int], dry_run: bool):
    """Print summary statistics"""
    print("\n" + "=" * 60)
    print("DRY RUN SUMMARY (nothing was moved)" if dry_run else "ROLLBACK SUMMARY")
    print("=" * 60)
    print(f"  Rollback points:     {stats['total']:5d}")
    print(f"  {'Would roll back' if dry_run else 'Rolled back'}:     {stats['rolled_back']:5d}")
    print(f"  Not possible:        {stats['not_possible']:5d}")
    print(f"  Errors:              {stats['errors']:5d}")
    print("=" * 60)

    if dry_run:
        print("\nTo execute, run again with --execute")


def main():
    parser = argparse.ArgumentParser(
        description='Undo file moves using recorded rollback points',
        epilog="""
SAFETY: Defaults to --dry-run. You must pass --execute to actually move files back.

Examples:
  python rollback_moves.py --hash 3f2a...              # Last move of one file
  python rollback_moves.py --log output/move_log.csv   # Every move in a log
  python rollback_moves.py --cleanup --execute         # Purge expired points
        """
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument('--hash', help='Roll back the most recent move of this file hash')
    target.add_argument('--log', type=Path, help='Roll back every move listed in a move log')
    target.add_argument('--cleanup', action='store_true',
                        help='Delete rollback points older than the retention window')
    parser.add_argument('--config', type=Path, default=Path('config.yaml'),
                       help='Configuration file (default: config.yaml)')
    parser.add_argument('--state', type=Path, default=None,
                       help='State file (default: from config)')
    parser.add_argument('--execute', action='store_true',
                       help='Actually roll back (default is dry-run)')
    parser.add_argument('--verbose', '-v', action='store_true',
                       help='Debug logging')

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    dry_run = not args.execute
    config = load_config(args.config)
    state_path = args.state or Path(config.state_path)

    if not state_path.exists():
        logger.error(f"State file not found: {state_path}")
        sys.exit(1)

    repository = JsonRepository(state_path, max_retries=config.files.max_retries)
    service = RollbackService(repository, config.rollback.retention_hours,
                              KeyedLock(config.files.lock_timeout_seconds), config.files.buffer_size)

    if args.cleanup:
        if dry_run:
            print("Cleanup is destructive - run again with --execute")
            return 0
        removed = service.cleanup_rollback_history()
        print(f"Removed {removed} expired rollback points")
        return 0

    if args.hash:
        history = service.get_rollback_history(args.hash)
        if history.is_err or not history.value:
            logger.error(f"No rollback points for {args.hash}")
            sys.exit(1)
        point_ids = [history.value[0].id]
    else:
        if not args.log.exists():
            logger.error(f"Move log not found: {args.log}")
            sys.exit(1)
        point_ids = [row['rollback_point_id'] for row in read_move_log(args.log)]

    stats = rollback_points(service, point_ids, dry_run)
    print_stats(stats, dry_run)

    return 0 if stats['errors'] == 0 and stats['not_possible'] == 0 else 1


if __name__ == '__main__':
    sys.exit(main())
