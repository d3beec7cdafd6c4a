#!/usr/bin/env python3
"""
Command-line retention utility for the run record store.

Runs one retention pass against the configured database without starting the
background timer, and can print store statistics.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

# Add repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.config import load_config
from src.core.dao import init_store, shutdown_store
from src.core.errors import RecordStoreError
from src.core.schema import CleanupReport, StoreStats


def format_report(report: CleanupReport) -> str:
    """Format a cleanup report for display."""
    lines = [
        f"Deleted by age:   {report.deleted_by_age}",
        f"Deleted by count: {report.deleted_by_count}",
        f"Total deleted:    {report.total_deleted}",
        f"Remaining:        {report.remaining_records}",
    ]
    return "\n".join(lines)


def format_stats(stats: StoreStats) -> str:
    data = stats.to_dict()
    return "\n".join([
        f"Total records: {data['totalRecords']}",
        f"Oldest record: {data['oldestRecord'] or '-'}",
        f"Newest record: {data['newestRecord'] or '-'}",
    ])


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Run record retention utilities",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                 # Run one retention pass
  %(prog)s --stats         # Show record statistics
  %(prog)s --json          # Output the cleanup report as JSON

Environment variables:
- DB_PATH=./data/run_records.db (database location)
- MAX_RECORDS=1000 (record-count cap)
- MAX_AGE_MINUTES=30 (age cap)
        """
    )

    parser.add_argument(
        "--db-path",
        help="Database file (overrides DB_PATH)"
    )

    parser.add_argument(
        "--stats", "-s",
        action="store_true",
        help="Print record statistics after the retention pass instead of the cleanup report"
    )

    parser.add_argument(
        "--json", "-j",
        action="store_true",
        help="Output results as JSON instead of human-readable text"
    )

    args = parser.parse_args(argv)
    config = load_config(db_path=args.db_path)

    store = None
    try:
        # Opening the store runs exactly one retention pass
        store = init_store(config, start_timer=False)

        if args.stats:
            stats = store.stats()
            print(json.dumps(stats.to_dict(), indent=2) if args.json else format_stats(stats))
            return 0

        report = store.last_report
        print(json.dumps(report.to_dict(), indent=2) if args.json else format_report(report))
        return 0

    except RecordStoreError as e:
        print(f"ERROR: Cleanup failed: {e}")
        return 1
    finally:
        shutdown_store(store)


if __name__ == "__main__":
    sys.exit(main())
