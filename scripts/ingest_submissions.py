#!/usr/bin/env python3
"""Ingestion script for 510(k) submission exports.

Loads an FDA 510(k) export (pipe/comma/tab separated or JSON) and stores it
as the current submission batch in the submission monitor database.

Usage:
    python scripts/ingest_submissions.py PATH [--db-path PATH] [--append]
"""

import argparse
import logging
import sys
from pathlib import Path

from src.submission_monitor.database import SubmissionDatabase
from src.submission_monitor.ingest import ingest_file

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main() -> int:
    """Main ingestion entrypoint."""
    parser = argparse.ArgumentParser(description="Ingest a 510(k) submission export")
    parser.add_argument("path", type=Path, help="Path to the export file")
    parser.add_argument(
        "--db-path",
        type=Path,
        help="Path to submission monitor database",
    )
    parser.add_argument(
        "--append",
        action="store_true",
        help="Upsert into the current batch instead of replacing it",
    )
    args = parser.parse_args()

    if not args.path.exists():
        logger.error(f"Export file not found: {args.path}")
        return 1

    db = SubmissionDatabase(db_path=str(args.db_path) if args.db_path else None)
    logger.info(f"Using database at {db.db_path}")

    try:
        count = ingest_file(db, args.path, replace=not args.append)
    except (OSError, ValueError) as exc:
        logger.error(f"Failed to ingest {args.path}: {exc}")
        return 1

    logger.info(f"Stored {count} submissions; {db.count_submissions()} now available")
    return 0


if __name__ == "__main__":
    sys.exit(main())
