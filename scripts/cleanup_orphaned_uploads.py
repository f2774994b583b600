#!/usr/bin/env python3
"""Remove uploads that were initiated but never completed.

Attachment rows without completed_at that are older than UPLOAD_ORPHAN_TTL_HOURS
are deleted together with any object already written to storage.

Usage:
    python scripts/cleanup_orphaned_uploads.py                  # Delete orphans past the TTL
    python scripts/cleanup_orphaned_uploads.py --dry-run        # Preview only
    python scripts/cleanup_orphaned_uploads.py --older-than 48 --limit 500
"""

import argparse
import sys
from pathlib import Path

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dotenv import load_dotenv

from app.tenanthub.config import load_config
from app.tenanthub.logging_config import setup_logging
from app.tenanthub.modules.content.service import cleanup_orphaned_uploads
from app.tenanthub.storage import storage_from_config
from scripts._db_utils import script_session


def run(config: dict, *, older_than_hours: int, limit: int, keep_objects: bool, dry_run: bool) -> dict[str, int]:
    storage = storage_from_config(config)
    with script_session(config["DATABASE_URL"]) as s:
        return cleanup_orphaned_uploads(
            s,
            storage,
            older_than_hours=older_than_hours,
            limit=limit,
            delete_objects=not keep_objects,
            dry_run=dry_run,
        )


def main() -> None:
    load_dotenv()
    config = load_config()
    setup_logging(config["LOG_LEVEL"], config["LOG_FILE"] or None)

    parser = argparse.ArgumentParser(description="Remove uploads that were never completed")
    parser.add_argument(
        "--older-than",
        type=int,
        default=int(config["UPLOAD_ORPHAN_TTL_HOURS"]),
        help="Age in hours after which an incomplete upload is orphaned",
    )
    parser.add_argument("--limit", type=int, default=100, help="Maximum uploads to remove per run")
    parser.add_argument("--keep-objects", action="store_true", help="Delete rows only, leave storage untouched")
    parser.add_argument("--dry-run", action="store_true", help="Preview only, don't delete")
    args = parser.parse_args()

    print(f"Database: {config['DATABASE_URL'][:50]}...")
    result = run(
        config,
        older_than_hours=args.older_than,
        limit=args.limit,
        keep_objects=args.keep_objects,
        dry_run=args.dry_run,
    )
    if args.dry_run:
        print(f"[DRY RUN] {result['found']} orphaned upload(s) older than {args.older_than}h. No changes made.")
        return
    print(f"OK: removed {result['deleted']} of {result['found']} orphaned upload(s); storage errors: {result['storageErrors']}")


if __name__ == "__main__":
    main()
