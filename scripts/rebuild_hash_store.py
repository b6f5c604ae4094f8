#!/usr/bin/env python3
"""
Fingerprint Table Rebuild Utility
Repopulates the fingerprint table from a keybinding export without touching the
vector index. Use when the index is intact but the fingerprint database was
lost or is suspected stale after a partially failed sync.

Usage: python scripts/rebuild_hash_store.py keybindings.json [--db PATH]
"""

import argparse
import sys
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from keybind_rag.core import config
from keybind_rag.core.fingerprints import ChangeDetector, SQLiteFingerprintTable
from keybind_rag.core.models import load_records


def main(argv=None):
    """Rebuild the fingerprint table from a JSON keybinding export."""
    parser = argparse.ArgumentParser(description="Rebuild the keybinding fingerprint table")
    parser.add_argument("records", help="JSON file with keybinding records")
    parser.add_argument("--db", default=config.FINGERPRINT_DB_PATH, help="Fingerprint database path")
    parser.add_argument("--dry-run", action="store_true", help="Report differences without writing")
    args = parser.parse_args(argv)

    records_path = Path(args.records)
    if not records_path.exists():
        print(f"ERROR: Records file not found: {records_path}")
        return 1

    try:
        records = load_records(records_path)
    except (ValueError, KeyError) as e:
        print(f"ERROR: Could not read records: {e}")
        return 1

    print(f"Found {len(records)} keybindings in {records_path}")

    detector = ChangeDetector(SQLiteFingerprintTable(args.db))
    stats = detector.stats(records)
    print(f"Current table: {stats.total_stored} entries "
          f"({stats.new} new, {stats.modified} modified, {stats.unchanged} unchanged, {stats.deleted} stale)")

    if args.dry_run:
        print("Dry run - no changes written.")
        return 0

    previous, current = detector.rebuild(records)
    print(f"✓ Rebuilt fingerprint table: {previous} -> {current} entries")
    return 0


if __name__ == "__main__":
    sys.exit(main())
