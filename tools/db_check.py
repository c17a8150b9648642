#!/usr/bin/env python3
"""
Database Integrity & Invariant Checker

Usage:
    python tools/db_check.py                 # Full check
    python tools/db_check.py --quick         # Structure only
    python tools/db_check.py --db path.db    # Custom database

Exit Codes:
    0 = All checks PASS
    1 = One or more checks FAIL
    2 = One or more checks WARN (but no failures)
"""

import sys
from pathlib import Path
import argparse

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from milkbank.checks import run_all_checks  # noqa: E402
from milkbank.db import open_connection  # noqa: E402
from milkbank.utils.paths import get_db_path  # noqa: E402


def main():
    parser = argparse.ArgumentParser(
        description="Database integrity and invariant checker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("--quick", action="store_true", help="Quick check (structure only, skip invariants)")
    parser.add_argument("--verbose", action="store_true", help="Verbose output")
    parser.add_argument("--db", type=str, help="Database path (default: data/milkbank.db)")

    args = parser.parse_args()
    db_path = Path(args.db) if args.db else get_db_path()

    if not db_path.exists():
        print(f"Database not found: {db_path}")
        print("   Run: python main.py init-db")
        return 1

    conn = open_connection(db_path)
    try:
        report = run_all_checks(conn, quick=args.quick)
    finally:
        conn.close()

    print(f"Database: {db_path}")
    print(report.format_report(verbose=args.verbose))

    if report.has_failures():
        return 1
    elif report.has_warnings():
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
