"""
Database integrity & invariant checks.

Structural checks (SQLite PRAGMAs, schema) plus milk bank invariants:
non-negative batch volumes, donor cap per batch, batch membership
consistency and ledger-derived balances. Used by `main.py check` and
tools/db_check.py.
"""
import sqlite3
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional

from .db import EXPECTED_TABLES, get_current_schema_version
from .domain.dosage import derive_remaining_volume
from .domain.peps import DEFAULT_MAX_DONORS
from .repositories import RepositoryFactory


# ============================================================
# Check Result Classes
# ============================================================

class CheckResult:
    """Result of a single check."""

    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"

    def __init__(self, name: str, status: str, message: str = "", details: Optional[List[str]] = None, recovery_hint: str = ""):
        self.name = name
        self.status = status
        self.message = message
        self.details = details or []
        self.recovery_hint = recovery_hint

    def __str__(self):
        status_icon = {
            self.PASS: "✓",
            self.WARN: "⚠",
            self.FAIL: "✗"
        }[self.status]

        result = f"{status_icon} {self.status}: {self.name}"
        if self.message:
            result += f"\n  {self.message}"
        if self.details:
            for detail in self.details[:10]:  # Limit to first 10
                result += f"\n    - {detail}"
            if len(self.details) > 10:
                result += f"\n    ... and {len(self.details) - 10} more"
        if self.recovery_hint and self.status == self.FAIL:
            result += f"\n  Recovery: {self.recovery_hint}"
        return result


class CheckReport:
    """Collection of check results."""

    def __init__(self):
        self.results: List[CheckResult] = []
        self.start_time = datetime.now()
        self.end_time = None

    def add(self, result: CheckResult):
        self.results.append(result)

    def finalize(self):
        self.end_time = datetime.now()

    def get_summary(self) -> Dict[str, int]:
        """Get count of PASS/WARN/FAIL."""
        return {
            "PASS": sum(1 for r in self.results if r.status == CheckResult.PASS),
            "WARN": sum(1 for r in self.results if r.status == CheckResult.WARN),
            "FAIL": sum(1 for r in self.results if r.status == CheckResult.FAIL),
        }

    def has_failures(self) -> bool:
        return any(r.status == CheckResult.FAIL for r in self.results)

    def has_warnings(self) -> bool:
        return any(r.status == CheckResult.WARN for r in self.results)

    def format_report(self, verbose: bool = False) -> str:
        """Render the report as text, failures first."""
        lines = ["=" * 80, "DATABASE INTEGRITY & INVARIANT CHECK REPORT", "=" * 80]
        lines.append(f"Timestamp: {self.start_time.strftime('%Y-%m-%d %H:%M:%S')}")
        if self.end_time:
            lines.append(f"Duration: {(self.end_time - self.start_time).total_seconds():.2f}s")
        lines.append("=" * 80)

        for status in [CheckResult.FAIL, CheckResult.WARN, CheckResult.PASS]:
            status_results = [r for r in self.results if r.status == status]
            if status_results or verbose:
                lines.append(f"{status} ({len(status_results)}):")
                lines.append("-" * 80)
                for result in status_results:
                    lines.append(str(result))
                    lines.append("")

        summary = self.get_summary()
        lines.append("=" * 80)
        lines.append(f"SUMMARY: PASS {summary['PASS']} | WARN {summary['WARN']} | FAIL {summary['FAIL']}")
        return "\n".join(lines)


# ============================================================
# Structural Checks
# ============================================================

def check_structural_integrity(conn: sqlite3.Connection) -> CheckResult:
    """PRAGMA integrity_check."""
    result = conn.execute("PRAGMA integrity_check").fetchall()
    if len(result) == 1 and result[0][0] == "ok":
        return CheckResult("Structural Integrity", CheckResult.PASS, "Database structure is intact")
    return CheckResult(
        "Structural Integrity",
        CheckResult.FAIL,
        f"Database corruption detected ({len(result)} issues)",
        [row[0] for row in result],
        "Restore the latest backup from data/backups/",
    )


def check_referential_integrity(conn: sqlite3.Connection) -> CheckResult:
    """PRAGMA foreign_key_check."""
    violations = conn.execute("PRAGMA foreign_key_check").fetchall()
    if not violations:
        return CheckResult("Referential Integrity", CheckResult.PASS, "All foreign key constraints satisfied")
    return CheckResult(
        "Referential Integrity",
        CheckResult.FAIL,
        f"Foreign key violations found ({len(violations)})",
        [f"Table: {row[0]}, RowID: {row[1]}, Parent: {row[2]}" for row in violations],
        "Review orphaned records and fix parent references",
    )


def check_schema(conn: sqlite3.Connection) -> CheckResult:
    """Schema version applied and every expected table present."""
    actual = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    missing = EXPECTED_TABLES - actual
    if missing:
        return CheckResult(
            "Schema",
            CheckResult.FAIL,
            f"{len(missing)} expected tables missing",
            [f"Missing: {table}" for table in sorted(missing)],
            "Run: python main.py init-db",
        )
    version = get_current_schema_version(conn)
    if version == 0:
        return CheckResult("Schema", CheckResult.FAIL, "No migrations applied", recovery_hint="Run: python main.py init-db")
    return CheckResult("Schema", CheckResult.PASS, f"Schema version is {version}")


# ============================================================
# Invariant Checks
# ============================================================

def check_batch_volumes(conn: sqlite3.Connection) -> CheckResult:
    """Every batch volume is >= 0."""
    batches = RepositoryFactory(conn).batches().list()
    negative = [f"{b.folio}: {b.volume_total_ml} mL" for b in batches if b.volume_total_ml < 0]
    if negative:
        return CheckResult(
            "Invariant: Batch Volume >= 0",
            CheckResult.FAIL,
            f"{len(negative)} batches with negative volume",
            negative,
            "Rebuild the balance from the administration ledger",
        )
    return CheckResult("Invariant: Batch Volume >= 0", CheckResult.PASS, f"{len(batches)} batches checked")


def check_donors_per_batch(conn: sqlite3.Connection, max_donors: int = DEFAULT_MAX_DONORS) -> CheckResult:
    """No batch pools milk from more than max_donors unique donors."""
    batches = RepositoryFactory(conn).batches().list()
    over = [
        f"{b.folio}: {len(set(b.donor_ids))} donors"
        for b in batches if len(set(b.donor_ids)) > max_donors
    ]
    if over:
        return CheckResult(
            "Invariant: Donors per Batch",
            CheckResult.FAIL,
            f"{len(over)} batches exceed {max_donors} donors",
            over,
        )
    return CheckResult("Invariant: Donors per Batch", CheckResult.PASS, f"All batches have <= {max_donors} donors")


def check_batch_membership(conn: sqlite3.Connection) -> CheckResult:
    """Every jar referenced by a batch exists, and no jar belongs to two batches."""
    repos = RepositoryFactory(conn)
    batches = repos.batches().list()
    issues = []

    usage = Counter(jar_id for b in batches for jar_id in b.jar_ids)
    for jar_id, count in usage.items():
        if count > 1:
            issues.append(f"Jar {jar_id} referenced by {count} batches")

    for batch in batches:
        for jar_id in batch.jar_ids:
            if not repos.jars().exists(jar_id):
                issues.append(f"{batch.folio}: jar {jar_id} does not exist")

    if issues:
        return CheckResult(
            "Invariant: Batch Membership",
            CheckResult.FAIL,
            f"{len(issues)} membership problems",
            issues,
            "Re-import the affected batches or remove dangling references",
        )
    return CheckResult("Invariant: Batch Membership", CheckResult.PASS, f"{len(usage)} pooled jars consistent")


def check_ledger_balances(conn: sqlite3.Connection) -> CheckResult:
    """Stored balance of released stock equals initial volume minus the ledger."""
    repos = RepositoryFactory(conn)
    mismatches = []
    checked = 0
    for batch in repos.batches().list():
        if batch.initial_volume_ml is None:
            continue
        checked += 1
        derived = derive_remaining_volume(batch.initial_volume_ml, repos.administrations().list(batch_id=batch.id))
        if abs(derived - batch.volume_total_ml) >= 0.005:
            mismatches.append(f"{batch.folio}: stored {batch.volume_total_ml} mL, ledger {derived} mL")

    if mismatches:
        return CheckResult(
            "Invariant: Ledger Balance",
            CheckResult.WARN,
            f"{len(mismatches)} batches differ from their ledger",
            mismatches,
        )
    return CheckResult("Invariant: Ledger Balance", CheckResult.PASS, f"{checked} released batches balanced")


# ============================================================
# Main Check Runner
# ============================================================

def run_all_checks(conn: sqlite3.Connection, quick: bool = False, max_donors: int = DEFAULT_MAX_DONORS) -> CheckReport:
    """Run all checks and return report."""
    report = CheckReport()

    report.add(check_structural_integrity(conn))
    report.add(check_referential_integrity(conn))
    report.add(check_schema(conn))

    # Invariant checks need the schema
    if not quick and not report.has_failures():
        report.add(check_batch_volumes(conn))
        report.add(check_donors_per_batch(conn, max_donors))
        report.add(check_batch_membership(conn))
        report.add(check_ledger_balances(conn))

    report.finalize()
    return report
