"""
Tests for integrity and invariant checks (milkbank.checks).
"""
from dataclasses import replace

from builders import make_batch
from milkbank.checks import CheckResult, check_ledger_balances, run_all_checks
from milkbank.domain.models import DonorRef, MilkStatus
from milkbank.repositories import RepositoryFactory


def test_clean_database_passes(conn):
    report = run_all_checks(conn)

    assert not report.has_failures()
    assert not report.has_warnings()
    assert report.get_summary()["PASS"] == 7
    assert "SUMMARY: PASS 7 | WARN 0 | FAIL 0" in report.format_report()


def test_quick_mode_checks_structure_only(conn):
    assert len(run_all_checks(conn, quick=True).results) == 3


def test_balance_drift_is_warned(conn):
    """A stored balance that no longer matches the ledger shows up as a warning."""
    batch = make_batch(volume_ml=100.0)
    RepositoryFactory(conn).batches().insert(replace(batch, volume_total_ml=90.0))

    result = check_ledger_balances(conn)
    assert result.status == CheckResult.WARN
    assert "ledger 100.0 mL" in result.details[0]


def test_donor_limit_failure(conn):
    donors = tuple(DonorRef(id=f"D{i}", name=f"Donadora {i}") for i in range(4))
    RepositoryFactory(conn).batches().insert(make_batch(donors=donors, status=MilkStatus.RAW))

    report = run_all_checks(conn, max_donors=3)
    assert report.has_failures()
    failed = [r.name for r in report.results if r.status == CheckResult.FAIL]
    assert failed == ["Invariant: Donors per Batch"]
