"""
Tests for FEFO inventory views (milkbank.domain.inventory).
"""
from datetime import date

import pytest

from builders import make_batch, make_jar
from milkbank.config import EngineSettings
from milkbank.domain.inventory import AlertLevel, ExpiryPriority, InventoryCalculator
from milkbank.domain.models import MilkStatus, MilkType


TODAY = date(2024, 11, 20)


@pytest.fixture
def calculator():
    return InventoryCalculator()


class TestExpiryPriority:
    @pytest.mark.parametrize("expiration,expected", [
        (date(2024, 11, 19), ExpiryPriority.EXPIRED),
        (date(2024, 11, 20), ExpiryPriority.CRITICAL),
        (date(2024, 11, 27), ExpiryPriority.CRITICAL),
        (date(2024, 11, 28), ExpiryPriority.HIGH),
        (date(2024, 12, 20), ExpiryPriority.HIGH),
        (date(2024, 12, 21), ExpiryPriority.NORMAL),
    ])
    def test_windows(self, calculator, expiration, expected):
        """Expired < 0 days, critical <= 7, high <= 30, normal beyond."""
        assert calculator.expiry_priority(make_batch(expiration_date=expiration), TODAY) is expected

    def test_no_expiration(self, calculator):
        assert calculator.expiry_priority(make_batch(expiration_date=None), TODAY) is ExpiryPriority.NORMAL


class TestExpiryAlerts:
    def test_levels_and_order(self, calculator):
        """Alerts cover 0..7 days, most urgent first; expired and distant stock is silent."""
        batches = [
            make_batch("PREV", expiration_date=date(2024, 11, 27)),
            make_batch("TODAY", expiration_date=date(2024, 11, 20)),
            make_batch("WARN", expiration_date=date(2024, 11, 23)),
            make_batch("TOMORROW", expiration_date=date(2024, 11, 21)),
            make_batch("FAR", expiration_date=date(2024, 11, 28)),
            make_batch("GONE", expiration_date=date(2024, 11, 19)),
        ]
        alerts = calculator.expiry_alerts(batches, TODAY)

        assert [a.batch_id for a in alerts] == ["TODAY", "TOMORROW", "WARN", "PREV"]
        assert [a.level for a in alerts] == [
            AlertLevel.URGENT, AlertLevel.URGENT, AlertLevel.WARNING, AlertLevel.PREVENTIVE,
        ]
        assert "hoy" in alerts[0].message
        assert "mañana" in alerts[1].message

    def test_only_released_stock(self, calculator):
        batches = [
            make_batch("Q", status=MilkStatus.QUARANTINE, expiration_date=TODAY),
            make_batch("EMPTY", volume_ml=0.0, expiration_date=TODAY),
        ]
        assert calculator.expiry_alerts(batches, TODAY) == []

    def test_windows_from_settings(self):
        calculator = InventoryCalculator.from_settings(EngineSettings(preventive_alert_days=10))
        alerts = calculator.expiry_alerts([make_batch(expiration_date=date(2024, 11, 30))], TODAY)
        assert alerts[0].level is AlertLevel.PREVENTIVE


class TestStockViews:
    def test_fefo_order(self):
        batches = [
            make_batch("LATE", expiration_date=date(2025, 1, 1)),
            make_batch("NONE", expiration_date=None),
            make_batch("SOON", expiration_date=date(2024, 12, 1)),
        ]
        assert [b.id for b in InventoryCalculator.released_batches(batches)] == ["SOON", "LATE", "NONE"]

    def test_snapshot_totals(self):
        jars = [
            make_jar("J1", volume_ml=120.0),
            make_jar("J2", hour=9, volume_ml=80.0),
            make_jar("J3", hour=10, status=MilkStatus.VERIFIED),
        ]
        batches = [
            make_batch("Q", volume_ml=300.0, status=MilkStatus.QUARANTINE),
            make_batch("R1", volume_ml=150.0),
            make_batch("R2", volume_ml=50.0),
            make_batch("D", volume_ml=60.0, status=MilkStatus.DISTRIBUTED),
        ]
        snapshot = InventoryCalculator.snapshot(jars, batches, TODAY)

        assert (snapshot.raw_jars, snapshot.raw_volume_ml) == (2, 200.0)
        assert (snapshot.quarantine_batches, snapshot.quarantine_volume_ml) == (1, 300.0)
        assert (snapshot.released_batches, snapshot.released_volume_ml) == (2, 200.0)
        assert snapshot.total_volume_ml == 700.0

    def test_suggestion_skips_expired_and_other_types(self):
        """The suggested batch is the earliest-expiring usable one of the requested type."""
        batches = [
            make_batch("EXPIRED", expiration_date=date(2024, 11, 19)),
            make_batch("COL", expiration_date=date(2024, 11, 21), milk_type=MilkType.COLOSTRUM),
            make_batch("MAT", expiration_date=date(2024, 11, 25)),
        ]
        assert InventoryCalculator.suggest_batch_for_dosage(batches, TODAY).id == "COL"
        assert InventoryCalculator.suggest_batch_for_dosage(batches, TODAY, MilkType.MATURE).id == "MAT"

    def test_no_suggestion(self):
        assert InventoryCalculator.suggest_batch_for_dosage([], TODAY) is None
