"""
Tests for the dosage ledger (milkbank.domain.dosage).
"""
import random
from datetime import datetime, timedelta

import pytest

from builders import make_batch, make_receiver
from milkbank.domain.dosage import (
    DosageWarning,
    administer,
    derive_remaining_volume,
    per_take_volume,
)
from milkbank.domain.errors import (
    BatchUnavailableError,
    InsufficientVolumeError,
    MissingReasonError,
    ValidationError,
)
from milkbank.domain.models import (
    AdministrationRoute,
    DiscardReason,
    DiscardReasonCode,
    MilkStatus,
)


AT = datetime(2024, 6, 1, 9, 0)


def feed(batch, prescribed, administered, discarded=0.0, reason=None, receiver=None, **kwargs):
    options = dict(
        receiver=receiver or make_receiver(),
        responsible="Enf. Ruiz",
        temperature=16.0,
        route=AdministrationRoute.NASOGASTRIC_TUBE,
        at=AT,
    )
    options.update(kwargs)
    return administer(batch, prescribed, administered, discarded, reason, **options)


class TestVolumeConservation:
    def test_two_takes_then_overdraw(self):
        """100 mL: 15 given, then 10 given + 5 wasted leaves 70; an 80 mL take fails."""
        batch = make_batch(volume_ml=100.0)

        first = feed(batch, 15, 15)
        second = feed(
            first.batch, 15, 10, 5, DiscardReason(DiscardReasonCode.RECEIVER_REFUSAL)
        )
        assert second.batch.volume_total_ml == 70.0

        with pytest.raises(InsufficientVolumeError) as exc_info:
            feed(second.batch, 15, 80)

        assert exc_info.value.requested == 80
        assert exc_info.value.available == 70.0
        assert second.batch.volume_total_ml == 70.0

    def test_balance_equals_ledger(self):
        """After any sequence of takes the stored balance equals initial minus the ledger."""
        rng = random.Random(7)
        batch = make_batch(volume_ml=250.0)
        records = []

        for i in range(60):
            administered = rng.choice([0, 5, 10, 12.5, 20, 40])
            discarded = rng.choice([0, 0, 0, 2.5, 5])
            if administered + discarded == 0:
                administered = 5
            reason = DiscardReason(DiscardReasonCode.ACCIDENTAL_SPILL) if discarded else None
            try:
                result = feed(batch, 20, administered, discarded, reason, at=AT + timedelta(hours=i))
            except (InsufficientVolumeError, BatchUnavailableError):
                continue
            batch = result.batch
            records.append(result.record)

            assert batch.volume_total_ml >= 0
            assert batch.volume_total_ml == derive_remaining_volume(250.0, records)

    def test_exact_remaining_volume_allowed(self):
        result = feed(make_batch(volume_ml=30.0), 30, 25, 5, "Derrame")
        assert result.batch.volume_total_ml == 0
        assert result.batch.status is MilkStatus.RELEASED

    def test_exact_drain_of_fractional_balance(self):
        """0.1 given + 0.2 wasted drains a 0.3 mL balance to zero."""
        result = feed(make_batch(volume_ml=0.3), 0.1, 0.1, 0.2, "Derrame")

        assert result.batch.volume_total_ml == 0
        assert derive_remaining_volume(0.3, [result.record]) == 0

    def test_empty_batch_unavailable(self):
        """A released batch with nothing left can no longer be dispensed."""
        empty = feed(make_batch(volume_ml=20.0), 20, 20).batch
        with pytest.raises(BatchUnavailableError):
            feed(empty, 20, 1)

    def test_input_batch_untouched(self):
        batch = make_batch(volume_ml=100.0)
        feed(batch, 15, 15)
        assert batch.volume_total_ml == 100.0
        assert batch.history == ()


class TestRecord:
    def test_record_fields(self):
        receiver = make_receiver(daily_ml=120.0, frequency=8)
        result = feed(make_batch(), 15, 15, receiver=receiver)
        record = result.record

        assert record.receiver_id == receiver.id
        assert record.batch_folio == "LP-2024-05-27-B1"
        assert record.volume_consumed == 15
        assert record.discard_reason is None
        assert record.timestamp == AT
        assert result.batch.history[-1].action == "Administración"

    def test_other_reason_label(self):
        result = feed(make_batch(), 15, 10, 5, DiscardReason.other("Vómito"))
        assert result.record.discard_reason == "Otro: Vómito"

    def test_free_text_reason(self):
        result = feed(make_batch(), 15, 10, 5, "  Sobrante  ")
        assert result.record.discard_reason == "Sobrante"


class TestRejections:
    def test_discard_without_reason(self):
        """Discarded volume needs a reason; nothing changes when it is missing."""
        batch = make_batch()
        with pytest.raises(MissingReasonError):
            feed(batch, 15, 10, 5)
        with pytest.raises(MissingReasonError):
            feed(batch, 15, 10, 5, DiscardReason.other("   "))
        assert batch.volume_total_ml == 100.0

    @pytest.mark.parametrize("status", [MilkStatus.QUARANTINE, MilkStatus.DISTRIBUTED, MilkStatus.ANALYZED])
    def test_unreleased_batch(self, status):
        with pytest.raises(BatchUnavailableError) as exc_info:
            feed(make_batch(status=status), 15, 15)
        assert exc_info.value.status is status

    def test_nothing_to_record(self):
        with pytest.raises(ValidationError):
            feed(make_batch(), 15, 0, 0)

    def test_negative_volume(self):
        with pytest.raises(ValidationError):
            feed(make_batch(), 15, -5)

    def test_missing_responsible(self):
        with pytest.raises(ValidationError):
            feed(make_batch(), 15, 15, responsible="  ")


class TestWarnings:
    def test_above_prescribed_take(self):
        """Giving more than the per-take volume warns but still records."""
        result = feed(make_batch(), 20, 25, receiver=make_receiver(daily_ml=160.0, frequency=8))

        assert DosageWarning.EXCEEDS_PRESCRIPTION in result.warnings
        assert result.batch.volume_total_ml == 75.0

    def test_temperature_out_of_range(self):
        result = feed(make_batch(), 20, 20, temperature=25.0)
        assert result.warnings == (DosageWarning.TEMPERATURE_OUT_OF_RANGE,)

    def test_no_warnings(self):
        assert feed(make_batch(), 20, 20).warnings == ()


class TestPerTake:
    @pytest.mark.parametrize("daily,frequency,expected", [
        (160, 8, 20),
        (100, 3, 33),
        (50, 4, 13),
        (25, 2, 13),
        (90, 12, 8),
    ])
    def test_rounding(self, daily, frequency, expected):
        """Per-take volume rounds half-up to whole mL."""
        assert per_take_volume(daily, frequency) == expected

    def test_prescription_property(self):
        assert make_receiver(daily_ml=100.0, frequency=3).prescription.volume_per_take == 33

    def test_zero_frequency(self):
        with pytest.raises(ValidationError):
            per_take_volume(100, 0)
