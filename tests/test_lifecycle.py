"""
Tests for status transitions, reception verification and donor eligibility.
"""
from datetime import date, datetime

import pytest

from builders import make_batch, make_jar
from milkbank.domain.errors import DonorEligibilityError, InvalidTransitionError, ValidationError
from milkbank.domain.lifecycle import (
    apply_lab_results,
    can_transition_batch,
    can_transition_jar,
    change_donor_status,
    ensure_donor_can_deliver,
    evaluate_reception,
    reject_batch,
    reject_jar,
    transition_batch,
    verify_reception,
)
from milkbank.domain.models import (
    ArrivalState,
    Donor,
    DonorStatus,
    DonorType,
    LabResult,
    MicrobiologyRecord,
    MicrobiologyResult,
    MilkStatus,
)


AT = datetime(2024, 5, 27, 10, 0)


def make_donor(**overrides):
    fields = dict(
        id="D1",
        folio="001-24",
        full_name="María López",
        national_id="LOMM900101MDFPRR01",
        birth_date=date(1990, 1, 1),
        donor_type=DonorType.HETEROLOGOUS,
    )
    fields.update(overrides)
    return Donor(**fields)


class TestReceptionVerification:
    def test_refrigerated_within_limit(self):
        jar = verify_reception(make_jar("J1"), 4.0, ArrivalState.REFRIGERATED, True, True, True, user="rec", at=AT)

        assert jar.status is MilkStatus.VERIFIED
        assert jar.reception_temperature == 4.0
        assert jar.history[-1].user == "rec"

    def test_boundary_temperature_passes(self):
        jar = verify_reception(make_jar("J1"), 5.0, ArrivalState.REFRIGERATED, True, True, True)
        assert jar.status is MilkStatus.VERIFIED

    def test_warm_jar_discarded(self):
        jar = verify_reception(make_jar("J1"), 7.5, ArrivalState.REFRIGERATED, True, True, True)

        assert jar.status is MilkStatus.DISCARDED
        assert "7.5°C" in jar.rejection_reason

    def test_frozen_arrival_skips_temperature(self):
        jar = verify_reception(make_jar("J1"), 7.5, ArrivalState.FROZEN, True, True, True)
        assert jar.status is MilkStatus.VERIFIED

    def test_every_failure_listed(self):
        """The rejection reason lists each failed check."""
        decision = evaluate_reception(9.0, ArrivalState.REFRIGERATED, clean=False, sealed=False, labeled=False)

        assert decision.rejected
        for fragment in ("Temperatura", "no limpio", "sin sellar", "sin etiquetar"):
            assert fragment in decision.reason

    def test_only_raw_jars(self):
        with pytest.raises(InvalidTransitionError):
            verify_reception(make_jar("J1", status=MilkStatus.VERIFIED), 4.0, ArrivalState.FROZEN, True, True, True)


class TestJarTransitions:
    def test_lifecycle_graph(self):
        assert can_transition_jar(MilkStatus.RAW, MilkStatus.VERIFIED)
        assert can_transition_jar(MilkStatus.ANALYZED, MilkStatus.QUARANTINE)
        assert can_transition_jar(MilkStatus.RELEASED, MilkStatus.DISCARDED)
        assert not can_transition_jar(MilkStatus.RAW, MilkStatus.ANALYZED)
        assert not can_transition_jar(MilkStatus.DISCARDED, MilkStatus.RAW)

    def test_reject_requires_reason(self):
        """Discarding without a reason fails and leaves the jar as it was."""
        jar = make_jar("J1")
        with pytest.raises(ValidationError):
            reject_jar(jar, "   ")
        assert jar.status is MilkStatus.RAW

    def test_reject_records_reason(self):
        jar = reject_jar(make_jar("J1"), "Frasco roto", user="rec", at=AT)
        assert jar.status is MilkStatus.DISCARDED
        assert jar.rejection_reason == "Frasco roto"
        assert jar.history[-1].details == "Frasco roto"

    def test_discarded_is_terminal(self):
        jar = reject_jar(make_jar("J1"), "Frasco roto")
        with pytest.raises(InvalidTransitionError):
            reject_jar(jar, "Otra vez")

    def test_discarded_model_requires_reason(self):
        with pytest.raises(ValidationError):
            make_jar("J1", status=MilkStatus.DISCARDED)


class TestBatchTransitions:
    def test_release_needs_negative_culture(self):
        """A batch reaches RELEASED only with a Negativo culture on record."""
        batch = make_batch(status=MilkStatus.QUARANTINE)
        with pytest.raises(ValidationError):
            transition_batch(batch, MilkStatus.RELEASED, action="Liberación")

        negative = MicrobiologyRecord(sowing_date=AT, result=MicrobiologyResult.NEGATIVE)
        released = transition_batch(batch, MilkStatus.RELEASED, action="Liberación", microbiology=negative)
        assert released.status is MilkStatus.RELEASED
        assert released.microbiology.result is MicrobiologyResult.NEGATIVE

    def test_distributed_is_terminal(self):
        assert can_transition_batch(MilkStatus.RELEASED, MilkStatus.DISTRIBUTED)
        assert not can_transition_batch(MilkStatus.DISTRIBUTED, MilkStatus.DISCARDED)

    def test_skip_is_rejected(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            transition_batch(make_batch(status=MilkStatus.RAW), MilkStatus.RELEASED, action="Liberación")
        assert exc_info.value.current is MilkStatus.RAW

    def test_reject_batch(self):
        batch = reject_batch(make_batch(status=MilkStatus.ANALYZED), "Caída de temperatura", user="lab", at=AT)
        assert batch.status is MilkStatus.DISCARDED
        assert batch.history[-1].action == "Descarte"

    def test_released_batch_can_still_be_discarded(self):
        assert reject_batch(make_batch(), "Cadena de frío rota").status is MilkStatus.DISCARDED


class TestDonorEligibility:
    def test_activation_requires_consent(self):
        with pytest.raises(DonorEligibilityError) as exc_info:
            change_donor_status(make_donor(), DonorStatus.ACTIVE)
        assert "Consentimiento informado no firmado" in exc_info.value.failures

    def test_activation_with_consent(self):
        donor = change_donor_status(make_donor(consent_signed=True), DonorStatus.ACTIVE)
        assert donor.status is DonorStatus.ACTIVE

    def test_reactive_lab_rejects(self):
        """A reactive serology result moves the donor to No Apta."""
        donor = make_donor(consent_signed=True, status=DonorStatus.ACTIVE)
        result = LabResult(test_name="VIH", result="Reactivo", result_date=date(2024, 5, 1), is_reactive=True)

        rejected = apply_lab_results(donor, [result])
        assert rejected.status is DonorStatus.REJECTED
        assert "VIH" in rejected.rejection_reason

    def test_rejected_is_definitive(self):
        donor = make_donor(status=DonorStatus.REJECTED, rejection_reason="Serología reactiva: VIH")
        with pytest.raises(InvalidTransitionError):
            change_donor_status(donor, DonorStatus.ACTIVE)

    def test_suspension_needs_reason(self):
        donor = make_donor(consent_signed=True, status=DonorStatus.ACTIVE)
        with pytest.raises(ValidationError):
            change_donor_status(donor, DonorStatus.SUSPENDED)
        assert change_donor_status(donor, DonorStatus.SUSPENDED, "Mastitis").rejection_reason == "Mastitis"

    def test_only_active_donors_deliver(self):
        with pytest.raises(DonorEligibilityError):
            ensure_donor_can_deliver(make_donor())
        ensure_donor_can_deliver(make_donor(status=DonorStatus.ACTIVE, consent_signed=True))
