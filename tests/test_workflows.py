"""
End-to-end workflow tests over an in-memory database.

Jar -> batch -> analysis -> Holder -> culture -> stock -> administration.
"""
from datetime import time, timedelta

import pytest

from builders import BASE_DAY, NOW, register_active_donor
from milkbank.analytics.waste import WasteSource
from milkbank.db import get_audit_log
from milkbank.domain.analysis import ALL_JARS_REJECTED_REASON, HOLDER_FAILED_REASON, POSITIVE_CULTURE_REASON
from milkbank.domain.errors import (
    DonorEligibilityError,
    DonorLimitError,
    InsufficientVolumeError,
    PepsViolation,
    ValidationError,
)
from milkbank.domain.models import (
    AdministrationRoute,
    ArrivalState,
    DiscardReason,
    DiscardReasonCode,
    DonorType,
    MicrobiologyResult,
    MilkColor,
    MilkStatus,
    MilkType,
    Prescription,
    TemperaturePoint,
)
from milkbank.repositories import RepositoryFactory
from milkbank.workflows import (
    AdministrationWorkflow,
    DonorWorkflow,
    IntakeWorkflow,
    PoolingWorkflow,
    ProcessingWorkflow,
    ReceiverWorkflow,
    WasteWorkflow,
)


RELEASE_AT = NOW + timedelta(days=2)
GOOD_ACIDITY = (4.0, 4.5, 5.0)


def holder_curve(temperatures, step=5):
    return [TemperaturePoint(minute=i * step, temperature=t) for i, t in enumerate(temperatures)]


COMPLIANT_CURVE = holder_curve([40.0, 62.5, 62.6, 62.5, 62.4, 62.5, 62.5, 62.5])


@pytest.fixture
def repos(conn):
    return RepositoryFactory(conn)


@pytest.fixture
def intake(conn, settings):
    return IntakeWorkflow(conn, settings)


@pytest.fixture
def pooling(conn, settings):
    return PoolingWorkflow(conn, settings)


@pytest.fixture
def processing(conn, settings):
    return ProcessingWorkflow(conn, settings)


@pytest.fixture
def donor(conn):
    return register_active_donor(conn)


def delivered_jar(intake, donor, volume_ml, hour, milk_type=MilkType.MATURE, verify=True):
    """Register a jar and, by default, pass it through reception checks."""
    jar = intake.register_jar(
        donor.id, volume_ml, milk_type, BASE_DAY, time(hour, 0), 4.0, user="recepcion", at=NOW
    )
    if verify:
        jar = intake.verify_reception(jar.id, 4.0, ArrivalState.REFRIGERATED, True, True, True, at=NOW)
    return jar


def analyze_all(processing, batch, acidity_by_jar=None):
    processing.start_analysis(batch.id, user="lab", at=NOW)
    for jar_id in batch.jar_ids:
        aliquots = (acidity_by_jar or {}).get(jar_id, GOOD_ACIDITY)
        processing.record_jar_analysis(batch.id, jar_id, MilkColor.WHITE, False, "", aliquots, 620.0, user="lab", at=NOW)
    return processing.complete_analysis(batch.id, user="lab", at=NOW)


@pytest.fixture
def released_batch(intake, pooling, processing, donor):
    """100 mL mature batch (60 + 40 mL) taken all the way to RELEASED."""
    first = delivered_jar(intake, donor, 60.0, 6)
    second = delivered_jar(intake, donor, 40.0, 7)
    batch = pooling.create_batch([first.id, second.id], user="lab", at=NOW)
    analyze_all(processing, batch)
    processing.pasteurize(batch.id, COMPLIANT_CURVE, "Q. Pérez", at=NOW)
    return processing.record_microbiology(batch.id, MicrobiologyResult.NEGATIVE, "Q. Pérez", at=RELEASE_AT)


@pytest.fixture
def receiver(conn):
    return ReceiverWorkflow(conn).register_receiver(
        "EXP-001", "RN García", BASE_DAY, 32.0, 1.6,
        prescription=Prescription(total_daily_volume_ml=120.0, frequency=8),
    )


# ============================================================
# Donors & intake
# ============================================================

class TestDonorWorkflow:
    def test_register_assigns_yearly_folio(self, conn):
        workflow = DonorWorkflow(conn)
        first = workflow.register_donor("Ana Ruiz", "rual900101", BASE_DAY.replace(year=1990), DonorType.HETEROLOGOUS, at=NOW)
        second = workflow.register_donor("Eva Sol", "soev910101", BASE_DAY.replace(year=1991), DonorType.HETEROLOGOUS, at=NOW)

        assert (first.folio, second.folio) == ("001-24", "002-24")
        assert first.national_id == "RUAL900101"
        assert get_audit_log(conn, entity_id=first.id)[0]["operation"] == "DONOR_REGISTERED"

    def test_pending_donor_cannot_deliver(self, conn, intake):
        pending = DonorWorkflow(conn).register_donor(
            "Ana Ruiz", "RUAL900101", BASE_DAY.replace(year=1990), DonorType.HETEROLOGOUS, at=NOW
        )
        with pytest.raises(DonorEligibilityError):
            intake.register_jar(pending.id, 50.0, MilkType.MATURE, BASE_DAY, time(6, 0), 4.0, at=NOW)


class TestIntakeWorkflow:
    def test_folios_by_donor_type_and_day(self, conn, intake, donor):
        homologous = register_active_donor(conn, "Eva Sol", "SOEV910101", DonorType.HOMOLOGOUS_INTERNAL)

        first = delivered_jar(intake, donor, 50.0, 6, verify=False)
        second = delivered_jar(intake, donor, 50.0, 7, verify=False)
        third = delivered_jar(intake, homologous, 50.0, 7, verify=False)

        assert first.folio == "HE-2024-05-27-001"
        assert second.folio == "HE-2024-05-27-002"
        assert third.folio == "HO-2024-05-27-001"
        assert first.status is MilkStatus.RAW

    def test_future_extraction_rejected(self, intake, donor):
        with pytest.raises(ValidationError):
            intake.register_jar(donor.id, 50.0, MilkType.MATURE, BASE_DAY, time(13, 0), 4.0, at=NOW)

    def test_warm_arrival_discards(self, conn, intake, donor):
        jar = delivered_jar(intake, donor, 50.0, 6, verify=False)
        checked = intake.verify_reception(jar.id, 8.0, ArrivalState.REFRIGERATED, True, True, True, at=NOW)

        assert checked.status is MilkStatus.DISCARDED
        assert get_audit_log(conn, entity_id=jar.id)[0]["operation"] == "JAR_REJECTED"


# ============================================================
# Pooling
# ============================================================

class TestPoolingWorkflow:
    def test_create_batch(self, repos, intake, pooling, donor):
        first = delivered_jar(intake, donor, 60.0, 6)
        second = delivered_jar(intake, donor, 40.0, 7)

        batch = pooling.create_batch([second.id, first.id], user="lab", at=NOW)

        assert batch.folio == "LP-2024-05-27-001"
        assert batch.jar_ids == (first.id, second.id)
        assert batch.volume_total_ml == 100.0
        assert batch.status is MilkStatus.RAW
        assert repos.jars().list_eligible() == []
        assert repos.jars().get_required(first.id).history[-1].details == batch.folio

    def test_newer_jar_alone_is_rejected(self, repos, intake, pooling, donor):
        delivered_jar(intake, donor, 60.0, 6)
        newer = delivered_jar(intake, donor, 40.0, 7)

        with pytest.raises(PepsViolation):
            pooling.create_batch([newer.id], at=NOW)
        assert repos.batches().list() == []

    def test_commit_revalidates_pool(self, repos, intake, pooling, donor):
        """An older jar registered after selection blocks the commit."""
        selected = delivered_jar(intake, donor, 60.0, 7)
        selector = pooling.open_selector(MilkType.MATURE)
        selector.select(selected.id)

        delivered_jar(intake, donor, 30.0, 5)

        with pytest.raises(PepsViolation):
            pooling.commit(selector, at=NOW)
        assert repos.batches().list() == []
        assert repos.folios().peek("LP-2024-05-27") == 0

    def test_donor_limit_blocks_commit(self, conn, repos, intake, pooling):
        donors = [
            register_active_donor(conn, f"Donadora {i}", f"NATIONAL{i:02d}") for i in range(4)
        ]
        jars = [delivered_jar(intake, d, 50.0, 6 + i) for i, d in enumerate(donors)]

        with pytest.raises(DonorLimitError):
            pooling.create_batch([j.id for j in jars], at=NOW)
        assert repos.batches().list() == []

        batch = pooling.create_batch([j.id for j in jars[:3]], at=NOW)
        assert len(batch.donors) == 3


# ============================================================
# Processing
# ============================================================

class TestProcessingWorkflow:
    def test_full_release(self, conn, repos, released_batch):
        assert released_batch.status is MilkStatus.RELEASED
        assert released_batch.initial_volume_ml == 100.0
        assert released_batch.expiration_date == NOW.date().replace(month=11)
        assert released_batch.microbiology.result is MicrobiologyResult.NEGATIVE

        for jar in repos.jars().list_by_ids(released_batch.jar_ids):
            assert jar.status is MilkStatus.RELEASED

        operations = [e["operation"] for e in get_audit_log(conn, entity_id=released_batch.id)]
        assert operations == [
            "BATCH_RELEASED", "BATCH_PASTEURIZED", "BATCH_ANALYZED",
            "BATCH_ANALYSIS_STARTED", "BATCH_COMMITTED",
        ]

    def test_rejected_jar_leaves_batch(self, repos, intake, pooling, processing, donor):
        """A jar over the acidity limit is dropped; volume is recomputed from the rest."""
        first = delivered_jar(intake, donor, 60.0, 6)
        second = delivered_jar(intake, donor, 40.0, 7)
        batch = pooling.create_batch([first.id, second.id], at=NOW)

        analyzed, summary = analyze_all(processing, batch, {second.id: (8.2, 8.4, 8.6)})

        assert analyzed.status is MilkStatus.ANALYZED
        assert analyzed.jar_ids == (first.id,)
        assert analyzed.volume_total_ml == 60.0
        assert (summary.passed, summary.rejected) == (1, 1)
        assert repos.jars().get_required(second.id).status is MilkStatus.DISCARDED
        assert repos.batches().batch_id_for_jar(second.id) is None

    def test_all_jars_rejected(self, intake, pooling, processing, donor):
        jar = delivered_jar(intake, donor, 60.0, 6)
        batch = pooling.create_batch([jar.id], at=NOW)
        processing.start_analysis(batch.id, at=NOW)
        processing.record_jar_analysis(batch.id, jar.id, MilkColor.RED_BLOOD, False, "", GOOD_ACIDITY, 620.0, at=NOW)

        discarded, summary = processing.complete_analysis(batch.id, at=NOW)

        assert discarded.status is MilkStatus.DISCARDED
        assert discarded.rejection_reason == ALL_JARS_REJECTED_REASON
        assert discarded.volume_total_ml == 0
        assert summary.rejected == 1

    def test_unverified_jar_blocks_analysis(self, repos, intake, pooling, processing, donor):
        jar = delivered_jar(intake, donor, 60.0, 6, verify=False)
        batch = pooling.create_batch([jar.id], at=NOW)

        with pytest.raises(ValidationError):
            processing.start_analysis(batch.id, at=NOW)
        assert repos.batches().get_required(batch.id).status is MilkStatus.RAW

    def test_pending_jar_blocks_completion(self, intake, pooling, processing, donor):
        first = delivered_jar(intake, donor, 60.0, 6)
        second = delivered_jar(intake, donor, 40.0, 7)
        batch = pooling.create_batch([first.id, second.id], at=NOW)
        processing.start_analysis(batch.id, at=NOW)
        processing.record_jar_analysis(batch.id, first.id, MilkColor.WHITE, False, "", GOOD_ACIDITY, 620.0, at=NOW)

        with pytest.raises(ValidationError):
            processing.complete_analysis(batch.id, at=NOW)

    def test_failed_holder_discards(self, intake, pooling, processing, donor):
        jar = delivered_jar(intake, donor, 60.0, 6)
        batch = pooling.create_batch([jar.id], at=NOW)
        analyze_all(processing, batch)

        discarded = processing.pasteurize(batch.id, holder_curve([62.5] * 4), "Q. Pérez", at=NOW)

        assert discarded.status is MilkStatus.DISCARDED
        assert discarded.rejection_reason == HOLDER_FAILED_REASON
        assert discarded.pasteurization.completed is False

    def test_positive_culture_discards(self, intake, pooling, processing, donor):
        jar = delivered_jar(intake, donor, 60.0, 6)
        batch = pooling.create_batch([jar.id], at=NOW)
        analyze_all(processing, batch)
        processing.pasteurize(batch.id, COMPLIANT_CURVE, "Q. Pérez", at=NOW)

        discarded = processing.record_microbiology(batch.id, MicrobiologyResult.POSITIVE, "Q. Pérez", at=RELEASE_AT)

        assert discarded.status is MilkStatus.DISCARDED
        assert discarded.rejection_reason == POSITIVE_CULTURE_REASON
        assert discarded.initial_volume_ml is None

    def test_storage_and_distribution(self, processing, released_batch):
        with pytest.raises(ValidationError):
            processing.assign_location(released_batch.id, "CONG-99", 1, "A1", at=RELEASE_AT)

        stored = processing.assign_location(released_batch.id, "CONG-01", 2, "B3", at=RELEASE_AT)
        assert stored.location.shelf == 2

        distributed = processing.distribute(released_batch.id, "UCIN Hospital Norte", at=RELEASE_AT)
        assert distributed.status is MilkStatus.DISTRIBUTED
        assert distributed.destination == "UCIN Hospital Norte"


# ============================================================
# Administration & waste
# ============================================================

class TestAdministrationWorkflow:
    def feed(self, workflow, batch, receiver, administered, discarded=0.0, reason=None):
        return workflow.administer(
            batch.id, receiver.id, administered, discarded, reason,
            responsible="Enf. Ruiz", temperature=16.0,
            route=AdministrationRoute.NASOGASTRIC_TUBE, at=RELEASE_AT + timedelta(hours=1),
        )

    def test_balance_follows_ledger(self, conn, settings, repos, released_batch, receiver):
        """15 given, then 10 given + 5 wasted leaves 70 mL; an 80 mL take changes nothing."""
        workflow = AdministrationWorkflow(conn, settings)

        first = self.feed(workflow, released_batch, receiver, 15)
        assert first.record.volume_prescribed == 15
        assert first.batch.volume_total_ml == 85.0

        second = self.feed(
            workflow, released_batch, receiver, 10, 5, DiscardReason(DiscardReasonCode.RECEIVER_REFUSAL)
        )
        assert second.batch.volume_total_ml == 70.0

        version_before = repos.batches().get_required(released_batch.id).version
        with pytest.raises(InsufficientVolumeError):
            self.feed(workflow, released_batch, receiver, 80)

        stored = repos.batches().get_required(released_batch.id)
        assert stored.volume_total_ml == 70.0
        assert stored.version == version_before
        assert len(workflow.history(receiver.id)) == 2
        assert workflow.verify_batch_balance(released_batch.id) == (True, 70.0, 70.0)

    def test_suggests_released_stock(self, conn, settings, released_batch):
        suggested = AdministrationWorkflow(conn, settings).suggest_batch(RELEASE_AT.date())
        assert suggested.id == released_batch.id


class TestWasteWorkflow:
    def test_disposal_confirmed_once(self, conn, intake, donor):
        jar = delivered_jar(intake, donor, 50.0, 6, verify=False)
        intake.reject_jar(jar.id, "Frasco roto", at=NOW)
        workflow = WasteWorkflow(conn)

        assert workflow.confirm_disposal(WasteSource.JAR, jar.id, "Enf. Ruiz", at=NOW) is True
        assert workflow.confirm_disposal(WasteSource.JAR, jar.id, "Enf. Ruiz", at=NOW) is False
        assert len(get_audit_log(conn, operation="WASTE_DISPOSED")) == 1

    def test_only_waste_can_be_disposed(self, conn, intake, donor):
        jar = delivered_jar(intake, donor, 50.0, 6)
        with pytest.raises(ValidationError):
            WasteWorkflow(conn).confirm_disposal(WasteSource.JAR, jar.id, "Enf. Ruiz")
