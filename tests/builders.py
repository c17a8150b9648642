"""
Entity builders for tests (plain values, no database).
"""
from datetime import date, datetime, time

from milkbank.domain.models import (
    BatchType,
    DonorRef,
    DonorStatus,
    DonorType,
    MicrobiologyRecord,
    MicrobiologyResult,
    MilkBatch,
    MilkJar,
    MilkStatus,
    MilkType,
    Prescription,
    Receiver,
)
from milkbank.workflows import DonorWorkflow


BASE_DAY = date(2024, 5, 27)
NOW = datetime(2024, 5, 27, 12, 0)


def make_jar(
    jar_id: str,
    hour: int = 8,
    minute: int = 0,
    donor_id: str = "D1",
    milk_type: MilkType = MilkType.MATURE,
    status: MilkStatus = MilkStatus.RAW,
    volume_ml: float = 100.0,
    day: date = BASE_DAY,
    donor_type: DonorType = DonorType.HETEROLOGOUS,
    **overrides,
) -> MilkJar:
    fields = dict(
        id=jar_id,
        folio=f"HE-{day.isoformat()}-{jar_id}",
        donor_id=donor_id,
        donor_name=f"Donadora {donor_id}",
        donor_type=donor_type,
        volume_ml=volume_ml,
        milk_type=milk_type,
        extraction_date=day,
        extraction_time=time(hour, minute),
        reception_temperature=4.0,
        status=status,
    )
    fields.update(overrides)
    return MilkJar(**fields)


def make_batch(
    batch_id: str = "B1",
    volume_ml: float = 100.0,
    status: MilkStatus = MilkStatus.RELEASED,
    expiration_date: date = date(2024, 11, 27),
    milk_type: MilkType = MilkType.MATURE,
    **overrides,
) -> MilkBatch:
    fields = dict(
        id=batch_id,
        folio=f"LP-2024-05-27-{batch_id}",
        donors=(DonorRef(id="D1", name="Donadora D1"),),
        jar_ids=(),
        batch_type=BatchType.HETEROLOGOUS,
        milk_type=milk_type,
        volume_total_ml=volume_ml,
        creation_date=NOW,
        status=status,
        expiration_date=expiration_date,
    )
    if status is MilkStatus.RELEASED:
        fields["initial_volume_ml"] = volume_ml
        fields["microbiology"] = MicrobiologyRecord(
            sowing_date=NOW, result=MicrobiologyResult.NEGATIVE, result_date=NOW, responsible="Lab"
        )
    fields.update(overrides)
    return MilkBatch(**fields)


def make_receiver(
    receiver_id: str = "R1",
    daily_ml: float = 160.0,
    frequency: int = 8,
    **overrides,
) -> Receiver:
    fields = dict(
        id=receiver_id,
        record_number=f"RN-{receiver_id}",
        full_name=f"RN {receiver_id}",
        birth_date=date(2024, 5, 1),
        gestational_age_weeks=32.0,
        weight_kg=1.6,
        prescription=Prescription(total_daily_volume_ml=daily_ml, frequency=frequency),
    )
    fields.update(overrides)
    return Receiver(**fields)


def register_active_donor(
    conn,
    full_name: str = "María López",
    national_id: str = "LOMM900101MDFPRR01",
    donor_type: DonorType = DonorType.HETEROLOGOUS,
):
    """Register a donor with signed consent and activate the donor."""
    workflow = DonorWorkflow(conn)
    donor = workflow.register_donor(full_name, national_id, date(1990, 1, 1), donor_type, at=NOW)
    workflow.sign_consent(donor.id, BASE_DAY)
    donor = workflow.change_status(donor.id, DonorStatus.ACTIVE)
    assert donor.status is DonorStatus.ACTIVE
    return donor
