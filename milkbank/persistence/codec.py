"""
Entity <-> JSON-serializable dict conversion.

Used for the JSON document column of every SQLite table and for the
key-value JSON gateway. Enums are stored by value, dates and datetimes
as ISO-8601 strings.
"""
from datetime import date, datetime, time
from typing import Any, Dict, Optional

from ..domain.models import (
    AdministrationRecord,
    AdministrationRoute,
    AnalysisData,
    ArrivalState,
    BatchType,
    CaloricClassification,
    ChemicalAnalysis,
    Donor,
    DonorRef,
    DonorStatus,
    DonorType,
    ExtractionPlace,
    HistoryEntry,
    LabResult,
    MicrobiologyRecord,
    MicrobiologyResult,
    MilkBatch,
    MilkColor,
    MilkJar,
    MilkStatus,
    MilkType,
    PasteurizationRecord,
    PhysicalAnalysis,
    Prescription,
    Receiver,
    ReceiverStatus,
    StorageLocation,
    TemperaturePoint,
)


# ============================================================
# Scalar helpers
# ============================================================

def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _time(value: Optional[str]) -> Optional[time]:
    return time.fromisoformat(value) if value else None


def _enum(enum_cls, value):
    return enum_cls(value) if value is not None else None


def _value(member) -> Optional[str]:
    return member.value if member is not None else None


def _history_to_dict(entries) -> list:
    return [
        {"timestamp": e.timestamp.isoformat(), "action": e.action, "user": e.user, "details": e.details}
        for e in entries
    ]


def _history_from_dict(items) -> tuple:
    return tuple(
        HistoryEntry(
            timestamp=_datetime(i["timestamp"]),
            action=i["action"],
            user=i.get("user", "system"),
            details=i.get("details"),
        )
        for i in items or []
    )


# ============================================================
# Donor
# ============================================================

def donor_to_dict(donor: Donor) -> Dict[str, Any]:
    return {
        "id": donor.id,
        "folio": donor.folio,
        "full_name": donor.full_name,
        "national_id": donor.national_id,
        "birth_date": _iso(donor.birth_date),
        "donor_type": donor.donor_type.value,
        "status": donor.status.value,
        "consent_signed": donor.consent_signed,
        "consent_date": _iso(donor.consent_date),
        "lab_results": [
            {
                "test_name": r.test_name,
                "result": r.result,
                "result_date": _iso(r.result_date),
                "is_reactive": r.is_reactive,
                "notes": r.notes,
            }
            for r in donor.lab_results
        ],
        "contact_phone": donor.contact_phone,
        "registration_date": _iso(donor.registration_date),
        "rejection_reason": donor.rejection_reason,
        "version": donor.version,
    }


def donor_from_dict(data: Dict[str, Any]) -> Donor:
    return Donor(
        id=data["id"],
        folio=data["folio"],
        full_name=data["full_name"],
        national_id=data["national_id"],
        birth_date=_date(data["birth_date"]),
        donor_type=DonorType(data["donor_type"]),
        status=DonorStatus(data.get("status", DonorStatus.PENDING.value)),
        consent_signed=bool(data.get("consent_signed", False)),
        consent_date=_date(data.get("consent_date")),
        lab_results=tuple(
            LabResult(
                test_name=r["test_name"],
                result=r["result"],
                result_date=_date(r["result_date"]),
                is_reactive=bool(r.get("is_reactive", False)),
                notes=r.get("notes"),
            )
            for r in data.get("lab_results", [])
        ),
        contact_phone=data.get("contact_phone", ""),
        registration_date=_date(data.get("registration_date")),
        rejection_reason=data.get("rejection_reason"),
        version=int(data.get("version", 0)),
    )


# ============================================================
# Jar
# ============================================================

def _analysis_to_dict(analysis: Optional[AnalysisData]) -> Optional[Dict[str, Any]]:
    if analysis is None:
        return None
    result: Dict[str, Any] = {"physical": None, "chemical": None}
    if analysis.physical is not None:
        result["physical"] = {
            "color": analysis.physical.color.value,
            "off_flavor": analysis.physical.off_flavor,
            "contamination": analysis.physical.contamination,
        }
    if analysis.chemical is not None:
        result["chemical"] = {
            "acidity_aliquots": list(analysis.chemical.acidity_aliquots),
            "acidity_average": analysis.chemical.acidity_average,
            "creamatocrit": analysis.chemical.creamatocrit,
            "classification": analysis.chemical.classification.value,
        }
    return result


def _analysis_from_dict(data: Optional[Dict[str, Any]]) -> Optional[AnalysisData]:
    if not data:
        return None
    physical = data.get("physical")
    chemical = data.get("chemical")
    return AnalysisData(
        physical=PhysicalAnalysis(
            color=MilkColor(physical["color"]),
            off_flavor=bool(physical.get("off_flavor", False)),
            contamination=physical.get("contamination", ""),
        ) if physical else None,
        chemical=ChemicalAnalysis(
            acidity_aliquots=tuple(chemical["acidity_aliquots"]),
            acidity_average=chemical["acidity_average"],
            creamatocrit=chemical["creamatocrit"],
            classification=CaloricClassification(chemical["classification"]),
        ) if chemical else None,
    )


def jar_to_dict(jar: MilkJar) -> Dict[str, Any]:
    return {
        "id": jar.id,
        "folio": jar.folio,
        "donor_id": jar.donor_id,
        "donor_name": jar.donor_name,
        "donor_type": jar.donor_type.value,
        "volume_ml": jar.volume_ml,
        "milk_type": jar.milk_type.value,
        "extraction_date": jar.extraction_date.isoformat(),
        "extraction_time": jar.extraction_time.isoformat(timespec="minutes"),
        "reception_temperature": jar.reception_temperature,
        "extraction_place": jar.extraction_place.value,
        "clean": jar.clean,
        "sealed": jar.sealed,
        "labeled": jar.labeled,
        "status": jar.status.value,
        "arrival_state": _value(jar.arrival_state),
        "analysis": _analysis_to_dict(jar.analysis),
        "rejection_reason": jar.rejection_reason,
        "observations": jar.observations,
        "history": _history_to_dict(jar.history),
        "version": jar.version,
    }


def jar_from_dict(data: Dict[str, Any]) -> MilkJar:
    return MilkJar(
        id=data["id"],
        folio=data["folio"],
        donor_id=data["donor_id"],
        donor_name=data.get("donor_name", ""),
        donor_type=DonorType(data["donor_type"]),
        volume_ml=data["volume_ml"],
        milk_type=MilkType(data["milk_type"]),
        extraction_date=_date(data["extraction_date"]),
        extraction_time=_time(data["extraction_time"]),
        reception_temperature=data.get("reception_temperature", 0.0),
        extraction_place=ExtractionPlace(data.get("extraction_place", ExtractionPlace.LACTARIUM.value)),
        clean=bool(data.get("clean", True)),
        sealed=bool(data.get("sealed", True)),
        labeled=bool(data.get("labeled", True)),
        status=MilkStatus(data.get("status", MilkStatus.RAW.value)),
        arrival_state=_enum(ArrivalState, data.get("arrival_state")),
        analysis=_analysis_from_dict(data.get("analysis")),
        rejection_reason=data.get("rejection_reason"),
        observations=data.get("observations"),
        history=_history_from_dict(data.get("history")),
        version=int(data.get("version", 0)),
    )


# ============================================================
# Batch
# ============================================================

def batch_to_dict(batch: MilkBatch) -> Dict[str, Any]:
    pasteurization = None
    if batch.pasteurization is not None:
        pasteurization = {
            "date": batch.pasteurization.date.isoformat(),
            "temp_curve": [
                {"minute": p.minute, "temperature": p.temperature}
                for p in batch.pasteurization.temp_curve
            ],
            "responsible": batch.pasteurization.responsible,
            "completed": batch.pasteurization.completed,
        }

    microbiology = None
    if batch.microbiology is not None:
        microbiology = {
            "sowing_date": batch.microbiology.sowing_date.isoformat(),
            "result": _value(batch.microbiology.result),
            "result_date": _iso(batch.microbiology.result_date),
            "responsible": batch.microbiology.responsible,
        }

    location = None
    if batch.location is not None:
        location = {
            "equipment_id": batch.location.equipment_id,
            "shelf": batch.location.shelf,
            "position": batch.location.position,
        }

    return {
        "id": batch.id,
        "folio": batch.folio,
        "donors": [{"id": d.id, "name": d.name} for d in batch.donors],
        "jar_ids": list(batch.jar_ids),
        "batch_type": batch.batch_type.value,
        "milk_type": batch.milk_type.value,
        "volume_total_ml": batch.volume_total_ml,
        "initial_volume_ml": batch.initial_volume_ml,
        "creation_date": batch.creation_date.isoformat(),
        "status": batch.status.value,
        "expiration_date": _iso(batch.expiration_date),
        "pasteurization": pasteurization,
        "microbiology": microbiology,
        "location": location,
        "rejection_reason": batch.rejection_reason,
        "destination": batch.destination,
        "history": _history_to_dict(batch.history),
        "version": batch.version,
    }


def batch_from_dict(data: Dict[str, Any]) -> MilkBatch:
    pasteurization = data.get("pasteurization")
    microbiology = data.get("microbiology")
    location = data.get("location")
    return MilkBatch(
        id=data["id"],
        folio=data["folio"],
        donors=tuple(DonorRef(id=d["id"], name=d.get("name", "")) for d in data.get("donors", [])),
        jar_ids=tuple(data.get("jar_ids", [])),
        batch_type=BatchType(data["batch_type"]),
        milk_type=MilkType(data["milk_type"]),
        volume_total_ml=data["volume_total_ml"],
        initial_volume_ml=data.get("initial_volume_ml"),
        creation_date=_datetime(data["creation_date"]),
        status=MilkStatus(data.get("status", MilkStatus.RAW.value)),
        expiration_date=_date(data.get("expiration_date")),
        pasteurization=PasteurizationRecord(
            date=_datetime(pasteurization["date"]),
            temp_curve=tuple(
                TemperaturePoint(minute=p["minute"], temperature=p["temperature"])
                for p in pasteurization.get("temp_curve", [])
            ),
            responsible=pasteurization.get("responsible", ""),
            completed=bool(pasteurization.get("completed", False)),
        ) if pasteurization else None,
        microbiology=MicrobiologyRecord(
            sowing_date=_datetime(microbiology["sowing_date"]),
            result=_enum(MicrobiologyResult, microbiology.get("result")),
            result_date=_datetime(microbiology.get("result_date")),
            responsible=microbiology.get("responsible"),
        ) if microbiology else None,
        location=StorageLocation(
            equipment_id=location["equipment_id"],
            shelf=int(location["shelf"]),
            position=location["position"],
        ) if location else None,
        rejection_reason=data.get("rejection_reason"),
        destination=data.get("destination"),
        history=_history_from_dict(data.get("history")),
        version=int(data.get("version", 0)),
    )


# ============================================================
# Receiver & administration
# ============================================================

def receiver_to_dict(receiver: Receiver) -> Dict[str, Any]:
    prescription = None
    if receiver.prescription is not None:
        p = receiver.prescription
        prescription = {
            "total_daily_volume_ml": p.total_daily_volume_ml,
            "frequency": p.frequency,
            "milk_type_preference": p.milk_type_preference.value,
            "caloric_requirement": p.caloric_requirement.value,
            "prescribed_by": p.prescribed_by,
            "last_update": _iso(p.last_update),
        }
    return {
        "id": receiver.id,
        "record_number": receiver.record_number,
        "full_name": receiver.full_name,
        "birth_date": receiver.birth_date.isoformat(),
        "gestational_age_weeks": receiver.gestational_age_weeks,
        "weight_kg": receiver.weight_kg,
        "diagnosis": receiver.diagnosis,
        "location": receiver.location,
        "status": receiver.status.value,
        "allergies": list(receiver.allergies),
        "prescription": prescription,
        "version": receiver.version,
    }


def receiver_from_dict(data: Dict[str, Any]) -> Receiver:
    p = data.get("prescription")
    return Receiver(
        id=data["id"],
        record_number=data["record_number"],
        full_name=data["full_name"],
        birth_date=_date(data["birth_date"]),
        gestational_age_weeks=data.get("gestational_age_weeks", 0),
        weight_kg=data["weight_kg"],
        diagnosis=data.get("diagnosis", ""),
        location=data.get("location", ""),
        status=ReceiverStatus(data.get("status", ReceiverStatus.STABLE.value)),
        allergies=tuple(data.get("allergies", [])),
        prescription=Prescription(
            total_daily_volume_ml=p["total_daily_volume_ml"],
            frequency=int(p["frequency"]),
            milk_type_preference=BatchType(p.get("milk_type_preference", BatchType.HETEROLOGOUS.value)),
            caloric_requirement=CaloricClassification(
                p.get("caloric_requirement", CaloricClassification.NORMOCALORIC.value)
            ),
            prescribed_by=p.get("prescribed_by", ""),
            last_update=_datetime(p.get("last_update")),
        ) if p else None,
        version=int(data.get("version", 0)),
    )


def administration_to_dict(record: AdministrationRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "receiver_id": record.receiver_id,
        "receiver_name": record.receiver_name,
        "batch_id": record.batch_id,
        "batch_folio": record.batch_folio,
        "volume_prescribed": record.volume_prescribed,
        "volume_administered": record.volume_administered,
        "volume_discarded": record.volume_discarded,
        "discard_reason": record.discard_reason,
        "timestamp": record.timestamp.isoformat(),
        "responsible": record.responsible,
        "temperature": record.temperature,
        "route": record.route.value,
    }


def administration_from_dict(data: Dict[str, Any]) -> AdministrationRecord:
    return AdministrationRecord(
        id=data["id"],
        receiver_id=data["receiver_id"],
        receiver_name=data.get("receiver_name", ""),
        batch_id=data["batch_id"],
        batch_folio=data.get("batch_folio", ""),
        volume_prescribed=data.get("volume_prescribed", 0),
        volume_administered=data["volume_administered"],
        volume_discarded=data.get("volume_discarded", 0),
        discard_reason=data.get("discard_reason"),
        timestamp=_datetime(data["timestamp"]),
        responsible=data.get("responsible", ""),
        temperature=data.get("temperature", 0.0),
        route=AdministrationRoute(data.get("route", AdministrationRoute.ORAL.value)),
    )
