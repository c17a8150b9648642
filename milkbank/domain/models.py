"""
Domain models for the milk bank system.

Pure data classes + value objects. No I/O, no side effects.
Entities are immutable: engine functions return updated copies
(dataclasses.replace) instead of mutating their inputs.
"""
from dataclasses import dataclass
from enum import Enum
from datetime import date as Date, datetime, time
from typing import Optional, Tuple

from .errors import ValidationError


class DonorStatus(Enum):
    """Donor eligibility status."""
    ACTIVE = "Apta"            # May donate
    INACTIVE = "Inactiva"      # Voluntary or administrative leave
    PENDING = "Pendiente"      # Registration open: interview/labs missing
    SUSPENDED = "Suspendida"   # Temporary medical suspension
    REJECTED = "No Apta"       # Definitive clinical rejection


class DonorType(Enum):
    """Donor relation to the receiver."""
    HOMOLOGOUS_INTERNAL = "Homóloga Interna"  # Receiver's mother, hospitalized
    HOMOLOGOUS_EXTERNAL = "Homóloga Externa"  # Receiver's mother, at home
    HETEROLOGOUS = "Heteróloga"               # Altruistic donor, general bank

    @property
    def is_heterologous(self) -> bool:
        return self is DonorType.HETEROLOGOUS


class MilkType(Enum):
    """Milk classification by post-partum time."""
    COLOSTRUM = "Calostro"     # 0-7 days
    TRANSITION = "Transición"  # 7-14 days
    MATURE = "Madura"          # >14 days


class MilkStatus(Enum):
    """Lifecycle status shared by jars and batches."""
    RAW = "Cruda"
    VERIFIED = "Verificada"
    TESTING = "En Análisis"
    ANALYZED = "Analizada"
    QUARANTINE = "En Cuarentena"   # Pasteurized, awaiting culture (48h)
    RELEASED = "Liberada"          # Culture negative: consumable stock
    DISTRIBUTED = "Distribuida"    # Sent to another medical unit
    DISCARDED = "Descartada"


class BatchType(Enum):
    HOMOLOGOUS = "Homóloga"
    HETEROLOGOUS = "Heteróloga"


class CaloricClassification(Enum):
    HYPOCALORIC = "Hipocalórica"
    NORMOCALORIC = "Normocalórica"
    HYPERCALORIC = "Hipercalórica"


class ArrivalState(Enum):
    REFRIGERATED = "Refrigerada"
    FROZEN = "Congelada"


class ExtractionPlace(Enum):
    LACTARIUM = "Lactario"
    HOME = "Domicilio"
    COLLECTION_CENTER = "Centro de Acopio"


class MilkColor(Enum):
    """Colors recorded during physical inspection."""
    WHITE = "Blanco"
    YELLOW = "Amarillo"      # Colostrum / transition
    GREENISH = "Verdoso"     # Normal variant
    BLUISH = "Azulado"       # Mature milk
    RED_BLOOD = "Rojo/Sangre"
    GREEN_PUS = "Verde/Pus"


class MicrobiologyResult(Enum):
    NEGATIVE = "Negativo"
    POSITIVE = "Positivo"


class AdministrationRoute(Enum):
    ORAL = "Oral"
    NASOGASTRIC_TUBE = "Sonda Nasogástrica"
    OROGASTRIC_TUBE = "Sonda Orogástrica"


class ReceiverStatus(Enum):
    STABLE = "Estable"
    OBSERVATION = "Observación"
    CRITICAL = "Crítico"


class DiscardReasonCode(Enum):
    """Closed vocabulary for volume wasted during a feeding."""
    RECEIVER_REFUSAL = "Rechazo del receptor"
    ACCIDENTAL_SPILL = "Derrame accidental"
    LEFTOVER = "Sobros de toma anterior"
    OTHER = "Otro"


@dataclass(frozen=True)
class DiscardReason:
    """Discard reason: a catalog code, or OTHER with free text."""
    code: DiscardReasonCode
    detail: str = ""

    @classmethod
    def other(cls, text: str) -> "DiscardReason":
        return cls(code=DiscardReasonCode.OTHER, detail=text)

    @property
    def is_specified(self) -> bool:
        if self.code is DiscardReasonCode.OTHER:
            return bool(self.detail and self.detail.strip())
        return True

    @property
    def label(self) -> str:
        if self.code is DiscardReasonCode.OTHER:
            return f"Otro: {self.detail.strip()}"
        if self.detail:
            return f"{self.code.value} ({self.detail.strip()})"
        return self.code.value


# ============================================================
# Donor
# ============================================================

@dataclass(frozen=True)
class LabResult:
    """Serology or biochemistry result; a reactive result blocks the donor."""
    test_name: str
    result: str                 # 'Reactivo', 'No Reactivo' or a numeric value
    result_date: Date
    is_reactive: bool = False
    notes: Optional[str] = None

    def __post_init__(self):
        if not self.test_name or not self.test_name.strip():
            raise ValidationError("Lab test name cannot be empty")


@dataclass(frozen=True)
class Donor:
    """Milk donor."""
    id: str
    folio: str
    full_name: str
    national_id: str            # CURP
    birth_date: Date
    donor_type: DonorType
    status: DonorStatus = DonorStatus.PENDING
    consent_signed: bool = False
    consent_date: Optional[Date] = None
    lab_results: Tuple[LabResult, ...] = ()
    contact_phone: str = ""
    registration_date: Optional[Date] = None
    rejection_reason: Optional[str] = None
    version: int = 0            # Optimistic concurrency token

    def __post_init__(self):
        if not self.full_name or not self.full_name.strip():
            raise ValidationError("Donor name cannot be empty")
        if not self.national_id or not self.national_id.strip():
            raise ValidationError("Donor national ID cannot be empty")

    @property
    def reactive_tests(self) -> Tuple[str, ...]:
        return tuple(r.test_name for r in self.lab_results if r.is_reactive)


# ============================================================
# Jar
# ============================================================

@dataclass(frozen=True)
class HistoryEntry:
    """Append-only history log entry."""
    timestamp: datetime
    action: str
    user: str = "system"
    details: Optional[str] = None


@dataclass(frozen=True)
class PhysicalAnalysis:
    color: MilkColor
    off_flavor: bool = False
    contamination: str = ""     # Free-text note; non-empty means contaminated


@dataclass(frozen=True)
class ChemicalAnalysis:
    acidity_aliquots: Tuple[float, float, float]
    acidity_average: float      # Dornic degrees, two decimals
    creamatocrit: float         # Kcal/L
    classification: CaloricClassification


@dataclass(frozen=True)
class AnalysisData:
    physical: Optional[PhysicalAnalysis] = None
    chemical: Optional[ChemicalAnalysis] = None


@dataclass(frozen=True)
class MilkJar:
    """One container of raw milk from one donor at one extraction."""
    id: str
    folio: str                  # e.g. HO-2024-05-27-001
    donor_id: str
    donor_name: str
    donor_type: DonorType
    volume_ml: float
    milk_type: MilkType
    extraction_date: Date
    extraction_time: time
    reception_temperature: float
    extraction_place: ExtractionPlace = ExtractionPlace.LACTARIUM
    clean: bool = True
    sealed: bool = True
    labeled: bool = True
    status: MilkStatus = MilkStatus.RAW
    arrival_state: Optional[ArrivalState] = None
    analysis: Optional[AnalysisData] = None
    rejection_reason: Optional[str] = None
    observations: Optional[str] = None
    history: Tuple[HistoryEntry, ...] = ()
    version: int = 0

    def __post_init__(self):
        if not self.id or not self.id.strip():
            raise ValidationError("Jar ID cannot be empty")
        if self.volume_ml <= 0:
            raise ValidationError("Jar volume must be > 0 mL")
        if self.status is MilkStatus.DISCARDED and not (self.rejection_reason or "").strip():
            raise ValidationError("Discarded jar requires a rejection reason")

    @property
    def extraction_timestamp(self) -> datetime:
        """Extraction date + time, the PEPS ordering key."""
        return datetime.combine(self.extraction_date, self.extraction_time)


# ============================================================
# Batch
# ============================================================

@dataclass(frozen=True)
class DonorRef:
    id: str
    name: str


@dataclass(frozen=True)
class TemperaturePoint:
    minute: float
    temperature: float


@dataclass(frozen=True)
class PasteurizationRecord:
    date: datetime
    temp_curve: Tuple[TemperaturePoint, ...]
    responsible: str
    completed: bool


@dataclass(frozen=True)
class MicrobiologyRecord:
    sowing_date: datetime
    result: Optional[MicrobiologyResult] = None
    result_date: Optional[datetime] = None
    responsible: Optional[str] = None


@dataclass(frozen=True)
class StorageLocation:
    equipment_id: str
    shelf: int
    position: str               # e.g. "A1"

    def __post_init__(self):
        if not self.equipment_id or not self.equipment_id.strip():
            raise ValidationError("Equipment ID cannot be empty")
        if self.shelf < 1:
            raise ValidationError("Shelf must be >= 1")
        if not self.position or not self.position.strip():
            raise ValidationError("Position cannot be empty")


@dataclass(frozen=True)
class MilkBatch:
    """Pool of jars mixed for pasteurization and release."""
    id: str
    folio: str                  # e.g. LP-2024-05-27-001
    donors: Tuple[DonorRef, ...]
    jar_ids: Tuple[str, ...]
    batch_type: BatchType
    milk_type: MilkType
    volume_total_ml: float
    creation_date: datetime
    status: MilkStatus = MilkStatus.RAW
    initial_volume_ml: Optional[float] = None   # Volume at release into stock
    expiration_date: Optional[Date] = None
    pasteurization: Optional[PasteurizationRecord] = None
    microbiology: Optional[MicrobiologyRecord] = None
    location: Optional[StorageLocation] = None
    rejection_reason: Optional[str] = None
    destination: Optional[str] = None           # Receiving unit when DISTRIBUTED
    history: Tuple[HistoryEntry, ...] = ()
    version: int = 0

    def __post_init__(self):
        if not self.id or not self.id.strip():
            raise ValidationError("Batch ID cannot be empty")
        if self.volume_total_ml < 0:
            raise ValidationError("Batch volume cannot be negative")
        if self.status is MilkStatus.DISCARDED and not (self.rejection_reason or "").strip():
            raise ValidationError("Discarded batch requires a rejection reason")

    @property
    def donor_ids(self) -> Tuple[str, ...]:
        return tuple(d.id for d in self.donors)

    def is_expired(self, check_date: Date) -> bool:
        """Check if batch is expired as of check_date."""
        if self.expiration_date is None:
            return False
        return check_date > self.expiration_date


# ============================================================
# Receiver & dosage
# ============================================================

@dataclass(frozen=True)
class Prescription:
    """Standing feeding prescription for a receiver."""
    total_daily_volume_ml: float
    frequency: int              # Takes per day
    milk_type_preference: BatchType = BatchType.HETEROLOGOUS
    caloric_requirement: CaloricClassification = CaloricClassification.NORMOCALORIC
    prescribed_by: str = ""
    last_update: Optional[datetime] = None

    def __post_init__(self):
        if self.total_daily_volume_ml <= 0:
            raise ValidationError("Daily volume must be > 0 mL")
        if self.frequency < 1:
            raise ValidationError("Frequency must be >= 1")

    @property
    def volume_per_take(self) -> int:
        """Per-take volume: daily volume / frequency, rounded half-up to whole mL."""
        from .dosage import per_take_volume  # Import here to avoid circular dependency
        return per_take_volume(self.total_daily_volume_ml, self.frequency)


@dataclass(frozen=True)
class Receiver:
    """Neonate receiving bank milk."""
    id: str
    record_number: str          # e.g. RN-01
    full_name: str
    birth_date: Date
    gestational_age_weeks: float
    weight_kg: float
    diagnosis: str = ""
    location: str = ""          # e.g. "UCIN Cama 4"
    status: ReceiverStatus = ReceiverStatus.STABLE
    allergies: Tuple[str, ...] = ()
    prescription: Optional[Prescription] = None
    version: int = 0

    def __post_init__(self):
        if not self.full_name or not self.full_name.strip():
            raise ValidationError("Receiver name cannot be empty")
        if self.weight_kg <= 0:
            raise ValidationError("Receiver weight must be > 0 kg")


@dataclass(frozen=True)
class AdministrationRecord:
    """Immutable ledger entry for one feeding event."""
    id: str
    receiver_id: str
    receiver_name: str
    batch_id: str
    batch_folio: str
    volume_prescribed: float
    volume_administered: float
    volume_discarded: float
    timestamp: datetime
    responsible: str
    temperature: float
    route: AdministrationRoute
    discard_reason: Optional[str] = None

    @property
    def volume_consumed(self) -> float:
        return self.volume_administered + self.volume_discarded


@dataclass(frozen=True)
class AuditLog:
    """Audit trail entry for tracking operations."""
    timestamp: str      # ISO format with time: YYYY-MM-DD HH:MM:SS
    operation: str      # JAR_REGISTERED, BATCH_COMMITTED, ...
    entity_type: Optional[str]
    entity_id: Optional[str]
    details: str
    user: str = "system"
