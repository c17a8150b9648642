"""
Cold-chain inventory views with FEFO (first expired, first out) ordering,
expiry priorities and expiry alerts.
"""
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable, List, Optional

from .dates import days_until
from .models import MilkBatch, MilkJar, MilkStatus, MilkType


class ExpiryPriority(Enum):
    EXPIRED = "VENCIDO"
    CRITICAL = "CRÍTICA"
    HIGH = "ALTA"
    NORMAL = "NORMAL"


class AlertLevel(Enum):
    URGENT = "Urgente"
    WARNING = "Advertencia"
    PREVENTIVE = "Preventiva"


@dataclass(frozen=True)
class ExpiryAlert:
    batch_id: str
    folio: str
    level: AlertLevel
    days_remaining: int
    message: str


@dataclass(frozen=True)
class InventorySnapshot:
    """Volume totals per inventory view."""
    as_of: date
    raw_jars: int
    raw_volume_ml: float
    quarantine_batches: int
    quarantine_volume_ml: float
    released_batches: int
    released_volume_ml: float

    @property
    def total_volume_ml(self) -> float:
        return self.raw_volume_ml + self.quarantine_volume_ml + self.released_volume_ml


class InventoryCalculator:
    """
    FEFO views over jars and batches. All methods are pure.

    Day windows default to the regulatory values; pass EngineSettings values
    to override them.
    """

    def __init__(
        self,
        critical_days: int = 7,
        high_days: int = 30,
        urgent_days: int = 1,
        warning_days: int = 3,
        preventive_days: int = 7,
    ):
        self.critical_days = critical_days
        self.high_days = high_days
        self.urgent_days = urgent_days
        self.warning_days = warning_days
        self.preventive_days = preventive_days

    @classmethod
    def from_settings(cls, settings) -> "InventoryCalculator":
        """Build from an EngineSettings instance."""
        return cls(
            critical_days=settings.critical_days,
            high_days=settings.high_days,
            urgent_days=settings.urgent_alert_days,
            warning_days=settings.warning_alert_days,
            preventive_days=settings.preventive_alert_days,
        )

    @staticmethod
    def raw_jars(jars: Iterable[MilkJar]) -> List[MilkJar]:
        """Raw jars, oldest extraction first."""
        return sorted(
            (j for j in jars if j.status is MilkStatus.RAW),
            key=lambda j: j.extraction_timestamp,
        )

    @staticmethod
    def quarantine_batches(batches: Iterable[MilkBatch]) -> List[MilkBatch]:
        """Batches awaiting culture, oldest creation first."""
        return sorted(
            (b for b in batches if b.status is MilkStatus.QUARANTINE),
            key=lambda b: b.creation_date,
        )

    @staticmethod
    def released_batches(batches: Iterable[MilkBatch]) -> List[MilkBatch]:
        """
        Consumable stock in FEFO order.

        Released batches with volume left, earliest expiration first; batches
        without expiration sort last.
        """
        stock = [b for b in batches if b.status is MilkStatus.RELEASED and b.volume_total_ml > 0]
        return sorted(
            stock,
            key=lambda b: (b.expiration_date is None, b.expiration_date or date.max),
        )

    @staticmethod
    def days_remaining(batch: MilkBatch, today: date) -> Optional[int]:
        if batch.expiration_date is None:
            return None
        return days_until(batch.expiration_date, today)

    def expiry_priority(self, batch: MilkBatch, today: date) -> ExpiryPriority:
        """Expired (<0 days), Critical (<=7), High (<=30), Normal otherwise."""
        days = InventoryCalculator.days_remaining(batch, today)
        if days is None:
            return ExpiryPriority.NORMAL
        if days < 0:
            return ExpiryPriority.EXPIRED
        if days <= self.critical_days:
            return ExpiryPriority.CRITICAL
        if days <= self.high_days:
            return ExpiryPriority.HIGH
        return ExpiryPriority.NORMAL

    def expiry_alerts(self, batches: Iterable[MilkBatch], today: date) -> List[ExpiryAlert]:
        """
        Alerts for released stock expiring within the preventive window.

        Returns:
            Alerts sorted by days remaining (most urgent first)
        """
        alerts = []
        for batch in InventoryCalculator.released_batches(batches):
            days = InventoryCalculator.days_remaining(batch, today)
            if days is None or days < 0 or days > self.preventive_days:
                continue

            if days <= self.urgent_days:
                level = AlertLevel.URGENT
                when = "hoy" if days == 0 else ("mañana" if days == 1 else f"en {days} días")
                message = f"Lote {batch.folio} vence {when}: usar de inmediato"
            elif days <= self.warning_days:
                level = AlertLevel.WARNING
                message = f"Lote {batch.folio} vence en {days} días: priorizar su uso"
            else:
                level = AlertLevel.PREVENTIVE
                message = f"Lote {batch.folio} vence en {days} días"

            alerts.append(ExpiryAlert(
                batch_id=batch.id,
                folio=batch.folio,
                level=level,
                days_remaining=days,
                message=message,
            ))

        alerts.sort(key=lambda a: a.days_remaining)
        return alerts

    @staticmethod
    def snapshot(jars: Iterable[MilkJar], batches: Iterable[MilkBatch], today: date) -> InventorySnapshot:
        jars = list(jars)
        batches = list(batches)
        raw = InventoryCalculator.raw_jars(jars)
        quarantine = InventoryCalculator.quarantine_batches(batches)
        released = InventoryCalculator.released_batches(batches)
        return InventorySnapshot(
            as_of=today,
            raw_jars=len(raw),
            raw_volume_ml=sum(j.volume_ml for j in raw),
            quarantine_batches=len(quarantine),
            quarantine_volume_ml=sum(b.volume_total_ml for b in quarantine),
            released_batches=len(released),
            released_volume_ml=sum(b.volume_total_ml for b in released),
        )

    @staticmethod
    def suggest_batch_for_dosage(
        batches: Iterable[MilkBatch],
        today: date,
        milk_type: Optional[MilkType] = None,
    ) -> Optional[MilkBatch]:
        """First released, non-empty, non-expired batch in FEFO order."""
        for batch in InventoryCalculator.released_batches(batches):
            if milk_type is not None and batch.milk_type is not milk_type:
                continue
            if batch.is_expired(today):
                continue
            return batch
        return None
