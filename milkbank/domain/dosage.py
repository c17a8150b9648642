"""
Dosage ledger: volume-conserving administration of a released batch to a receiver.

administer() validates every input before computing anything; on success it
returns the decremented batch copy, the new immutable record and any
non-blocking warnings. Persisting both atomically is the caller's job
(see workflows.administration).
"""
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable, Optional, Tuple, Union

from .errors import (
    BatchUnavailableError,
    InsufficientVolumeError,
    MissingReasonError,
    ValidationError,
)
from .identifiers import new_id
from .models import (
    AdministrationRecord,
    AdministrationRoute,
    DiscardReason,
    HistoryEntry,
    MilkBatch,
    MilkStatus,
    Receiver,
)
from .validation import require, validate_frequency, validate_volume


logger = logging.getLogger(__name__)


DEFAULT_TEMPERATURE_RANGE = (14.0, 18.0)  # °C at administration
VOLUME_DECIMALS = 2


class DosageWarning(Enum):
    """Non-blocking conditions raised while administering."""
    EXCEEDS_PRESCRIPTION = "Volumen administrado excede la toma prescrita"
    TEMPERATURE_OUT_OF_RANGE = "Temperatura de administración fuera de rango"


@dataclass(frozen=True)
class AdministrationResult:
    batch: MilkBatch
    record: AdministrationRecord
    warnings: Tuple[DosageWarning, ...] = ()


def per_take_volume(total_daily_volume_ml: float, frequency: int) -> int:
    """Daily volume / takes per day, rounded half-up to whole mL."""
    require(validate_frequency(frequency))
    exact = Decimal(repr(float(total_daily_volume_ml))) / Decimal(frequency)
    return int(exact.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _normalize_reason(reason: Union[DiscardReason, str, None]) -> Optional[str]:
    if reason is None:
        return None
    if isinstance(reason, DiscardReason):
        return reason.label if reason.is_specified else None
    text = str(reason).strip()
    return text or None


def _round_volume(value: float) -> float:
    return round(value, VOLUME_DECIMALS)


def administer(
    batch: MilkBatch,
    prescribed: float,
    administered: float,
    discarded: float = 0.0,
    reason: Union[DiscardReason, str, None] = None,
    *,
    receiver: Receiver,
    responsible: str,
    temperature: float,
    route: AdministrationRoute,
    at: Optional[datetime] = None,
    record_id: Optional[str] = None,
    temperature_range: Tuple[float, float] = DEFAULT_TEMPERATURE_RANGE,
) -> AdministrationResult:
    """
    Record one feeding event against a batch.

    Args:
        batch: Batch to dispense from (must be RELEASED with volume left)
        prescribed: Prescribed volume for this take (mL)
        administered: Volume actually given (mL)
        discarded: Volume wasted (mL)
        reason: Discard reason, required when discarded > 0
        receiver: Receiving patient
        responsible: Acting nurse/clinician
        temperature: Milk temperature at administration (°C)
        route: Administration route
        at: Event timestamp (defaults to now)
        record_id: Record ID (defaults to a new UUID)
        temperature_range: Accepted temperature range (°C, inclusive)

    Returns:
        AdministrationResult with updated batch, record and warnings

    Raises:
        ValidationError: Negative or all-zero volumes, missing responsible
        BatchUnavailableError: Batch not RELEASED or empty
        InsufficientVolumeError: administered + discarded > remaining volume
        MissingReasonError: discarded > 0 without reason
    """
    require(validate_volume(prescribed, allow_zero=True, field="El volumen prescrito"))
    require(validate_volume(administered, allow_zero=True, field="El volumen administrado"))
    require(validate_volume(discarded, allow_zero=True, field="El volumen desechado"))
    if administered + discarded <= 0:
        raise ValidationError("Debe registrar volumen administrado o desechado")
    if not responsible or not responsible.strip():
        raise ValidationError("El responsable es obligatorio")

    if batch.status is not MilkStatus.RELEASED or batch.volume_total_ml <= 0:
        raise BatchUnavailableError(batch.folio or batch.id, batch.status)

    consumed = _round_volume(administered + discarded)
    if consumed > batch.volume_total_ml:
        raise InsufficientVolumeError(consumed, batch.volume_total_ml)

    discard_reason = _normalize_reason(reason)
    if discarded > 0 and discard_reason is None:
        raise MissingReasonError("Indique el motivo del desecho")

    at = at or datetime.now()
    remaining = _round_volume(batch.volume_total_ml - consumed)

    record = AdministrationRecord(
        id=record_id or new_id(),
        receiver_id=receiver.id,
        receiver_name=receiver.full_name,
        batch_id=batch.id,
        batch_folio=batch.folio,
        volume_prescribed=prescribed,
        volume_administered=administered,
        volume_discarded=discarded,
        discard_reason=discard_reason if discarded > 0 else None,
        timestamp=at,
        responsible=responsible,
        temperature=temperature,
        route=route,
    )

    warnings = []
    per_take = receiver.prescription.volume_per_take if receiver.prescription else prescribed
    if administered > per_take:
        warnings.append(DosageWarning.EXCEEDS_PRESCRIPTION)
    low, high = temperature_range
    if not (low <= temperature <= high):
        warnings.append(DosageWarning.TEMPERATURE_OUT_OF_RANGE)
    for warning in warnings:
        logger.warning(f"Administration {record.id} on batch {batch.folio}: {warning.value}")

    updated = replace(
        batch,
        volume_total_ml=remaining,
        history=batch.history + (
            HistoryEntry(
                timestamp=at,
                action="Administración",
                user=responsible,
                details=f"{receiver.full_name}: {administered} mL administrados, {discarded} mL desechados",
            ),
        ),
    )
    logger.info(f"Batch {batch.folio}: {batch.volume_total_ml} -> {remaining} mL")
    return AdministrationResult(batch=updated, record=record, warnings=tuple(warnings))


def derive_remaining_volume(initial_volume_ml: float, records: Iterable[AdministrationRecord]) -> float:
    """
    Recompute a batch balance from its ledger.

    Returns:
        initial - sum(administered + discarded), never stored, always derived
    """
    consumed = sum(r.volume_consumed for r in records)
    return _round_volume(initial_volume_ml - consumed)
