"""
Entity status model: legal jar/batch transitions, reception verification and
donor eligibility.

All functions are pure: they validate first and return updated copies, so a
raised error leaves the input entity untouched. Auto-rejections are returned
as regular entities in DISCARDED status (with mandatory reason), never raised.
"""
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, Optional

from .errors import DonorEligibilityError, InvalidTransitionError, ValidationError
from .models import (
    ArrivalState,
    Donor,
    DonorStatus,
    HistoryEntry,
    LabResult,
    MicrobiologyResult,
    MilkBatch,
    MilkJar,
    MilkStatus,
)
from .validation import require, validate_reason


logger = logging.getLogger(__name__)


DEFAULT_MAX_RECEPTION_TEMPERATURE = 5.0  # °C, refrigerated arrival

JAR_TRANSITIONS: Dict[MilkStatus, FrozenSet[MilkStatus]] = {
    MilkStatus.RAW: frozenset({MilkStatus.VERIFIED, MilkStatus.DISCARDED}),
    MilkStatus.VERIFIED: frozenset({MilkStatus.TESTING, MilkStatus.DISCARDED}),
    MilkStatus.TESTING: frozenset({MilkStatus.ANALYZED, MilkStatus.DISCARDED}),
    MilkStatus.ANALYZED: frozenset({MilkStatus.QUARANTINE, MilkStatus.RELEASED, MilkStatus.DISCARDED}),
    MilkStatus.QUARANTINE: frozenset({MilkStatus.RELEASED, MilkStatus.DISCARDED}),
    MilkStatus.RELEASED: frozenset({MilkStatus.DISCARDED}),
    MilkStatus.DISCARDED: frozenset(),
}

BATCH_TRANSITIONS: Dict[MilkStatus, FrozenSet[MilkStatus]] = {
    MilkStatus.RAW: frozenset({MilkStatus.TESTING, MilkStatus.QUARANTINE, MilkStatus.DISCARDED}),
    MilkStatus.TESTING: frozenset({MilkStatus.ANALYZED, MilkStatus.DISCARDED}),
    MilkStatus.ANALYZED: frozenset({MilkStatus.QUARANTINE, MilkStatus.DISCARDED}),
    MilkStatus.QUARANTINE: frozenset({MilkStatus.RELEASED, MilkStatus.DISCARDED}),
    MilkStatus.RELEASED: frozenset({MilkStatus.DISTRIBUTED, MilkStatus.DISCARDED}),
    MilkStatus.DISTRIBUTED: frozenset(),
    MilkStatus.DISCARDED: frozenset(),
}

DONOR_TRANSITIONS: Dict[DonorStatus, FrozenSet[DonorStatus]] = {
    DonorStatus.PENDING: frozenset({DonorStatus.ACTIVE, DonorStatus.REJECTED, DonorStatus.INACTIVE}),
    DonorStatus.ACTIVE: frozenset({DonorStatus.SUSPENDED, DonorStatus.INACTIVE, DonorStatus.REJECTED}),
    DonorStatus.SUSPENDED: frozenset({DonorStatus.ACTIVE, DonorStatus.INACTIVE, DonorStatus.REJECTED}),
    DonorStatus.INACTIVE: frozenset({DonorStatus.ACTIVE, DonorStatus.REJECTED}),
    DonorStatus.REJECTED: frozenset(),  # Definitive
}

REASON_REQUIRED_DONOR_STATUSES = frozenset({DonorStatus.REJECTED, DonorStatus.SUSPENDED})


@dataclass(frozen=True)
class Decision:
    """
    Outcome of a rule evaluation.

    status is the target status; reason is set (non-empty) iff the outcome
    is an auto-rejection.
    """
    status: MilkStatus
    reason: Optional[str] = None

    @property
    def rejected(self) -> bool:
        return self.status is MilkStatus.DISCARDED


def can_transition_jar(current: MilkStatus, target: MilkStatus) -> bool:
    return target in JAR_TRANSITIONS.get(current, frozenset())


def can_transition_batch(current: MilkStatus, target: MilkStatus) -> bool:
    return target in BATCH_TRANSITIONS.get(current, frozenset())


def _stamp(at: Optional[datetime]) -> datetime:
    return at or datetime.now()


# ============================================================
# Jar transitions
# ============================================================

def transition_jar(
    jar: MilkJar,
    target: MilkStatus,
    *,
    action: str,
    user: str = "system",
    reason: Optional[str] = None,
    details: Optional[str] = None,
    at: Optional[datetime] = None,
) -> MilkJar:
    """
    Move a jar to target status, appending a history entry.

    Args:
        jar: Jar to transition
        target: Target status
        action: History action label
        user: Acting user
        reason: Rejection reason (mandatory when target is DISCARDED)
        details: Extra history details (defaults to reason)
        at: Event timestamp (defaults to now)

    Returns:
        Updated jar copy

    Raises:
        InvalidTransitionError: If the lifecycle does not allow the change
        ValidationError: If target is DISCARDED without a reason
    """
    if not can_transition_jar(jar.status, target):
        raise InvalidTransitionError("Frasco", jar.folio or jar.id, jar.status, target)

    if target is MilkStatus.DISCARDED:
        require(validate_reason(reason, "El motivo de rechazo"))
        reason = reason.strip()

    entry = HistoryEntry(timestamp=_stamp(at), action=action, user=user, details=details or reason)
    updated = replace(
        jar,
        status=target,
        rejection_reason=reason if target is MilkStatus.DISCARDED else jar.rejection_reason,
        history=jar.history + (entry,),
    )

    if target is MilkStatus.DISCARDED:
        logger.warning(f"Jar {jar.folio} discarded: {reason}")
    else:
        logger.info(f"Jar {jar.folio}: {jar.status.value} -> {target.value}")
    return updated


def reject_jar(jar: MilkJar, reason: str, *, user: str = "system", at: Optional[datetime] = None) -> MilkJar:
    """Discard a jar from any non-terminal state with a mandatory reason."""
    return transition_jar(jar, MilkStatus.DISCARDED, action="Rechazo", user=user, reason=reason, at=at)


def apply_decision_to_jar(
    jar: MilkJar,
    decision: Decision,
    *,
    action: str,
    user: str = "system",
    at: Optional[datetime] = None,
) -> MilkJar:
    """Apply an evaluated Decision (pass or auto-rejection) to a jar."""
    if jar.status is decision.status:
        return jar
    return transition_jar(jar, decision.status, action=action, user=user, reason=decision.reason, at=at)


# ============================================================
# Reception verification (Raw -> Verified | Discarded)
# ============================================================

def evaluate_reception(
    temperature: float,
    arrival_state: ArrivalState,
    clean: bool,
    sealed: bool,
    labeled: bool,
    max_temperature: float = DEFAULT_MAX_RECEPTION_TEMPERATURE,
) -> Decision:
    """
    Decide the outcome of physical reception checks.

    Temperature must be <= max_temperature unless the jar arrived frozen;
    all three integrity flags must hold. The rejection reason lists every
    failed check.
    """
    failures = []
    if arrival_state is not ArrivalState.FROZEN and temperature > max_temperature:
        failures.append(f"Temperatura de recepción {temperature}°C > {max_temperature}°C")
    if not clean:
        failures.append("Frasco no limpio")
    if not sealed:
        failures.append("Frasco sin sellar")
    if not labeled:
        failures.append("Frasco sin etiquetar")

    if failures:
        return Decision(MilkStatus.DISCARDED, "Verificación de recepción fallida: " + "; ".join(failures))
    return Decision(MilkStatus.VERIFIED)


def verify_reception(
    jar: MilkJar,
    temperature: float,
    arrival_state: ArrivalState,
    clean: bool,
    sealed: bool,
    labeled: bool,
    *,
    user: str = "system",
    at: Optional[datetime] = None,
    max_temperature: float = DEFAULT_MAX_RECEPTION_TEMPERATURE,
) -> MilkJar:
    """
    Run physical reception verification on a RAW jar.

    Returns:
        Jar in VERIFIED, or DISCARDED with the failed checks as reason
    """
    if jar.status is not MilkStatus.RAW:
        raise InvalidTransitionError("Frasco", jar.folio or jar.id, jar.status, MilkStatus.VERIFIED)

    decision = evaluate_reception(temperature, arrival_state, clean, sealed, labeled, max_temperature)
    recorded = replace(
        jar,
        reception_temperature=temperature,
        arrival_state=arrival_state,
        clean=clean,
        sealed=sealed,
        labeled=labeled,
    )
    return apply_decision_to_jar(recorded, decision, action="Verificación de recepción", user=user, at=at)


# ============================================================
# Batch transitions
# ============================================================

def transition_batch(
    batch: MilkBatch,
    target: MilkStatus,
    *,
    action: str,
    user: str = "system",
    reason: Optional[str] = None,
    details: Optional[str] = None,
    at: Optional[datetime] = None,
    **changes,
) -> MilkBatch:
    """
    Move a batch to target status, appending a history entry.

    Extra keyword arguments are applied to the batch in the same copy
    (e.g. pasteurization record, expiration date).

    Raises:
        InvalidTransitionError: If the lifecycle does not allow the change
        ValidationError: If DISCARDED has no reason, or RELEASED lacks a
            negative microbiology result
    """
    if not can_transition_batch(batch.status, target):
        raise InvalidTransitionError("Lote", batch.folio or batch.id, batch.status, target)

    if target is MilkStatus.DISCARDED:
        require(validate_reason(reason, "El motivo de descarte"))
        reason = reason.strip()

    if target is MilkStatus.RELEASED:
        microbiology = changes.get("microbiology", batch.microbiology)
        if microbiology is None or microbiology.result is not MicrobiologyResult.NEGATIVE:
            raise ValidationError(
                f"Lote {batch.folio}: solo se libera con cultivo microbiológico Negativo"
            )

    entry = HistoryEntry(timestamp=_stamp(at), action=action, user=user, details=details or reason)
    updated = replace(
        batch,
        status=target,
        rejection_reason=reason if target is MilkStatus.DISCARDED else batch.rejection_reason,
        history=batch.history + (entry,),
        **changes,
    )

    if target is MilkStatus.DISCARDED:
        logger.warning(f"Batch {batch.folio} discarded: {reason}")
    else:
        logger.info(f"Batch {batch.folio}: {batch.status.value} -> {target.value}")
    return updated


def reject_batch(batch: MilkBatch, reason: str, *, user: str = "system", at: Optional[datetime] = None) -> MilkBatch:
    """Discard a batch from any non-terminal state with a mandatory reason."""
    return transition_batch(batch, MilkStatus.DISCARDED, action="Descarte", user=user, reason=reason, at=at)


# ============================================================
# Donor eligibility
# ============================================================

def activation_failures(donor: Donor) -> list:
    """List every condition that prevents the donor from being Active."""
    failures = []
    if not donor.consent_signed:
        failures.append("Consentimiento informado no firmado")
    reactive = donor.reactive_tests
    if reactive:
        failures.append("Serología reactiva: " + ", ".join(reactive))
    return failures


def validate_donor_activation(donor: Donor) -> None:
    """
    Check the Active-status invariant.

    Raises:
        DonorEligibilityError: Listing every failed condition
    """
    failures = activation_failures(donor)
    if failures:
        raise DonorEligibilityError(
            f"Donadora {donor.folio} no puede ser activada: " + "; ".join(failures),
            failures,
        )


def ensure_donor_can_deliver(donor: Donor) -> None:
    """Only Active donors may deliver milk jars."""
    if donor.status is not DonorStatus.ACTIVE:
        raise DonorEligibilityError(
            f"Donadora {donor.folio} no está apta para entregar leche (estado: {donor.status.value})",
            [f"Estado {donor.status.value}"],
        )


def change_donor_status(donor: Donor, status: DonorStatus, reason: Optional[str] = None) -> Donor:
    """
    Change donor status enforcing eligibility rules.

    Raises:
        InvalidTransitionError: Transition not allowed (e.g. from Rejected)
        ValidationError: Rejected/Suspended without reason
        DonorEligibilityError: Activation without consent or with reactive labs
    """
    if donor.status is status:
        return donor

    if status not in DONOR_TRANSITIONS[donor.status]:
        raise InvalidTransitionError("Donadora", donor.folio or donor.id, donor.status, status)

    if status in REASON_REQUIRED_DONOR_STATUSES:
        require(validate_reason(reason, "El motivo del cambio de estado"))

    if status is DonorStatus.ACTIVE:
        validate_donor_activation(donor)

    logger.info(f"Donor {donor.folio}: {donor.status.value} -> {status.value}")
    return replace(
        donor,
        status=status,
        rejection_reason=reason.strip() if reason else donor.rejection_reason,
    )


def apply_lab_results(donor: Donor, results: Iterable[LabResult]) -> Donor:
    """
    Append lab results; any reactive result rejects the donor automatically.

    Returns:
        Updated donor (status REJECTED with "Serología reactiva: ..." when reactive)
    """
    updated = replace(donor, lab_results=donor.lab_results + tuple(results))
    reactive = updated.reactive_tests
    if reactive and updated.status is not DonorStatus.REJECTED:
        reason = "Serología reactiva: " + ", ".join(reactive)
        logger.warning(f"Donor {donor.folio} rejected: {reason}")
        updated = replace(updated, status=DonorStatus.REJECTED, rejection_reason=reason)
    return updated
