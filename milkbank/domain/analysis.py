"""
Analysis evaluator: physical inspection, chemical analysis (Dornic acidity,
creamatocrit), Holder pasteurization compliance and microbiology outcome.

Thresholds default to the regulatory values and can be overridden from
settings (see milkbank.config).
"""
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .errors import InvalidTransitionError, ValidationError
from .lifecycle import Decision, apply_decision_to_jar
from .models import (
    AnalysisData,
    CaloricClassification,
    ChemicalAnalysis,
    MicrobiologyResult,
    MilkColor,
    MilkJar,
    MilkStatus,
    PhysicalAnalysis,
    TemperaturePoint,
)
from .validation import require, validate_acidity_aliquots, validate_creamatocrit


logger = logging.getLogger(__name__)


ACIDITY_LIMIT = 8.0                    # °D, strictly above -> reject
ACIDITY_DECIMALS = 2                   # precision of the recorded average
NORMAL_ACIDITY_RANGE = (1.0, 8.0)      # °D, inclusive
HYPOCALORIC_BELOW = 500.0              # Kcal/L
HYPERCALORIC_ABOVE = 700.0             # Kcal/L
ABNORMAL_COLORS = frozenset({MilkColor.RED_BLOOD, MilkColor.GREEN_PUS})

HOLDER_TEMPERATURE = 62.5              # °C
HOLDER_MINUTES = 30.0
HOLDER_TOLERANCE = 0.5                 # °C below target still accepted

ALL_JARS_REJECTED_REASON = "Todos los frascos rechazados en análisis"
HOLDER_FAILED_REASON = "Pasteurización fuera de parámetros Holder"
POSITIVE_CULTURE_REASON = "Cultivo microbiológico positivo"


def round_half_up(value: float, places: int = 1) -> float:
    """Round like a lab report does (2.25 -> 2.3), not banker's rounding."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP))


# ============================================================
# Physical inspection
# ============================================================

def inspect_physical(color: MilkColor, off_flavor: bool = False, contamination: str = "") -> Decision:
    """
    Decide the physical inspection outcome.

    Contamination takes priority over color when both are present. Off-flavor
    is recorded but does not reject on its own.

    Returns:
        Decision TESTING (passing physical, chemical pending) or DISCARDED
    """
    note = (contamination or "").strip()
    if note:
        return Decision(MilkStatus.DISCARDED, f"Contaminación detectada: {note}")
    if color in ABNORMAL_COLORS:
        return Decision(MilkStatus.DISCARDED, f"Color anormal: {color.value}")
    return Decision(MilkStatus.TESTING)


def apply_physical_inspection(
    jar: MilkJar,
    color: MilkColor,
    off_flavor: bool = False,
    contamination: str = "",
    *,
    user: str = "system",
    at: Optional[datetime] = None,
) -> MilkJar:
    """
    Record physical inspection data on a jar and apply the outcome.

    Re-running with unchanged inputs returns the jar unchanged.

    Raises:
        InvalidTransitionError: Jar is not VERIFIED and was inspected with
            different inputs (or never inspected)
    """
    physical = PhysicalAnalysis(color=color, off_flavor=off_flavor, contamination=(contamination or "").strip())

    current = jar.analysis.physical if jar.analysis else None
    if current == physical and jar.status is not MilkStatus.VERIFIED:
        return jar

    if jar.status is not MilkStatus.VERIFIED:
        raise InvalidTransitionError("Frasco", jar.folio or jar.id, jar.status, MilkStatus.TESTING)

    decision = inspect_physical(color, off_flavor, contamination)
    if off_flavor and not decision.rejected:
        logger.warning(f"Jar {jar.folio}: off-flavor recorded during physical inspection")

    analysis = replace(jar.analysis or AnalysisData(), physical=physical)
    recorded = replace(jar, analysis=analysis)
    return apply_decision_to_jar(recorded, decision, action="Análisis físico", user=user, at=at)


# ============================================================
# Chemical analysis
# ============================================================

def acidity_mean(aliquots: Sequence[float]) -> float:
    """Exact arithmetic mean of the three aliquots."""
    require(validate_acidity_aliquots(aliquots))
    return float(np.mean(np.asarray(aliquots, dtype=float)))


def acidity_average(aliquots: Sequence[float]) -> float:
    """Mean of the three aliquots, rounded half-up to the recorded precision."""
    return round_half_up(acidity_mean(aliquots), ACIDITY_DECIMALS)


def classify_creamatocrit(
    kcal_per_l: float,
    hypo_below: float = HYPOCALORIC_BELOW,
    hyper_above: float = HYPERCALORIC_ABOVE,
) -> CaloricClassification:
    """< 500 hypo, > 700 hyper, 500-700 inclusive normo."""
    if kcal_per_l < hypo_below:
        return CaloricClassification.HYPOCALORIC
    if kcal_per_l > hyper_above:
        return CaloricClassification.HYPERCALORIC
    return CaloricClassification.NORMOCALORIC


def evaluate_acidity(average: float, limit: float = ACIDITY_LIMIT) -> Decision:
    """Reject strictly above limit, citing the measured value."""
    if average > limit:
        return Decision(MilkStatus.DISCARDED, f"Acidez elevada: {average:g}°D (límite {limit:g}°D)")
    return Decision(MilkStatus.ANALYZED)


def needs_acidity_review(average: float, normal_range: Tuple[float, float] = NORMAL_ACIDITY_RANGE) -> bool:
    """Accepted values outside the normal range are flagged for review."""
    low, high = normal_range
    return not (low <= average <= high)


@dataclass(frozen=True)
class ChemicalOutcome:
    analysis: ChemicalAnalysis
    decision: Decision
    review_flag: bool


def evaluate_chemical(
    aliquots: Sequence[float],
    creamatocrit: float,
    limit: float = ACIDITY_LIMIT,
    normal_range: Tuple[float, float] = NORMAL_ACIDITY_RANGE,
    creamatocrit_thresholds: Tuple[float, float] = (HYPOCALORIC_BELOW, HYPERCALORIC_ABOVE),
) -> ChemicalOutcome:
    """
    Evaluate chemical readings.

    The recorded average is also the value checked against the limit and
    quoted in the rejection reason.

    Raises:
        ValidationError: Malformed readings
    """
    require(validate_creamatocrit(creamatocrit))
    average = acidity_average(aliquots)
    chemical = ChemicalAnalysis(
        acidity_aliquots=tuple(float(a) for a in aliquots),
        acidity_average=average,
        creamatocrit=float(creamatocrit),
        classification=classify_creamatocrit(creamatocrit, *creamatocrit_thresholds),
    )
    decision = evaluate_acidity(average, limit)
    review = not decision.rejected and needs_acidity_review(average, normal_range)
    return ChemicalOutcome(analysis=chemical, decision=decision, review_flag=review)


def apply_chemical_analysis(
    jar: MilkJar,
    aliquots: Sequence[float],
    creamatocrit: float,
    *,
    user: str = "system",
    at: Optional[datetime] = None,
    limit: float = ACIDITY_LIMIT,
    normal_range: Tuple[float, float] = NORMAL_ACIDITY_RANGE,
    creamatocrit_thresholds: Tuple[float, float] = (HYPOCALORIC_BELOW, HYPERCALORIC_ABOVE),
) -> MilkJar:
    """
    Record chemical readings and move a TESTING jar to ANALYZED or DISCARDED.

    Jars already discarded in the physical step are returned unchanged.
    """
    if jar.status is MilkStatus.DISCARDED:
        return jar
    if jar.status is not MilkStatus.TESTING:
        raise InvalidTransitionError("Frasco", jar.folio or jar.id, jar.status, MilkStatus.ANALYZED)

    outcome = evaluate_chemical(aliquots, creamatocrit, limit, normal_range, creamatocrit_thresholds)
    if outcome.review_flag:
        logger.warning(f"Jar {jar.folio}: acidity {outcome.analysis.acidity_average}°D outside normal range")

    analysis = replace(jar.analysis or AnalysisData(), chemical=outcome.analysis)
    recorded = replace(jar, analysis=analysis)
    return apply_decision_to_jar(recorded, outcome.decision, action="Análisis químico", user=user, at=at)


# ============================================================
# Batch summary
# ============================================================

@dataclass(frozen=True)
class BatchAnalysisSummary:
    total: int
    passed: int
    rejected: int
    pending: int
    average_acidity: Optional[float]             # All measured jars, rejected included
    accepted_average_acidity: Optional[float]    # ANALYZED jars only

    @property
    def rejection_rate(self) -> float:
        return self.rejected / self.total if self.total else 0.0


def _mean_acidity(jars: Iterable[MilkJar]) -> Optional[float]:
    values = [
        j.analysis.chemical.acidity_average
        for j in jars
        if j.analysis is not None and j.analysis.chemical is not None
    ]
    if not values:
        return None
    return round_half_up(float(np.mean(values)), 1)


def summarize_batch_analysis(jars: Sequence[MilkJar]) -> BatchAnalysisSummary:
    """Count outcomes and average acidity over analyzed jars."""
    passed = [j for j in jars if j.status is MilkStatus.ANALYZED]
    rejected = [j for j in jars if j.status is MilkStatus.DISCARDED]
    return BatchAnalysisSummary(
        total=len(jars),
        passed=len(passed),
        rejected=len(rejected),
        pending=len(jars) - len(passed) - len(rejected),
        average_acidity=_mean_acidity(jars),
        accepted_average_acidity=_mean_acidity(passed),
    )


# ============================================================
# Pasteurization & microbiology
# ============================================================

def evaluate_holder_curve(
    curve: Sequence[TemperaturePoint],
    target: float = HOLDER_TEMPERATURE,
    minutes: float = HOLDER_MINUTES,
    tolerance: float = HOLDER_TOLERANCE,
) -> Decision:
    """
    Check a Holder pasteurization temperature curve.

    Compliant when the recorded process spans >= minutes, the curve reaches
    target - tolerance and never drops below that band afterwards.

    Returns:
        Decision QUARANTINE (compliant) or DISCARDED
    """
    if len(curve) < 2:
        raise ValidationError("La curva de temperatura requiere al menos 2 puntos")

    points = sorted(curve, key=lambda p: p.minute)
    minute_values = np.array([p.minute for p in points], dtype=float)
    temperatures = np.array([p.temperature for p in points], dtype=float)
    floor = target - tolerance

    span = float(minute_values[-1] - minute_values[0])
    reached = np.nonzero(temperatures >= floor)[0]
    compliant = (
        span >= minutes
        and reached.size > 0
        and bool(np.all(temperatures[reached[0]:] >= floor))
    )
    if not compliant:
        return Decision(MilkStatus.DISCARDED, HOLDER_FAILED_REASON)
    return Decision(MilkStatus.QUARANTINE)


def microbiology_decision(result: MicrobiologyResult) -> Decision:
    """Negative culture releases the batch, positive discards it."""
    if result is MicrobiologyResult.POSITIVE:
        return Decision(MilkStatus.DISCARDED, POSITIVE_CULTURE_REASON)
    return Decision(MilkStatus.RELEASED)


def rejected_jars(jars: Iterable[MilkJar]) -> List[MilkJar]:
    return [j for j in jars if j.status is MilkStatus.DISCARDED]
