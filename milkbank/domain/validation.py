"""
Centralized validation rules for domain inputs.

Validators return (is_valid, error_message) tuples so callers (CLI, import
tools) can collect messages; engine code goes through require(), which raises
ValidationError before any state is touched.
"""
from datetime import date, datetime
from typing import Optional, Tuple

from .errors import ValidationError


def require(result: Tuple[bool, str]) -> None:
    """Raise ValidationError if a validator result is negative."""
    is_valid, message = result
    if not is_valid:
        raise ValidationError(message)


def validate_volume(volume_ml, allow_zero: bool = False, field: str = "El volumen") -> Tuple[bool, str]:
    """
    Validate a volume in mL.

    Args:
        volume_ml: Volume to validate
        allow_zero: Whether 0 mL is acceptable (e.g. discarded volume)
        field: Field label used in the message

    Returns:
        (is_valid, error_message)
    """
    if isinstance(volume_ml, bool) or not isinstance(volume_ml, (int, float)):
        return False, f"{field} debe ser numérico"

    if volume_ml != volume_ml:  # NaN
        return False, f"{field} debe ser numérico"

    if allow_zero and volume_ml < 0:
        return False, f"{field} no puede ser negativo"

    if not allow_zero and volume_ml <= 0:
        return False, f"{field} debe ser mayor a 0 mL"

    return True, ""


def validate_acidity_aliquots(aliquots) -> Tuple[bool, str]:
    """
    Validate the three Dornic acidity readings.

    Returns:
        (is_valid, error_message)
    """
    values = list(aliquots)
    if len(values) != 3:
        return False, f"Se requieren 3 alícuotas de acidez, se recibieron {len(values)}"

    for value in values:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False, "Las alícuotas de acidez deben ser numéricas"
        if value < 0:
            return False, "Las alícuotas de acidez no pueden ser negativas"

    return True, ""


def validate_creamatocrit(kcal_per_l) -> Tuple[bool, str]:
    """Validate a creamatocrit reading (Kcal/L)."""
    if isinstance(kcal_per_l, bool) or not isinstance(kcal_per_l, (int, float)):
        return False, "El crematocrito debe ser numérico"

    if kcal_per_l <= 0:
        return False, "El crematocrito debe ser mayor a 0 Kcal/L"

    return True, ""


def validate_extraction_moment(moment: datetime, now: Optional[datetime] = None) -> Tuple[bool, str]:
    """Extraction date/time cannot be in the future."""
    now = now or datetime.now()
    if moment > now:
        return False, "La fecha/hora de extracción no puede ser futura"
    return True, ""


def validate_reason(reason: Optional[str], field: str = "El motivo") -> Tuple[bool, str]:
    """Reasons (rejection, discard, status change) must be non-empty text."""
    if reason is None or not str(reason).strip():
        return False, f"{field} es obligatorio"
    return True, ""


def validate_date_range(start_date: date, end_date: date) -> Tuple[bool, str]:
    """
    Validate a report date range.

    Returns:
        (is_valid, error_message)
    """
    if start_date > end_date:
        return False, "La fecha de inicio no puede ser posterior a la fecha de fin"
    return True, ""


def validate_frequency(frequency) -> Tuple[bool, str]:
    """Feeding frequency: integer takes per day, >= 1."""
    if isinstance(frequency, bool) or not isinstance(frequency, int):
        return False, "La frecuencia debe ser un número entero"
    if frequency < 1:
        return False, "La frecuencia debe ser al menos 1 toma al día"
    return True, ""
