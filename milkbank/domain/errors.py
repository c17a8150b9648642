"""
Domain error taxonomy.

Every error is raised before any state mutation, so callers can correct the
request and retry. Auto-rejections are NOT errors: they are outcomes
(see lifecycle.Decision) that move an entity to DISCARDED with a reason.
"""
from typing import Iterable, Optional


class MilkBankError(Exception):
    """Base class for all domain errors."""
    pass


class ValidationError(MilkBankError, ValueError):
    """Malformed or out-of-range input (e.g. non-positive volume)."""
    pass


class DonorEligibilityError(ValidationError):
    """Donor cannot be activated or cannot deliver milk."""

    def __init__(self, message: str, failures: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.failures = list(failures or [])


class DonorLimitError(ValidationError):
    """Batch would pool milk from more donors than allowed."""

    def __init__(self, donor_count: int, limit: int):
        super().__init__(
            f"Límite de donantes excedido: {donor_count} donantes (máximo {limit})"
        )
        self.donor_count = donor_count
        self.limit = limit


class InvalidTransitionError(MilkBankError):
    """Requested status change is not allowed by the lifecycle."""

    def __init__(self, entity: str, entity_id: str, current, target):
        current_label = getattr(current, "value", current)
        target_label = getattr(target, "value", target)
        super().__init__(
            f"{entity} {entity_id}: transición no permitida {current_label} → {target_label}"
        )
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.target = target


class PepsViolation(MilkBankError):
    """
    Selection or deselection would break oldest-first (PEPS) ordering.

    Attributes:
        jar_id: Jar the caller tried to (de)select
        operation: "select" or "deselect"
        count: Older unselected jars (select) or newer selected jars (deselect)
    """

    def __init__(self, jar_id: str, operation: str, count: int):
        if operation == "select":
            message = (
                f"PEPS: hay {count} frasco(s) más antiguo(s) sin seleccionar; "
                f"selecciónelos antes que {jar_id}"
            )
        else:
            message = (
                f"PEPS: hay {count} frasco(s) más reciente(s) seleccionado(s); "
                f"retírelos antes que {jar_id}"
            )
        super().__init__(message)
        self.jar_id = jar_id
        self.operation = operation
        self.count = count

    @property
    def older_unselected(self) -> int:
        return self.count if self.operation == "select" else 0

    @property
    def newer_selected(self) -> int:
        return self.count if self.operation == "deselect" else 0


class MixedTypeError(MilkBankError):
    """Attempt to pool jars of different milk types in one batch."""

    def __init__(self, expected, actual):
        super().__init__(
            "No se pueden mezclar tipos de leche diferentes: "
            f"{getattr(expected, 'value', expected)} / {getattr(actual, 'value', actual)}"
        )
        self.expected = expected
        self.actual = actual


class BatchUnavailableError(MilkBankError):
    """Batch is not in a state that allows dispensing."""

    def __init__(self, batch_id: str, status):
        super().__init__(
            f"Lote {batch_id} no disponible para administración "
            f"(estado: {getattr(status, 'value', status)})"
        )
        self.batch_id = batch_id
        self.status = status


class InsufficientVolumeError(MilkBankError):
    """Requested volume exceeds what remains in the batch."""

    def __init__(self, requested: float, available: float):
        super().__init__(
            f"Volumen insuficiente: solicitado {requested} mL, disponible {available} mL"
        )
        self.requested = requested
        self.available = available


class MissingReasonError(MilkBankError):
    """Discarded volume was recorded without a reason."""
    pass
