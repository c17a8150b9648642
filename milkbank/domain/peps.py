"""
PEPS (Primero en Entrar, Primero en Salir) selector for pooling jars into batches.

The selection is always the oldest-N prefix of the eligible pool, ordered by
extraction timestamp. Ties keep the input order (stable sort).
"""
import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .dates import add_months
from .errors import DonorLimitError, MixedTypeError, PepsViolation, ValidationError
from .models import (
    BatchType,
    DonorRef,
    HistoryEntry,
    MilkBatch,
    MilkJar,
    MilkStatus,
    MilkType,
)


logger = logging.getLogger(__name__)


ELIGIBLE_STATUSES = frozenset({MilkStatus.RAW, MilkStatus.VERIFIED, MilkStatus.ANALYZED})
DEFAULT_MAX_DONORS = 3
DEFAULT_SHELF_LIFE_MONTHS = 6


def is_eligible(jar: MilkJar, assigned_jar_ids: Iterable[str] = ()) -> bool:
    """A jar can be pooled if its status allows it and no batch holds it yet."""
    return jar.status in ELIGIBLE_STATUSES and jar.id not in set(assigned_jar_ids)


def eligible_pool(
    jars: Iterable[MilkJar],
    milk_type: MilkType,
    assigned_jar_ids: Iterable[str] = (),
) -> List[MilkJar]:
    """
    Eligible jars of one milk type, oldest extraction first.

    Args:
        jars: Candidate jars (any status)
        milk_type: Milk type of the batch being built
        assigned_jar_ids: IDs already referenced by some batch

    Returns:
        Sorted list (stable on identical timestamps)
    """
    assigned = set(assigned_jar_ids)
    pool = [
        j for j in jars
        if j.milk_type is milk_type and j.status in ELIGIBLE_STATUSES and j.id not in assigned
    ]
    return sorted(pool, key=lambda j: j.extraction_timestamp)


class PepsSelector:
    """
    Incremental oldest-first jar selection.

    Invariant: selected == pool[:count]. Every failed select/deselect raises
    before touching internal state.
    """

    def __init__(
        self,
        jars: Iterable[MilkJar],
        milk_type: MilkType,
        assigned_jar_ids: Iterable[str] = (),
        selected_ids: Sequence[str] = (),
    ):
        self._jars: Dict[str, MilkJar] = {j.id: j for j in jars}
        self._assigned = frozenset(assigned_jar_ids)
        self._milk_type = milk_type
        self._pool = eligible_pool(self._jars.values(), milk_type, self._assigned)
        self._count = 0
        for jar_id in selected_ids:
            self.select(jar_id)

    # ------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------

    @property
    def milk_type(self) -> MilkType:
        return self._milk_type

    @property
    def pool(self) -> Tuple[MilkJar, ...]:
        return tuple(self._pool)

    @property
    def selected(self) -> Tuple[MilkJar, ...]:
        return tuple(self._pool[:self._count])

    @property
    def selected_ids(self) -> Tuple[str, ...]:
        return tuple(j.id for j in self._pool[:self._count])

    def is_selected(self, jar_id: str) -> bool:
        return jar_id in self.selected_ids

    def next_candidate(self) -> Optional[MilkJar]:
        """Oldest unselected jar (the only one select() will accept)."""
        if self._count < len(self._pool):
            return self._pool[self._count]
        return None

    def total_volume_ml(self) -> float:
        return sum(j.volume_ml for j in self.selected)

    def unique_donor_ids(self) -> Tuple[str, ...]:
        seen = []
        for jar in self.selected:
            if jar.donor_id not in seen:
                seen.append(jar.donor_id)
        return tuple(seen)

    # ------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------

    def _position(self, jar_id: str) -> int:
        for idx, jar in enumerate(self._pool):
            if jar.id == jar_id:
                return idx
        return -1

    def change_milk_type(self, milk_type: MilkType) -> None:
        """Switch the pool to another milk type, clearing the selection."""
        self._milk_type = milk_type
        self._pool = eligible_pool(self._jars.values(), milk_type, self._assigned)
        self._count = 0

    def select(self, jar_id: str) -> Tuple[str, ...]:
        """
        Add a jar to the selection.

        Raises:
            ValidationError: Unknown or ineligible jar
            MixedTypeError: Jar type differs from a non-empty selection
            PepsViolation: Older eligible jars are still unselected
        """
        jar = self._jars.get(jar_id)
        if jar is None:
            raise ValidationError(f"Frasco desconocido: {jar_id}")

        if jar.milk_type is not self._milk_type:
            if self._count > 0:
                raise MixedTypeError(self._milk_type, jar.milk_type)
            if not is_eligible(jar, self._assigned):
                raise ValidationError(f"Frasco {jar.folio} no es elegible para agrupar ({jar.status.value})")
            self.change_milk_type(jar.milk_type)

        idx = self._position(jar_id)
        if idx < 0:
            raise ValidationError(f"Frasco {jar.folio} no es elegible para agrupar ({jar.status.value})")

        if idx < self._count:
            return self.selected_ids

        if idx > self._count:
            raise PepsViolation(jar.folio or jar_id, "select", idx - self._count)

        self._count += 1
        return self.selected_ids

    def deselect(self, jar_id: str) -> Tuple[str, ...]:
        """
        Remove a jar from the selection (newest first).

        Raises:
            ValidationError: Jar is not selected
            PepsViolation: Newer jars are still selected
        """
        idx = self._position(jar_id)
        if idx < 0 or idx >= self._count:
            raise ValidationError(f"El frasco {jar_id} no está seleccionado")

        newer = self._count - 1 - idx
        if newer > 0:
            raise PepsViolation(self._pool[idx].folio or jar_id, "deselect", newer)

        self._count -= 1
        return self.selected_ids

    def clear(self) -> None:
        self._count = 0

    def refresh(self, jars: Iterable[MilkJar], assigned_jar_ids: Iterable[str] = ()) -> Tuple[str, ...]:
        """
        Re-read the pool and re-validate the current selection against it.

        Raises:
            ValidationError: A selected jar is no longer eligible
            PepsViolation: Older jars appeared ahead of the selection
        """
        new_jars = {j.id: j for j in jars}
        new_assigned = frozenset(assigned_jar_ids)
        new_pool = eligible_pool(new_jars.values(), self._milk_type, new_assigned)
        positions = {j.id: idx for idx, j in enumerate(new_pool)}

        current = self.selected_ids
        for jar_id in current:
            if jar_id not in positions:
                raise ValidationError(f"El frasco {jar_id} ya no es elegible; reinicie la selección")

        if current:
            newest = max(positions[jar_id] for jar_id in current)
            gap = newest + 1 - len(current)
            if gap > 0:
                raise PepsViolation(new_pool[newest].folio, "select", gap)

        self._jars = new_jars
        self._assigned = new_assigned
        self._pool = new_pool
        return self.selected_ids

    def commit(
        self,
        batch_id: str,
        folio: str,
        created_at: Optional[datetime] = None,
        responsible: str = "system",
        max_donors: int = DEFAULT_MAX_DONORS,
        shelf_life_months: int = DEFAULT_SHELF_LIFE_MONTHS,
    ) -> MilkBatch:
        """Build the batch from the current selection (see build_batch)."""
        return build_batch(
            self.selected,
            batch_id=batch_id,
            folio=folio,
            created_at=created_at,
            responsible=responsible,
            max_donors=max_donors,
            shelf_life_months=shelf_life_months,
        )


def batch_composition(jars: Sequence[MilkJar]) -> dict:
    """
    Derive batch aggregate fields from member jars.

    Returns:
        Dict with donors, jar_ids, batch_type and volume_total_ml
    """
    donors: List[DonorRef] = []
    for jar in jars:
        if all(d.id != jar.donor_id for d in donors):
            donors.append(DonorRef(id=jar.donor_id, name=jar.donor_name))

    heterologous = any(j.donor_type.is_heterologous for j in jars)
    return {
        "donors": tuple(donors),
        "jar_ids": tuple(j.id for j in jars),
        "batch_type": BatchType.HETEROLOGOUS if heterologous else BatchType.HOMOLOGOUS,
        "volume_total_ml": sum(j.volume_ml for j in jars),
    }


def build_batch(
    jars: Sequence[MilkJar],
    *,
    batch_id: str,
    folio: str,
    created_at: Optional[datetime] = None,
    responsible: str = "system",
    max_donors: int = DEFAULT_MAX_DONORS,
    shelf_life_months: int = DEFAULT_SHELF_LIFE_MONTHS,
) -> MilkBatch:
    """
    Create a RAW batch from selected jars.

    Raises:
        ValidationError: Empty selection
        MixedTypeError: Jars of different milk types
        DonorLimitError: More than max_donors unique donors
    """
    if not jars:
        raise ValidationError("Seleccione al menos un frasco para crear el lote")

    milk_type = jars[0].milk_type
    for jar in jars[1:]:
        if jar.milk_type is not milk_type:
            raise MixedTypeError(milk_type, jar.milk_type)

    composition = batch_composition(jars)
    if len(composition["donors"]) > max_donors:
        raise DonorLimitError(len(composition["donors"]), max_donors)

    created_at = created_at or datetime.now()
    batch = MilkBatch(
        id=batch_id,
        folio=folio,
        milk_type=milk_type,
        creation_date=created_at,
        status=MilkStatus.RAW,
        expiration_date=add_months(created_at, shelf_life_months),
        history=(
            HistoryEntry(
                timestamp=created_at,
                action="Creación de lote",
                user=responsible,
                details=f"{len(jars)} frascos, {composition['volume_total_ml']} mL",
            ),
        ),
        **composition,
    )
    logger.info(f"Batch {folio} built from {len(jars)} jars ({batch.volume_total_ml} mL)")
    return batch


def mark_jars_pooled(
    jars: Iterable[MilkJar],
    batch: MilkBatch,
    user: str = "system",
    at: Optional[datetime] = None,
) -> List[MilkJar]:
    """Append the pooling event to each member jar's history (status unchanged)."""
    at = at or batch.creation_date
    return [
        replace(
            jar,
            history=jar.history + (
                HistoryEntry(timestamp=at, action="Asignado a lote", user=user, details=batch.folio),
            ),
        )
        for jar in jars
    ]
