"""
Waste registry: discarded jars, discarded batches and wasted doses in one view.
"""
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..domain.models import AdministrationRecord, HistoryEntry, MilkBatch, MilkJar, MilkStatus


class WasteSource(Enum):
    JAR = "Frasco"
    BATCH = "Lote"
    DOSE = "Toma"


@dataclass(frozen=True)
class WasteItem:
    source: WasteSource
    item_id: str
    folio: str
    volume_ml: float
    reason: str
    date: Optional[datetime]
    responsible: str
    disposed: bool = False
    disposed_by: Optional[str] = None
    disposed_at: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        return self.source.value, self.item_id


def _discard_entry(
    history: Tuple[HistoryEntry, ...],
    reason: Optional[str],
) -> Tuple[Optional[datetime], str]:
    """Timestamp and user of the history entry that recorded the rejection."""
    for entry in reversed(history):
        if reason and entry.details == reason:
            return entry.timestamp, entry.user
    if history:
        return history[-1].timestamp, history[-1].user
    return None, "system"


def build_waste_registry(
    jars: Iterable[MilkJar],
    batches: Iterable[MilkBatch],
    records: Iterable[AdministrationRecord],
    disposals: Optional[Dict[Tuple[str, str], Dict[str, Any]]] = None,
) -> List[WasteItem]:
    """
    Consolidate every waste source, newest first.

    Discarded batches with no volume left (e.g. all jars rejected in analysis)
    are skipped since their milk is already accounted for by the jars.

    Args:
        jars: All jars
        batches: All batches
        records: Administration ledger
        disposals: Confirmed disposals keyed by (source, item_id)

    Returns:
        List of WasteItem
    """
    disposals = disposals or {}
    items: List[WasteItem] = []

    for jar in jars:
        if jar.status is not MilkStatus.DISCARDED:
            continue
        when, who = _discard_entry(jar.history, jar.rejection_reason)
        items.append(WasteItem(
            source=WasteSource.JAR, item_id=jar.id, folio=jar.folio, volume_ml=jar.volume_ml,
            reason=jar.rejection_reason or "", date=when, responsible=who,
        ))

    for batch in batches:
        if batch.status is not MilkStatus.DISCARDED or batch.volume_total_ml <= 0:
            continue
        when, who = _discard_entry(batch.history, batch.rejection_reason)
        items.append(WasteItem(
            source=WasteSource.BATCH, item_id=batch.id, folio=batch.folio, volume_ml=batch.volume_total_ml,
            reason=batch.rejection_reason or "", date=when, responsible=who,
        ))

    for record in records:
        if record.volume_discarded <= 0:
            continue
        items.append(WasteItem(
            source=WasteSource.DOSE, item_id=record.id, folio=record.batch_folio,
            volume_ml=record.volume_discarded, reason=record.discard_reason or "",
            date=record.timestamp, responsible=record.responsible,
        ))

    confirmed = []
    for item in items:
        disposal = disposals.get(item.key)
        if disposal:
            item = replace(
                item, disposed=True, disposed_by=disposal["responsible"], disposed_at=disposal["disposed_at"]
            )
        confirmed.append(item)

    confirmed.sort(key=lambda i: i.date or datetime.min, reverse=True)
    return confirmed
