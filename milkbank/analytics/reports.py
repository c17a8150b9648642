"""
Operational reports: inventory summary, waste summary and production report.

Pure functions take entity lists; ReportBuilder loads them from the
repositories.
"""
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional

import numpy as np

from ..config import EngineSettings
from ..domain.inventory import ExpiryAlert, InventoryCalculator, InventorySnapshot
from ..domain.models import AdministrationRecord, MilkBatch, MilkJar, MilkStatus
from ..domain.validation import require, validate_date_range
from ..repositories import RepositoryFactory
from .waste import WasteItem, WasteSource, build_waste_registry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InventoryReport:
    snapshot: InventorySnapshot
    alerts: List[ExpiryAlert] = field(default_factory=list)
    suggested_batch: Optional[MilkBatch] = None


@dataclass(frozen=True)
class WasteSummary:
    total_items: int
    total_volume_ml: float
    volume_by_source: Dict[str, float]
    count_by_source: Dict[str, int]
    pending_disposal: int


@dataclass(frozen=True)
class ProductionReport:
    start: date
    end: date
    jars_received: int
    volume_received_ml: float
    batches_created: int
    released_volume_ml: float
    administered_volume_ml: float
    wasted_volume_ml: float
    rejection_rate: float       # Discarded jars / received jars (0.0-1.0)


def inventory_report(
    jars: Iterable[MilkJar],
    batches: Iterable[MilkBatch],
    today: date,
    calculator: Optional[InventoryCalculator] = None,
) -> InventoryReport:
    calculator = calculator or InventoryCalculator()
    batches = list(batches)
    return InventoryReport(
        snapshot=calculator.snapshot(jars, batches, today),
        alerts=calculator.expiry_alerts(batches, today),
        suggested_batch=calculator.suggest_batch_for_dosage(batches, today),
    )


def summarize_waste(items: Iterable[WasteItem]) -> WasteSummary:
    """
    Totals per waste source.

    Every source appears in the result, with 0 when it has no items.
    """
    items = list(items)
    volume_by_source = {}
    count_by_source = {}
    for source in WasteSource:
        volumes = np.array([i.volume_ml for i in items if i.source is source], dtype=float)
        volume_by_source[source.value] = round(float(volumes.sum()), 2)
        count_by_source[source.value] = int(volumes.size)

    total = np.array([i.volume_ml for i in items], dtype=float)
    return WasteSummary(
        total_items=len(items),
        total_volume_ml=round(float(total.sum()), 2),
        volume_by_source=volume_by_source,
        count_by_source=count_by_source,
        pending_disposal=sum(1 for i in items if not i.disposed),
    )


def production_report(
    jars: Iterable[MilkJar],
    batches: Iterable[MilkBatch],
    records: Iterable[AdministrationRecord],
    start: date,
    end: date,
) -> ProductionReport:
    """
    Production figures for a date range (inclusive).

    Jars count by extraction date, batches by creation date and
    administrations by timestamp.

    Raises:
        ValidationError: start after end
    """
    require(validate_date_range(start, end))

    period_jars = [j for j in jars if start <= j.extraction_date <= end]
    period_batches = [b for b in batches if start <= b.creation_date.date() <= end]
    period_records = [r for r in records if start <= r.timestamp.date() <= end]

    received = np.array([j.volume_ml for j in period_jars], dtype=float)
    released = np.array(
        [b.initial_volume_ml for b in period_batches if b.initial_volume_ml is not None], dtype=float
    )
    administered = np.array([r.volume_administered for r in period_records], dtype=float)
    dose_waste = np.array([r.volume_discarded for r in period_records], dtype=float)
    jar_waste = np.array(
        [j.volume_ml for j in period_jars if j.status is MilkStatus.DISCARDED], dtype=float
    )
    batch_waste = np.array(
        [b.volume_total_ml for b in period_batches if b.status is MilkStatus.DISCARDED], dtype=float
    )

    rejection_rate = float(jar_waste.size) / received.size if received.size else 0.0
    report = ProductionReport(
        start=start,
        end=end,
        jars_received=int(received.size),
        volume_received_ml=round(float(received.sum()), 2),
        batches_created=len(period_batches),
        released_volume_ml=round(float(released.sum()), 2),
        administered_volume_ml=round(float(administered.sum()), 2),
        wasted_volume_ml=round(float(dose_waste.sum() + jar_waste.sum() + batch_waste.sum()), 2),
        rejection_rate=round(rejection_rate, 4),
    )
    logger.info(f"Production report {start}..{end}: {report.jars_received} jars, {report.batches_created} batches")
    return report


class ReportBuilder:
    """Loads entities from SQLite and builds the reports above."""

    def __init__(self, conn: sqlite3.Connection, settings: Optional[EngineSettings] = None):
        self.repos = RepositoryFactory(conn)
        self.calculator = InventoryCalculator.from_settings(settings or EngineSettings())

    def inventory(self, today: Optional[date] = None) -> InventoryReport:
        return inventory_report(
            self.repos.jars().list(), self.repos.batches().list(), today or date.today(), self.calculator
        )

    def waste_registry(self) -> List[WasteItem]:
        return build_waste_registry(
            self.repos.jars().list(),
            self.repos.batches().list(),
            self.repos.administrations().list(),
            self.repos.waste_disposals().confirmed_keys(),
        )

    def waste(self) -> WasteSummary:
        return summarize_waste(self.waste_registry())

    def production(self, start: date, end: date) -> ProductionReport:
        return production_report(
            self.repos.jars().list_received_between(start, end),
            self.repos.batches().list_created_between(start, end),
            self.repos.administrations().list(start=start, end=end),
            start,
            end,
        )
