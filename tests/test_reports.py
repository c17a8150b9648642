"""
Tests for the waste registry, reports and charts (milkbank.analytics).
"""
from datetime import date, datetime

import pytest

from builders import make_batch, make_jar, make_receiver
from milkbank.analytics import (
    ReportBuilder,
    WasteSource,
    build_waste_registry,
    production_report,
    summarize_waste,
)
from milkbank.analytics.charts import plot_pasteurization_curve, plot_waste_by_source
from milkbank.domain.dosage import administer
from milkbank.domain.errors import ValidationError
from milkbank.domain.lifecycle import reject_batch, reject_jar
from milkbank.domain.models import (
    AdministrationRoute,
    DiscardReason,
    DiscardReasonCode,
    MilkStatus,
    PasteurizationRecord,
    TemperaturePoint,
)


JAR_DISCARD_AT = datetime(2024, 5, 28, 8, 0)
BATCH_DISCARD_AT = datetime(2024, 5, 30, 8, 0)
FEEDING_AT = datetime(2024, 6, 1, 9, 0)


@pytest.fixture
def waste_sources():
    """A broken jar, a contaminated batch, an emptied batch and a spilled feeding."""
    broken = reject_jar(make_jar("J1", volume_ml=100.0), "Frasco roto", user="rec", at=JAR_DISCARD_AT)
    analyzed = make_jar("J2", hour=9, volume_ml=60.0, status=MilkStatus.ANALYZED)
    contaminated = reject_batch(
        make_batch("B2", volume_ml=80.0, status=MilkStatus.QUARANTINE),
        "Cultivo microbiológico positivo", user="lab", at=BATCH_DISCARD_AT,
    )
    emptied = make_batch(
        "B3", volume_ml=0.0, status=MilkStatus.DISCARDED,
        rejection_reason="Todos los frascos rechazados en análisis",
    )
    released = make_batch("B1", volume_ml=100.0)
    feeding = administer(
        released, 25, 20, 5, DiscardReason(DiscardReasonCode.ACCIDENTAL_SPILL),
        receiver=make_receiver(), responsible="Enf. Ruiz", temperature=16.0,
        route=AdministrationRoute.ORAL, at=FEEDING_AT,
    )
    return [broken, analyzed], [feeding.batch, contaminated, emptied], [feeding.record]


class TestWasteRegistry:
    def test_sources_newest_first(self, waste_sources):
        jars, batches, records = waste_sources
        items = build_waste_registry(jars, batches, records)

        assert [(i.source, i.volume_ml) for i in items] == [
            (WasteSource.DOSE, 5),
            (WasteSource.BATCH, 80.0),
            (WasteSource.JAR, 100.0),
        ]
        assert items[1].responsible == "lab"
        assert items[1].date == BATCH_DISCARD_AT
        assert items[2].reason == "Frasco roto"

    def test_confirmed_disposals(self, waste_sources):
        jars, batches, records = waste_sources
        disposals = {("Frasco", "J1"): {"responsible": "Enf. Ruiz", "disposed_at": "2024-05-29T10:00:00"}}

        items = build_waste_registry(jars, batches, records, disposals)
        jar_item = next(i for i in items if i.source is WasteSource.JAR)

        assert jar_item.disposed
        assert jar_item.disposed_by == "Enf. Ruiz"

    def test_summary(self, waste_sources):
        summary = summarize_waste(build_waste_registry(*waste_sources))

        assert summary.total_items == 3
        assert summary.total_volume_ml == 185.0
        assert summary.volume_by_source == {"Frasco": 100.0, "Lote": 80.0, "Toma": 5.0}
        assert summary.pending_disposal == 3

    def test_empty_summary(self):
        summary = summarize_waste([])
        assert summary.total_volume_ml == 0.0
        assert summary.count_by_source == {"Frasco": 0, "Lote": 0, "Toma": 0}


class TestProductionReport:
    def test_period_figures(self, waste_sources):
        jars, batches, records = waste_sources
        jars = jars + [make_jar("LATE", day=date(2024, 7, 1))]

        report = production_report(jars, batches, records, date(2024, 5, 27), date(2024, 6, 30))

        assert report.jars_received == 2
        assert report.volume_received_ml == 160.0
        assert report.batches_created == 3
        assert report.released_volume_ml == 100.0
        assert report.administered_volume_ml == 20.0
        assert report.wasted_volume_ml == 185.0
        assert report.rejection_rate == 0.5

    def test_inverted_range(self):
        with pytest.raises(ValidationError):
            production_report([], [], [], date(2024, 6, 30), date(2024, 5, 27))


class TestReportBuilder:
    def test_reads_repositories(self, conn, settings):
        from milkbank.repositories import RepositoryFactory

        repos = RepositoryFactory(conn)
        repos.jars().insert(reject_jar(make_jar("J1"), "Frasco roto", at=JAR_DISCARD_AT))
        repos.batches().insert(make_batch("B1", expiration_date=date(2024, 6, 2)))
        repos.waste_disposals().confirm("Frasco", "J1", "Enf. Ruiz", JAR_DISCARD_AT)

        builder = ReportBuilder(conn, settings)
        inventory = builder.inventory(date(2024, 6, 1))
        waste = builder.waste()

        assert inventory.snapshot.released_batches == 1
        assert inventory.suggested_batch.id == "B1"
        assert [a.batch_id for a in inventory.alerts] == ["B1"]
        assert waste.total_items == 1
        assert waste.pending_disposal == 0


class TestCharts:
    def test_pasteurization_curve_png(self, tmp_path):
        curve = tuple(TemperaturePoint(minute=m, temperature=62.5) for m in range(0, 35, 5))
        batch = make_batch(
            status=MilkStatus.QUARANTINE,
            pasteurization=PasteurizationRecord(
                date=FEEDING_AT, temp_curve=curve, responsible="Lab", completed=True
            ),
        )
        path = plot_pasteurization_curve(batch, tmp_path / "charts" / "curve.png")

        assert path.exists()
        assert path.read_bytes()[:4] == b"\x89PNG"

    def test_curve_requires_pasteurization(self, tmp_path):
        with pytest.raises(ValueError):
            plot_pasteurization_curve(make_batch(), tmp_path / "curve.png")

    def test_waste_chart(self, tmp_path, waste_sources):
        summary = summarize_waste(build_waste_registry(*waste_sources))
        assert plot_waste_by_source(summary, tmp_path / "waste.png").exists()
