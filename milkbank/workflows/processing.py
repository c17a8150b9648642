"""
Batch processing workflow: analysis, Holder pasteurization, microbiology,
storage location and distribution.
"""
import logging
import sqlite3
from dataclasses import replace
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from ..config import EngineSettings
from ..db import log_audit_event, transaction
from ..domain.analysis import (
    ALL_JARS_REJECTED_REASON,
    BatchAnalysisSummary,
    apply_chemical_analysis,
    apply_physical_inspection,
    evaluate_holder_curve,
    microbiology_decision,
    summarize_batch_analysis,
)
from ..domain.dates import add_months
from ..domain.errors import InvalidTransitionError, ValidationError
from ..domain.lifecycle import can_transition_jar, reject_batch, transition_batch, transition_jar
from ..domain.models import (
    HistoryEntry,
    MicrobiologyRecord,
    MicrobiologyResult,
    MilkBatch,
    MilkColor,
    MilkJar,
    MilkStatus,
    PasteurizationRecord,
    StorageLocation,
    TemperaturePoint,
)
from ..domain.peps import batch_composition
from ..repositories import RepositoryFactory

logger = logging.getLogger(__name__)


ANALYZABLE_JAR_STATUSES = frozenset({MilkStatus.VERIFIED, MilkStatus.TESTING, MilkStatus.ANALYZED, MilkStatus.DISCARDED})


class ProcessingWorkflow:
    """Quality processing of a batch from RAW to RELEASED/DISTRIBUTED."""

    def __init__(self, conn: sqlite3.Connection, settings: Optional[EngineSettings] = None):
        self.conn = conn
        self.repos = RepositoryFactory(conn)
        self.settings = settings or EngineSettings()

    def _audit(self, operation: str, batch: MilkBatch, details: str, user: str) -> None:
        log_audit_event(self.conn, operation, details, entity_type="batch", entity_id=batch.id, user=user)

    def _member_jars(self, batch: MilkBatch) -> List[MilkJar]:
        return self.repos.jars().list_by_ids(batch.jar_ids)

    def _sync_member_jars(self, batch: MilkBatch, target: MilkStatus, user: str, at: datetime) -> None:
        """Follow the batch into QUARANTINE/RELEASED for jars whose lifecycle allows it."""
        for jar in self._member_jars(batch):
            if can_transition_jar(jar.status, target):
                self.repos.jars().update(
                    transition_jar(jar, target, action=f"Lote {batch.folio}: {target.value}", user=user, at=at)
                )

    # ------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------

    def start_analysis(self, batch_id: str, user: str = "system", at: Optional[datetime] = None) -> MilkBatch:
        """
        Move a RAW batch to TESTING.

        Raises:
            ValidationError: A member jar has not passed reception verification
        """
        with transaction(self.conn, isolation_level="IMMEDIATE"):
            batch = self.repos.batches().get_required(batch_id)
            pending = [j.folio for j in self._member_jars(batch) if j.status not in ANALYZABLE_JAR_STATUSES]
            if pending:
                raise ValidationError(
                    f"Frascos sin verificación de recepción en {batch.folio}: {', '.join(pending)}"
                )
            batch = self.repos.batches().update(
                transition_batch(batch, MilkStatus.TESTING, action="Inicio de análisis", user=user, at=at)
            )
            self._audit("BATCH_ANALYSIS_STARTED", batch, batch.folio, user)
        return batch

    def record_jar_analysis(
        self,
        batch_id: str,
        jar_id: str,
        color: MilkColor,
        off_flavor: bool,
        contamination: str,
        acidity_aliquots: Sequence[float],
        creamatocrit: float,
        user: str = "system",
        at: Optional[datetime] = None,
    ) -> MilkJar:
        """
        Physical inspection then chemical analysis of one member jar.

        Chemical readings are ignored when the jar fails physical inspection.
        """
        with transaction(self.conn, isolation_level="IMMEDIATE"):
            batch = self.repos.batches().get_required(batch_id)
            if batch.status is not MilkStatus.TESTING:
                raise InvalidTransitionError("Lote", batch.folio, batch.status, MilkStatus.ANALYZED)
            if jar_id not in batch.jar_ids:
                raise ValidationError(f"El frasco {jar_id} no pertenece al lote {batch.folio}")

            jar = self.repos.jars().get_required(jar_id)
            inspected = apply_physical_inspection(jar, color, off_flavor, contamination, user=user, at=at)
            analyzed = apply_chemical_analysis(
                inspected, acidity_aliquots, creamatocrit, user=user, at=at,
                limit=self.settings.acidity_limit,
                normal_range=self.settings.acidity_normal_range,
                creamatocrit_thresholds=self.settings.creamatocrit_thresholds,
            )
            stored = self.repos.jars().update(analyzed)
            log_audit_event(
                self.conn,
                "JAR_REJECTED" if stored.status is MilkStatus.DISCARDED else "JAR_ANALYZED",
                stored.rejection_reason or f"{stored.folio}: {stored.status.value}",
                entity_type="jar", entity_id=stored.id, user=user,
            )
        return stored

    def complete_analysis(
        self,
        batch_id: str,
        user: str = "system",
        at: Optional[datetime] = None,
    ) -> Tuple[MilkBatch, BatchAnalysisSummary]:
        """
        Close the analysis of a TESTING batch.

        Rejected jars leave the batch composition. If none passed, the batch is
        DISCARDED; otherwise it becomes ANALYZED with recomputed volume, donors
        and type.

        Raises:
            ValidationError: Some member jar has no analysis outcome yet
        """
        at = at or datetime.now()
        with transaction(self.conn, isolation_level="IMMEDIATE"):
            batch = self.repos.batches().get_required(batch_id)
            if batch.status is not MilkStatus.TESTING:
                raise InvalidTransitionError("Lote", batch.folio, batch.status, MilkStatus.ANALYZED)

            jars = self._member_jars(batch)
            summary = summarize_batch_analysis(jars)
            if summary.pending:
                raise ValidationError(f"Lote {batch.folio}: {summary.pending} frasco(s) sin análisis completo")

            passed = [j for j in jars if j.status is MilkStatus.ANALYZED]
            rejected = [j for j in jars if j.status is MilkStatus.DISCARDED]
            for jar in rejected:
                self.repos.jars().update(replace(
                    jar,
                    history=jar.history + (
                        HistoryEntry(timestamp=at, action="Retirado del lote", user=user, details=batch.folio),
                    ),
                ))

            details = (
                f"{summary.passed}/{summary.total} aprobados, acidez promedio "
                f"{summary.average_acidity}°D"
            )
            if passed:
                composition = batch_composition(passed)
                updated = transition_batch(
                    batch, MilkStatus.ANALYZED, action="Análisis completado", user=user,
                    details=details, at=at, **composition,
                )
            else:
                emptied = replace(batch, donors=(), jar_ids=(), volume_total_ml=0)
                updated = reject_batch(emptied, ALL_JARS_REJECTED_REASON, user=user, at=at)

            stored = self.repos.batches().update(updated, expected_version=batch.version)
            self._audit(
                "BATCH_DISCARDED" if stored.status is MilkStatus.DISCARDED else "BATCH_ANALYZED",
                stored, stored.rejection_reason or details, user,
            )
        return stored, summary

    # ------------------------------------------------------------
    # Pasteurization & microbiology
    # ------------------------------------------------------------

    def pasteurize(
        self,
        batch_id: str,
        curve: Sequence[TemperaturePoint],
        responsible: str,
        at: Optional[datetime] = None,
    ) -> MilkBatch:
        """
        Record a Holder pasteurization run.

        Compliant curve -> QUARANTINE (culture sown, expiration refined to
        pasteurization date + shelf life). Otherwise DISCARDED.
        """
        at = at or datetime.now()
        with transaction(self.conn, isolation_level="IMMEDIATE"):
            batch = self.repos.batches().get_required(batch_id)
            if batch.status not in (MilkStatus.RAW, MilkStatus.ANALYZED):
                raise InvalidTransitionError("Lote", batch.folio, batch.status, MilkStatus.QUARANTINE)

            decision = evaluate_holder_curve(
                curve,
                target=self.settings.holder_temperature,
                minutes=self.settings.holder_minutes,
                tolerance=self.settings.holder_tolerance,
            )
            record = PasteurizationRecord(
                date=at,
                temp_curve=tuple(curve),
                responsible=responsible,
                completed=not decision.rejected,
            )

            if decision.rejected:
                updated = transition_batch(
                    batch, MilkStatus.DISCARDED, action="Pasteurización", user=responsible,
                    reason=decision.reason, at=at, pasteurization=record,
                )
            else:
                updated = transition_batch(
                    batch, MilkStatus.QUARANTINE, action="Pasteurización", user=responsible,
                    details="Holder conforme; siembra microbiológica", at=at,
                    pasteurization=record,
                    microbiology=MicrobiologyRecord(sowing_date=at),
                    expiration_date=add_months(at, self.settings.shelf_life_months),
                )

            stored = self.repos.batches().update(updated, expected_version=batch.version)
            if stored.status is MilkStatus.QUARANTINE:
                self._sync_member_jars(stored, MilkStatus.QUARANTINE, responsible, at)
            self._audit(
                "BATCH_DISCARDED" if decision.rejected else "BATCH_PASTEURIZED",
                stored, decision.reason or "Cuarentena hasta resultado de cultivo", responsible,
            )
        return stored

    def record_microbiology(
        self,
        batch_id: str,
        result: MicrobiologyResult,
        responsible: str,
        at: Optional[datetime] = None,
    ) -> MilkBatch:
        """
        Enter the culture result of a QUARANTINE batch.

        Negativo -> RELEASED (initial stock volume recorded), Positivo -> DISCARDED.
        """
        at = at or datetime.now()
        with transaction(self.conn, isolation_level="IMMEDIATE"):
            batch = self.repos.batches().get_required(batch_id)
            if batch.status is not MilkStatus.QUARANTINE:
                raise InvalidTransitionError("Lote", batch.folio, batch.status, MilkStatus.RELEASED)

            decision = microbiology_decision(result)
            microbiology = replace(
                batch.microbiology or MicrobiologyRecord(sowing_date=at),
                result=result,
                result_date=at,
                responsible=responsible,
            )
            changes = {"microbiology": microbiology}
            if not decision.rejected:
                changes["initial_volume_ml"] = batch.volume_total_ml

            updated = transition_batch(
                batch, decision.status, action=f"Cultivo microbiológico: {result.value}",
                user=responsible, reason=decision.reason, at=at, **changes,
            )
            stored = self.repos.batches().update(updated, expected_version=batch.version)
            if stored.status is MilkStatus.RELEASED:
                self._sync_member_jars(stored, MilkStatus.RELEASED, responsible, at)
            self._audit(
                "BATCH_DISCARDED" if decision.rejected else "BATCH_RELEASED",
                stored, decision.reason or f"{stored.volume_total_ml} mL disponibles", responsible,
            )
        return stored

    # ------------------------------------------------------------
    # Storage & distribution
    # ------------------------------------------------------------

    def assign_location(
        self,
        batch_id: str,
        equipment_id: str,
        shelf: int,
        position: str,
        user: str = "system",
        at: Optional[datetime] = None,
    ) -> MilkBatch:
        """
        Store a QUARANTINE or RELEASED batch in a configured storage unit.

        Raises:
            ValidationError: Unknown equipment, shelf < 1 or empty position
        """
        location = StorageLocation(equipment_id=equipment_id, shelf=shelf, position=position)
        if equipment_id not in self.settings.storage_units:
            raise ValidationError(f"Equipo de almacenamiento desconocido: {equipment_id}")

        with transaction(self.conn, isolation_level="IMMEDIATE"):
            batch = self.repos.batches().get_required(batch_id)
            if batch.status not in (MilkStatus.QUARANTINE, MilkStatus.RELEASED):
                raise ValidationError(
                    f"Lote {batch.folio}: solo lotes en cuarentena o liberados se almacenan "
                    f"(estado: {batch.status.value})"
                )
            label = f"{equipment_id} / Estante {shelf} / {position}"
            updated = replace(
                batch,
                location=location,
                history=batch.history + (
                    HistoryEntry(timestamp=at or datetime.now(), action="Ubicación asignada", user=user, details=label),
                ),
            )
            stored = self.repos.batches().update(updated)
            self._audit("BATCH_LOCATION", stored, label, user)
        return stored

    def distribute(
        self,
        batch_id: str,
        destination: str,
        user: str = "system",
        at: Optional[datetime] = None,
    ) -> MilkBatch:
        """Transfer a RELEASED batch to another medical unit."""
        if not destination or not destination.strip():
            raise ValidationError("El destino es obligatorio")

        with transaction(self.conn, isolation_level="IMMEDIATE"):
            batch = self.repos.batches().get_required(batch_id)
            updated = transition_batch(
                batch, MilkStatus.DISTRIBUTED, action="Distribución", user=user,
                details=destination.strip(), at=at, destination=destination.strip(),
            )
            stored = self.repos.batches().update(updated)
            self._audit("BATCH_DISTRIBUTED", stored, destination.strip(), user)
        return stored

    def discard_batch(
        self,
        batch_id: str,
        reason: str,
        user: str = "system",
        at: Optional[datetime] = None,
    ) -> MilkBatch:
        """Discard a batch from any non-terminal state with a mandatory reason."""
        with transaction(self.conn, isolation_level="IMMEDIATE"):
            batch = self.repos.batches().get_required(batch_id)
            stored = self.repos.batches().update(reject_batch(batch, reason, user=user, at=at))
            self._audit("BATCH_DISCARDED", stored, stored.rejection_reason, user)
        return stored
