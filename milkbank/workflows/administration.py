"""
Feeding administration workflow.

Each administration is one IMMEDIATE transaction: the batch is read, the
ledger entry computed, the batch balance written with a version check and
the record appended. Two concurrent administrations on the same batch can
therefore never both succeed against the same balance.
"""
import logging
import sqlite3
from datetime import date, datetime
from typing import List, Optional, Tuple, Union

from ..config import EngineSettings
from ..db import log_audit_event, transaction
from ..domain.dosage import AdministrationResult, administer, derive_remaining_volume
from ..domain.inventory import InventoryCalculator
from ..domain.models import AdministrationRecord, AdministrationRoute, DiscardReason, MilkBatch, MilkType
from ..repositories import RepositoryFactory

logger = logging.getLogger(__name__)


class AdministrationWorkflow:
    """Dispensing of released batches to receivers."""

    def __init__(self, conn: sqlite3.Connection, settings: Optional[EngineSettings] = None):
        self.conn = conn
        self.repos = RepositoryFactory(conn)
        self.settings = settings or EngineSettings()

    def administer(
        self,
        batch_id: str,
        receiver_id: str,
        administered: float,
        discarded: float = 0.0,
        reason: Union[DiscardReason, str, None] = None,
        prescribed: Optional[float] = None,
        *,
        responsible: str,
        temperature: float,
        route: AdministrationRoute,
        at: Optional[datetime] = None,
    ) -> AdministrationResult:
        """
        Record one feeding event and decrement the batch balance.

        Args:
            batch_id: Released batch to dispense from
            receiver_id: Receiving patient
            administered: Volume given (mL)
            discarded: Volume wasted (mL)
            reason: Discard reason (required when discarded > 0)
            prescribed: Prescribed take (default: receiver's per-take volume)
            responsible: Acting nurse
            temperature: Milk temperature (°C)
            route: Administration route
            at: Event timestamp

        Returns:
            AdministrationResult (stored batch, record, warnings)

        Raises:
            BatchUnavailableError, InsufficientVolumeError, MissingReasonError,
            ValidationError: Dosage rule violations (nothing is written)
            StaleVersionError: The batch changed concurrently
        """
        with transaction(self.conn, isolation_level="IMMEDIATE"):
            batch = self.repos.batches().get_required(batch_id)
            receiver = self.repos.receivers().get_required(receiver_id)

            if prescribed is None:
                prescribed = float(receiver.prescription.volume_per_take) if receiver.prescription else administered

            result = administer(
                batch, prescribed, administered, discarded, reason,
                receiver=receiver,
                responsible=responsible,
                temperature=temperature,
                route=route,
                at=at,
                temperature_range=self.settings.administration_temperature_range,
            )
            stored = self.repos.batches().update(result.batch, expected_version=batch.version)
            self.repos.administrations().append(result.record)
            log_audit_event(
                self.conn,
                "ADMINISTRATION",
                f"{stored.folio} -> {receiver.record_number}: {administered} mL administrados, "
                f"{discarded} mL desechados, saldo {stored.volume_total_ml} mL",
                entity_type="batch",
                entity_id=stored.id,
                user=responsible,
            )

        return AdministrationResult(batch=stored, record=result.record, warnings=result.warnings)

    def verify_batch_balance(self, batch_id: str) -> Tuple[bool, float, float]:
        """
        Compare a batch's stored balance with the one derived from its ledger.

        Returns:
            (consistent, stored_volume, derived_volume)
        """
        batch = self.repos.batches().get_required(batch_id)
        if batch.initial_volume_ml is None:
            return True, batch.volume_total_ml, batch.volume_total_ml
        derived = derive_remaining_volume(
            batch.initial_volume_ml, self.repos.administrations().list(batch_id=batch_id)
        )
        consistent = abs(derived - batch.volume_total_ml) < 0.005
        if not consistent:
            logger.warning(
                f"Batch {batch.folio}: stored balance {batch.volume_total_ml} mL != ledger {derived} mL"
            )
        return consistent, batch.volume_total_ml, derived

    def suggest_batch(self, today: Optional[date] = None, milk_type: Optional[MilkType] = None) -> Optional[MilkBatch]:
        """Released batch closest to expiration (FEFO) with volume left."""
        today = today or date.today()
        return InventoryCalculator.suggest_batch_for_dosage(self.repos.batches().list(), today, milk_type=milk_type)

    def history(self, receiver_id: str) -> List[AdministrationRecord]:
        """Feeding history of a receiver, oldest first."""
        return self.repos.administrations().list(receiver_id=receiver_id)
