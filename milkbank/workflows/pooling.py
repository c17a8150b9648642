"""
Pooling workflow: PEPS-ordered selection of jars and atomic batch commit.
"""
import logging
import sqlite3
from datetime import datetime
from typing import Iterable, Optional

from ..config import EngineSettings
from ..db import log_audit_event, transaction
from ..domain import identifiers
from ..domain.errors import ValidationError
from ..domain.models import MilkBatch, MilkType
from ..domain.peps import PepsSelector, mark_jars_pooled
from ..repositories import RepositoryFactory

logger = logging.getLogger(__name__)


class PoolingWorkflow:
    """
    Builds batches from the eligible jar pool.

    The selector is re-validated against freshly read data inside the commit
    transaction, so a pool changed by another user since selection fails
    with PepsViolation/ValidationError instead of producing a wrong batch.
    """

    def __init__(self, conn: sqlite3.Connection, settings: Optional[EngineSettings] = None):
        self.conn = conn
        self.repos = RepositoryFactory(conn)
        self.settings = settings or EngineSettings()

    def _pool_snapshot(self):
        return self.repos.jars().list_eligible(), self.repos.batches().assigned_jar_ids()

    def open_selector(self, milk_type: MilkType) -> PepsSelector:
        """Selector over the current eligible pool (all milk types loaded)."""
        jars, assigned = self._pool_snapshot()
        return PepsSelector(jars, milk_type, assigned)

    def refresh(self, selector: PepsSelector):
        """Re-read the pool and re-validate the selection."""
        jars, assigned = self._pool_snapshot()
        return selector.refresh(jars, assigned)

    def commit(
        self,
        selector: PepsSelector,
        user: str = "system",
        at: Optional[datetime] = None,
    ) -> MilkBatch:
        """
        Create a batch from the selector's current selection.

        Batch insert, jar history entries and audit row commit together.

        Raises:
            ValidationError: Empty selection or jar no longer eligible
            PepsViolation: Older jars appeared in the pool since selection
            MixedTypeError / DonorLimitError: Commit-time constraints
        """
        at = at or datetime.now()
        with transaction(self.conn, isolation_level="IMMEDIATE"):
            self.refresh(selector)
            if not selector.selected:
                raise ValidationError("Seleccione al menos un frasco para crear el lote")

            sequence = self.repos.folios().next_value(
                identifiers.sequence_key(identifiers.BATCH_PREFIX, at.date())
            )
            batch = selector.commit(
                batch_id=identifiers.new_id(),
                folio=identifiers.batch_folio(at.date(), sequence),
                created_at=at,
                responsible=user,
                max_donors=self.settings.max_donors_per_batch,
                shelf_life_months=self.settings.shelf_life_months,
            )
            batch = self.repos.batches().insert(batch)

            for jar in mark_jars_pooled(selector.selected, batch, user=user, at=at):
                self.repos.jars().update(jar)

            log_audit_event(
                self.conn, "BATCH_COMMITTED",
                f"{batch.folio}: {len(batch.jar_ids)} frascos, {len(batch.donors)} donadoras, "
                f"{batch.volume_total_ml} mL {batch.milk_type.value}",
                entity_type="batch", entity_id=batch.id, user=user,
            )

        selector.clear()
        self.refresh(selector)
        logger.info(f"Batch {batch.folio} committed with {len(batch.jar_ids)} jars")
        return batch

    def create_batch(
        self,
        jar_ids: Iterable[str],
        user: str = "system",
        at: Optional[datetime] = None,
    ) -> MilkBatch:
        """
        Select the given jars oldest-first and commit them as one batch.

        The IDs must be exactly the oldest jars of their milk type's pool.
        """
        jar_ids = list(jar_ids)
        if not jar_ids:
            raise ValidationError("Seleccione al menos un frasco para crear el lote")

        first = self.repos.jars().get_required(jar_ids[0])
        selector = self.open_selector(first.milk_type)
        order = {j.id: idx for idx, j in enumerate(selector.pool)}
        for jar_id in sorted(jar_ids, key=lambda j: order.get(j, -1)):
            selector.select(jar_id)
        return self.commit(selector, user=user, at=at)
