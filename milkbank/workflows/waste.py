"""
Final disposal confirmation for waste registry items.
"""
import logging
import sqlite3
from datetime import datetime
from typing import Optional

from ..analytics.waste import WasteSource
from ..db import log_audit_event, transaction
from ..domain.errors import ValidationError
from ..domain.models import MilkStatus
from ..repositories import NotFoundError, RepositoryFactory

logger = logging.getLogger(__name__)


class WasteWorkflow:
    """Confirms that wasted milk was physically disposed of."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.repos = RepositoryFactory(conn)

    def _ensure_waste_item(self, source: WasteSource, item_id: str) -> None:
        if source is WasteSource.JAR:
            jar = self.repos.jars().get_required(item_id)
            if jar.status is not MilkStatus.DISCARDED:
                raise ValidationError(f"El frasco {jar.folio} no está descartado")
        elif source is WasteSource.BATCH:
            batch = self.repos.batches().get_required(item_id)
            if batch.status is not MilkStatus.DISCARDED:
                raise ValidationError(f"El lote {batch.folio} no está descartado")
        else:
            record = self.repos.administrations().get(item_id)
            if record is None:
                raise NotFoundError(f"AdministrationRecord not found: {item_id}")
            if record.volume_discarded <= 0:
                raise ValidationError("La toma no registra volumen desechado")

    def confirm_disposal(
        self,
        source: WasteSource,
        item_id: str,
        responsible: str,
        notes: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> bool:
        """
        Confirm final disposal of a waste item.

        Confirming an already confirmed item is a no-op.

        Returns:
            True if newly confirmed, False if it was already confirmed

        Raises:
            ValidationError: Missing responsible or item is not waste
            NotFoundError: Unknown item
        """
        if not responsible or not responsible.strip():
            raise ValidationError("El responsable es obligatorio")

        with transaction(self.conn, isolation_level="IMMEDIATE"):
            self._ensure_waste_item(source, item_id)
            inserted = self.repos.waste_disposals().confirm(
                source.value, item_id, responsible.strip(), at or datetime.now(), notes
            )
            if inserted:
                log_audit_event(
                    self.conn, "WASTE_DISPOSED", f"{source.value} {item_id}",
                    entity_type="waste", entity_id=item_id, user=responsible.strip(),
                )

        if not inserted:
            logger.info(f"Waste item {source.value}:{item_id} already disposed")
        return inserted
