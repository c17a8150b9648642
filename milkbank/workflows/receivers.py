"""
Receiver registration and prescription updates.
"""
import logging
import sqlite3
from dataclasses import replace
from datetime import date, datetime
from typing import Iterable, Optional

from ..db import log_audit_event, transaction
from ..domain import identifiers
from ..domain.errors import ValidationError
from ..domain.models import Prescription, Receiver, ReceiverStatus
from ..repositories import RepositoryFactory

logger = logging.getLogger(__name__)


class ReceiverWorkflow:
    """Neonates receiving bank milk."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.repos = RepositoryFactory(conn)

    def register_receiver(
        self,
        record_number: str,
        full_name: str,
        birth_date: date,
        gestational_age_weeks: float,
        weight_kg: float,
        diagnosis: str = "",
        location: str = "",
        allergies: Iterable[str] = (),
        prescription: Optional[Prescription] = None,
        user: str = "system",
    ) -> Receiver:
        """
        Register a receiver.

        Raises:
            ValidationError: Empty record number/name or non-positive weight
            DuplicateKeyError: Record number already registered
        """
        if not record_number or not record_number.strip():
            raise ValidationError("El número de expediente es obligatorio")

        receiver = Receiver(
            id=identifiers.new_id(),
            record_number=record_number.strip(),
            full_name=full_name.strip(),
            birth_date=birth_date,
            gestational_age_weeks=gestational_age_weeks,
            weight_kg=weight_kg,
            diagnosis=diagnosis,
            location=location,
            allergies=tuple(allergies),
            prescription=prescription,
        )
        with transaction(self.conn, isolation_level="IMMEDIATE"):
            stored = self.repos.receivers().insert(receiver)
            log_audit_event(
                self.conn, "RECEIVER_REGISTERED", f"{stored.record_number} {stored.full_name}",
                entity_type="receiver", entity_id=stored.id, user=user,
            )
        logger.info(f"Receiver {stored.record_number} registered")
        return stored

    def update_prescription(
        self,
        receiver_id: str,
        total_daily_volume_ml: float,
        frequency: int,
        prescribed_by: str = "",
        user: str = "system",
        at: Optional[datetime] = None,
        **options,
    ) -> Receiver:
        """
        Replace the standing prescription of a receiver.

        Extra keyword arguments (milk_type_preference, caloric_requirement)
        are passed to Prescription.
        """
        prescription = Prescription(
            total_daily_volume_ml=total_daily_volume_ml,
            frequency=frequency,
            prescribed_by=prescribed_by,
            last_update=at or datetime.now(),
            **options,
        )
        with transaction(self.conn, isolation_level="IMMEDIATE"):
            receiver = self.repos.receivers().get_required(receiver_id)
            stored = self.repos.receivers().update(replace(receiver, prescription=prescription))
            log_audit_event(
                self.conn, "PRESCRIPTION_UPDATED",
                f"{total_daily_volume_ml} mL/día en {frequency} tomas ({prescription.volume_per_take} mL/toma)",
                entity_type="receiver", entity_id=stored.id, user=user,
            )
        return stored

    def change_status(self, receiver_id: str, status: ReceiverStatus, user: str = "system") -> Receiver:
        with transaction(self.conn, isolation_level="IMMEDIATE"):
            receiver = self.repos.receivers().get_required(receiver_id)
            stored = self.repos.receivers().update(replace(receiver, status=status))
            log_audit_event(
                self.conn, "RECEIVER_STATUS", f"{receiver.status.value} -> {status.value}",
                entity_type="receiver", entity_id=stored.id, user=user,
            )
        return stored
