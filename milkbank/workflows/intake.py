"""
Jar intake workflow: registration and reception verification.
"""
import logging
import sqlite3
from datetime import date, datetime, time
from typing import Optional

from ..config import EngineSettings
from ..db import log_audit_event, transaction
from ..domain import identifiers
from ..domain.lifecycle import ensure_donor_can_deliver, reject_jar, verify_reception
from ..domain.models import (
    ArrivalState,
    ExtractionPlace,
    HistoryEntry,
    MilkJar,
    MilkStatus,
    MilkType,
)
from ..domain.validation import require, validate_extraction_moment, validate_volume
from ..repositories import RepositoryFactory

logger = logging.getLogger(__name__)


class IntakeWorkflow:
    """Registration of raw jars and their reception checks."""

    def __init__(self, conn: sqlite3.Connection, settings: Optional[EngineSettings] = None):
        self.conn = conn
        self.repos = RepositoryFactory(conn)
        self.settings = settings or EngineSettings()

    def register_jar(
        self,
        donor_id: str,
        volume_ml: float,
        milk_type: MilkType,
        extraction_date: date,
        extraction_time: time,
        reception_temperature: float,
        extraction_place: ExtractionPlace = ExtractionPlace.LACTARIUM,
        observations: Optional[str] = None,
        user: str = "system",
        at: Optional[datetime] = None,
    ) -> MilkJar:
        """
        Register a RAW jar delivered by an active donor.

        Folio: HO-YYYY-MM-DD-NNN (homologous) or HE-YYYY-MM-DD-NNN (heterologous),
        dated on the registration day.

        Raises:
            ValidationError: Non-positive volume or future extraction moment
            DonorEligibilityError: Donor is not Active
            NotFoundError: Unknown donor
        """
        at = at or datetime.now()
        require(validate_volume(volume_ml))
        require(validate_extraction_moment(datetime.combine(extraction_date, extraction_time), now=at))

        with transaction(self.conn, isolation_level="IMMEDIATE"):
            donor = self.repos.donors().get_required(donor_id)
            ensure_donor_can_deliver(donor)

            prefix = identifiers.jar_prefix(donor.donor_type)
            sequence = self.repos.folios().next_value(identifiers.sequence_key(prefix, at.date()))
            jar = MilkJar(
                id=identifiers.new_id(),
                folio=identifiers.jar_folio(donor.donor_type, at.date(), sequence),
                donor_id=donor.id,
                donor_name=donor.full_name,
                donor_type=donor.donor_type,
                volume_ml=volume_ml,
                milk_type=milk_type,
                extraction_date=extraction_date,
                extraction_time=extraction_time,
                reception_temperature=reception_temperature,
                extraction_place=extraction_place,
                status=MilkStatus.RAW,
                observations=observations,
                history=(HistoryEntry(timestamp=at, action="Registro Inicial", user=user),),
            )
            jar = self.repos.jars().insert(jar)
            log_audit_event(
                self.conn, "JAR_REGISTERED",
                f"{jar.folio}: {volume_ml} mL {milk_type.value} de {donor.folio}",
                entity_type="jar", entity_id=jar.id, user=user,
            )

        logger.info(f"Jar {jar.folio} registered ({volume_ml} mL)")
        return jar

    def verify_reception(
        self,
        jar_id: str,
        temperature: float,
        arrival_state: ArrivalState,
        clean: bool,
        sealed: bool,
        labeled: bool,
        user: str = "system",
        at: Optional[datetime] = None,
    ) -> MilkJar:
        """
        Run reception checks on a RAW jar.

        Returns:
            Jar VERIFIED, or DISCARDED with every failed check in the reason
        """
        with transaction(self.conn, isolation_level="IMMEDIATE"):
            jar = self.repos.jars().get_required(jar_id)
            checked = verify_reception(
                jar, temperature, arrival_state, clean, sealed, labeled,
                user=user, at=at, max_temperature=self.settings.max_reception_temperature,
            )
            stored = self.repos.jars().update(checked)
            operation = "JAR_REJECTED" if stored.status is MilkStatus.DISCARDED else "JAR_VERIFIED"
            log_audit_event(
                self.conn, operation, stored.rejection_reason or f"{temperature}°C {arrival_state.value}",
                entity_type="jar", entity_id=jar.id, user=user,
            )
        return stored

    def reject_jar(self, jar_id: str, reason: str, user: str = "system", at: Optional[datetime] = None) -> MilkJar:
        """Discard a jar with a mandatory reason."""
        with transaction(self.conn, isolation_level="IMMEDIATE"):
            jar = self.repos.jars().get_required(jar_id)
            stored = self.repos.jars().update(reject_jar(jar, reason, user=user, at=at))
            log_audit_event(
                self.conn, "JAR_REJECTED", stored.rejection_reason,
                entity_type="jar", entity_id=jar.id, user=user,
            )
        return stored
