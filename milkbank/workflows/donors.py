"""
Donor registration and eligibility workflow.
"""
import logging
import sqlite3
from dataclasses import replace
from datetime import date, datetime
from typing import Iterable, Optional

from ..db import log_audit_event, transaction
from ..domain import identifiers
from ..domain.lifecycle import apply_lab_results, change_donor_status
from ..domain.models import Donor, DonorStatus, DonorType, LabResult
from ..repositories import RepositoryFactory

logger = logging.getLogger(__name__)


class DonorWorkflow:
    """Donor lifecycle: registration, lab results, consent, status changes."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.repos = RepositoryFactory(conn)

    def register_donor(
        self,
        full_name: str,
        national_id: str,
        birth_date: date,
        donor_type: DonorType,
        consent_signed: bool = False,
        consent_date: Optional[date] = None,
        contact_phone: str = "",
        user: str = "system",
        at: Optional[datetime] = None,
    ) -> Donor:
        """
        Register a new donor in PENDING status with folio NNN-YY.

        Raises:
            ValidationError: Empty name or national ID
            DuplicateKeyError: National ID already registered
        """
        at = at or datetime.now()
        with transaction(self.conn, isolation_level="IMMEDIATE"):
            sequence = self.repos.folios().next_value(identifiers.donor_sequence_key(at.year))
            donor = Donor(
                id=identifiers.new_id(),
                folio=identifiers.donor_folio(at.year, sequence),
                full_name=full_name.strip(),
                national_id=national_id.strip().upper(),
                birth_date=birth_date,
                donor_type=donor_type,
                status=DonorStatus.PENDING,
                consent_signed=consent_signed,
                consent_date=consent_date if consent_signed else None,
                contact_phone=contact_phone,
                registration_date=at.date(),
            )
            donor = self.repos.donors().insert(donor)
            log_audit_event(
                self.conn, "DONOR_REGISTERED", f"{donor.full_name} ({donor.donor_type.value})",
                entity_type="donor", entity_id=donor.id, user=user,
            )

        logger.info(f"Donor {donor.folio} registered")
        return donor

    def sign_consent(self, donor_id: str, consent_date: date, user: str = "system") -> Donor:
        with transaction(self.conn, isolation_level="IMMEDIATE"):
            donor = self.repos.donors().get_required(donor_id)
            donor = self.repos.donors().update(replace(donor, consent_signed=True, consent_date=consent_date))
            log_audit_event(
                self.conn, "DONOR_CONSENT", f"Consentimiento firmado {consent_date.isoformat()}",
                entity_type="donor", entity_id=donor.id, user=user,
            )
        return donor

    def record_lab_results(self, donor_id: str, results: Iterable[LabResult], user: str = "system") -> Donor:
        """
        Append lab results; a reactive result rejects the donor.

        Returns:
            Updated donor
        """
        results = list(results)
        with transaction(self.conn, isolation_level="IMMEDIATE"):
            donor = self.repos.donors().get_required(donor_id)
            updated = self.repos.donors().update(apply_lab_results(donor, results))
            log_audit_event(
                self.conn, "DONOR_LAB_RESULTS",
                ", ".join(f"{r.test_name}={r.result}" for r in results),
                entity_type="donor", entity_id=donor.id, user=user,
            )
            if updated.status is DonorStatus.REJECTED and donor.status is not DonorStatus.REJECTED:
                log_audit_event(
                    self.conn, "DONOR_REJECTED", updated.rejection_reason or "",
                    entity_type="donor", entity_id=donor.id, user=user,
                )
        return updated

    def change_status(
        self,
        donor_id: str,
        status: DonorStatus,
        reason: Optional[str] = None,
        user: str = "system",
    ) -> Donor:
        """
        Change donor status.

        Raises:
            DonorEligibilityError: Activation without consent or with reactive labs
            ValidationError: Rejected/Suspended without reason
            InvalidTransitionError: Status change not allowed
        """
        with transaction(self.conn, isolation_level="IMMEDIATE"):
            donor = self.repos.donors().get_required(donor_id)
            changed = change_donor_status(donor, status, reason)
            if changed is donor:
                return donor
            updated = self.repos.donors().update(changed)
            log_audit_event(
                self.conn, "DONOR_STATUS_CHANGED",
                f"{donor.status.value} -> {status.value}" + (f": {reason}" if reason else ""),
                entity_type="donor", entity_id=donor.id, user=user,
            )
        return updated
