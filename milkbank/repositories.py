"""
Repository/DAL layer for SQLite storage.

- DonorRepository, JarRepository, BatchRepository, ReceiverRepository:
  single-entity CRUD over JSON documents with optimistic version tokens
- AdministrationRepository: append-only feeding ledger
- FolioSequenceRepository: monotonic folio counters
- WasteDisposalRepository: idempotent disposal confirmations

Design Principles:
- All write operations wrapped in database transactions (joining the caller's
  transaction when a workflow already opened one)
- update() succeeds only if the stored version equals the expected one
- Error handling: IntegrityError mapped to business exceptions
- No business logic: pure data access layer
"""

import json
import sqlite3
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, Tuple, TypeVar

from .db import transaction
from .domain.models import (
    AdministrationRecord,
    Donor,
    MilkBatch,
    MilkJar,
    MilkStatus,
    MilkType,
    Receiver,
)
from .domain.peps import ELIGIBLE_STATUSES
from .persistence import codec


# ============================================================
# Custom Exceptions
# ============================================================

class RepositoryError(Exception):
    """Base exception for repository operations"""
    pass


class DuplicateKeyError(RepositoryError):
    """Raised when UNIQUE constraint is violated"""
    pass


class ForeignKeyError(RepositoryError):
    """Raised when FOREIGN KEY constraint is violated"""
    pass


class NotFoundError(RepositoryError):
    """Raised when entity not found"""
    pass


class BusinessRuleError(RepositoryError):
    """Raised when CHECK constraint is violated"""
    pass


class StaleVersionError(RepositoryError):
    """Raised when the stored entity changed since it was read"""

    def __init__(self, entity: str, entity_id: str, expected: int, actual: int):
        super().__init__(
            f"{entity} {entity_id} was modified concurrently "
            f"(expected version {expected}, found {actual}); reload and retry"
        )
        self.entity = entity
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual


def _map_integrity_error(e: Exception, entity: str, key: str) -> Exception:
    """Translate a sqlite/transaction failure into a repository exception."""
    error_msg = str(e).lower()
    if "foreign key" in error_msg:
        return ForeignKeyError(f"Foreign key constraint failed for {entity} {key}")
    if "check constraint" in error_msg:
        return BusinessRuleError(f"Business rule violated for {entity} {key}: {e}")
    if "unique" in error_msg:
        return DuplicateKeyError(f"{entity} {key} already exists")
    return RepositoryError(f"{entity} {key}: {e}")


def _is_db_failure(e: Exception) -> bool:
    return isinstance(e, sqlite3.Error) or (
        isinstance(e, RuntimeError) and isinstance(e.__cause__, sqlite3.Error)
    )


# ============================================================
# Document repositories
# ============================================================

T = TypeVar("T")


class _DocumentRepository(Generic[T]):
    """
    Shared CRUD for entities stored as a JSON document plus scalar columns.

    Subclasses set table, entity_name, to_dict/from_dict and columns().
    """

    table: str = ""
    entity_name: str = ""
    to_dict: Callable[[Any], Dict[str, Any]]
    from_dict: Callable[[Dict[str, Any]], Any]

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def columns(self, entity: T) -> Dict[str, Any]:
        """Indexed scalar columns derived from the entity."""
        raise NotImplementedError

    def _row_to_entity(self, row: sqlite3.Row) -> T:
        data = json.loads(row["document"])
        data["version"] = row["version"]
        return type(self).from_dict(data)

    def _document(self, entity: T) -> str:
        return json.dumps(type(self).to_dict(entity), ensure_ascii=False)

    def get(self, entity_id: str) -> Optional[T]:
        """Get entity by ID, or None."""
        row = self.conn.execute(
            f"SELECT document, version FROM {self.table} WHERE id = ?", (entity_id,)
        ).fetchone()
        return self._row_to_entity(row) if row else None

    def get_required(self, entity_id: str) -> T:
        """Get entity by ID, raising NotFoundError if missing."""
        entity = self.get(entity_id)
        if entity is None:
            raise NotFoundError(f"{self.entity_name} {entity_id} not found")
        return entity

    def exists(self, entity_id: str) -> bool:
        row = self.conn.execute(f"SELECT 1 FROM {self.table} WHERE id = ? LIMIT 1", (entity_id,)).fetchone()
        return row is not None

    def current_version(self, entity_id: str) -> Optional[int]:
        row = self.conn.execute(f"SELECT version FROM {self.table} WHERE id = ?", (entity_id,)).fetchone()
        return row["version"] if row else None

    def _select(self, where: str = "1=1", params: Iterable[Any] = (), order_by: str = "created_at, rowid") -> List[T]:
        rows = self.conn.execute(
            f"SELECT document, version FROM {self.table} WHERE {where} ORDER BY {order_by}",
            tuple(params),
        ).fetchall()
        return [self._row_to_entity(row) for row in rows]

    def list(self, status: Optional[Any] = None) -> List[T]:
        """List entities, optionally filtered by status enum."""
        if status is None:
            return self._select()
        return self._select("status = ?", (status.value,))

    def insert(self, entity: T) -> T:
        """
        Insert a new entity.

        Returns:
            Stored entity (version 1)

        Raises:
            DuplicateKeyError: ID or unique column already used
            BusinessRuleError: CHECK constraint violated
        """
        stored = replace(entity, version=1)
        cols = {"id": entity.id, **self.columns(stored), "version": 1, "document": self._document(stored)}
        names = ", ".join(cols)
        placeholders = ", ".join(["?"] * len(cols))
        try:
            with transaction(self.conn) as cur:
                cur.execute(f"INSERT INTO {self.table} ({names}) VALUES ({placeholders})", tuple(cols.values()))
                self._after_write(cur, stored)
        except (RuntimeError, sqlite3.Error) as e:
            if not _is_db_failure(e):
                raise
            raise _map_integrity_error(e, self.entity_name, entity.id) from e
        return stored

    def update(self, entity: T, expected_version: Optional[int] = None) -> T:
        """
        Replace a stored entity if nobody changed it since it was read.

        Args:
            entity: New entity state
            expected_version: Version read by the caller (default: entity.version)

        Returns:
            Stored entity with version incremented

        Raises:
            NotFoundError: Entity does not exist
            StaleVersionError: Stored version differs from expected_version
        """
        expected = entity.version if expected_version is None else expected_version
        stored = replace(entity, version=expected + 1)
        cols = {**self.columns(stored), "version": stored.version, "document": self._document(stored)}
        assignments = ", ".join(f"{name} = ?" for name in cols)
        try:
            with transaction(self.conn) as cur:
                cur.execute(
                    f"UPDATE {self.table} SET {assignments}, updated_at = datetime('now') "
                    f"WHERE id = ? AND version = ?",
                    (*cols.values(), entity.id, expected),
                )
                if cur.rowcount == 0:
                    actual = self.current_version(entity.id)
                    if actual is None:
                        raise NotFoundError(f"{self.entity_name} {entity.id} not found")
                    raise StaleVersionError(self.entity_name, entity.id, expected, actual)
                self._after_write(cur, stored)
        except (RuntimeError, sqlite3.Error) as e:
            if not _is_db_failure(e):
                raise
            raise _map_integrity_error(e, self.entity_name, entity.id) from e
        return stored

    def _after_write(self, cur: sqlite3.Cursor, entity: T) -> None:
        """Hook for dependent rows written in the same transaction."""
        pass


class DonorRepository(_DocumentRepository[Donor]):
    table = "donors"
    entity_name = "Donor"
    to_dict = staticmethod(codec.donor_to_dict)
    from_dict = staticmethod(codec.donor_from_dict)

    def columns(self, donor: Donor) -> Dict[str, Any]:
        return {
            "folio": donor.folio,
            "national_id": donor.national_id,
            "status": donor.status.value,
            "donor_type": donor.donor_type.value,
        }

    def get_by_national_id(self, national_id: str) -> Optional[Donor]:
        found = self._select("national_id = ?", (national_id,))
        return found[0] if found else None


class JarRepository(_DocumentRepository[MilkJar]):
    table = "jars"
    entity_name = "Jar"
    to_dict = staticmethod(codec.jar_to_dict)
    from_dict = staticmethod(codec.jar_from_dict)

    def columns(self, jar: MilkJar) -> Dict[str, Any]:
        return {
            "folio": jar.folio,
            "donor_id": jar.donor_id,
            "status": jar.status.value,
            "milk_type": jar.milk_type.value,
            "extraction_at": jar.extraction_timestamp.isoformat(),
            "volume_ml": jar.volume_ml,
        }

    def list(self, status: Optional[MilkStatus] = None) -> List[MilkJar]:
        if status is None:
            return self._select(order_by="extraction_at, created_at")
        return self._select("status = ?", (status.value,), order_by="extraction_at, created_at")

    def list_by_ids(self, jar_ids: Iterable[str]) -> List[MilkJar]:
        """Jars in the order of jar_ids (missing IDs raise NotFoundError)."""
        return [self.get_required(jar_id) for jar_id in jar_ids]

    def list_by_donor(self, donor_id: str) -> List[MilkJar]:
        return self._select("donor_id = ?", (donor_id,), order_by="extraction_at, created_at")

    def list_eligible(self, milk_type: Optional[MilkType] = None) -> List[MilkJar]:
        """
        Jars that may still be pooled: eligible status, not referenced by any batch.

        Returned in extraction order; ties keep registration order.
        """
        statuses = [s.value for s in ELIGIBLE_STATUSES]
        where = (
            f"status IN ({', '.join(['?'] * len(statuses))}) "
            "AND id NOT IN (SELECT jar_id FROM batch_jars)"
        )
        params: List[Any] = list(statuses)
        if milk_type is not None:
            where += " AND milk_type = ?"
            params.append(milk_type.value)
        return self._select(where, params, order_by="extraction_at, created_at, rowid")

    def list_received_between(self, start: date, end: date) -> List[MilkJar]:
        return self._select(
            "date(extraction_at) BETWEEN ? AND ?",
            (start.isoformat(), end.isoformat()),
            order_by="extraction_at",
        )


class BatchRepository(_DocumentRepository[MilkBatch]):
    table = "batches"
    entity_name = "Batch"
    to_dict = staticmethod(codec.batch_to_dict)
    from_dict = staticmethod(codec.batch_from_dict)

    def columns(self, batch: MilkBatch) -> Dict[str, Any]:
        return {
            "folio": batch.folio,
            "status": batch.status.value,
            "milk_type": batch.milk_type.value,
            "creation_date": batch.creation_date.isoformat(),
            "expiration_date": batch.expiration_date.isoformat() if batch.expiration_date else None,
            "volume_total_ml": batch.volume_total_ml,
        }

    def _after_write(self, cur: sqlite3.Cursor, batch: MilkBatch) -> None:
        # Keep the jar membership table in sync with the document
        cur.execute("DELETE FROM batch_jars WHERE batch_id = ?", (batch.id,))
        cur.executemany(
            "INSERT INTO batch_jars (batch_id, jar_id) VALUES (?, ?)",
            [(batch.id, jar_id) for jar_id in batch.jar_ids],
        )

    def list(self, status: Optional[MilkStatus] = None) -> List[MilkBatch]:
        if status is None:
            return self._select(order_by="creation_date")
        return self._select("status = ?", (status.value,), order_by="creation_date")

    def get_by_folio(self, folio: str) -> Optional[MilkBatch]:
        found = self._select("folio = ?", (folio,))
        return found[0] if found else None

    def assigned_jar_ids(self) -> List[str]:
        """IDs of every jar referenced by some batch."""
        return [row["jar_id"] for row in self.conn.execute("SELECT jar_id FROM batch_jars")]

    def batch_id_for_jar(self, jar_id: str) -> Optional[str]:
        row = self.conn.execute("SELECT batch_id FROM batch_jars WHERE jar_id = ?", (jar_id,)).fetchone()
        return row["batch_id"] if row else None

    def list_created_between(self, start: date, end: date) -> List[MilkBatch]:
        return self._select(
            "date(creation_date) BETWEEN ? AND ?",
            (start.isoformat(), end.isoformat()),
            order_by="creation_date",
        )


class ReceiverRepository(_DocumentRepository[Receiver]):
    table = "receivers"
    entity_name = "Receiver"
    to_dict = staticmethod(codec.receiver_to_dict)
    from_dict = staticmethod(codec.receiver_from_dict)

    def columns(self, receiver: Receiver) -> Dict[str, Any]:
        return {
            "record_number": receiver.record_number,
            "status": receiver.status.value,
        }


# ============================================================
# Administration Ledger (append-only)
# ============================================================

class AdministrationRepository:
    """Append-only ledger of feeding events."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def append(self, record: AdministrationRecord) -> str:
        """
        Append a record.

        Raises:
            DuplicateKeyError: Record ID already used
            ForeignKeyError: Batch does not exist
        """
        document = json.dumps(codec.administration_to_dict(record), ensure_ascii=False)
        try:
            with transaction(self.conn) as cur:
                cur.execute("""
                    INSERT INTO administration_records
                        (id, receiver_id, batch_id, timestamp, volume_administered, volume_discarded, document)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    record.id,
                    record.receiver_id,
                    record.batch_id,
                    record.timestamp.isoformat(),
                    record.volume_administered,
                    record.volume_discarded,
                    document,
                ))
        except (RuntimeError, sqlite3.Error) as e:
            if not _is_db_failure(e):
                raise
            raise _map_integrity_error(e, "AdministrationRecord", record.id) from e
        return record.id

    def get(self, record_id: str) -> Optional[AdministrationRecord]:
        row = self.conn.execute(
            "SELECT document FROM administration_records WHERE id = ?", (record_id,)
        ).fetchone()
        return codec.administration_from_dict(json.loads(row["document"])) if row else None

    def list(
        self,
        batch_id: Optional[str] = None,
        receiver_id: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[AdministrationRecord]:
        """List records chronologically with optional filters."""
        query = "SELECT document FROM administration_records WHERE 1=1"
        params: List[Any] = []

        if batch_id is not None:
            query += " AND batch_id = ?"
            params.append(batch_id)

        if receiver_id is not None:
            query += " AND receiver_id = ?"
            params.append(receiver_id)

        if start is not None:
            query += " AND date(timestamp) >= ?"
            params.append(start.isoformat())

        if end is not None:
            query += " AND date(timestamp) <= ?"
            params.append(end.isoformat())

        query += " ORDER BY timestamp, rowid"
        return [
            codec.administration_from_dict(json.loads(row["document"]))
            for row in self.conn.execute(query, params).fetchall()
        ]


# ============================================================
# Folio Sequences
# ============================================================

class FolioSequenceRepository:
    """
    Monotonic counters backing human-readable folios.

    next_value() must run inside the transaction that inserts the entity,
    so a rolled-back insert also releases its number.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def next_value(self, key: str) -> int:
        with transaction(self.conn, isolation_level="IMMEDIATE") as cur:
            cur.execute("""
                INSERT INTO folio_sequences (key, last_value) VALUES (?, 1)
                ON CONFLICT(key) DO UPDATE SET last_value = last_value + 1
            """, (key,))
            row = cur.execute("SELECT last_value FROM folio_sequences WHERE key = ?", (key,)).fetchone()
        return row["last_value"]

    def peek(self, key: str) -> int:
        row = self.conn.execute("SELECT last_value FROM folio_sequences WHERE key = ?", (key,)).fetchone()
        return row["last_value"] if row else 0

    def ensure_at_least(self, key: str, value: int) -> None:
        """Raise a counter to value (used when importing folios created elsewhere)."""
        with transaction(self.conn) as cur:
            cur.execute("""
                INSERT INTO folio_sequences (key, last_value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET last_value = MAX(last_value, excluded.last_value)
            """, (key, value))


# ============================================================
# Waste Disposals
# ============================================================

class WasteDisposalRepository:
    """Final disposal confirmations for waste registry items."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def confirm(
        self,
        source: str,
        item_id: str,
        responsible: str,
        disposed_at: datetime,
        notes: Optional[str] = None,
    ) -> bool:
        """
        Record final disposal of an item.

        Returns:
            True if newly confirmed, False if it was already confirmed
        """
        try:
            with transaction(self.conn) as cur:
                cur.execute("""
                    INSERT OR IGNORE INTO waste_disposals (source, item_id, responsible, disposed_at, notes)
                    VALUES (?, ?, ?, ?, ?)
                """, (source, item_id, responsible, disposed_at.isoformat(), notes))
                inserted = cur.rowcount == 1
        except (RuntimeError, sqlite3.Error) as e:
            if not _is_db_failure(e):
                raise
            raise _map_integrity_error(e, "WasteDisposal", f"{source}:{item_id}") from e
        return inserted

    def get(self, source: str, item_id: str) -> Optional[Dict[str, Any]]:
        row = self.conn.execute(
            "SELECT * FROM waste_disposals WHERE source = ? AND item_id = ?", (source, item_id)
        ).fetchone()
        return dict(row) if row else None

    def confirmed_keys(self) -> Dict[Tuple[str, str], Dict[str, Any]]:
        return {
            (row["source"], row["item_id"]): dict(row)
            for row in self.conn.execute("SELECT * FROM waste_disposals").fetchall()
        }


# ============================================================
# Factory
# ============================================================

class RepositoryFactory:
    """
    Factory for creating repository instances sharing a connection.

    Usage:
        >>> conn = open_connection()
        >>> repos = RepositoryFactory(conn)
        >>> batch = repos.batches().get_required(batch_id)
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def donors(self) -> DonorRepository:
        return DonorRepository(self.conn)

    def jars(self) -> JarRepository:
        return JarRepository(self.conn)

    def batches(self) -> BatchRepository:
        return BatchRepository(self.conn)

    def receivers(self) -> ReceiverRepository:
        return ReceiverRepository(self.conn)

    def administrations(self) -> AdministrationRepository:
        return AdministrationRepository(self.conn)

    def folios(self) -> FolioSequenceRepository:
        return FolioSequenceRepository(self.conn)

    def waste_disposals(self) -> WasteDisposalRepository:
        return WasteDisposalRepository(self.conn)
