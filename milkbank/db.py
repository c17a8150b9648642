"""
Database connection manager and migration utilities for SQLite storage.

- Connection management with PRAGMA configuration
- Transaction context manager (nest-aware)
- Migration runner with backup before each schema change
- Schema verification, integrity checks and audit log

Design Principles:
- Foreign keys enforced (PRAGMA foreign_keys=ON)
- WAL journal mode for concurrent read/write
- Connections run in autocommit mode; every write goes through transaction()
- Idempotent migration application
"""

import hashlib
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .utils.paths import get_data_dir, get_db_path


logger = logging.getLogger(__name__)


# ============================================================
# Configuration Constants
# ============================================================

MIGRATIONS_DIR: Path = Path(__file__).resolve().parent / "migrations"
MEMORY_DB = ":memory:"

# Connection PRAGMAs
PRAGMA_CONFIG = {
    "foreign_keys": "ON",           # Enforce FK constraints
    "journal_mode": "WAL",          # Write-Ahead Logging for concurrency
    "synchronous": "NORMAL",        # Balance safety/performance (FULL for max safety)
    "temp_store": "MEMORY",         # Use RAM for temp tables
    "busy_timeout": 5000,           # Wait 5s for lock (milliseconds)
}

EXPECTED_TABLES = {
    "schema_version", "donors", "jars", "batches", "batch_jars", "receivers",
    "administration_records", "folio_sequences", "audit_log", "waste_disposals",
}

ISOLATION_LEVELS = ("DEFERRED", "IMMEDIATE", "EXCLUSIVE")


# ============================================================
# Connection Management
# ============================================================

def open_connection(db_path: Union[str, Path, None] = None) -> sqlite3.Connection:
    """
    Open SQLite connection with PRAGMA configuration.

    Args:
        db_path: Path to database file (default: data/milkbank.db), or ":memory:"

    Returns:
        Configured sqlite3.Connection (autocommit mode, sqlite3.Row factory)

    Raises:
        sqlite3.OperationalError: Database locked or inaccessible
        sqlite3.DatabaseError: Corrupted database file
    """
    if db_path is None:
        db_path = get_db_path()

    if str(db_path) != MEMORY_DB:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    try:
        conn = sqlite3.connect(str(db_path), timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row

        cursor = conn.cursor()
        for pragma, value in PRAGMA_CONFIG.items():
            cursor.execute(f"PRAGMA {pragma}={value}")

        fk_enabled = cursor.execute("PRAGMA foreign_keys").fetchone()[0]
        if fk_enabled != 1:
            raise RuntimeError("Failed to enable foreign keys (PRAGMA foreign_keys=ON)")

        return conn

    except sqlite3.OperationalError as e:
        if "locked" in str(e).lower():
            raise sqlite3.OperationalError(
                f"Database {db_path} is locked. "
                f"Close other instances of the application and retry."
            ) from e
        raise

    except sqlite3.DatabaseError as e:
        raise sqlite3.DatabaseError(
            f"Database {db_path} is corrupted. "
            f"Recovery options:\n"
            f"  1. Restore from backup: see data/backups/\n"
            f"  2. Run integrity check: python main.py check"
        ) from e


@contextmanager
def transaction(conn: sqlite3.Connection, isolation_level: str = "DEFERRED"):
    """
    Transaction context manager with automatic commit/rollback.

    If the connection is already inside a transaction, the block joins it and
    the outermost transaction decides commit or rollback.

    Args:
        conn: SQLite connection (opened by open_connection)
        isolation_level: DEFERRED (default), IMMEDIATE, or EXCLUSIVE

    Yields:
        sqlite3.Cursor: Cursor for executing queries

    Raises:
        Domain errors (and any non-sqlite error): re-raised unchanged after rollback
        RuntimeError: Wrapping any sqlite3 error, after rollback
    """
    if isolation_level not in ISOLATION_LEVELS:
        raise ValueError(f"Invalid isolation level: {isolation_level}")

    cursor = conn.cursor()
    if conn.in_transaction:
        yield cursor
        return

    cursor.execute(f"BEGIN {isolation_level}")
    try:
        yield cursor
        conn.commit()

    except sqlite3.Error as e:
        conn.rollback()
        raise RuntimeError(f"Transaction failed and rolled back: {e}") from e

    except BaseException:
        conn.rollback()
        raise


# ============================================================
# Migration Management
# ============================================================

def get_current_schema_version(conn: sqlite3.Connection) -> int:
    """
    Get current schema version from database.

    Returns:
        Current schema version (0 if schema_version table doesn't exist)
    """
    try:
        result = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return result[0] if result[0] is not None else 0

    except sqlite3.OperationalError:
        # schema_version table doesn't exist yet
        return 0


def get_pending_migrations(
    conn: sqlite3.Connection,
    migrations_dir: Path = MIGRATIONS_DIR,
) -> List[Tuple[int, Path]]:
    """
    Get list of pending migration scripts.

    Returns:
        List of (version, filepath) tuples sorted by version

    Migration script naming convention: NNN_description.sql
    """
    current_version = get_current_schema_version(conn)

    if not migrations_dir.exists():
        return []

    pending = []
    for migration_file in sorted(migrations_dir.glob("*.sql")):
        version_str = migration_file.stem.split("_")[0]
        try:
            version = int(version_str)
        except ValueError:
            logger.warning(f"Skipping invalid migration filename: {migration_file.name}")
            continue

        if version > current_version:
            pending.append((version, migration_file))

    return sorted(pending, key=lambda x: x[0])


def calculate_file_checksum(filepath: Path) -> str:
    """SHA-256 of a migration script (recorded in schema_version)."""
    return hashlib.sha256(filepath.read_bytes()).hexdigest()


def database_file(conn: sqlite3.Connection) -> Optional[Path]:
    """Path of the main database file, or None for in-memory databases."""
    for row in conn.execute("PRAGMA database_list"):
        if row[1] == "main" and row[2]:
            return Path(row[2])
    return None


def backup_database(
    conn: sqlite3.Connection,
    backup_reason: str = "migration",
    backup_dir: Optional[Path] = None,
) -> Optional[Path]:
    """
    Create a timestamped, consistent backup of a file database.

    Uses the SQLite online backup API, so pending WAL content is included.

    Returns:
        Path to backup file, or None for in-memory databases
    """
    db_file = database_file(conn)
    if db_file is None:
        return None

    if backup_dir is None:
        backup_dir = get_data_dir() / "backups"
    backup_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    backup_path = backup_dir / f"{db_file.stem}_{timestamp}_{backup_reason}.db"

    target = sqlite3.connect(str(backup_path))
    try:
        conn.backup(target)
    finally:
        target.close()

    logger.info(f"Backup created: {backup_path}")
    return backup_path


def apply_migrations(
    conn: sqlite3.Connection,
    dry_run: bool = False,
    migrations_dir: Path = MIGRATIONS_DIR,
) -> int:
    """
    Apply all pending migrations to database.

    Each script runs as one transaction together with its schema_version
    row, so a failing migration leaves the schema unchanged.

    Args:
        conn: Database connection
        dry_run: If True, only log pending migrations without applying
        migrations_dir: Directory holding NNN_description.sql scripts

    Returns:
        Number of migrations applied

    Raises:
        RuntimeError: If a migration fails (database left at previous version)
    """
    current_version = get_current_schema_version(conn)
    pending = get_pending_migrations(conn, migrations_dir)

    if not pending:
        logger.debug(f"Database schema is up-to-date (version {current_version})")
        return 0

    if dry_run:
        for version, filepath in pending:
            logger.info(f"Pending migration [{version}] {filepath.name}")
        return 0

    if current_version > 0:
        backup_database(conn, f"v{current_version}_pre_migration")

    applied_count = 0
    for version, migration_path in pending:
        migration_sql = migration_path.read_text(encoding="utf-8")
        checksum = calculate_file_checksum(migration_path)
        description = migration_path.stem.split("_", 1)[-1].replace("'", "''")

        # executescript() commits on its own; BEGIN/COMMIT keep the script atomic
        script = (
            "BEGIN;\n"
            f"{migration_sql}\n"
            "INSERT INTO schema_version (version, description, checksum) "
            f"VALUES ({version}, '{description}', '{checksum}');\n"
            "COMMIT;"
        )
        try:
            conn.executescript(script)
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.rollback()
            logger.error(f"Migration {version} failed: {e}")
            raise RuntimeError(f"Migration {version} failed. Database unchanged.") from e

        logger.info(f"Migration {version} applied: {migration_path.name}")
        applied_count += 1

    return applied_count


# ============================================================
# Health Checks
# ============================================================

def verify_schema(conn: sqlite3.Connection) -> bool:
    """
    Verify that every expected table exists and migrations were applied.

    Returns:
        True if schema is valid, False otherwise
    """
    actual_tables = {
        row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
    }
    missing_tables = EXPECTED_TABLES - actual_tables
    if missing_tables:
        logger.error(f"Missing tables: {', '.join(sorted(missing_tables))}")
        return False

    if get_current_schema_version(conn) == 0:
        logger.error("Schema version is 0 (no migrations applied)")
        return False

    return True


def integrity_check(conn: sqlite3.Connection) -> List[str]:
    """
    Run SQLite integrity checks.

    Returns:
        List of problems found (empty if database is healthy)

    Checks:
    - PRAGMA integrity_check (structural integrity)
    - PRAGMA foreign_key_check (referential integrity)
    - PRAGMA foreign_keys (enforcement enabled)
    """
    problems = []

    integrity_result = conn.execute("PRAGMA integrity_check").fetchall()
    if len(integrity_result) != 1 or integrity_result[0][0] != "ok":
        problems.extend(f"Integrity: {row[0]}" for row in integrity_result[:10])

    fk_violations = conn.execute("PRAGMA foreign_key_check").fetchall()
    for row in fk_violations[:10]:
        problems.append(f"Foreign key: table {row[0]}, rowid {row[1]}, parent {row[2]}")

    if conn.execute("PRAGMA foreign_keys").fetchone()[0] != 1:
        problems.append("Foreign keys are NOT enabled")

    for problem in problems:
        logger.error(problem)
    return problems


def get_database_stats(conn: sqlite3.Connection) -> Dict[str, Any]:
    """
    Get database statistics (schema version, row counts).

    Returns:
        Dictionary with database statistics
    """
    stats: Dict[str, Any] = {"schema_version": get_current_schema_version(conn)}

    db_file = database_file(conn)
    if db_file is not None and db_file.exists():
        stats["db_size_mb"] = round(db_file.stat().st_size / (1024 * 1024), 2)

    row_counts = {}
    for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name").fetchall():
        table_name = row[0]
        if table_name != "sqlite_sequence":
            row_counts[table_name] = conn.execute(f"SELECT COUNT(*) FROM {table_name}").fetchone()[0]
    stats["row_counts"] = row_counts

    return stats


def initialize_database(db_path: Union[str, Path, None] = None) -> sqlite3.Connection:
    """
    Open the database, apply pending migrations and run health checks.

    Returns:
        Ready-to-use connection

    Raises:
        RuntimeError: If the database is unhealthy after migration
    """
    conn = open_connection(db_path)
    apply_migrations(conn)

    problems = integrity_check(conn)
    if problems or not verify_schema(conn):
        conn.close()
        raise RuntimeError("Startup checks failed - database is unhealthy")

    return conn


# ============================================================
# Audit Logging
# ============================================================

def generate_run_id() -> str:
    """
    Generate unique run_id for multi-entity operations.

    Returns:
        Unique run ID in format: run_YYYYMMDD_HHMMSS_<uuid4_short>

    All audit events written by the same workflow call share the run_id.
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    short_uuid = str(uuid.uuid4())[:8]
    return f"run_{timestamp}_{short_uuid}"


def log_audit_event(
    conn: sqlite3.Connection,
    operation: str,
    details: str = "",
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    user: str = "system",
    run_id: Optional[str] = None,
) -> int:
    """
    Log audit event to audit_log table.

    Joins the caller's transaction when there is one, so the audit row
    commits or rolls back together with the change it describes.

    Args:
        conn: Database connection
        operation: Operation type (e.g., "JAR_REGISTERED", "BATCH_COMMITTED")
        details: Human-readable description
        entity_type: Affected entity kind ("jar", "batch", ...)
        entity_id: Affected entity ID
        user: User/operator name (default: "system")
        run_id: Optional run ID grouping related events

    Returns:
        audit_id of created record
    """
    with transaction(conn) as cur:
        cur.execute("""
            INSERT INTO audit_log (timestamp, operation, entity_type, entity_id, details, user, run_id)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            operation, entity_type, entity_id, details, user, run_id,
        ))
        audit_id = cur.lastrowid

    return audit_id


def get_audit_log(
    conn: sqlite3.Connection,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    operation: Optional[str] = None,
    run_id: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    """
    Query audit log with filters.

    Returns:
        List of audit log records (most recent first)
    """
    query = (
        "SELECT audit_id, timestamp, operation, entity_type, entity_id, details, user, run_id "
        "FROM audit_log WHERE 1=1"
    )
    params: List[Any] = []

    if entity_type is not None:
        query += " AND entity_type = ?"
        params.append(entity_type)

    if entity_id is not None:
        query += " AND entity_id = ?"
        params.append(entity_id)

    if operation is not None:
        query += " AND operation = ?"
        params.append(operation)

    if run_id is not None:
        query += " AND run_id = ?"
        params.append(run_id)

    query += " ORDER BY audit_id DESC LIMIT ? OFFSET ?"
    params.extend([limit, offset])

    return [dict(row) for row in conn.execute(query, params).fetchall()]
