"""
JSON key-value persistence gateway with whole-collection read/write.

Each logical collection (jars, batches, administration_records, donors,
receivers) lives in <data_dir>/<name>.json as a JSON array. Collections are
read and written whole; there are no partial updates and no transactions.
import_into_sqlite() moves a gateway directory into the SQLite repositories.
"""
import json
import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..db import generate_run_id, log_audit_event, transaction
from ..domain import identifiers
from ..domain.errors import MilkBankError
from . import codec


logger = logging.getLogger(__name__)


# Collection name -> (to_dict, from_dict)
COLLECTIONS: Dict[str, tuple] = {
    "donors": (codec.donor_to_dict, codec.donor_from_dict),
    "receivers": (codec.receiver_to_dict, codec.receiver_from_dict),
    "jars": (codec.jar_to_dict, codec.jar_from_dict),
    "batches": (codec.batch_to_dict, codec.batch_from_dict),
    "administration_records": (codec.administration_to_dict, codec.administration_from_dict),
}

# Referenced collections first so foreign keys resolve
IMPORT_ORDER = ("donors", "receivers", "jars", "batches", "administration_records")


class JsonStore:
    """Whole-collection JSON gateway."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _codec(name: str) -> tuple:
        try:
            return COLLECTIONS[name]
        except KeyError:
            raise ValueError(f"Unknown collection: {name}") from None

    def _path(self, name: str) -> Path:
        self._codec(name)
        return self.data_dir / f"{name}.json"

    def read_raw(self, name: str) -> List[Dict[str, Any]]:
        """Read a collection as plain dicts (empty if the file is missing)."""
        path = self._path(name)
        if not path.exists():
            return []
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError(f"{path.name}: expected a JSON array")
        return data

    def read(self, name: str) -> List[Any]:
        """Read a collection as entities."""
        _, from_dict = self._codec(name)
        return [from_dict(item) for item in self.read_raw(name)]

    def write(self, name: str, entities: List[Any]) -> None:
        """Overwrite a collection with the given entities."""
        to_dict, _ = self._codec(name)
        path = self._path(name)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump([to_dict(e) for e in entities], f, ensure_ascii=False, indent=2)
        tmp_path.replace(path)


@dataclass
class ImportReport:
    """Outcome of a gateway import."""
    imported: Dict[str, int] = field(default_factory=dict)
    skipped: Dict[str, int] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    run_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.errors


def _inserter(repos, name: str) -> Callable[[Any], Any]:
    return {
        "donors": repos.donors().insert,
        "receivers": repos.receivers().insert,
        "jars": repos.jars().insert,
        "batches": repos.batches().insert,
        "administration_records": repos.administrations().append,
    }[name]


def _exists(repos, name: str, entity) -> bool:
    if name == "administration_records":
        return repos.administrations().get(entity.id) is not None
    return {
        "donors": repos.donors(),
        "receivers": repos.receivers(),
        "jars": repos.jars(),
        "batches": repos.batches(),
    }[name].exists(entity.id)


def _register_folio(repos, folio: str) -> None:
    """Advance folio counters past imported folios so new ones never collide."""
    if not identifiers.is_valid_folio(folio):
        return
    head, _, sequence = folio.rpartition("-")
    if folio[:2] in (identifiers.JAR_HOMOLOGOUS_PREFIX, identifiers.JAR_HETEROLOGOUS_PREFIX, identifiers.BATCH_PREFIX):
        repos.folios().ensure_at_least(head, int(sequence))
    else:
        # Donor folio NNN-YY: counter keyed by year
        number, _, year = folio.partition("-")
        repos.folios().ensure_at_least(identifiers.donor_sequence_key(int(year)), int(number))


def import_into_sqlite(store: JsonStore, conn: sqlite3.Connection, user: str = "system") -> ImportReport:
    """
    Import every gateway collection into SQLite in one transaction.

    Entities already present (same ID) are skipped. Any invalid record aborts
    the whole import; the report lists what failed.

    Returns:
        ImportReport (errors non-empty means nothing was written)
    """
    from ..repositories import RepositoryError, RepositoryFactory  # Import here to avoid circular dependency

    repos = RepositoryFactory(conn)
    report = ImportReport(run_id=generate_run_id())

    try:
        with transaction(conn, isolation_level="IMMEDIATE"):
            for name in IMPORT_ORDER:
                imported = skipped = 0
                for item in store.read_raw(name):
                    entity = COLLECTIONS[name][1](item)
                    if _exists(repos, name, entity):
                        skipped += 1
                        continue
                    _inserter(repos, name)(entity)
                    folio = getattr(entity, "folio", None)
                    if folio:
                        _register_folio(repos, folio)
                    imported += 1

                report.imported[name] = imported
                report.skipped[name] = skipped
                log_audit_event(
                    conn,
                    "JSON_IMPORT",
                    f"{name}: {imported} imported, {skipped} skipped",
                    entity_type=name,
                    user=user,
                    run_id=report.run_id,
                )
    except (MilkBankError, RepositoryError, KeyError, ValueError) as e:
        report.errors.append(f"{type(e).__name__}: {e}")
        report.imported = {}
        logger.error(f"JSON import from {store.data_dir} failed: {e}")
        return report

    logger.info(f"JSON import from {store.data_dir} completed: {report.imported}")
    return report
