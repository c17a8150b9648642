"""
Identifier generation.

Entity IDs are UUID4 strings (collision resistant). Folios are human-readable,
date-stamped codes built from a monotonic per-prefix sequence allocated by the
persistence layer (see repositories.FolioSequenceRepository).
"""
import re
import uuid
from datetime import date

from .models import DonorType


JAR_HOMOLOGOUS_PREFIX = "HO"
JAR_HETEROLOGOUS_PREFIX = "HE"
BATCH_PREFIX = "LP"

_DATED_FOLIO_RE = re.compile(r"^(HO|HE|LP)-(\d{4})-(\d{2})-(\d{2})-(\d{3,})$")
_DONOR_FOLIO_RE = re.compile(r"^(\d{3,})-(\d{2})$")


def new_id() -> str:
    """Generate a new entity ID."""
    return str(uuid.uuid4())


def _dated_folio(prefix: str, on: date, sequence: int) -> str:
    if sequence < 1:
        raise ValueError(f"Folio sequence must be >= 1, got {sequence}")
    return f"{prefix}-{on.isoformat()}-{sequence:03d}"


def jar_prefix(donor_type: DonorType) -> str:
    return JAR_HETEROLOGOUS_PREFIX if donor_type.is_heterologous else JAR_HOMOLOGOUS_PREFIX


def jar_folio(donor_type: DonorType, on: date, sequence: int) -> str:
    """Jar folio: HO-YYYY-MM-DD-NNN (homologous) or HE-YYYY-MM-DD-NNN (heterologous)."""
    return _dated_folio(jar_prefix(donor_type), on, sequence)


def batch_folio(on: date, sequence: int) -> str:
    """Batch folio: LP-YYYY-MM-DD-NNN."""
    return _dated_folio(BATCH_PREFIX, on, sequence)


def donor_folio(year: int, sequence: int) -> str:
    """Donor folio: NNN-YY, sequential per year."""
    if sequence < 1:
        raise ValueError(f"Folio sequence must be >= 1, got {sequence}")
    return f"{sequence:03d}-{year % 100:02d}"


def sequence_key(prefix: str, on: date) -> str:
    """Key under which a dated folio sequence is counted (one counter per prefix per day)."""
    return f"{prefix}-{on.isoformat()}"


def is_valid_folio(folio: str) -> bool:
    """Check a dated jar/batch folio or a donor folio."""
    if not folio:
        return False
    match = _DATED_FOLIO_RE.match(folio)
    if match:
        try:
            date(int(match.group(2)), int(match.group(3)), int(match.group(4)))
        except ValueError:
            return False
        return int(match.group(5)) >= 1
    match = _DONOR_FOLIO_RE.match(folio)
    return bool(match) and int(match.group(1)) >= 1


def donor_sequence_key(year: int) -> str:
    """Key of the per-year donor folio counter."""
    return f"DON-{year % 100:02d}"
