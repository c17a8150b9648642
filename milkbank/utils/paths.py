"""
Path resolver for the milk bank system.

Rules
-----
* base_dir   → $MILKBANK_HOME when set, otherwise the project root
* data_dir   → base_dir/data  (portable first); fallback ~/MilkBank/data
* logs_dir   → base_dir/logs  (portable first); fallback ~/MilkBank/logs
* db_path    → data_dir/milkbank.db
* settings   → data_dir/settings.json

NEVER use os.getcwd() or relative Path("...") strings in runtime code;
always call one of the functions below.
"""

import os
from pathlib import Path

HOME_ENV_VAR = "MILKBANK_HOME"

# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _get_base_dir() -> Path:
    """
    Return the application's root directory.

    - MILKBANK_HOME set: that directory
    - otherwise: project root (two levels up from milkbank/utils/paths.py)
    """
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser().resolve()
    return Path(__file__).resolve().parent.parent.parent


def _try_writable(path: Path) -> bool:
    """
    Return True if *path* can be created and used as a writable directory.

    Uses a canary-file probe so permission issues are detected early.
    """
    try:
        path.mkdir(parents=True, exist_ok=True)
        canary = path / ".write_probe"
        canary.touch()
        canary.unlink()
        return True
    except (OSError, PermissionError):
        return False


def _fallback_dir(sub: str) -> Path:
    """Return ~/MilkBank/<sub>."""
    return Path.home() / "MilkBank" / sub


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def get_base_dir() -> Path:
    """Application root (MILKBANK_HOME or project root)."""
    return _get_base_dir()


def get_data_dir() -> Path:
    """
    Portable data directory.

    Priority:
      1. <base_dir>/data
      2. ~/MilkBank/data  ← fallback if base_dir is read-only
    """
    primary = _get_base_dir() / "data"
    if _try_writable(primary):
        return primary
    fallback = _fallback_dir("data")
    fallback.mkdir(parents=True, exist_ok=True)
    return fallback


def get_logs_dir() -> Path:
    """
    Portable logs directory.

    Priority:
      1. <base_dir>/logs
      2. ~/MilkBank/logs
    """
    primary = _get_base_dir() / "logs"
    if _try_writable(primary):
        return primary
    fallback = _fallback_dir("logs")
    fallback.mkdir(parents=True, exist_ok=True)
    return fallback


def get_db_path() -> Path:
    """Full path to the SQLite database file."""
    return get_data_dir() / "milkbank.db"


def get_settings_path() -> Path:
    """Full path to settings.json."""
    return get_data_dir() / "settings.json"


def get_reports_dir() -> Path:
    """Directory where rendered charts and exported reports are written."""
    path = get_data_dir() / "reports"
    path.mkdir(parents=True, exist_ok=True)
    return path
