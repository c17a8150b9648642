"""
Project configuration: default settings and settings.json overrides.

settings.json uses the same nested layout as DEFAULT_SETTINGS:
    {"pooling": {"max_donors_per_batch": {"value": 3}}, ...}
Only the keys present in the file override the defaults.
"""
import copy
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .utils.paths import get_settings_path


logger = logging.getLogger(__name__)


DEFAULT_SETTINGS: Dict[str, Dict[str, Dict[str, Any]]] = {
    "pooling": {
        "max_donors_per_batch": {"value": 3, "description": "Donadoras únicas máximas por lote"},
        "shelf_life_months": {"value": 6, "description": "Vida útil del lote desde creación/pasteurización"},
    },
    "reception": {
        "max_temperature_c": {"value": 5.0, "description": "Temperatura máxima de recepción (refrigerada)"},
    },
    "analysis": {
        "acidity_limit_d": {"value": 8.0, "description": "Acidez Dornic máxima aceptada"},
        "acidity_normal_min_d": {"value": 1.0, "description": "Rango normal de acidez (mínimo)"},
        "acidity_normal_max_d": {"value": 8.0, "description": "Rango normal de acidez (máximo)"},
        "creamatocrit_hypo_below": {"value": 500.0, "description": "Kcal/L por debajo: hipocalórica"},
        "creamatocrit_hyper_above": {"value": 700.0, "description": "Kcal/L por encima: hipercalórica"},
    },
    "pasteurization": {
        "holder_temperature_c": {"value": 62.5, "description": "Temperatura objetivo Holder"},
        "holder_minutes": {"value": 30, "description": "Duración mínima Holder"},
        "holder_tolerance_c": {"value": 0.5, "description": "Tolerancia bajo la temperatura objetivo"},
    },
    "administration": {
        "temperature_min_c": {"value": 14.0, "description": "Temperatura mínima de administración"},
        "temperature_max_c": {"value": 18.0, "description": "Temperatura máxima de administración"},
    },
    "inventory": {
        "critical_days": {"value": 7, "description": "Prioridad CRÍTICA hasta N días"},
        "high_days": {"value": 30, "description": "Prioridad ALTA hasta N días"},
        "urgent_alert_days": {"value": 1, "description": "Alerta urgente hasta N días"},
        "warning_alert_days": {"value": 3, "description": "Alerta de advertencia hasta N días"},
        "preventive_alert_days": {"value": 7, "description": "Alerta preventiva hasta N días"},
    },
    "storage": {
        "units": {
            "value": ["CONG-01", "CONG-02", "REF-01"],
            "description": "Equipos de almacenamiento disponibles",
        },
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load settings.json merged over DEFAULT_SETTINGS.

    Args:
        path: Settings file (default: data/settings.json)

    Returns:
        Full settings dict (missing or malformed file -> defaults)
    """
    path = Path(path) if path is not None else get_settings_path()
    if not path.exists():
        return copy.deepcopy(DEFAULT_SETTINGS)

    try:
        with open(path, "r", encoding="utf-8") as f:
            overrides = json.load(f)
        if not isinstance(overrides, dict):
            raise ValueError("settings root must be a JSON object")
    except (OSError, ValueError) as e:
        logger.warning(f"Invalid settings file {path}, using defaults: {e}")
        return copy.deepcopy(DEFAULT_SETTINGS)

    return _deep_merge(DEFAULT_SETTINGS, overrides)


def save_settings(settings: Dict[str, Any], path: Optional[Path] = None) -> None:
    """Write settings to settings.json."""
    path = Path(path) if path is not None else get_settings_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(settings, f, ensure_ascii=False, indent=2)


def get_value(settings: Dict[str, Any], section: str, key: str) -> Any:
    """Read settings[section][key]["value"], falling back to the default."""
    default = DEFAULT_SETTINGS[section][key]["value"]
    return settings.get(section, {}).get(key, {}).get("value", default)


@dataclass(frozen=True)
class EngineSettings:
    """Typed view of the settings consumed by workflows."""
    max_donors_per_batch: int = 3
    shelf_life_months: int = 6
    max_reception_temperature: float = 5.0
    acidity_limit: float = 8.0
    acidity_normal_range: Tuple[float, float] = (1.0, 8.0)
    creamatocrit_thresholds: Tuple[float, float] = (500.0, 700.0)
    holder_temperature: float = 62.5
    holder_minutes: float = 30.0
    holder_tolerance: float = 0.5
    administration_temperature_range: Tuple[float, float] = (14.0, 18.0)
    critical_days: int = 7
    high_days: int = 30
    urgent_alert_days: int = 1
    warning_alert_days: int = 3
    preventive_alert_days: int = 7
    storage_units: Tuple[str, ...] = ("CONG-01", "CONG-02", "REF-01")

    @classmethod
    def from_settings(cls, settings: Optional[Dict[str, Any]] = None) -> "EngineSettings":
        if settings is None:
            settings = load_settings()

        def v(section: str, key: str) -> Any:
            return get_value(settings, section, key)

        return cls(
            max_donors_per_batch=int(v("pooling", "max_donors_per_batch")),
            shelf_life_months=int(v("pooling", "shelf_life_months")),
            max_reception_temperature=float(v("reception", "max_temperature_c")),
            acidity_limit=float(v("analysis", "acidity_limit_d")),
            acidity_normal_range=(
                float(v("analysis", "acidity_normal_min_d")),
                float(v("analysis", "acidity_normal_max_d")),
            ),
            creamatocrit_thresholds=(
                float(v("analysis", "creamatocrit_hypo_below")),
                float(v("analysis", "creamatocrit_hyper_above")),
            ),
            holder_temperature=float(v("pasteurization", "holder_temperature_c")),
            holder_minutes=float(v("pasteurization", "holder_minutes")),
            holder_tolerance=float(v("pasteurization", "holder_tolerance_c")),
            administration_temperature_range=(
                float(v("administration", "temperature_min_c")),
                float(v("administration", "temperature_max_c")),
            ),
            critical_days=int(v("inventory", "critical_days")),
            high_days=int(v("inventory", "high_days")),
            urgent_alert_days=int(v("inventory", "urgent_alert_days")),
            warning_alert_days=int(v("inventory", "warning_alert_days")),
            preventive_alert_days=int(v("inventory", "preventive_alert_days")),
            storage_units=tuple(v("storage", "units")),
        )
