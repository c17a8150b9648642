"""
Logging configuration for the milk bank system.

Provides:
- Error log: warnings and errors from every module
- Traceability log: INFO trail of jar/batch/donor status changes, batch
  volume movements and registrations (domain and workflow loggers only)
- Console logging for critical errors only
- Automatic log rotation
"""
import logging
import logging.handlers
from pathlib import Path
from datetime import datetime
from typing import Tuple


# Module loggers (relative to the app logger) whose INFO records form the
# traceability trail
TRACEABILITY_LOGGERS: Tuple[str, ...] = ("domain", "workflows")

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class TraceabilityFilter(logging.Filter):
    """Pass only records emitted by the traceability loggers."""

    def __init__(self, app_name: str = "milkbank"):
        super().__init__()
        self.prefixes = tuple(f"{app_name}.{name}" for name in TRACEABILITY_LOGGERS)

    def filter(self, record: logging.LogRecord) -> bool:
        return any(record.name == p or record.name.startswith(p + ".") for p in self.prefixes)


def _rotating_handler(path: Path, level: int) -> logging.Handler:
    # max 5MB, keep 3 backups
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
        encoding='utf-8',
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    return handler


def setup_logging(
    log_dir: "str | Path | None" = None,
    app_name: str = "milkbank",
) -> logging.Logger:
    """
    Setup file logging for errors and for the traceability trail.

    Files are named <app_name>_<YYYYmmdd>.log (WARNING and above) and
    <app_name>_trazabilidad_<YYYYmmdd>.log (INFO and above, domain and
    workflow modules only).

    Args:
        log_dir: Directory for log files (created if missing).  When *None*
                 the default location is used (<base_dir>/logs).
        app_name: Application name for logger; also the root of the
                  ``milkbank.*`` module loggers, so they inherit the handlers.

    Returns:
        Configured logger instance
    """
    if log_dir is None:
        from .paths import get_logs_dir  # noqa: PLC0415
        log_path = get_logs_dir()
    else:
        log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(app_name)
    logger.setLevel(logging.DEBUG)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    stamp = datetime.now().strftime('%Y%m%d')
    logger.addHandler(_rotating_handler(log_path / f"{app_name}_{stamp}.log", logging.WARNING))

    trace_handler = _rotating_handler(log_path / f"{app_name}_trazabilidad_{stamp}.log", logging.INFO)
    trace_handler.addFilter(TraceabilityFilter(app_name))
    logger.addHandler(trace_handler)

    # Console handler: critical errors only
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.CRITICAL)
    console_handler.setFormatter(logging.Formatter('CRITICAL: %(message)s'))
    logger.addHandler(console_handler)

    return logger
