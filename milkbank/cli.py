"""
Command-line interface for bank operators.

Usage:
    python main.py init-db
    python main.py inventory [--date YYYY-MM-DD]
    python main.py alerts [--date YYYY-MM-DD]
    python main.py waste [--chart waste.png]
    python main.py report --start YYYY-MM-DD --end YYYY-MM-DD
    python main.py import-json <dir>
    python main.py check [--quick]
    python main.py stats
    python main.py backup [reason]

Exit code 0 on success, 1 on failure.
"""
import argparse
import logging
import sqlite3
import sys
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional

from .analytics.reports import ReportBuilder
from .checks import run_all_checks
from .config import EngineSettings, load_settings
from .db import (
    apply_migrations,
    backup_database,
    get_database_stats,
    initialize_database,
    integrity_check,
    open_connection,
    verify_schema,
)
from .domain.errors import MilkBankError
from .persistence.json_store import JsonStore, import_into_sqlite
from .repositories import RepositoryError
from .utils.error_formatting import format_exception
from .utils.logging_config import setup_logging
from .utils.paths import get_db_path

logger = logging.getLogger(__name__)


def _parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}' (expected YYYY-MM-DD)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="milkbank",
        description="Human milk bank: inventory, waste, reports and database maintenance",
    )
    parser.add_argument("--db", type=Path, help="Database path (default: data/milkbank.db)")
    parser.add_argument("--settings", type=Path, help="settings.json path")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the database and apply migrations")

    inventory = sub.add_parser("inventory", help="Inventory totals per view")
    inventory.add_argument("--date", type=_parse_date, default=None)

    alerts = sub.add_parser("alerts", help="Expiry alerts for released stock")
    alerts.add_argument("--date", type=_parse_date, default=None)

    waste = sub.add_parser("waste", help="Waste registry summary")
    waste.add_argument("--chart", type=Path, help="Write waste-by-source bar chart (PNG)")

    report = sub.add_parser("report", help="Production report for a date range")
    report.add_argument("--start", type=_parse_date, required=True)
    report.add_argument("--end", type=_parse_date, required=True)

    importer = sub.add_parser("import-json", help="Import a JSON key-value store directory")
    importer.add_argument("directory", type=Path)
    importer.add_argument("--user", default="system")

    check = sub.add_parser("check", help="Integrity and invariant checks")
    check.add_argument("--quick", action="store_true", help="Structure only")

    sub.add_parser("stats", help="Database statistics")

    backup = sub.add_parser("backup", help="Create a database backup")
    backup.add_argument("reason", nargs="?", default="manual")

    return parser


# ============================================================
# Commands
# ============================================================

def cmd_init_db(conn: sqlite3.Connection, args, settings: EngineSettings) -> int:
    applied = apply_migrations(conn)
    if integrity_check(conn) or not verify_schema(conn):
        print("Database is unhealthy after migration; run 'check' for details")
        return 1
    print(f"Database ready ({applied} migration(s) applied)")
    return 0


def cmd_inventory(conn: sqlite3.Connection, args, settings: EngineSettings) -> int:
    report = ReportBuilder(conn, settings).inventory(args.date)
    snap = report.snapshot
    print(f"Inventario al {snap.as_of.isoformat()}")
    print(f"  Frascos crudos:     {snap.raw_jars:>4}  {snap.raw_volume_ml:>10.1f} mL")
    print(f"  Lotes cuarentena:   {snap.quarantine_batches:>4}  {snap.quarantine_volume_ml:>10.1f} mL")
    print(f"  Lotes liberados:    {snap.released_batches:>4}  {snap.released_volume_ml:>10.1f} mL")
    print(f"  Total:                    {snap.total_volume_ml:>10.1f} mL")
    if report.suggested_batch is not None:
        print(f"  Siguiente lote (FEFO): {report.suggested_batch.folio}")
    return 0


def cmd_alerts(conn: sqlite3.Connection, args, settings: EngineSettings) -> int:
    alerts = ReportBuilder(conn, settings).inventory(args.date).alerts
    if not alerts:
        print("Sin alertas de caducidad")
    for alert in alerts:
        print(f"[{alert.level.value}] {alert.message}")
    return 0


def cmd_waste(conn: sqlite3.Connection, args, settings: EngineSettings) -> int:
    summary = ReportBuilder(conn, settings).waste()
    print(f"Desperdicio total: {summary.total_volume_ml:g} mL en {summary.total_items} registro(s)")
    for source, volume in summary.volume_by_source.items():
        print(f"  {source:<8} {summary.count_by_source[source]:>4}  {volume:>10.1f} mL")
    print(f"Pendientes de disposición final: {summary.pending_disposal}")
    if args.chart:
        from .analytics.charts import plot_waste_by_source  # matplotlib only when charting
        print(f"Gráfica: {plot_waste_by_source(summary, args.chart)}")
    return 0


def cmd_report(conn: sqlite3.Connection, args, settings: EngineSettings) -> int:
    report = ReportBuilder(conn, settings).production(args.start, args.end)
    print(f"Producción {report.start.isoformat()} a {report.end.isoformat()}")
    print(f"  Frascos recibidos:     {report.jars_received} ({report.volume_received_ml:g} mL)")
    print(f"  Lotes creados:         {report.batches_created}")
    print(f"  Volumen liberado:      {report.released_volume_ml:g} mL")
    print(f"  Volumen administrado:  {report.administered_volume_ml:g} mL")
    print(f"  Volumen desperdiciado: {report.wasted_volume_ml:g} mL")
    print(f"  Tasa de rechazo:       {report.rejection_rate:.1%}")
    return 0


def cmd_import_json(conn: sqlite3.Connection, args, settings: EngineSettings) -> int:
    if not args.directory.is_dir():
        print(f"Directory not found: {args.directory}")
        return 1
    report = import_into_sqlite(JsonStore(args.directory), conn, user=args.user)
    if not report.ok:
        for error in report.errors:
            print(f"ERROR: {error}")
        return 1
    for name, count in report.imported.items():
        print(f"  {name}: {count} imported, {report.skipped.get(name, 0)} skipped")
    return 0


def cmd_check(conn: sqlite3.Connection, args, settings: EngineSettings) -> int:
    report = run_all_checks(conn, quick=args.quick, max_donors=settings.max_donors_per_batch)
    print(report.format_report())
    return 1 if report.has_failures() else 0


def cmd_stats(conn: sqlite3.Connection, args, settings: EngineSettings) -> int:
    stats = get_database_stats(conn)
    print(f"Schema version: {stats['schema_version']}")
    if "db_size_mb" in stats:
        print(f"Database size: {stats['db_size_mb']} MB")
    for table, count in sorted(stats["row_counts"].items()):
        print(f"  {table}: {count:,}")
    return 0


def cmd_backup(conn: sqlite3.Connection, args, settings: EngineSettings) -> int:
    path = backup_database(conn, args.reason)
    if path is None:
        print("In-memory database: nothing to back up")
        return 1
    print(f"Backup created: {path}")
    return 0


COMMANDS = {
    "init-db": cmd_init_db,
    "inventory": cmd_inventory,
    "alerts": cmd_alerts,
    "waste": cmd_waste,
    "report": cmd_report,
    "import-json": cmd_import_json,
    "check": cmd_check,
    "stats": cmd_stats,
    "backup": cmd_backup,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()
    settings = EngineSettings.from_settings(load_settings(args.settings))
    db_path = args.db or get_db_path()

    try:
        if args.command == "import-json":
            conn = initialize_database(db_path)
        else:
            conn = open_connection(db_path)
        try:
            return COMMANDS[args.command](conn, args, settings)
        finally:
            conn.close()
    except (MilkBankError, RepositoryError, sqlite3.Error, RuntimeError, ValueError, OSError) as e:
        error = format_exception(e, args.command)
        logger.error(error.format_for_log())
        print(error.format_for_display(), file=sys.stderr)
        return 1
