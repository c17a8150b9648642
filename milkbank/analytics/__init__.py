"""Reports, waste registry and charts."""
from .reports import (
    InventoryReport,
    ProductionReport,
    ReportBuilder,
    WasteSummary,
    inventory_report,
    production_report,
    summarize_waste,
)
from .waste import WasteItem, WasteSource, build_waste_registry

__all__ = [
    "InventoryReport",
    "ProductionReport",
    "ReportBuilder",
    "WasteSummary",
    "inventory_report",
    "production_report",
    "summarize_waste",
    "WasteItem",
    "WasteSource",
    "build_waste_registry",
]
