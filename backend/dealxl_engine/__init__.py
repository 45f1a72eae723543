"""
DealXL Engine - Healthcare real-estate workbook extraction and valuation.

Turns the cell matrices of deal workbooks (T12/T13 statements, asset
valuation schedules, portfolio models, chart-of-accounts crosswalks) into
structured facility financials and property-type portfolio valuations.

Key Principles:
1. Deterministic - identical worksheets always yield identical output
2. Degrade, don't fail - structural problems become warnings
3. Ledger codes first, labels second
4. Inputs are never mutated
"""

from backend.dealxl_engine.display import to_line_item_view
from backend.dealxl_engine.models import (
    ConfidenceLevel,
    ExtractionResult,
    PropertyType,
    SheetType,
    ValuationMethod,
    WorkbookType,
    Worksheet,
)
from backend.dealxl_engine.orchestrator import EngineOptions, WorkbookInput, run_extraction

__version__ = "1.0.0"
__all__ = [
    "run_extraction",
    "EngineOptions",
    "WorkbookInput",
    "ExtractionResult",
    "Worksheet",
    "SheetType",
    "WorkbookType",
    "PropertyType",
    "ValuationMethod",
    "ConfidenceLevel",
    "to_line_item_view",
]
