"""
Ledger-code mapping for the DealXL Engine.

Builds the read-only LedgerMapping from a crosswalk worksheet that maps raw
ledger codes (400110, 400110-99) to canonical categories, and provides the
numeric-prefix category and subcategory rules used when a code has no
crosswalk entry.
"""

import re
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence, Set, Tuple

import structlog

from backend.config import get_settings
from backend.dealxl_engine.cells import base_code, cell_text, is_blank, normalize_ledger_code
from backend.dealxl_engine.layout import (
    ColumnLayout,
    ColumnSpec,
    ContentScanTier,
    DefaultLayoutTier,
    HeaderScanTier,
    LayoutDetector,
    ledger_code_probe,
)
from backend.dealxl_engine.models import LedgerMapping, LedgerMappingEntry, LineCategory, WarningLog, Worksheet

logger = structlog.get_logger(__name__)


# =============================================================================
# Prefix Rules
# =============================================================================

REVENUE_GROUPS = (
    ("400", "SNF Revenue"),
    ("420", "ALF/RCF Revenue"),
    ("421", "ALF Revenue"),
    ("422", "IL Revenue"),
    ("423", "Memory Care Revenue"),
)

EXPENSE_GROUPS = (
    ("600", "Administration"),
    ("610", "Ancillary Expense"),
    ("611", "Therapy Expense"),
    ("612", "HMO Expense"),
    ("613", "Private Ancillary"),
)

SUBCATEGORY_BY_PREFIX: Dict[str, str] = {
    "4001": "medicare_revenue",
    "4002": "medicaid_revenue",
    "4004": "managed_care_revenue",
    "4005": "private_revenue",
    "4006": "reserve_bed_revenue",
    "4201": "rcf_medicaid_revenue",
    "4202": "alf_medicaid_revenue",
    "4204": "alf_private_revenue",
    "4221": "il_revenue",
    "4231": "mc_medicaid_revenue",
    "4234": "mc_private_revenue",
    "6000": "administration",
    "6003": "contract_labor",
}


def categorize_code(code: str) -> str:
    """Category name from the code's numeric range."""
    prefix = code[:3]
    if code.startswith("4"):
        for group_prefix, name in REVENUE_GROUPS:
            if prefix == group_prefix:
                return name
        return "Revenue"
    if code.startswith("5"):
        return "Operating Expense"
    if code.startswith("6"):
        for group_prefix, name in EXPENSE_GROUPS:
            if prefix == group_prefix:
                return name
        return "Expense"
    if code.startswith("7"):
        return "Non-Operating"
    if code.startswith("8"):
        return "Below-the-Line"
    return "Unknown"


def subcategorize_code(code: str) -> Optional[str]:
    """Subcategory from the fixed 4-digit prefix table."""
    return SUBCATEGORY_BY_PREFIX.get(code[:4])


def line_category_for_code(code: str) -> LineCategory:
    """Line category of an unmapped code: 4 revenue, 9 census, 5-8 expense."""
    if code.startswith("4"):
        return LineCategory.REVENUE
    if code.startswith("9"):
        return LineCategory.CENSUS
    return LineCategory.EXPENSE


# =============================================================================
# Builder
# =============================================================================

MAPPING_SHEET = re.compile(r"mapping|map|crosswalk", re.IGNORECASE)
OPCO_TOKEN = re.compile(r"\s*\(opco\)\s*|\bopco\b", re.IGNORECASE)

MAPPING_COLUMNS = (
    ColumnSpec("code", [r"gl\s*code|account\s*(code|number|#)|line\s*item"], required=True, prefer_last=True),
    ColumnSpec("label", [r"description|label|name|account\s*name"], exclude=r"\bopco\b", prefer_last=True),
    ColumnSpec("category", [r"category|type|class|mapping"], exclude=r"facility|\bopco\b", prefer_last=True),
    ColumnSpec("facility", [r"\(opco\)|\bopco\b"], collect=True),
)


class LedgerMappingBuilder:
    """
    Builds a LedgerMapping from a crosswalk worksheet.

    Column detection runs a header scan, then a ledger-code content scan, then
    the fixed layout (code in column 0, label in column 1, data from row 1).
    """

    def __init__(self, detector: Optional[LayoutDetector] = None):
        self.detector = detector or LayoutDetector(MAPPING_COLUMNS, [
            HeaderScanTier(max_rows=get_settings().header_scan_rows),
            ContentScanTier([ledger_code_probe(label_min_len=3)], max_rows=6, start_row=1),
            DefaultLayoutTier({"code": 0, "label": 1}, data_start_row=1),
        ])

    def select_sheet(self, worksheets: Sequence[Worksheet]) -> Optional[Worksheet]:
        """First sheet named like a crosswalk, else the first sheet."""
        for sheet in worksheets:
            if MAPPING_SHEET.search(sheet.name or ""):
                return sheet
        return worksheets[0] if worksheets else None

    def build(self, worksheets: Sequence[Worksheet], warnings: Optional[WarningLog] = None) -> LedgerMapping:
        """
        Build the mapping from the selected sheet of a workbook.

        Args:
            worksheets: Sheets of the mapping workbook.
            warnings: Shared warnings channel.

        Returns:
            LedgerMapping, empty when no sheet is usable.
        """
        sheet = self.select_sheet(worksheets)
        if sheet is None:
            if warnings is not None:
                warnings.add("ledger_mapping", "No worksheet available for ledger mapping")
            return LedgerMapping()
        return self.build_from_sheet(sheet, warnings)

    def build_from_sheet(self, sheet: Worksheet, warnings: Optional[WarningLog] = None) -> LedgerMapping:
        layout = self.detector.detect(sheet.cells)
        if layout is None:
            if warnings is not None:
                warnings.add("ledger_mapping", f"No ledger code layout found in '{sheet.name}'", sheet=sheet.name)
            return LedgerMapping(source_sheet=sheet.name, cache_key=sheet.content_hash())

        if "label" not in layout.columns:
            layout.columns["label"] = layout.columns["code"] + 1
        facility_columns = self._facility_columns(sheet, layout)

        entries: Dict[str, LedgerMappingEntry] = {}
        explicit: Set[str] = set()

        for i in range(layout.data_start_row, sheet.row_count):
            code = normalize_ledger_code(sheet.cell(i, layout["code"]))
            if not code:
                continue

            label = cell_text(sheet.cell(i, layout["label"]))
            category = None
            if "category" in layout.columns:
                category = cell_text(sheet.cell(i, layout["category"])) or None

            overrides = {}
            for col, facility_name in facility_columns:
                value = sheet.cell(i, col)
                if not is_blank(value):
                    overrides[facility_name] = cell_text(value)

            entry = LedgerMappingEntry(
                code=code,
                label=label,
                category=category or categorize_code(code),
                subcategory=subcategorize_code(code),
                facility_overrides=overrides,
            )
            entries[code] = entry
            explicit.add(code)

            base = base_code(code)
            if base != code and base not in entries:
                entries[base] = entry

        mapping = LedgerMapping(entries, source_sheet=sheet.name, cache_key=sheet.content_hash())
        logger.info(
            "Ledger mapping built",
            sheet=sheet.name,
            entries=len(mapping),
            explicit=len(explicit),
            tier=layout.tier,
        )
        if not mapping and warnings is not None:
            warnings.add("ledger_mapping", f"No ledger codes found in '{sheet.name}'", sheet=sheet.name)
        return mapping

    def _facility_columns(self, sheet: Worksheet, layout: ColumnLayout) -> List[Tuple[int, str]]:
        """Facility override columns with the facility name taken from the header."""
        if layout.header_row is None:
            return []
        columns = []
        for col in layout.multi.get("facility", []):
            name = OPCO_TOKEN.sub(" ", cell_text(sheet.cell(layout.header_row, col))).strip()
            if name:
                columns.append((col, name))
        return columns


class LedgerMappingCache:
    """
    Memoizes mapping builds by the content hash of the selected sheet.

    Owned by the caller; identical crosswalk content is built once.
    """

    def __init__(self, builder: Optional[LedgerMappingBuilder] = None, max_entries: int = 32):
        self.builder = builder or LedgerMappingBuilder()
        self.max_entries = max_entries
        self._cache: "OrderedDict[str, LedgerMapping]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get_or_build(self, worksheets: Sequence[Worksheet], warnings: Optional[WarningLog] = None) -> LedgerMapping:
        sheet = self.builder.select_sheet(worksheets)
        if sheet is None:
            return self.builder.build(worksheets, warnings)

        key = sheet.content_hash()
        if key in self._cache:
            self.hits += 1
            self._cache.move_to_end(key)
            logger.debug("Ledger mapping cache hit", sheet=sheet.name, key=key[:12])
            return self._cache[key]

        self.misses += 1
        mapping = self.builder.build_from_sheet(sheet, warnings)
        self._cache[key] = mapping
        if len(self._cache) > self.max_entries:
            self._cache.popitem(last=False)
        return mapping

    def clear(self) -> None:
        self._cache.clear()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._cache)
