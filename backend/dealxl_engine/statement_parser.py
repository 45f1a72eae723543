"""
Operating statement parser for the DealXL Engine.

Parses trailing-twelve-month operating statements (ledger code | label |
annual | monthly | ppd | budget columns) into per-facility sections with
categorized line items, census data and summary metrics.

Facility sections are separated by header rows carrying the facility name.
Total and summary rows feed SummaryMetrics directly and never become line
items, so summary figures are never counted twice.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from backend.dealxl_engine.cells import (
    cell_number,
    cell_text,
    is_blank,
    is_text,
    non_empty_count,
    normalize_ledger_code,
    row_is_blank,
)
from backend.dealxl_engine.classifier import SheetClassifier, detect_periods, sheet_type_of
from backend.dealxl_engine.layout import (
    ColumnLayout,
    ColumnSpec,
    ContentScanTier,
    HeaderScanTier,
    LayoutDetector,
    large_number_probe,
    ledger_code_probe,
)
from backend.dealxl_engine.ledger_mapping import line_category_for_code, subcategorize_code
from backend.dealxl_engine.models import (
    CensusData,
    FacilitySection,
    LedgerMapping,
    LineCategory,
    LineItem,
    MatchSource,
    SheetType,
    StatementResult,
    SummaryMetrics,
    WarningLog,
    Worksheet,
)

logger = structlog.get_logger(__name__)

STAGE = "statement"
DAYS_IN_PERIOD = 365


# =============================================================================
# Patterns
# =============================================================================

STATEMENT_SHEET = re.compile(r"t13|dollars\s*and\s*ppd", re.IGNORECASE)
FACILITY_SHEET = re.compile(r"\((?:SNF|ALF|MC|IL|SNF_AL_IL|SNF_AL|AL_IL)\)", re.IGNORECASE)
ROLLUP_SHEET = re.compile(r"rollup|roll-up|consolidated|summary", re.IGNORECASE)

FACILITY_HEADER_PATTERNS = [
    re.compile(r"^(.+?)\s*\((?:SNF|ALF|MC|IL|Opco|SNF_AL_IL|SNF_AL|AL_IL)\)", re.IGNORECASE),
    re.compile(r"^(.+?)\s*(?:SNF|Nursing|Healthcare|Care\s+Center|Rehab|Assisted\s+Living|Memory\s+Care)", re.IGNORECASE),
    re.compile(r"^(?:Location|Facility|Entity)[:\s]+(.+)", re.IGNORECASE),
]
NON_FACILITY_NAME = re.compile(r"^(total|subtotal|grand|section|category|revenue|expense|ebitda)", re.IGNORECASE)
TYPE_ANNOTATION = re.compile(r"\(([^)]+)\)")

# Ordered: the first matching pattern names the metric
SUMMARY_ROW_PATTERNS: Tuple[Tuple[str, re.Pattern], ...] = (
    ("total_revenue", re.compile(r"^total\s*(?:patient\s*service\s*)?revenue", re.IGNORECASE)),
    ("total_expenses", re.compile(r"^total\s*(?:operating\s*)?expense", re.IGNORECASE)),
    ("ebitdar", re.compile(r"^ebitdar\b", re.IGNORECASE)),
    ("ebitda", re.compile(r"^ebitda(?!r)\b", re.IGNORECASE)),
    ("net_income", re.compile(r"^net\s*(?:operating\s*)?income", re.IGNORECASE)),
    ("management_fee", re.compile(r"^management\s*fee", re.IGNORECASE)),
    ("lease_expense", re.compile(r"^(?:lease|rent)\s*expense", re.IGNORECASE)),
    ("provider_tax", re.compile(r"^provider\s*tax", re.IGNORECASE)),
)
TOTAL_SUMMARY_KEYS = frozenset({"total_revenue", "total_expenses", "ebitdar", "ebitda", "net_income"})

REVENUE_LABELS = re.compile(r"revenue|income|r&b|room.*board|patient\s*service", re.IGNORECASE)
EXPENSE_LABELS = re.compile(r"expense|cost|salary|wage|payroll|fee|tax|insurance|depreciation|amortization|interest", re.IGNORECASE)
CENSUS_LABELS = re.compile(r"days|census|occupancy|beds|adc", re.IGNORECASE)
METRIC_LABELS = re.compile(r"ebitda|ebitdar|ebit\b|noi|net\s*(income|operating)|margin", re.IGNORECASE)
MONETARY_HINT = re.compile(r"cost|expense|tax|fee|revenue", re.IGNORECASE)

# Ordered: ADC before the generic census label
CENSUS_FIELD_PATTERNS: Tuple[Tuple[str, re.Pattern], ...] = (
    ("average_daily_census", re.compile(r"average\s*daily\s*census|^adc\b", re.IGNORECASE)),
    ("occupancy", re.compile(r"^(?:total\s*|average\s*)?occupancy(?:\s*(?:%|rate|percent(?:age)?))?\s*$|^occ\.?\s*%", re.IGNORECASE)),
    ("beds", re.compile(r"^(?:total\s*|licensed\s*|operational\s*|available\s*)?beds?\b(?!.*(?:tax|fee))|^bed\s*count", re.IGNORECASE)),
    ("total_patient_days", re.compile(r"^(?:total\s*)?(?:patient|resident)\s*days|^total\s*days\s*$|^(?:total\s*|actual\s*)?census\s*$", re.IGNORECASE)),
)
CENSUS_NEAR_START = re.compile(r"census", re.IGNORECASE)

LABEL_SUBCATEGORIES: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r"medicare", re.IGNORECASE), "medicare_revenue"),
    (re.compile(r"medicaid", re.IGNORECASE), "medicaid_revenue"),
    (re.compile(r"managed\s*care|hmo", re.IGNORECASE), "managed_care_revenue"),
    (re.compile(r"private", re.IGNORECASE), "private_revenue"),
)

STATEMENT_COLUMNS = (
    ColumnSpec("code", [r"^(?:gl\s*)?code$|^account\s*(?:code|number|#)$"]),
    ColumnSpec("label", [r"^description$|^label$|^account\s*name$"]),
    ColumnSpec("annual", [r"^actual\s*$|^annual\s*$|actual\s*dollars"], required=True),
    ColumnSpec("monthly", [r"^monthly\s*$|monthly\s*avg"]),
    ColumnSpec("ppd", [r"^ppd\s*$|per\s*patient"]),
    ColumnSpec("budget_annual", [r"^budget\s*(actual|annual)?$"]),
    ColumnSpec("budget_ppd", [r"^budget\s*ppd$"]),
)

CONFIDENCE_MAPPED = 0.95
CONFIDENCE_CODE = 0.9
CONFIDENCE_LABEL = 0.6


def detect_total_row(label: str) -> Tuple[bool, bool]:
    """
    Classify a label as total and/or subtotal.

    Returns:
        Tuple of (is_total, is_subtotal); every subtotal is also a total.
    """
    is_subtotal = bool(re.match(r"^sub\s*total", label, re.IGNORECASE)) or bool(
        re.match(r"^total\s+(snf|alf|il|mc|nursing|dietary|plant)", label, re.IGNORECASE)
    )
    is_total = bool(re.match(r"^total\s", label, re.IGNORECASE)) or bool(re.search(r"\btotal$", label, re.IGNORECASE))
    return is_total or is_subtotal, is_subtotal


def summary_key_for(label: str) -> Optional[str]:
    for key, pattern in SUMMARY_ROW_PATTERNS:
        if pattern.search(label):
            return key
    return None


def facility_type_of(text: str) -> Optional[str]:
    """Type annotation inside parentheses, e.g. 'SNF' from 'Sunrise (SNF)'."""
    match = TYPE_ANNOTATION.search(text or "")
    return match.group(1).strip() if match else None


def strip_type_annotation(text: str) -> str:
    return re.sub(r"\s*\([^)]*\)\s*$", "", text or "").strip()


@dataclass
class _SectionBoundary:
    name: str
    facility_type: Optional[str]
    start_row: int
    end_row: int


@dataclass
class _SheetParse:
    facilities: List[FacilitySection] = field(default_factory=list)
    periods: List[str] = field(default_factory=list)


# =============================================================================
# Parser
# =============================================================================

class StatementParser:
    """
    Parses operating statement sheets into facility sections.

    Example:
        parser = StatementParser()
        result = parser.parse(worksheets, ledger_mapping=mapping)
        for facility in result.facilities:
            print(facility.facility_name, facility.summary.total_revenue)
    """

    def __init__(
        self,
        detector: Optional[LayoutDetector] = None,
        classifier: Optional[SheetClassifier] = None,
    ):
        self.detector = detector or LayoutDetector(STATEMENT_COLUMNS, [
            HeaderScanTier(max_rows=20, fixed={"code": 0, "label": 1}),
            ContentScanTier([ledger_code_probe(label_min_len=0, with_amounts=True)], max_rows=30),
            ContentScanTier([large_number_probe(threshold=100, min_count=2)], max_rows=20),
        ])
        self.classifier = classifier

    def parse(
        self,
        worksheets: Sequence[Worksheet],
        ledger_mapping: Optional[LedgerMapping] = None,
        warnings: Optional[WarningLog] = None,
    ) -> StatementResult:
        """
        Parse every statement sheet of a workbook.

        Args:
            worksheets: Sheets of an operating-review workbook.
            ledger_mapping: Optional code crosswalk, passed explicitly.
            warnings: Shared warnings channel.

        Returns:
            StatementResult with deduplicated facilities and an optional rollup.
        """
        log = warnings if warnings is not None else WarningLog()
        mark = len(log)
        code_labels: Dict[str, str] = {}
        periods: List[str] = []
        facilities: List[FacilitySection] = []

        statement_sheets = [s for s in worksheets if STATEMENT_SHEET.search(s.name or "")]
        facility_sheets = [
            s for s in worksheets
            if FACILITY_SHEET.search(s.name or "") and s not in statement_sheets
        ]
        rollup_sheets = [s for s in worksheets if ROLLUP_SHEET.search(s.name or "")]

        for sheet in statement_sheets + facility_sheets:
            parsed = self.parse_sheet(sheet, ledger_mapping, log, code_labels)
            facilities.extend(parsed.facilities)
            periods.extend(parsed.periods)

        if not facilities:
            candidates = [
                s for s in worksheets
                if sheet_type_of(s, self.classifier) == SheetType.STATEMENT
            ]
            non_rollup = [s for s in candidates if s not in rollup_sheets]
            for sheet in non_rollup or candidates:
                parsed = self.parse_sheet(sheet, ledger_mapping, log, code_labels)
                facilities.extend(parsed.facilities)
                periods.extend(parsed.periods)

        rollup = None
        if rollup_sheets:
            parsed = self.parse_sheet(rollup_sheets[0], ledger_mapping, log, code_labels)
            if parsed.facilities:
                rollup = parsed.facilities[0]
                rollup.facility_name = "Portfolio Rollup"

        seen = set()
        unique: List[FacilitySection] = []
        for facility in facilities:
            key = facility.facility_name.lower().strip()
            if key not in seen:
                seen.add(key)
                unique.append(facility)

        result = StatementResult(
            facilities=unique,
            rollup=rollup,
            periods=sorted(set(periods)),
            code_labels=code_labels,
            warnings=log.messages()[mark:],
        )
        logger.info(
            "Statements parsed",
            facilities=len(unique),
            rollup=rollup is not None,
            ledger_codes=len(code_labels),
        )
        return result

    def parse_sheet(
        self,
        sheet: Worksheet,
        ledger_mapping: Optional[LedgerMapping],
        warnings: WarningLog,
        code_labels: Optional[Dict[str, str]] = None,
    ) -> _SheetParse:
        """Parse one sheet into zero or more facility sections."""
        code_labels = code_labels if code_labels is not None else {}
        if sheet.is_empty():
            warnings.add(STAGE, f"Empty sheet '{sheet.name}' skipped", sheet=sheet.name)
            return _SheetParse()

        layout = self.detector.detect(sheet.cells)
        if layout is None:
            warnings.add(STAGE, f"Could not detect column structure in sheet '{sheet.name}'", sheet=sheet.name)
            return _SheetParse()

        periods = sheet.periods_detected or detect_periods(sheet.cells)
        sections = self._find_sections(sheet, layout)
        if not sections:
            sections = [_SectionBoundary(
                name=self._name_from_sheet(sheet),
                facility_type=facility_type_of(sheet.name),
                start_row=layout.data_start_row,
                end_row=sheet.row_count - 1,
            )]

        facilities = []
        for section in sections:
            facility = self._parse_section(sheet, section, layout, ledger_mapping, code_labels)
            if facility.line_items or facility.summary.total_revenue or not facility.census.is_empty():
                facility.periods = list(periods)
                facilities.append(facility)

        logger.debug(
            "Statement sheet parsed",
            sheet=sheet.name,
            tier=layout.tier,
            sections=len(sections),
            facilities=len(facilities),
        )
        return _SheetParse(facilities=facilities, periods=list(periods))

    # -------------------------------------------------------------------------
    # Sections
    # -------------------------------------------------------------------------

    def _row_code(self, sheet: Worksheet, row: int, layout: ColumnLayout) -> Optional[str]:
        code_col = layout.get("code")
        if code_col is None:
            return None
        return normalize_ledger_code(sheet.cell(row, code_col))

    def _find_sections(self, sheet: Worksheet, layout: ColumnLayout) -> List[_SectionBoundary]:
        starts: List[Tuple[int, str, Optional[str]]] = []
        label_col = layout.get("label", 1)
        annual_col = layout.get("annual")
        first_row = layout.header_row + 1 if layout.header_row is not None else 0

        for i in range(first_row, sheet.row_count):
            row = sheet.row(i)
            if row_is_blank(row) or self._row_code(sheet, i, layout):
                continue

            # Header rows are sparse and carry no amount
            sparse = non_empty_count(row) <= 3
            has_amount = annual_col is not None and cell_number(sheet.cell(i, annual_col)) is not None

            found = False
            if sparse and not has_amount:
                for cell in row:
                    if not is_text(cell):
                        continue
                    text = cell.strip()
                    if len(text) < 3 or len(text) > 100:
                        continue
                    for pattern in FACILITY_HEADER_PATTERNS:
                        match = pattern.match(text)
                        if not match:
                            continue
                        name = (match.group(1) or "").strip() or strip_type_annotation(text)
                        if NON_FACILITY_NAME.match(name):
                            continue
                        starts.append((i, name, facility_type_of(text)))
                        found = True
                        break
                    if found:
                        break

            if found or layout.get("code") is None:
                continue

            label = sheet.cell(i, label_col)
            if not is_text(label):
                continue
            text = label.strip()
            if not (sparse and not has_amount and 5 < len(text) < 80 and text[0].isupper()):
                continue
            if summary_key_for(text) in ("total_revenue", "total_expenses", "ebitdar"):
                continue
            if any(self._row_code(sheet, k, layout) for k in range(i + 1, min(i + 10, sheet.row_count))):
                starts.append((i, text, facility_type_of(text)))

        sections = []
        for idx, (row, name, facility_type) in enumerate(starts):
            end_row = starts[idx + 1][0] - 1 if idx + 1 < len(starts) else sheet.row_count - 1
            sections.append(_SectionBoundary(name=name, facility_type=facility_type, start_row=row + 1, end_row=end_row))
        return sections

    def _name_from_sheet(self, sheet: Worksheet) -> str:
        cleaned = strip_type_annotation(sheet.name)
        if cleaned:
            return cleaned
        for row in sheet.cells[:10]:
            for cell in row or []:
                if is_text(cell) and len(cell) > 5 and cell.strip()[0].isupper():
                    return cell.strip()
        return sheet.name or "Unknown Facility"

    # -------------------------------------------------------------------------
    # Rows
    # -------------------------------------------------------------------------

    def _parse_section(
        self,
        sheet: Worksheet,
        section: _SectionBoundary,
        layout: ColumnLayout,
        ledger_mapping: Optional[LedgerMapping],
        code_labels: Dict[str, str],
    ) -> FacilitySection:
        items: List[LineItem] = []
        summary = SummaryMetrics()
        explicit: set = set()
        census = CensusData()
        payer_days = 0.0

        def amount(row: int, name: str) -> Optional[float]:
            col = layout.get(name)
            return cell_number(sheet.cell(row, col)) if col is not None else None

        label_col = layout.get("label", 1)
        for i in range(section.start_row, min(section.end_row, sheet.row_count - 1) + 1):
            row = sheet.row(i)
            if row_is_blank(row):
                continue

            code = self._row_code(sheet, i, layout)
            label = cell_text(sheet.cell(i, label_col))
            if not label and not code:
                continue
            if code and label:
                code_labels[code] = label

            annual = amount(i, "annual")
            monthly = amount(i, "monthly")

            census_field = None if code else self._census_field(label)
            if census_field is not None:
                if annual is not None and getattr(census, census_field) is None:
                    setattr(census, census_field, annual)
                continue

            is_total, _ = detect_total_row(label)
            summary_key = summary_key_for(label)
            if summary_key is not None:
                if annual is not None:
                    setattr(summary, summary_key, annual)
                    explicit.add(summary_key)
                # Fee, lease and tax rows are also ordinary expense lines
                if is_total or summary_key in TOTAL_SUMMARY_KEYS:
                    continue
            elif is_total:
                continue
            if annual is None and monthly is None:
                continue

            category, subcategory, confidence, source, mapped_label = self._categorize(
                label, code, ledger_mapping, section.name
            )
            if category == LineCategory.CENSUS:
                if re.search(r"days", label, re.IGNORECASE) and annual:
                    payer_days += annual
                continue

            items.append(LineItem(
                category=category,
                label=label or mapped_label or code or "",
                annual=annual if annual is not None else 0.0,
                subcategory=subcategory,
                ledger_code=code,
                monthly=monthly,
                ppd=amount(i, "ppd"),
                budget_annual=amount(i, "budget_annual"),
                budget_ppd=amount(i, "budget_ppd"),
                confidence=confidence,
                matched_by=source,
                row_index=i,
                mapped_label=mapped_label,
            ))

        if "total_revenue" not in explicit:
            summary.total_revenue = sum(item.annual for item in items if item.category == LineCategory.REVENUE)
        if "total_expenses" not in explicit:
            summary.total_expenses = sum(item.annual for item in items if item.category == LineCategory.EXPENSE)

        if census.total_patient_days is None:
            census.total_patient_days = self._census_near_start(sheet, section.start_row)
        if census.total_patient_days is None and payer_days > 0:
            census.total_patient_days = payer_days
        self._derive_census(census)

        return FacilitySection(
            facility_name=section.name,
            source_sheet=sheet.name,
            facility_type=section.facility_type,
            start_row=section.start_row,
            end_row=section.end_row,
            census=census,
            line_items=items,
            summary=summary,
        )

    def _census_field(self, label: str) -> Optional[str]:
        if not label:
            return None
        for name, pattern in CENSUS_FIELD_PATTERNS:
            if pattern.search(label):
                return name
        return None

    def _categorize(
        self,
        label: str,
        code: Optional[str],
        ledger_mapping: Optional[LedgerMapping],
        facility_name: str,
    ) -> Tuple[LineCategory, Optional[str], float, MatchSource, Optional[str]]:
        """Category, subcategory, confidence, source and mapped label of a row."""
        if code and ledger_mapping:
            entry = ledger_mapping.get(code)
            if entry is not None:
                override = entry.override_for(facility_name)
                if override and ledger_mapping.get(override) is not None:
                    entry = ledger_mapping.get(override)
                subcategory = entry.subcategory or subcategorize_code(entry.code)
                return entry.line_category, subcategory, CONFIDENCE_MAPPED, MatchSource.LEDGER_MAPPING, entry.label

        if code:
            return line_category_for_code(code), subcategorize_code(code), CONFIDENCE_CODE, MatchSource.LEDGER_CODE, None

        if METRIC_LABELS.search(label):
            category = LineCategory.METRIC
        elif CENSUS_LABELS.search(label) and not MONETARY_HINT.search(label):
            category = LineCategory.CENSUS
        elif REVENUE_LABELS.search(label):
            category = LineCategory.REVENUE
        else:
            category = LineCategory.EXPENSE

        subcategory = None
        if category == LineCategory.REVENUE:
            for pattern, name in LABEL_SUBCATEGORIES:
                if pattern.search(label):
                    subcategory = name
                    break
        return category, subcategory, CONFIDENCE_LABEL, MatchSource.LABEL, None

    def _census_near_start(self, sheet: Worksheet, start_row: int) -> Optional[float]:
        """A 'census' label within 10 rows above / 5 rows below the section start."""
        for i in range(max(0, start_row - 10), min(start_row + 5, sheet.row_count)):
            row = sheet.row(i)
            for j, cell in enumerate(row):
                if is_blank(cell) or not CENSUS_NEAR_START.search(cell_text(cell)):
                    continue
                for k in range(j + 1, min(j + 3, len(row))):
                    value = cell_number(row[k])
                    if value is not None and 0 < value < 100000:
                        return value
        return None

    @staticmethod
    def _derive_census(census: CensusData) -> None:
        if census.occupancy is not None and census.occupancy > 1:
            census.occupancy = census.occupancy / 100.0
        if census.average_daily_census is None and census.total_patient_days:
            census.average_daily_census = census.total_patient_days / DAYS_IN_PERIOD
        if census.occupancy is None and census.beds:
            if census.average_daily_census:
                census.occupancy = census.average_daily_census / census.beds
            elif census.total_patient_days:
                census.occupancy = census.total_patient_days / (DAYS_IN_PERIOD * census.beds)
