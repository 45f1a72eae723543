"""
Valuation-entry parser for the DealXL Engine.

Parses asset valuation sheets listing one facility per row with beds,
specific-needs percentage, EBITDA / net income, cap rate or multiplier and
values for a prior and a current fiscal year. Rows are grouped by
property-type section headers.
"""

import re
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from backend.config import get_settings
from backend.dealxl_engine.cells import (
    cell_count,
    cell_number,
    cell_text,
    is_text,
    non_empty_count,
    row_is_blank,
    row_text,
)
from backend.dealxl_engine.layout import (
    ColumnLayout,
    ColumnSpec,
    ContentScanTier,
    DefaultLayoutTier,
    HeaderScanTier,
    LayoutDetector,
    combine_probes,
    long_text_probe,
    short_integer_probe,
)
from backend.dealxl_engine.models import (
    CategoryTotal,
    PortfolioTotal,
    PropertyType,
    SheetType,
    ValuationEntry,
    ValuationEntryResult,
    WarningLog,
    Worksheet,
)

logger = structlog.get_logger(__name__)

STAGE = "valuation_entries"

VALUATION_SHEET = re.compile(r"valuation", re.IGNORECASE)
SUMMARY_SHEET = re.compile(r"summary|overview", re.IGNORECASE)
LISTING_SHEET = re.compile(r"loi", re.IGNORECASE)

SECTION_HEADERS: Tuple[Tuple[re.Pattern, PropertyType], ...] = (
    (re.compile(r"snf\s*[-–—]\s*owned|owned\s*[-–—]\s*skilled", re.IGNORECASE), PropertyType.OWNED_SKILLED),
    (re.compile(r"\bleased\b", re.IGNORECASE), PropertyType.LEASED),
    (re.compile(r"\balf\b|\bal/il\b|assisted\s*living|specific\s*needs|\bsnc\b", re.IGNORECASE), PropertyType.ASSISTED_OWNED),
)

SUBTOTAL_NAME = re.compile(r"^(subtotal|total|grand\s*total)", re.IGNORECASE)
HEADER_NAME = re.compile(r"^(property|facility|name|#)\s*$", re.IGNORECASE)
STATE_CODE = re.compile(r"^[A-Z]{2}$")
CITY_NAME = re.compile(r"^[A-Z][a-z]")

VALUATION_COLUMNS = (
    ColumnSpec("name", [r"^(property|facility|name)$|^(facility|property)\s*name$"], required=True),
    ColumnSpec("beds", [r"^(beds?|total\s*beds?|licensed(\s*beds?)?)$"], required=True),
    ColumnSpec("snc", [r"snc|specific\s*need"], prefer_last=True),
    ColumnSpec("ebitda", [r"ebitda"], collect=True),
    ColumnSpec("ni", [r"\bni\b|net\s*income"], collect=True),
    ColumnSpec("cap_rate", [r"cap\s*rate"], prefer_last=True),
    ColumnSpec("multiplier", [r"multiplier|multiple"], prefer_last=True),
    ColumnSpec("value", [r"^value$|total\s*value|^(fy\s*)?\d{4}\s+value$|^value\s+(fy\s*)?\d{4}$"], collect=True),
    ColumnSpec("vpb", [r"\$/bed|value\s*per\s*bed|per\s*bed"], collect=True),
)

DEFAULT_VALUATION_LAYOUT = {
    "name": 1,
    "beds": 2,
    "snc": 3,
    "ebitda_prior": 6,
    "cap_rate": 7,
    "value_prior": 8,
    "vpb_prior": 9,
    "ebitda_current": 11,
    "value_current": 13,
    "vpb_current": 14,
}

CATEGORY_ORDER = (PropertyType.OWNED_SKILLED, PropertyType.LEASED, PropertyType.ASSISTED_OWNED)


def valuation_method_label(property_type: PropertyType) -> str:
    return "NI × Multiplier" if property_type == PropertyType.LEASED else "EBITDA / Cap Rate"


def section_type_of(text: str) -> Optional[PropertyType]:
    """Property type named by a section header row, if any."""
    for pattern, property_type in SECTION_HEADERS:
        if pattern.search(text):
            return property_type
    return None


def section_row_type(row: Sequence) -> Optional[PropertyType]:
    """Property type of a sparse, amount-free section header row."""
    if non_empty_count(row) > 2 or any(cell_number(cell) is not None for cell in row):
        return None
    return section_type_of(row_text(row))


def _positive(value: Optional[float]) -> Optional[float]:
    return value if value is not None and value > 0 else None


class ValuationEntryParser:
    """
    Parses the valuation sheet of an asset valuation workbook.

    Rates are disambiguated by magnitude: a value above 1 is an earnings
    multiplier, anything else a cap rate.
    """

    def __init__(self, detector: Optional[LayoutDetector] = None, rate_tolerance: Optional[float] = None):
        self.detector = detector or LayoutDetector(VALUATION_COLUMNS, [
            HeaderScanTier(max_rows=get_settings().header_scan_rows),
            ContentScanTier([combine_probes(long_text_probe(5), short_integer_probe(10, 500))], max_rows=15),
            DefaultLayoutTier(DEFAULT_VALUATION_LAYOUT, data_start_row=7),
        ])
        self.rate_tolerance = get_settings().rate_boundary_tolerance if rate_tolerance is None else rate_tolerance

    def select_sheet(self, worksheets: Sequence[Worksheet]) -> Optional[Worksheet]:
        for sheet in worksheets:
            if VALUATION_SHEET.search(sheet.name or ""):
                return sheet
        for sheet in worksheets:
            if SUMMARY_SHEET.search(sheet.name or "") or sheet.sheet_type == SheetType.SUMMARY:
                return sheet
        return worksheets[0] if worksheets else None

    def parse(self, worksheets: Sequence[Worksheet], warnings: Optional[WarningLog] = None) -> ValuationEntryResult:
        """
        Parse valuation entries from a workbook.

        Args:
            worksheets: Sheets of an asset valuation workbook.
            warnings: Shared warnings channel.

        Returns:
            ValuationEntryResult with entries, category totals and portfolio total.
        """
        log = warnings if warnings is not None else WarningLog()
        mark = len(log)

        sheet = self.select_sheet(worksheets)
        if sheet is None:
            log.add(STAGE, "No valuation sheet found")
            return ValuationEntryResult(warnings=log.messages()[mark:])

        layout = self.detector.detect(sheet.cells)
        if layout is None:
            log.add(STAGE, f"Could not detect valuation column structure in '{sheet.name}'", sheet=sheet.name)
            return ValuationEntryResult(source_sheet=sheet.name, warnings=log.messages()[mark:])

        entries = self._parse_rows(sheet, layout, log)

        listing = next(
            (s for s in worksheets if s is not sheet and LISTING_SHEET.search(s.name or "")),
            None,
        )
        if listing is not None:
            self.enrich_from_listing(entries, listing)

        category_totals, portfolio_total = summarize_entries(entries)
        logger.info(
            "Valuation entries parsed",
            sheet=sheet.name,
            tier=layout.tier,
            entries=len(entries),
            total_value=round(portfolio_total.total_value, 2),
        )
        return ValuationEntryResult(
            entries=entries,
            category_totals=category_totals,
            portfolio_total=portfolio_total,
            source_sheet=sheet.name,
            warnings=log.messages()[mark:],
        )

    # -------------------------------------------------------------------------
    # Rows
    # -------------------------------------------------------------------------

    @staticmethod
    def _year_columns(layout: ColumnLayout, name: str) -> Tuple[Optional[int], Optional[int]]:
        """(prior, current) columns of a paired-year field."""
        found = layout.multi.get(name)
        if found:
            return found[0], (found[1] if len(found) > 1 else None)
        return layout.get(f"{name}_prior"), layout.get(f"{name}_current")

    def _parse_rows(self, sheet: Worksheet, layout: ColumnLayout, log: WarningLog) -> List[ValuationEntry]:
        name_col = layout["name"]
        beds_col = layout["beds"]
        snc_col = layout.get("snc")
        ebitda_cols = self._year_columns(layout, "ebitda")
        ni_cols = self._year_columns(layout, "ni")
        value_cols = self._year_columns(layout, "value")
        vpb_cols = self._year_columns(layout, "vpb")
        cap_col = layout.get("cap_rate")
        multiplier_col = layout.get("multiplier")

        def number(row: int, col: Optional[int]) -> Optional[float]:
            return cell_number(sheet.cell(row, col)) if col is not None else None

        current_type = PropertyType.OWNED_SKILLED
        if layout.tier != "header":
            # Content-located layouts start on the first data row; pick up a section header just above
            for k in range(max(0, layout.data_start_row - 2), layout.data_start_row):
                found = section_row_type(sheet.row(k))
                if found is not None:
                    current_type = found

        entries: List[ValuationEntry] = []
        for i in range(layout.data_start_row, sheet.row_count):
            row = sheet.row(i)
            if row_is_blank(row):
                continue

            beds = cell_count(sheet.cell(i, beds_col))
            name_cell = sheet.cell(i, name_col)
            name = cell_text(name_cell) if is_text(name_cell) else ""

            if beds is None or beds <= 0:
                section = section_row_type(row)
                if section is not None:
                    current_type = section
                continue

            if SUBTOTAL_NAME.match(name) or len(name) < 3 or HEADER_NAME.match(name):
                continue

            snc = number(i, snc_col)
            if snc is not None and snc > 1:
                snc = snc / 100.0

            rate = number(i, cap_col)
            if rate is None or rate <= 0:
                rate = number(i, multiplier_col)
            rate = _positive(rate)

            ebitda_prior, ebitda_current = (number(i, c) for c in ebitda_cols)
            ni_prior, ni_current = (number(i, c) for c in ni_cols)
            value_prior, value_current = (number(i, c) for c in value_cols)
            vpb_prior, vpb_current = (number(i, c) for c in vpb_cols)

            cap_rate, multiplier = self._resolve_rate(
                rate, current_type, snc,
                ebitda=ebitda_current or ebitda_prior,
                net_income=ni_current or ni_prior,
                value=value_current or value_prior,
            )
            if rate is not None and abs(rate - 1.0) <= self.rate_tolerance:
                log.add(
                    STAGE,
                    f"Rate {rate:g} for '{name}' is close to 1; read as {'multiplier' if multiplier else 'cap rate'}",
                    facility=name,
                    row=i,
                )

            if value_prior is None and value_cols[0] is None:
                value_prior = self._compute_value(cap_rate, multiplier, ebitda_prior, ni_prior)
            if value_current is None and value_cols[1] is None:
                value_current = self._compute_value(cap_rate, multiplier, ebitda_current, ni_current)
            if vpb_prior is None and value_prior:
                vpb_prior = value_prior / beds
            if vpb_current is None and value_current:
                vpb_current = value_current / beds

            entries.append(ValuationEntry(
                facility_name=name,
                property_type=current_type,
                beds=beds,
                snc_percent=snc,
                cap_rate=cap_rate,
                multiplier=multiplier,
                ebitda_prior=ebitda_prior,
                ebitda_current=ebitda_current,
                net_income_prior=ni_prior,
                net_income_current=ni_current,
                value_prior=value_prior,
                value_current=value_current,
                value_per_bed_prior=vpb_prior,
                value_per_bed_current=vpb_current,
                row_index=i,
            ))
        return entries

    def _resolve_rate(
        self,
        rate: Optional[float],
        property_type: PropertyType,
        snc: Optional[float],
        ebitda: Optional[float],
        net_income: Optional[float],
        value: Optional[float],
    ) -> Tuple[Optional[float], Optional[float]]:
        """
        Split a raw rate into (cap_rate, multiplier); exactly one is set.

        Without a rate, it is derived from the row's value and earnings, then
        from the property-type schedule.
        """
        if rate is not None:
            return (None, rate) if rate > 1 else (rate, None)

        settings = get_settings()
        if property_type == PropertyType.LEASED:
            if value and net_income and net_income > 0:
                return None, value / net_income
            return None, settings.leased_multiplier
        if value and ebitda and ebitda > 0:
            return ebitda / value, None
        if property_type == PropertyType.ASSISTED_OWNED:
            if not snc:
                return settings.alf_cap_rate_no_snc, None
            if snc <= settings.snc_low_threshold:
                return settings.alf_cap_rate_low_snc, None
            return settings.alf_cap_rate_high_snc, None
        return settings.snf_cap_rate, None

    @staticmethod
    def _compute_value(
        cap_rate: Optional[float],
        multiplier: Optional[float],
        ebitda: Optional[float],
        net_income: Optional[float],
    ) -> Optional[float]:
        if cap_rate and ebitda is not None:
            return ebitda / cap_rate
        if multiplier and net_income is not None:
            return net_income * multiplier
        return None

    # -------------------------------------------------------------------------
    # Enrichment
    # -------------------------------------------------------------------------

    def enrich_from_listing(self, entries: List[ValuationEntry], listing: Worksheet) -> int:
        """
        Fill city/state from a listing sheet.

        A cell containing the first 10 characters of an entry name identifies
        the row; the next four cells are searched for a two-letter state and
        a capitalized city. Unmatched fields stay unset.

        Returns:
            Number of entries that gained a field.
        """
        enriched = set()
        for row in listing.cells:
            row = row or []
            for j, cell in enumerate(row):
                if not is_text(cell) or len(cell) < 5:
                    continue
                text = cell.lower()
                entry = next(
                    (e for e in entries if e.facility_name.lower()[:10] in text),
                    None,
                )
                if entry is None:
                    continue
                for k in range(j + 1, min(j + 5, len(row))):
                    value = row[k]
                    if not is_text(value):
                        continue
                    value = value.strip()
                    if STATE_CODE.match(value) and not entry.state:
                        entry.state = value
                        enriched.add(entry.facility_name)
                    if CITY_NAME.match(value) and len(value) > 3 and not entry.city:
                        entry.city = value
                        enriched.add(entry.facility_name)
        logger.debug("Listing enrichment", sheet=listing.name, enriched=len(enriched))
        return len(enriched)


def summarize_entries(entries: Sequence[ValuationEntry]) -> Tuple[List[CategoryTotal], PortfolioTotal]:
    """Category totals in fixed order plus the portfolio total."""
    by_type: Dict[PropertyType, List[ValuationEntry]] = {}
    for entry in entries:
        by_type.setdefault(entry.property_type, []).append(entry)

    totals = []
    for property_type in CATEGORY_ORDER:
        members = by_type.get(property_type)
        if not members:
            continue
        beds = sum(e.beds for e in members)
        value = sum(e.value or 0.0 for e in members)
        totals.append(CategoryTotal(
            category=property_type,
            facility_count=len(members),
            total_beds=beds,
            total_value=value,
            avg_value_per_bed=value / beds if beds > 0 else 0.0,
            valuation_method=valuation_method_label(property_type),
        ))

    total_beds = sum(e.beds for e in entries)
    total_value = sum(e.value or 0.0 for e in entries)
    portfolio = PortfolioTotal(
        facility_count=len(entries),
        total_beds=total_beds,
        total_value=total_value,
        avg_value_per_bed=total_value / total_beds if total_beds > 0 else 0.0,
    )
    return totals, portfolio
