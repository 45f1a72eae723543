"""
Portfolio-model parser for the DealXL Engine.

Parses multi-scenario portfolio workbooks:
- Scenario sheets (Current State, 85% Occupancy, Stabilized, Pro Forma)
- Entity-group rollups inside each scenario (state or ownership groups)
- Individual facility sheets, delegated to the StatementParser
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from backend.dealxl_engine.cells import cell_number, cell_text, non_empty_count
from backend.dealxl_engine.layout import (
    ColumnLayout,
    ColumnSpec,
    ContentScanTier,
    HeaderScanTier,
    LayoutDetector,
    text_and_amount_probe,
)
from backend.dealxl_engine.ledger_mapping import MAPPING_SHEET
from backend.dealxl_engine.models import (
    BreakdownLine,
    EntityGroup,
    FacilitySection,
    FinancialMetric,
    LedgerMapping,
    PortfolioFinancials,
    PortfolioModelResult,
    PortfolioScenario,
    WarningLog,
    Worksheet,
)
from backend.dealxl_engine.statement_parser import StatementParser

logger = structlog.get_logger(__name__)

STAGE = "portfolio_model"

SCENARIO_SHEETS: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r"current\s*state", re.IGNORECASE), "Current State"),
    (re.compile(r"85%?\s*occupancy", re.IGNORECASE), "85% Occupancy"),
    (re.compile(r"stabilized", re.IGNORECASE), "Stabilized"),
    (re.compile(r"pro\s*forma", re.IGNORECASE), "Pro Forma"),
)
ROLLUP_SHEET = re.compile(r"rollup|roll-up|consolidated", re.IGNORECASE)

ENTITY_GROUP = re.compile(r"^(OR|WA|ID|MT|CA|AZ)-\s*(.+)", re.IGNORECASE)
STANDALONE_GROUP = re.compile(r"^(SNF\s*-?\s*Owned|Leased|AL/IL|SNC|Mixed)", re.IGNORECASE)

TOTAL_REVENUE = re.compile(r"^total\s*(?:patient\s*service\s*)?revenue", re.IGNORECASE)
TOTAL_EXPENSES = re.compile(r"^total\s*(?:operating\s*)?expenses?", re.IGNORECASE)
EBITDAR = re.compile(r"^ebitdar\b", re.IGNORECASE)
EBITDA = re.compile(r"^ebitda(?!r)\b", re.IGNORECASE)
MANAGEMENT_FEE = re.compile(r"management\s*fee", re.IGNORECASE)
LEASE_EXPENSE = re.compile(r"lease|rent\s*expense", re.IGNORECASE)

GRAND_TOTAL = re.compile(r"grand\s*total|portfolio\s*total|total\s*portfolio", re.IGNORECASE)
TOTAL_EBITDAR = re.compile(r"total.*ebitdar|ebitdar.*total|^ebitdar$", re.IGNORECASE)
TOTAL_EBITDA = re.compile(r"total.*ebitda(?!r)|ebitda(?!r).*total|^ebitda$", re.IGNORECASE)
SCENARIO_TOTAL = re.compile(r"^total\s*ebitdar?\b|grand\s*total|portfolio\s*total|total\s*portfolio", re.IGNORECASE)

SCENARIO_COLUMNS = (
    ColumnSpec("annual", [r"^(annual|actual|total)\s*$"], required=True),
    ColumnSpec("monthly", [r"^monthly"]),
    ColumnSpec("ppd", [r"^ppd|per\s*patient"]),
    ColumnSpec("label", [r"^(description|label|item|category)$"], prefer_last=True),
)

MIN_SCENARIO_ROWS = 5
MIN_FACILITY_ROWS = 10
TOTALS_TAIL_ROWS = 30


@dataclass
class _GroupBoundary:
    name: str
    start_row: int
    end_row: int


class PortfolioModelParser:
    """
    Parses scenario sheets into entity groups and delegates facility sheets.

    Example:
        result = PortfolioModelParser().parse(worksheets, ledger_mapping)
        for scenario in result.scenarios:
            print(scenario.name, scenario.totals.ebitdar.annual)
    """

    def __init__(
        self,
        statement_parser: Optional[StatementParser] = None,
        detector: Optional[LayoutDetector] = None,
    ):
        self.statement_parser = statement_parser or StatementParser()
        self.detector = detector or LayoutDetector(SCENARIO_COLUMNS, [
            HeaderScanTier(max_rows=15),
            ContentScanTier([text_and_amount_probe(min_text=3, threshold=1000)], max_rows=20),
        ])

    def parse(
        self,
        worksheets: Sequence[Worksheet],
        ledger_mapping: Optional[LedgerMapping] = None,
        warnings: Optional[WarningLog] = None,
    ) -> PortfolioModelResult:
        """
        Parse a portfolio model workbook.

        Args:
            worksheets: Sheets of the portfolio workbook.
            ledger_mapping: Crosswalk passed through to facility sheets.
            warnings: Shared warnings channel.

        Returns:
            PortfolioModelResult with scenarios and individually parsed facilities.
        """
        log = warnings if warnings is not None else WarningLog()
        mark = len(log)

        scenarios: List[PortfolioScenario] = []
        for pattern, name in SCENARIO_SHEETS:
            sheet = next((s for s in worksheets if pattern.search(s.name or "")), None)
            if sheet is not None:
                scenario = self.parse_scenario(sheet, name)
                if scenario is not None:
                    scenarios.append(scenario)

        if not scenarios:
            rollup = next((s for s in worksheets if ROLLUP_SHEET.search(s.name or "")), None)
            if rollup is not None:
                scenario = self.parse_scenario(rollup, "Rollup")
                if scenario is not None:
                    scenarios.append(scenario)

        facilities: Dict[str, FacilitySection] = {}
        for sheet in worksheets:
            if self._is_special(sheet) or sheet.row_count <= MIN_FACILITY_ROWS:
                continue
            parsed = self.statement_parser.parse_sheet(sheet, ledger_mapping, log)
            for facility in parsed.facilities:
                facilities.setdefault(facility.facility_name, facility)

        if not scenarios and not facilities:
            log.add(STAGE, "No scenario sheets or facility data found in portfolio model")

        logger.info(
            "Portfolio model parsed",
            scenarios=len(scenarios),
            entity_groups=sum(len(s.entity_groups) for s in scenarios),
            facilities=len(facilities),
        )
        return PortfolioModelResult(
            scenarios=scenarios,
            facilities=list(facilities.values()),
            warnings=log.messages()[mark:],
        )

    @staticmethod
    def _is_special(sheet: Worksheet) -> bool:
        name = sheet.name or ""
        return (
            any(pattern.search(name) for pattern, _ in SCENARIO_SHEETS)
            or bool(ROLLUP_SHEET.search(name))
            or bool(MAPPING_SHEET.search(name))
        )

    # -------------------------------------------------------------------------
    # Scenarios
    # -------------------------------------------------------------------------

    def parse_scenario(self, sheet: Worksheet, name: str) -> Optional[PortfolioScenario]:
        """Parse one scenario sheet; None when it is too small or has no layout."""
        if sheet.row_count < MIN_SCENARIO_ROWS:
            return None
        layout = self.detector.detect(sheet.cells)
        if layout is None:
            return None
        if "label" not in layout.columns:
            layout.columns["label"] = max(layout["annual"] - 1, 0)

        groups = []
        for boundary in self._find_groups(sheet, layout):
            groups.append(EntityGroup(name=boundary.name, financials=self._group_financials(sheet, boundary, layout)))

        return PortfolioScenario(
            name=name,
            sheet_name=sheet.name,
            entity_groups=groups,
            totals=self._overall_totals(sheet, layout) or PortfolioFinancials(),
        )

    def _label(self, sheet: Worksheet, row: int, layout: ColumnLayout) -> str:
        return cell_text(sheet.cell(row, layout["label"]))

    def _metric(self, sheet: Worksheet, row: int, layout: ColumnLayout) -> FinancialMetric:
        def value(col: Optional[int]) -> Optional[float]:
            return cell_number(sheet.cell(row, col)) if col is not None else None

        return FinancialMetric(
            annual=value(layout["annual"]) or 0.0,
            monthly=value(layout.get("monthly")),
            ppd=value(layout.get("ppd")),
        )

    def _find_groups(self, sheet: Worksheet, layout: ColumnLayout) -> List[_GroupBoundary]:
        starts: List[Tuple[int, str]] = []
        for i in range(layout.data_start_row, sheet.row_count):
            text = self._label(sheet, i, layout)
            if not text:
                continue
            if ENTITY_GROUP.match(text):
                starts.append((i, text))
            elif STANDALONE_GROUP.match(text) and non_empty_count(sheet.row(i)) <= 3:
                starts.append((i, text))

        boundaries = []
        for idx, (row, name) in enumerate(starts):
            end_row = starts[idx + 1][0] - 1 if idx + 1 < len(starts) else sheet.row_count - 1
            boundaries.append(_GroupBoundary(name=name, start_row=row + 1, end_row=end_row))
        return boundaries

    def _group_financials(self, sheet: Worksheet, boundary: _GroupBoundary, layout: ColumnLayout) -> PortfolioFinancials:
        financials = PortfolioFinancials()
        in_revenue = True

        for i in range(boundary.start_row, min(boundary.end_row, sheet.row_count - 1) + 1):
            label = self._label(sheet, i, layout)
            if not label:
                continue
            # Scenario-wide totals close the last group
            if SCENARIO_TOTAL.search(label):
                break
            metric = self._metric(sheet, i, layout)

            if TOTAL_REVENUE.search(label):
                financials.total_revenue = metric
                in_revenue = False
            elif TOTAL_EXPENSES.search(label):
                in_revenue = False
            elif EBITDAR.search(label):
                financials.ebitdar = metric
            elif EBITDA.search(label):
                financials.ebitda = metric
            elif MANAGEMENT_FEE.search(label):
                financials.management_fee = FinancialMetric(annual=metric.annual)
            elif LEASE_EXPENSE.search(label):
                financials.lease_expense = FinancialMetric(annual=metric.annual)
            elif metric.annual != 0:
                line = BreakdownLine(label=label, annual=metric.annual, monthly=metric.monthly, ppd=metric.ppd)
                (financials.revenue_breakdown if in_revenue else financials.expense_breakdown).append(line)

        revenue = financials.total_revenue.annual
        if revenue > 0:
            if financials.ebitdar.annual:
                financials.ebitdar.margin = financials.ebitdar.annual / revenue
            if financials.ebitda.annual:
                financials.ebitda.margin = financials.ebitda.annual / revenue
        return financials

    def _overall_totals(self, sheet: Worksheet, layout: ColumnLayout) -> Optional[PortfolioFinancials]:
        financials = PortfolioFinancials()
        found = False

        for i in range(sheet.row_count):
            label = self._label(sheet, i, layout)
            if label and GRAND_TOTAL.search(label):
                metric = self._metric(sheet, i, layout)
                financials.total_revenue = FinancialMetric(annual=metric.annual, monthly=metric.monthly)
                found = True
                break

        for i in range(max(0, sheet.row_count - TOTALS_TAIL_ROWS), sheet.row_count):
            label = self._label(sheet, i, layout)
            if not label:
                continue
            if TOTAL_EBITDAR.search(label):
                metric = self._metric(sheet, i, layout)
                financials.ebitdar = FinancialMetric(annual=metric.annual, monthly=metric.monthly)
                found = True
            if TOTAL_EBITDA.search(label):
                metric = self._metric(sheet, i, layout)
                financials.ebitda = FinancialMetric(annual=metric.annual, monthly=metric.monthly)
                found = True

        return financials if found else None
