"""
Workbook-level classification.

Decides which document type a submitted workbook is (operating review,
asset valuation, portfolio model, ledger mapping) from sheet names and content,
and assigns the extraction priority the orchestrator sorts by.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import structlog

from backend.dealxl_engine.cells import cell_text, is_ledger_code, is_text
from backend.dealxl_engine.models import (
    CellValue,
    SheetSummary,
    WorkbookClassification,
    WorkbookType,
    Worksheet,
)

logger = structlog.get_logger(__name__)

EBITDA_LABELS = re.compile(r"\b(ebitda|ebitdar|ebit)\b", re.IGNORECASE)
PPD_HEADER = re.compile(r"\bppd\b|per\s*patient\s*day|per\s*diem", re.IGNORECASE)
ANNUAL_MONTHLY = re.compile(r"\b(annual|monthly)\b", re.IGNORECASE)
STATEMENT_SHEET = re.compile(r"t13|dollars\s*and\s*ppd", re.IGNORECASE)
FACILITY_SECTION = re.compile(r"\((?:SNF|ALF|MC|IL|Opco|SNF_AL_IL)\)", re.IGNORECASE)

VALUATION_TERMS = re.compile(r"\b(cap\s*rate|multiplier|value\s*per\s*bed|valuation)\b", re.IGNORECASE)
VALUATION_SHEET = re.compile(r"\bvaluation\b", re.IGNORECASE)
LOI_SHEET = re.compile(r"\bloi\b", re.IGNORECASE)
BEDS_HEADER = re.compile(r"\b(beds?|total\s*beds?|licensed\s*beds?)\b", re.IGNORECASE)

PORTFOLIO_SHEET = re.compile(r"\b(current\s*state|85%?\s*occupancy|rollup|roll-up)\b", re.IGNORECASE)
ENTITY_GROUPS = re.compile(r"\b(OR-|WA-|SNF\s*-?\s*Owned|Leased|AL/IL|SNC)\b", re.IGNORECASE)
FACILITY_SHEET_NAME = re.compile(
    r"\((?:SNF|ALF|MC|IL|SNF_AL_IL|SNF_AL|AL_IL)\)"
    r"|\b(?:healthcare|health\s*center|care\s*center|nursing|rehab|manor|village|gardens|terrace|lodge)\b",
    re.IGNORECASE,
)

MAPPING_SHEET = re.compile(r"\b(mapping|map|crosswalk|xref)\b", re.IGNORECASE)

VALUATION_VOCABULARY = re.compile(r"cap\s*rate|ebitdar?|total\s*revenue|patient\s*days|value\s*per\s*bed", re.IGNORECASE)

EXTRACTION_PRIORITY: Dict[WorkbookType, int] = {
    WorkbookType.LEDGER_MAPPING: 0,
    WorkbookType.OPERATING_REVIEW: 1,
    WorkbookType.ASSET_VALUATION: 2,
    WorkbookType.PORTFOLIO_MODEL: 3,
    WorkbookType.UNKNOWN: 99,
}


@dataclass
class _Score:
    score: int = 0
    indicators: List[str] = field(default_factory=list)

    def add(self, points: int, indicator: str) -> None:
        self.score += points
        self.indicators.append(indicator)


def _flatten(cells: Sequence[Sequence[CellValue]], max_rows: int) -> str:
    return " ".join(
        cell_text(cell) for row in cells[:max_rows] for cell in (row or []) if cell is not None
    )


def count_ledger_codes(cells: Sequence[Sequence[CellValue]]) -> int:
    """Cells that are entirely a ledger code."""
    return sum(1 for row in cells for cell in (row or []) if is_ledger_code(cell))


def has_bed_column(cells: Sequence[Sequence[CellValue]]) -> bool:
    for row in cells[:15]:
        for cell in row or []:
            if is_text(cell) and BEDS_HEADER.search(cell):
                return True
    return False


def has_mapping_structure(cells: Sequence[Sequence[CellValue]]) -> bool:
    """Most rows carry a code in column A and text in column B."""
    mapping_rows = 0
    for row in cells[5:50]:
        if not row or len(row) < 2:
            continue
        if is_ledger_code(row[0]) and is_text(row[1]):
            mapping_rows += 1
    return mapping_rows > 10


def is_facility_named_sheet(sheet_name: str) -> bool:
    """Sheet named after a single facility (type annotation or care-home wording)."""
    return bool(FACILITY_SHEET_NAME.search(sheet_name or ""))


class WorkbookClassifier:
    """
    Scores every workbook type with indicators and picks the best.

    The best type must reach MIN_SCORE, otherwise the workbook is unknown.
    Confidence is the winning score over CONFIDENCE_SCALE, capped at 1.
    """

    MIN_SCORE = 10
    CONFIDENCE_SCALE = 50.0
    TEXT_ROWS = 50

    def classify(
        self,
        worksheets: Sequence[Worksheet],
        document_id: str = "",
        filename: str = "",
    ) -> WorkbookClassification:
        """
        Classify one workbook.

        Args:
            worksheets: All sheets of the workbook.
            document_id: Caller's identifier, echoed in the result.
            filename: Original filename, echoed in the result.

        Returns:
            WorkbookClassification with type, confidence and indicators.
        """
        # Declaration order doubles as the tie-break order
        scores: Dict[WorkbookType, _Score] = {
            WorkbookType.OPERATING_REVIEW: _Score(),
            WorkbookType.ASSET_VALUATION: _Score(),
            WorkbookType.PORTFOLIO_MODEL: _Score(),
            WorkbookType.LEDGER_MAPPING: _Score(),
        }
        opco = scores[WorkbookType.OPERATING_REVIEW]
        valuation = scores[WorkbookType.ASSET_VALUATION]
        portfolio = scores[WorkbookType.PORTFOLIO_MODEL]
        mapping = scores[WorkbookType.LEDGER_MAPPING]

        sheet_summary: List[SheetSummary] = []

        for sheet in worksheets:
            text = _flatten(sheet.cells, self.TEXT_ROWS)
            name = sheet.name or ""
            suggested = "unknown"

            # Operating review
            if STATEMENT_SHEET.search(name):
                opco.add(30, f'Sheet name matches T13: "{name}"')
                suggested = "operating_statement"

            code_count = count_ledger_codes(sheet.cells)
            if code_count > 20:
                opco.add(20, f"{code_count} ledger codes detected")
                suggested = "operating_statement"
            elif code_count > 5:
                opco.add(10, f"{code_count} ledger codes detected")

            if EBITDA_LABELS.search(text):
                opco.add(5, "EBITDA/EBITDAR labels found")
            if PPD_HEADER.search(text) and ANNUAL_MONTHLY.search(text):
                opco.add(10, "PPD + Annual/Monthly headers")
            if FACILITY_SECTION.search(text):
                opco.add(10, "Facility section markers (SNF/ALF/IL)")
            if sheet.row_count > 500:
                opco.add(5, f"Large sheet ({sheet.row_count} rows)")

            # Asset valuation
            if VALUATION_TERMS.search(text):
                valuation.add(15, "Valuation terminology found")
                if suggested == "unknown":
                    suggested = "valuation"
            if VALUATION_SHEET.search(name):
                valuation.add(20, f'Sheet name: "{name}"')
                suggested = "valuation"
            if LOI_SHEET.search(name):
                valuation.add(15, "LOI sheet found")
            if has_bed_column(sheet.cells) and sheet.row_count < 60:
                valuation.add(10, "Bed count column in compact sheet")

            # Portfolio model
            if PORTFOLIO_SHEET.search(name):
                portfolio.add(20, f'Portfolio sheet: "{name}"')
                suggested = "portfolio"
            if ENTITY_GROUPS.search(text):
                portfolio.add(10, "Entity groups (state/ownership)")
            if is_facility_named_sheet(name):
                portfolio.add(5, f'Facility sheet: "{name}"')

            # Ledger mapping
            if MAPPING_SHEET.search(name):
                mapping.add(20, f'Mapping sheet: "{name}"')
                suggested = "mapping"
            if code_count > 50 and sheet.row_count > 100 and has_mapping_structure(sheet.cells):
                mapping.add(15, "Ledger code + category mapping structure")

            sheet_summary.append(SheetSummary(name=name, row_count=sheet.row_count, suggested_type=suggested))

        if len(worksheets) >= 5:
            facility_sheets = sum(1 for sheet in worksheets if is_facility_named_sheet(sheet.name))
            if facility_sheets >= 2:
                portfolio.add(15, f"{facility_sheets} facility-named sheets")

        ranked = sorted(scores.items(), key=lambda item: -item[1].score)
        best_type, best = ranked[0]
        workbook_type = best_type if best.score >= self.MIN_SCORE else WorkbookType.UNKNOWN
        confidence = min(best.score / self.CONFIDENCE_SCALE, 1.0)

        result = WorkbookClassification(
            document_id=document_id,
            filename=filename,
            workbook_type=workbook_type,
            confidence=confidence,
            indicators=list(best.indicators),
            sheet_summary=sheet_summary,
            extraction_priority=EXTRACTION_PRIORITY[workbook_type],
        )

        logger.info(
            "Workbook classified",
            document_id=document_id,
            filename=filename,
            workbook_type=workbook_type.value,
            confidence=round(confidence, 2),
            score=best.score,
        )
        return result


def is_structured_workbook(worksheets: Sequence[Worksheet]) -> bool:
    """Quick check: any ledger codes, or valuation/statement vocabulary in the first rows."""
    for sheet in worksheets:
        if count_ledger_codes(sheet.cells[:100]) > 5:
            return True
        if VALUATION_VOCABULARY.search(_flatten(sheet.cells, 30)):
            return True
    return False
