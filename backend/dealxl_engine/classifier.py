"""
Sheet classification for the DealXL Engine.

Assigns a semantic SheetType to each worksheet using a scored keyword rule
table, and extracts the per-sheet facts readers leave empty: detected facility
names, reporting periods and the first data row.
"""

import re
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Pattern, Sequence, Set, Tuple

import structlog

from backend.config import get_settings
from backend.dealxl_engine.cells import cell_number, cell_text, flatten_text, is_number, is_text
from backend.dealxl_engine.models import (
    CellValue,
    SheetClassification,
    SheetMetadata,
    SheetType,
    Worksheet,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# Rule Table
# =============================================================================

@dataclass(frozen=True)
class KeywordRule:
    """One keyword contributing `weight` to `target` when present."""
    keyword: str
    pattern: Pattern
    weight: float
    target: SheetType

    @classmethod
    def of(cls, keyword: str, target: SheetType, weight: float = 1.0) -> "KeywordRule":
        # Leading boundary only: "expense" also hits "expenses"
        pattern = re.compile(r"(?<![a-z0-9])" + re.escape(keyword), re.IGNORECASE)
        return cls(keyword=keyword, pattern=pattern, weight=weight, target=target)


# Vocabularies in declaration order; ties resolve to the earlier one.
KEYWORD_VOCABULARIES: Tuple[Tuple[SheetType, Tuple[str, ...]], ...] = (
    (SheetType.STATEMENT, (
        "revenue", "expense", "income statement", "p&l", "profit", "loss",
        "ebitda", "ebitdar", "net operating", "operating income", "gross margin",
        "total revenue", "total expense", "operating expense", "net income",
        "room & board", "patient service", "salary", "wages", "payroll",
        "dietary", "housekeeping", "nursing", "administrative", "supplies",
    )),
    (SheetType.CENSUS, (
        "patient days", "census", "resident days", "occupancy", "medicare days",
        "medicaid days", "private days", "managed care days", "adc",
        "average daily census", "payer mix", "payor mix", "skilled days",
        "custodial days", "total days",
    )),
    (SheetType.RATES, (
        "ppd", "per diem", "daily rate", "rate sheet", "rate letter",
        "medicare rate", "medicaid rate", "private rate", "reimbursement rate",
        "effective rate", "contracted rate", "rate schedule",
    )),
    (SheetType.RENT_ROLL, (
        "rent roll", "tenant", "lease", "unit", "monthly rent",
        "rent schedule", "tenant list",
    )),
    (SheetType.SUMMARY, (
        "summary", "consolidated", "rollup", "roll-up", "portfolio",
        "all facilities", "combined", "total portfolio",
    )),
)

DEFAULT_RULES: Tuple[KeywordRule, ...] = tuple(
    KeywordRule.of(keyword, target)
    for target, keywords in KEYWORD_VOCABULARIES
    for keyword in keywords
)

CURRENCY_TEXT = re.compile(r"\$[\d,]+")
TOTAL_WORD = re.compile(r"\btotal\b")

FACILITY_NAME_PATTERNS = [
    re.compile(r"^([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)\s*(?:SNF|Nursing|Healthcare|Care\s+Center|Rehab)", re.IGNORECASE),
    re.compile(r"facility[:\s]+([A-Z][a-zA-Z\s]+)", re.IGNORECASE),
    re.compile(r"provider[:\s]+([A-Z][a-zA-Z\s]+)", re.IGNORECASE),
    re.compile(r"location[:\s]+([A-Z][a-zA-Z\s]+)", re.IGNORECASE),
]
CCN_PATTERN = re.compile(r"CCN[:\s]*(\d{6})", re.IGNORECASE)

MONTHS = {
    "jan": "01", "feb": "02", "mar": "03", "apr": "04", "may": "05", "jun": "06",
    "jul": "07", "aug": "08", "sep": "09", "oct": "10", "nov": "11", "dec": "12",
}
SLASH_DATE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{2,4})")
MONTH_YEAR = re.compile(r"(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?\s*['\"]?(\d{4}|\d{2})\b", re.IGNORECASE)
ISO_MONTH = re.compile(r"(\d{4})-(\d{2})")
QUARTER = re.compile(r"Q([1-4])\s*['\"]?(\d{4})", re.IGNORECASE)


def _full_year(year: str) -> str:
    return f"20{year}" if len(year) == 2 else year


def detect_periods(cells: Sequence[Sequence[CellValue]], max_rows: int = 15) -> List[str]:
    """
    Detect reporting periods in header rows, normalized to YYYY-MM.

    Quarters map to the quarter's last month. Output is sorted.
    """
    periods: Set[str] = set()
    for row in cells[:max_rows]:
        for cell in row or []:
            if cell is None or is_number(cell):
                continue
            text = str(cell)

            match = SLASH_DATE.search(text)
            if match:
                month = int(match.group(1))
                if 1 <= month <= 12:
                    periods.add(f"{_full_year(match.group(3))}-{month:02d}")
                continue

            match = MONTH_YEAR.search(text)
            if match:
                periods.add(f"{_full_year(match.group(2))}-{MONTHS[match.group(1)[:3].lower()]}")
                continue

            match = ISO_MONTH.search(text)
            if match and 1 <= int(match.group(2)) <= 12:
                periods.add(f"{match.group(1)}-{match.group(2)}")
                continue

            match = QUARTER.search(text)
            if match:
                periods.add(f"{match.group(2)}-{int(match.group(1)) * 3:02d}")

    return sorted(periods)


def detect_facilities(cells: Sequence[Sequence[CellValue]], max_rows: int = 20) -> List[str]:
    """Facility names mentioned in the first rows, plus names next to a CCN."""
    found: List[str] = []

    def _add(name: str) -> None:
        name = name.strip()
        if name and name not in found:
            found.append(name)

    for row in cells[:max_rows]:
        row = row or []
        for idx, cell in enumerate(row):
            if not is_text(cell):
                continue
            text = cell.strip()
            for pattern in FACILITY_NAME_PATTERNS:
                match = pattern.search(text)
                if match and match.group(1):
                    _add(match.group(1))

            if CCN_PATTERN.search(text):
                for j in range(max(0, idx - 2), min(len(row), idx + 3)):
                    nearby = row[j]
                    if j != idx and is_text(nearby) and len(nearby) > 5 and not re.search(r"\d{6}", nearby):
                        _add(nearby)
                        break
    return found


def find_first_data_row(cells: Sequence[Sequence[CellValue]]) -> int:
    """First row with a text label in column 0 and at least one numeric cell."""
    for i, row in enumerate(cells):
        if not row or not is_text(row[0]):
            continue
        if any(cell_number(cell) is not None for cell in row):
            return i
    return 0


# =============================================================================
# Sheet Classifier
# =============================================================================

class SheetClassifier:
    """
    Classifies worksheets by content.

    The score of a SheetType is the sum of the weights of distinct matching
    rules. Adding text to a sheet can only add matches, so scores never drop
    when content grows.
    """

    def __init__(
        self,
        rules: Optional[Sequence[KeywordRule]] = None,
        min_score: Optional[float] = None,
        scan_rows: Optional[int] = None,
    ):
        settings = get_settings()
        self.rules = tuple(rules) if rules is not None else DEFAULT_RULES
        self.min_score = settings.classifier_min_score if min_score is None else min_score
        self.scan_rows = settings.classifier_scan_rows if scan_rows is None else scan_rows
        self._targets: List[SheetType] = []
        for rule in self.rules:
            if rule.target not in self._targets:
                self._targets.append(rule.target)

    def score(self, text: str) -> Tuple[Dict[str, float], List[str]]:
        """
        Score lowercased text against the rule table.

        Returns:
            Tuple of (scores per sheet type value, matched keywords).
        """
        scores: Dict[str, float] = {target.value: 0.0 for target in self._targets}
        matched: List[str] = []
        for rule in self.rules:
            if rule.pattern.search(text):
                scores[rule.target.value] += rule.weight
                matched.append(rule.keyword)
        return scores, matched

    def classify(self, worksheet: Worksheet) -> SheetClassification:
        """
        Classify one worksheet.

        Args:
            worksheet: Sheet to classify; only the first scan_rows are read.

        Returns:
            SheetClassification with scores and matched keywords.
        """
        text = flatten_text(worksheet.cells, self.scan_rows)
        scores, matched = self.score(text)

        best_type: Optional[SheetType] = None
        best_score = 0.0
        for target in self._targets:
            if scores[target.value] > best_score:
                best_type, best_score = target, scores[target.value]

        if best_type is not None and best_score >= self.min_score:
            result = SheetClassification(
                sheet_name=worksheet.name,
                sheet_type=best_type,
                scores=scores,
                matched_keywords=matched,
            )
        elif self._looks_like_statement(worksheet.cells[:self.scan_rows], text):
            result = SheetClassification(
                sheet_name=worksheet.name,
                sheet_type=SheetType.STATEMENT,
                scores=scores,
                matched_keywords=matched,
                used_fallback=True,
            )
        else:
            result = SheetClassification(
                sheet_name=worksheet.name,
                sheet_type=SheetType.UNKNOWN,
                scores=scores,
                matched_keywords=matched,
            )

        logger.debug(
            "Sheet classified",
            sheet=worksheet.name,
            sheet_type=result.sheet_type.value,
            fallback=result.used_fallback,
        )
        return result

    def _looks_like_statement(self, rows: Sequence[Sequence[CellValue]], text: str) -> bool:
        """Large numbers next to the word 'total'."""
        if not TOTAL_WORD.search(text):
            return False
        for row in rows:
            for cell in row or []:
                if is_number(cell) and abs(cell) > 1000:
                    return True
                if isinstance(cell, str) and CURRENCY_TEXT.search(cell):
                    return True
        return False

    def annotate(self, worksheet: Worksheet) -> Tuple[Worksheet, SheetClassification]:
        """
        Return a classified copy of the worksheet; the input is not modified.

        The copy carries sheet type, detected facilities and periods, the first
        data row, and the first non-empty row as headers.
        """
        classification = self.classify(worksheet)
        sheet_type = worksheet.sheet_type or classification.sheet_type

        headers = worksheet.headers
        header_row = worksheet.header_row
        if not headers:
            for i, row in enumerate(worksheet.cells[:10]):
                if row and any(cell is not None for cell in row):
                    headers = [cell_text(cell) for cell in row]
                    header_row = i
                    break

        metadata = replace(
            worksheet.metadata or SheetMetadata(),
            first_data_row=find_first_data_row(worksheet.cells),
        )
        annotated = replace(
            worksheet,
            sheet_type=sheet_type,
            headers=list(headers),
            header_row=header_row,
            facilities_detected=worksheet.facilities_detected or detect_facilities(worksheet.cells),
            periods_detected=worksheet.periods_detected or detect_periods(worksheet.cells),
            metadata=metadata,
        )
        if sheet_type != classification.sheet_type:
            classification = replace(classification, sheet_type=sheet_type)
        return annotated, classification


def sheet_type_of(worksheet: Worksheet, classifier: Optional[SheetClassifier] = None) -> SheetType:
    """The sheet's declared type, classifying it when unset."""
    if worksheet.sheet_type is not None:
        return worksheet.sheet_type
    return (classifier or get_sheet_classifier()).classify(worksheet).sheet_type


# Singleton instance
_classifier_instance: Optional[SheetClassifier] = None


def get_sheet_classifier() -> SheetClassifier:
    """Get singleton SheetClassifier instance."""
    global _classifier_instance
    if _classifier_instance is None:
        _classifier_instance = SheetClassifier()
    return _classifier_instance
