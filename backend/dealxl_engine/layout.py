"""
Column/layout detection for the DealXL Engine.

Locates logical columns (code, label, amounts, beds, ...) in a cell matrix by
running a chain of independent detection tiers:

1. HeaderScanTier - a header row whose cells match the column patterns
2. ContentScanTier - probes that recognise columns from data rows
3. DefaultLayoutTier - a fixed, known-good layout

The first tier that returns a layout wins.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Pattern, Sequence, Tuple, Union

import structlog

from backend.dealxl_engine.cells import (
    cell_count,
    cell_number,
    cell_text,
    is_blank,
    is_ledger_code,
    is_number,
    is_text,
)
from backend.dealxl_engine.models import CellValue

logger = structlog.get_logger(__name__)

Row = Sequence[CellValue]
Probe = Callable[[Row], Optional[Dict[str, int]]]


# =============================================================================
# Column Specs & Layouts
# =============================================================================

@dataclass
class ColumnSpec:
    """
    A logical column and the header text that identifies it.

    Attributes:
        name: Logical column name used by the parser.
        patterns: Regexes tried against lowercased header text.
        required: Header row must match this spec.
        collect: Record every matching column (paired-year columns).
        exclude: Header text matching this is never this column.
        prefer_last: When several columns match, keep the right-most.
    """
    name: str
    patterns: Sequence[Union[str, Pattern]]
    required: bool = False
    collect: bool = False
    exclude: Optional[Union[str, Pattern]] = None
    prefer_last: bool = False

    def __post_init__(self):
        self.patterns = tuple(
            p if isinstance(p, re.Pattern) else re.compile(p, re.IGNORECASE) for p in self.patterns
        )
        if isinstance(self.exclude, str):
            self.exclude = re.compile(self.exclude, re.IGNORECASE)

    def matches(self, header: str) -> bool:
        if not header:
            return False
        if self.exclude is not None and self.exclude.search(header):
            return False
        return any(p.search(header) for p in self.patterns)


@dataclass
class ColumnLayout:
    """Resolved column positions for one sheet."""
    columns: Dict[str, int]
    data_start_row: int
    header_row: Optional[int] = None
    tier: str = ""
    multi: Dict[str, List[int]] = field(default_factory=dict)

    def get(self, name: str, default: Optional[int] = None) -> Optional[int]:
        return self.columns.get(name, default)

    def has(self, name: str) -> bool:
        return name in self.columns or bool(self.multi.get(name))

    def all(self, name: str) -> List[int]:
        """Every column matched for a collected spec."""
        if self.multi.get(name):
            return list(self.multi[name])
        return [self.columns[name]] if name in self.columns else []

    def nth(self, name: str, index: int) -> Optional[int]:
        found = self.all(name)
        return found[index] if index < len(found) else None

    def __getitem__(self, name: str) -> int:
        return self.columns[name]


# =============================================================================
# Detection Tiers
# =============================================================================

class DetectionTier(ABC):
    """One strategy for locating columns."""

    name = "tier"

    @abstractmethod
    def detect(self, cells: Sequence[Row], specs: Sequence[ColumnSpec]) -> Optional[ColumnLayout]:
        """Return a layout or None when this strategy does not apply."""


class HeaderScanTier(DetectionTier):
    """
    Finds the first row in which every required spec matches a header cell.

    Optional specs are recorded when present on that row. Columns listed in
    `fixed` are filled in when no header names them.
    """

    name = "header"

    def __init__(self, max_rows: int = 10, fixed: Optional[Dict[str, int]] = None):
        self.max_rows = max_rows
        self.fixed = dict(fixed or {})

    def detect(self, cells: Sequence[Row], specs: Sequence[ColumnSpec]) -> Optional[ColumnLayout]:
        required = [spec.name for spec in specs if spec.required]
        if not required:
            return None

        for i, row in enumerate(cells[:self.max_rows]):
            if not row:
                continue
            columns, multi = self.match_row(row, specs)
            if all(name in columns or multi.get(name) for name in required):
                for name, col in self.fixed.items():
                    columns.setdefault(name, col)
                return ColumnLayout(
                    columns=columns,
                    data_start_row=i + 1,
                    header_row=i,
                    tier=self.name,
                    multi=multi,
                )
        return None

    @staticmethod
    def match_row(row: Row, specs: Sequence[ColumnSpec]) -> Tuple[Dict[str, int], Dict[str, List[int]]]:
        """Match every header cell of a row against every spec."""
        columns: Dict[str, int] = {}
        multi: Dict[str, List[int]] = {}
        for j, cell in enumerate(row):
            if is_blank(cell):
                continue
            header = cell_text(cell).lower()
            for spec in specs:
                if not spec.matches(header):
                    continue
                if spec.collect:
                    multi.setdefault(spec.name, []).append(j)
                    columns.setdefault(spec.name, j)
                elif spec.prefer_last or spec.name not in columns:
                    columns[spec.name] = j
        return columns, multi


class ContentScanTier(DetectionTier):
    """Runs probes over data rows; the first row a probe recognises wins."""

    name = "content"

    def __init__(self, probes: Sequence[Probe], max_rows: int = 20, start_row: int = 0):
        self.probes = list(probes)
        self.max_rows = max_rows
        self.start_row = start_row

    def detect(self, cells: Sequence[Row], specs: Sequence[ColumnSpec]) -> Optional[ColumnLayout]:
        for i in range(self.start_row, min(self.max_rows, len(cells))):
            row = cells[i]
            if not row:
                continue
            for probe in self.probes:
                columns = probe(row)
                if columns:
                    return ColumnLayout(columns=columns, data_start_row=i, tier=self.name)
        return None


class DefaultLayoutTier(DetectionTier):
    """Known-good fixed layout; always applies to a non-empty sheet."""

    name = "default"

    def __init__(self, columns: Dict[str, int], data_start_row: int = 0):
        self.columns = dict(columns)
        self.data_start_row = data_start_row

    def detect(self, cells: Sequence[Row], specs: Sequence[ColumnSpec]) -> Optional[ColumnLayout]:
        if not cells:
            return None
        return ColumnLayout(columns=dict(self.columns), data_start_row=self.data_start_row, tier=self.name)


# =============================================================================
# Probes
# =============================================================================

def _first_amount_after(row: Row, start: int, min_magnitude: float = 0.0) -> Optional[int]:
    for k in range(start, len(row)):
        if is_ledger_code(row[k]):
            continue
        value = cell_number(row[k])
        if value and abs(value) > min_magnitude:
            return k
    return None


def _with_amount_columns(columns: Dict[str, int], row: Row, annual: Optional[int]) -> Dict[str, int]:
    if annual is not None:
        columns["annual"] = annual
        if annual + 1 < len(row):
            columns["monthly"] = annual + 1
        if annual + 2 < len(row):
            columns["ppd"] = annual + 2
    return columns


def ledger_code_probe(label_min_len: int = 3, with_amounts: bool = False) -> Probe:
    """
    Recognise a row by its ledger code cell.

    The label is the next text cell longer than label_min_len. With
    with_amounts, annual is the first non-zero number after the label and
    monthly/ppd follow it.
    """
    def probe(row: Row) -> Optional[Dict[str, int]]:
        for j, cell in enumerate(row):
            if not is_ledger_code(cell):
                continue
            label = j + 1
            for k in range(j + 1, len(row)):
                if is_text(row[k]) and len(row[k].strip()) > label_min_len:
                    label = k
                    break
            columns = {"code": j, "label": label}
            if with_amounts:
                annual = _first_amount_after(row, label + 1)
                if annual is None:
                    continue
                _with_amount_columns(columns, row, annual)
            return columns
        return None
    return probe


def long_text_probe(min_len: int = 5, column: str = "name") -> Probe:
    """First text cell longer than min_len."""
    def probe(row: Row) -> Optional[Dict[str, int]]:
        for j, cell in enumerate(row):
            if is_text(cell) and len(cell.strip()) > min_len:
                return {column: j}
        return None
    return probe


def short_integer_probe(low: int = 10, high: int = 500, column: str = "beds") -> Probe:
    """First integer-valued cell within [low, high]."""
    def probe(row: Row) -> Optional[Dict[str, int]]:
        for j, cell in enumerate(row):
            value = cell_count(cell)
            if value is not None and float(value).is_integer() and low <= value <= high:
                return {column: j}
        return None
    return probe


def large_number_probe(threshold: float = 100, min_count: int = 2) -> Probe:
    """
    A text label in column 0 or 1 followed by at least min_count numbers
    whose magnitude exceeds threshold.
    """
    def probe(row: Row) -> Optional[Dict[str, int]]:
        if not row:
            return None
        if is_text(row[0]):
            label = 0
        elif len(row) > 1 and is_text(row[1]):
            label = 1
        else:
            return None
        large = [j for j, cell in enumerate(row) if is_number(cell) and abs(cell) > threshold]
        if len(large) < min_count:
            return None
        columns: Dict[str, int] = {"label": label}
        if label == 1:
            columns["code"] = 0
        return _with_amount_columns(columns, row, _first_amount_after(row, label + 1))
    return probe


def text_and_amount_probe(min_text: int = 3, threshold: float = 1000) -> Probe:
    """Label is the right-most text cell longer than min_text; annual the first number above threshold."""
    def probe(row: Row) -> Optional[Dict[str, int]]:
        label = None
        annual = None
        for j, cell in enumerate(row):
            if is_text(cell) and len(cell.strip()) > min_text:
                label = j
            elif is_number(cell) and abs(cell) > threshold and annual is None:
                annual = j
        if label is None or annual is None:
            return None
        return {"label": label, "annual": annual}
    return probe


def combine_probes(*probes: Probe) -> Probe:
    """A probe that succeeds only when every part succeeds on the same row."""
    def probe(row: Row) -> Optional[Dict[str, int]]:
        columns: Dict[str, int] = {}
        for part in probes:
            found = part(row)
            if not found:
                return None
            columns.update(found)
        return columns
    return probe


# =============================================================================
# Detector
# =============================================================================

class LayoutDetector:
    """
    Runs detection tiers in order and returns the first layout found.

    Example:
        detector = LayoutDetector(specs, [
            HeaderScanTier(max_rows=10),
            ContentScanTier([ledger_code_probe()], max_rows=5),
            DefaultLayoutTier({"code": 0, "label": 1}, data_start_row=1),
        ])
        layout = detector.detect(sheet.cells)
    """

    def __init__(self, specs: Sequence[ColumnSpec], tiers: Sequence[DetectionTier]):
        self.specs = list(specs)
        self.tiers = list(tiers)

    def detect(self, cells: Sequence[Row]) -> Optional[ColumnLayout]:
        for tier in self.tiers:
            layout = tier.detect(cells, self.specs)
            if layout is not None:
                layout.tier = layout.tier or tier.name
                logger.debug(
                    "Layout detected",
                    tier=layout.tier,
                    columns=layout.columns,
                    data_start_row=layout.data_start_row,
                )
                return layout
        return None

    def with_tier(self, tier: DetectionTier, position: Optional[int] = None) -> "LayoutDetector":
        """Copy of this detector with an extra tier inserted."""
        tiers = list(self.tiers)
        tiers.insert(len(tiers) if position is None else position, tier)
        return LayoutDetector(self.specs, tiers)
