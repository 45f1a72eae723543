"""
Cell-level helpers shared by the extraction layers.

Worksheet cells arrive as str, int, float or None. These helpers give every
parser the same notion of blank, text, number and ledger code.
"""

import re
from typing import Any, List, Optional, Sequence

from backend.services.numeric_parser import get_numeric_parser

# 6-digit ledger code with optional 2-digit suffix: 400110, 400110-99
LEDGER_CODE_PATTERN = re.compile(r"^(\d{6})(-\d{2})?$")
LEDGER_CODE_LOOSE = re.compile(r"(?<!\d)(\d{6})(-\d{2})?(?!\d)")
COUNT_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(?:beds?|units?)?\s*$", re.IGNORECASE)


def is_blank(cell: Any) -> bool:
    """True for None and whitespace-only strings."""
    return cell is None or (isinstance(cell, str) and not cell.strip())


def is_number(cell: Any) -> bool:
    """True for native numeric cells (bools excluded)."""
    return isinstance(cell, (int, float)) and not isinstance(cell, bool)


def is_text(cell: Any) -> bool:
    return isinstance(cell, str) and bool(cell.strip())


def cell_text(cell: Any) -> str:
    """Render a cell as stripped text; integral floats lose their '.0'."""
    if cell is None:
        return ""
    if isinstance(cell, float) and cell.is_integer():
        return str(int(cell))
    return str(cell).strip()


def cell_number(cell: Any) -> Optional[float]:
    """Numeric value of a cell, parsing currency/percent text."""
    return get_numeric_parser().parse_cell(cell)


def cell_count(cell: Any) -> Optional[float]:
    """Numeric value of a count cell, tolerating '120 beds'."""
    value = cell_number(cell)
    if value is not None:
        return value
    if isinstance(cell, str):
        match = COUNT_PATTERN.match(cell)
        if match:
            return float(match.group(1))
    return None


def normalize_ledger_code(cell: Any) -> Optional[str]:
    """
    Extract a ledger code from a cell.

    Args:
        cell: Raw cell value; numeric cells such as 400110.0 are accepted.

    Returns:
        The code (with suffix when present) or None.
    """
    if cell is None or isinstance(cell, bool):
        return None
    if is_number(cell):
        if float(cell).is_integer() and 100000 <= cell <= 999999:
            return str(int(cell))
        return None
    text = str(cell).strip()
    if LEDGER_CODE_PATTERN.match(text):
        return text
    match = LEDGER_CODE_LOOSE.search(text)
    return match.group(0) if match else None


def is_ledger_code(cell: Any) -> bool:
    """Strict check: the whole cell is a ledger code."""
    if is_number(cell):
        return normalize_ledger_code(cell) is not None
    return isinstance(cell, str) and bool(LEDGER_CODE_PATTERN.match(cell.strip()))


def base_code(code: str) -> str:
    """Strip the -NN suffix."""
    return re.sub(r"-\d{2}$", "", code)


def non_empty_count(row: Sequence[Any]) -> int:
    """Number of cells that are neither blank nor zero."""
    return sum(1 for cell in row if not is_blank(cell) and cell != 0)


def row_is_blank(row: Optional[Sequence[Any]]) -> bool:
    return not row or all(is_blank(cell) for cell in row)


def row_text(row: Sequence[Any], separator: str = " ") -> str:
    """Join the non-blank cells of a row."""
    return separator.join(cell_text(cell) for cell in row if not is_blank(cell))


def flatten_text(cells: Sequence[Sequence[Any]], max_rows: int) -> str:
    """Lowercased text of the first max_rows rows."""
    parts: List[str] = []
    for row in cells[:max_rows]:
        for cell in row or []:
            if not is_blank(cell):
                parts.append(cell_text(cell))
    return " ".join(parts).lower()
