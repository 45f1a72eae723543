"""
Workbook reader.

Turns an .xlsx file into Worksheet records using openpyxl. The workbook is
opened twice: once with cached values (data_only) for the cell matrix and once
with formulas to record which sheets are computed.
"""

from datetime import date, datetime, time
from decimal import Decimal
from pathlib import Path
from typing import Any, List, Optional, Sequence, Union
from zipfile import BadZipFile

import structlog
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from backend.dealxl_engine.cells import is_blank, is_text
from backend.dealxl_engine.models import CellValue, SheetMetadata, Worksheet
from backend.exceptions import WorkbookError

logger = structlog.get_logger(__name__)

HEADER_SCAN_ROWS = 10
MIN_HEADER_LABELS = 2


def to_cell_value(value: Any) -> CellValue:
    """Coerce an openpyxl value to str, int, float or None."""
    if value is None:
        return None
    if isinstance(value, bool):
        return str(value).upper()
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value)


def _trim(row: List[CellValue]) -> List[CellValue]:
    end = len(row)
    while end and is_blank(row[end - 1]):
        end -= 1
    return row[:end]


def guess_header_row(cells: Sequence[Sequence[CellValue]], max_rows: int = HEADER_SCAN_ROWS) -> Optional[int]:
    """
    First row within `max_rows` that reads like a header.

    A header row carries at least two text labels and at least as many text
    cells as numeric ones.
    """
    for index, row in enumerate(cells[:max_rows]):
        values = [c for c in row if not is_blank(c)]
        labels = [c for c in values if is_text(c)]
        if len(labels) >= MIN_HEADER_LABELS and len(labels) * 2 >= len(values):
            return index
    return None


def read_workbook(path: Union[str, Path]) -> List[Worksheet]:
    """
    Read every worksheet of an .xlsx workbook.

    Args:
        path: Location of the workbook.

    Returns:
        Worksheets in workbook order, with headers guessed and metadata filled.

    Raises:
        WorkbookError: If the file is missing or is not a readable workbook.
    """
    path = Path(path)
    try:
        values_wb = load_workbook(filename=str(path), data_only=True)
        formulas_wb = load_workbook(filename=str(path), data_only=False)
    except (InvalidFileException, BadZipFile, OSError, KeyError) as e:
        raise WorkbookError(
            f"Could not read workbook '{path.name}'",
            details={"path": str(path), "reason": str(e)},
        ) from e

    worksheets: List[Worksheet] = []
    for name in values_wb.sheetnames:
        values_ws = values_wb[name]
        formulas_ws = formulas_wb[name]

        cells = [
            _trim([to_cell_value(v) for v in row])
            for row in values_ws.iter_rows(values_only=True)
        ]
        while cells and not cells[-1]:
            cells.pop()

        has_formulas = any(
            cell.data_type == "f"
            for row in formulas_ws.iter_rows()
            for cell in row
        )
        header_row = guess_header_row(cells)
        headers = [] if header_row is None else [
            c.strip() if isinstance(c, str) else "" for c in cells[header_row]
        ]

        worksheets.append(Worksheet(
            name=name,
            cells=cells,
            headers=headers,
            header_row=header_row or 0,
            metadata=SheetMetadata(
                has_formulas=has_formulas,
                has_merged_cells=bool(values_ws.merged_cells.ranges),
                first_data_row=0 if header_row is None else header_row + 1,
            ),
        ))

    values_wb.close()
    formulas_wb.close()

    logger.info(
        "Workbook read",
        path=str(path),
        sheets=len(worksheets),
    )
    return worksheets
