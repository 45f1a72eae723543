"""
Tests for the cell helpers shared by the parsers.
"""
import pytest

from backend.dealxl_engine.cells import (
    base_code,
    cell_count,
    cell_number,
    cell_text,
    flatten_text,
    is_blank,
    is_ledger_code,
    non_empty_count,
    normalize_ledger_code,
    row_is_blank,
    row_text,
)


class TestCellPredicates:
    """Blank and text handling."""

    @pytest.mark.parametrize("cell", [None, "", "   "])
    def test_blank(self, cell):
        assert is_blank(cell)

    @pytest.mark.parametrize("cell", [0, "x", 0.0])
    def test_not_blank(self, cell):
        assert not is_blank(cell)

    def test_cell_text_drops_integral_float_suffix(self):
        assert cell_text(1200000.0) == "1200000"
        assert cell_text(0.085) == "0.085"
        assert cell_text("  Beds ") == "Beds"
        assert cell_text(None) == ""

    def test_row_helpers(self):
        row = [None, "Total Revenue", 3600000, 0, " "]
        assert row_text(row) == "Total Revenue 3600000 0"
        assert non_empty_count(row) == 2
        assert row_is_blank([None, ""])
        assert row_is_blank([])

    def test_flatten_text_limits_rows(self):
        cells = [["Revenue", 1], ["EBITDA"], ["Census"]]
        assert flatten_text(cells, 2) == "revenue 1 ebitda"


class TestNumbers:
    """Numeric coercion of cells."""

    def test_cell_number_parses_text(self):
        assert cell_number("$2,500") == 2500.0
        assert cell_number("Medicare") is None

    def test_cell_count_accepts_bed_suffix(self):
        assert cell_count("120 beds") == 120.0
        assert cell_count(90) == 90.0
        assert cell_count("n/a") is None


class TestLedgerCodes:
    """Ledger code recognition."""

    @pytest.mark.parametrize("cell,expected", [
        (400110, "400110"),
        (400110.0, "400110"),
        ("400110", "400110"),
        ("400110-99", "400110-99"),
        ("GL 500100 Nursing", "500100"),
        (12345, None),
        (400110.5, None),
        (True, None),
        (None, None),
        ("Medicare Revenue", None),
    ])
    def test_normalize(self, cell, expected):
        assert normalize_ledger_code(cell) == expected

    def test_strict_check_requires_whole_cell(self):
        assert is_ledger_code("400110-01")
        assert is_ledger_code(500100)
        assert not is_ledger_code("GL 400110")

    def test_base_code_strips_suffix(self):
        assert base_code("400110-99") == "400110"
        assert base_code("400110") == "400110"
