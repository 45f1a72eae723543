"""
Pytest configuration and fixtures.
"""
from typing import Callable, List, Sequence

import pytest

from backend import config
from backend.dealxl_engine import classifier
from backend.dealxl_engine.models import Worksheet
from backend.services import numeric_parser


@pytest.fixture(autouse=True)
def reset_engine_state(monkeypatch):
    """Fresh settings and singletons for every test."""
    config.get_settings.cache_clear()
    monkeypatch.setattr(numeric_parser, "_parser_instance", None)
    monkeypatch.setattr(classifier, "_classifier_instance", None)
    yield
    config.get_settings.cache_clear()


@pytest.fixture
def make_sheet() -> Callable[[str, Sequence[Sequence]], Worksheet]:
    """Factory building a Worksheet from row lists."""
    def _make(name: str, rows: Sequence[Sequence]) -> Worksheet:
        return Worksheet(name=name, cells=[list(row) for row in rows])
    return _make


# =============================================================================
# Ledger mapping
# =============================================================================

MAPPING_ROWS: List[list] = [
    ["GL Code", "Description", "Category"],
    [400110, "Medicare Revenue", "Revenue"],
    [400210, "Medicaid Revenue", "Revenue"],
    [400510, "Private Pay Revenue", "Revenue"],
    [500100, "Nursing Salaries", "Operating Expense"],
    ["600010", "Administration", "Admin Expense"],
]


@pytest.fixture
def mapping_sheet(make_sheet) -> Worksheet:
    return make_sheet("GL Mapping", MAPPING_ROWS)


# =============================================================================
# Operating statement (T13)
# =============================================================================

STATEMENT_ROWS: List[list] = [
    ["GL Code", "Description", "Actual", "Monthly", "PPD"],
    [None, "Sunrise Health Center (SNF)"],
    [400110, "Medicare Part A", 1200000, 100000, 650.0],
    [400210, "Medicaid Revenue", 2400000, 200000, 250.0],
    [None, "Total Revenue", 3600000, 300000, None],
    [500100, "Nursing Salaries", 1500000, 125000, 100.0],
    [600010, "Administration", 900000, 75000, 60.0],
    [None, "Total Expenses", 2400000, 200000, None],
    [None, "EBITDAR", 1200000, 100000, None],
    [None, "EBITDA", 1000000, 83333, None],
    [None, "Net Income", 800000, 66667, None],
    [None, "Total Patient Days", 36500],
    [None, "Beds", 120],
]


@pytest.fixture
def statement_sheet(make_sheet) -> Worksheet:
    return make_sheet("Sunrise T13", STATEMENT_ROWS)


TWO_FACILITY_ROWS: List[list] = [
    ["GL Code", "Description", "Actual", "Monthly", "PPD"],
    [None, "Sunrise Health Center (SNF)"],
    [400110, "Medicare Part A", 1200000, 100000, 650.0],
    [500100, "Nursing Salaries", 700000, 58333, 100.0],
    [None, "EBITDA", 500000, 41667, None],
    [None, "Willow Creek Assisted Living (ALF)"],
    [420410, "ALF Private Revenue", 900000, 75000, 120.0],
    [500100, "Nursing Salaries", 400000, 33333, 50.0],
    [None, "Lease Expense", 150000, 12500, None],
    [None, "EBITDA", 350000, 29167, None],
]


@pytest.fixture
def two_facility_sheet(make_sheet) -> Worksheet:
    return make_sheet("Operations T13", TWO_FACILITY_ROWS)


# =============================================================================
# Asset valuation
# =============================================================================

VALUATION_ROWS: List[list] = [
    ["Portfolio Valuation"],
    ["Property", "Beds", "SNC %", "EBITDA", "Net Income", "Cap Rate", "Multiplier", "Value"],
    ["Owned – Skilled"],
    ["Sunrise Health Ctr", 120, None, 2000000, None, 0.085, None, 23529412],
    ["Leased"],
    ["Harbor View Manor", 90, None, None, 500000, None, 3.0, 1500000],
    ["Assisted Living"],
    ["Maple Grove", 60, 25, 800000, None, 0.09, None, 8888889],
    ["Total", 270, None, 2800000, 500000, None, None, 33918301],
    ["Closed Wing", 0, None, 100000, None, 0.12, None, 833333],
]


@pytest.fixture
def valuation_sheet(make_sheet) -> Worksheet:
    return make_sheet("Valuation", VALUATION_ROWS)


@pytest.fixture
def loi_sheet(make_sheet) -> Worksheet:
    return make_sheet("LOI", [
        ["Facility", "City", "State"],
        ["Sunrise Health Ctr", "Tacoma", "WA"],
        ["Harbor View Manor", "Portland", "OR"],
    ])


# =============================================================================
# Portfolio model
# =============================================================================

SCENARIO_ROWS: List[list] = [
    ["Description", "Annual", "Monthly"],
    ["WA- Owned SNFs"],
    ["Medicare Revenue", 2000000, 166667],
    ["Total Revenue", 5000000, 416667],
    ["Nursing Wages", 2500000, 208333],
    ["Total Expenses", 4000000, 333333],
    ["EBITDAR", 1200000, 100000],
    ["Lease Expense", 200000, 16667],
    ["EBITDA", 1000000, 83333],
    ["Leased"],
    ["Room & Board", 800000, 66667],
    ["Total Revenue", 800000, 66667],
    ["EBITDA", 100000, 8333],
    ["Portfolio Total", 5800000, 483333],
    ["Total EBITDAR", 1400000, 116667],
    ["Total EBITDA", 1100000, 91667],
]

FACILITY_SHEET_ROWS: List[list] = [
    ["GL Code", "Description", "Actual"],
    [400110, "Medicare Revenue", 900000],
    [400510, "Private Pay Revenue", 600000],
    [None, "Total Revenue", 1500000],
    [500100, "Nursing Salaries", 700000],
    [600010, "Administration", 300000],
    [None, "Total Expenses", 1000000],
    [None, "EBITDAR", 500000],
    [None, "EBITDA", 450000],
    [None, "Net Income", 400000],
    [None, "Total Patient Days", 25550],
    [None, "Licensed Beds", 80],
]


@pytest.fixture
def portfolio_sheets(make_sheet) -> List[Worksheet]:
    return [
        make_sheet("Current State", SCENARIO_ROWS),
        make_sheet("Cedar Ridge (SNF)", FACILITY_SHEET_ROWS),
    ]


@pytest.fixture
def scenario_rows() -> List[list]:
    return [list(row) for row in SCENARIO_ROWS]
