"""
Tests for the review-grid display converter.
"""
import pytest

from backend.dealxl_engine.display import to_line_item_view
from backend.dealxl_engine.models import ExtractionResult
from backend.dealxl_engine.orchestrator import WorkbookInput, run_extraction


@pytest.fixture
def view(statement_sheet, valuation_sheet, loi_sheet):
    result = run_extraction([
        WorkbookInput(worksheets=[statement_sheet]),
        WorkbookInput(worksheets=[valuation_sheet, loi_sheet]),
    ])
    return to_line_item_view(result)


class TestLineItemView:
    """Shape of the converted view."""

    def test_top_level_keys(self, view):
        assert set(view) == {
            "facilities",
            "facility_identification",
            "valuations",
            "financial_summary",
            "purchase_recommendation",
            "confidence",
            "warnings",
        }

    def test_facility_rows(self, view):
        rows = view["facilities"]

        assert [row["name"] for row in rows] == ["Harbor View Manor", "Maple Grove", "Sunrise Health Center"]
        assert rows[2]["id"] == "facility-2-sunrise-health-center"
        assert rows[2]["property_type"] == "owned-skilled"
        assert rows[0]["line_items"] == []

    def test_line_items_and_metrics(self, view):
        items = view["facilities"][2]["line_items"]
        labels = [item["label"] for item in items]

        assert labels[:4] == ["Medicare Part A", "Medicaid Revenue", "Nursing Salaries", "Administration"]
        assert labels[4:] == ["Total Revenue", "Total Expenses", "EBITDAR", "EBITDA", "Net Income"]
        assert items[0]["percent_of_revenue"] == pytest.approx(1200000 / 3600000 * 100)
        assert items[0]["values"] == [{"period": "Annual", "value": 1200000}]

    def test_census_estimated_without_statement(self, view):
        census = view["facilities"][0]["census"]
        assert census["occupancy"] == [0.85]
        assert census["average_daily_census"] == [76.5]

    def test_identification(self, view):
        slots = view["facility_identification"]

        assert [s["slot"] for s in slots] == [1, 2, 3]
        assert [s["asset_type"] for s in slots] == ["SNF", "ALF", "SNF"]
        assert all(s["is_verified"] is False for s in slots)

    def test_valuations(self, view):
        rows = view["valuations"]

        assert rows[0]["method"] == "portfolio"
        assert rows[0]["value"] == 22_153_595
        assert [r["method"] for r in rows[1:4]] == [
            "portfolio_owned_skilled",
            "portfolio_leased",
            "portfolio_assisted_specific_needs_owned",
        ]
        assert rows[4]["value"] == 17_606_061
        assert rows[5]["method"] == "sensitivity_range"

    def test_financial_summary(self, view):
        summary = view["financial_summary"]

        assert summary["total_revenue"] == 3600000
        assert summary["noi"] == 1000000
        assert summary["noi_margin"] == pytest.approx(1 / 3.6)
        assert summary["total_beds"] == 270
        assert summary["facility_count"] == 1

    def test_purchase_recommendation(self, view):
        recommendation = view["purchase_recommendation"]

        assert recommendation["recommended"] == 22_153_595
        assert recommendation["low"] == 17_606_061
        assert recommendation["high"] == pytest.approx(22_153_595 * 1.05, abs=1)


class TestEmptyResult:
    """An empty result converts without valuations."""

    def test_empty(self):
        view = to_line_item_view(ExtractionResult())

        assert view["facilities"] == []
        assert view["valuations"] == []
        assert view["purchase_recommendation"] is None
        assert view["financial_summary"]["noi_margin"] == 0.0
