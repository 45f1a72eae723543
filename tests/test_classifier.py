"""
Tests for sheet and workbook classification.
"""
import pytest

from backend.dealxl_engine.classifier import (
    KeywordRule,
    SheetClassifier,
    detect_facilities,
    detect_periods,
    find_first_data_row,
    get_sheet_classifier,
    sheet_type_of,
)
from backend.dealxl_engine.models import SheetType, WorkbookType
from backend.dealxl_engine.workbook_classifier import (
    WorkbookClassifier,
    is_facility_named_sheet,
    is_structured_workbook,
)


class TestSheetClassifier:
    """Keyword scoring of worksheets."""

    @pytest.fixture
    def classifier(self) -> SheetClassifier:
        return SheetClassifier()

    def test_statement_sheet(self, classifier, statement_sheet):
        result = classifier.classify(statement_sheet)

        assert result.sheet_type == SheetType.STATEMENT
        assert "total revenue" in result.matched_keywords
        assert result.used_fallback is False

    def test_census_sheet(self, classifier, make_sheet):
        sheet = make_sheet("Census", [
            ["Census Summary"],
            ["Medicare Days", 1200],
            ["Medicaid Days", 2400],
            ["Average Daily Census", 98],
            ["Occupancy", 0.82],
        ])
        assert classifier.classify(sheet).sheet_type == SheetType.CENSUS

    def test_fallback_to_statement(self, classifier, make_sheet):
        sheet = make_sheet("Misc", [["Stuff"], ["Total", 5000]])
        result = classifier.classify(sheet)

        assert result.sheet_type == SheetType.STATEMENT
        assert result.used_fallback is True

    def test_unknown(self, classifier, make_sheet):
        sheet = make_sheet("Notes", [["Call broker"], ["Monday"]])
        assert classifier.classify(sheet).sheet_type == SheetType.UNKNOWN

    def test_adding_content_never_lowers_scores(self, classifier, make_sheet):
        base = make_sheet("A", [["Revenue", "EBITDA"]])
        grown = make_sheet("A", [["Revenue", "EBITDA"], ["Census", "Net Income"]])

        before = classifier.classify(base).scores
        after = classifier.classify(grown).scores
        assert all(after[key] >= before[key] for key in before)

    def test_custom_rules(self, make_sheet):
        classifier = SheetClassifier(
            rules=[KeywordRule.of("rent", SheetType.RENT_ROLL, weight=3.0)],
            min_score=2,
        )
        result = classifier.classify(make_sheet("R", [["Rent due"]]))

        assert result.sheet_type == SheetType.RENT_ROLL
        assert result.scores == {"rent_roll": 3.0}

    def test_annotate_returns_copy(self, classifier, statement_sheet):
        annotated, classification = classifier.annotate(statement_sheet)

        assert annotated is not statement_sheet
        assert statement_sheet.sheet_type is None
        assert annotated.sheet_type == SheetType.STATEMENT
        assert annotated.headers[:2] == ["GL Code", "Description"]
        assert classification.sheet_type == SheetType.STATEMENT

    def test_annotate_keeps_declared_type(self, classifier, make_sheet):
        sheet = make_sheet("Odd", [["Revenue", "Total Revenue", "Expense"]])
        sheet.sheet_type = SheetType.SUMMARY

        annotated, classification = classifier.annotate(sheet)
        assert annotated.sheet_type == SheetType.SUMMARY
        assert classification.sheet_type == SheetType.SUMMARY

    def test_sheet_type_of_uses_declared_type(self, make_sheet):
        sheet = make_sheet("X", [["Revenue", "Expense"]])
        assert sheet_type_of(sheet) == SheetType.STATEMENT

        sheet.sheet_type = SheetType.CENSUS
        assert sheet_type_of(sheet) == SheetType.CENSUS

    def test_singleton(self):
        assert get_sheet_classifier() is get_sheet_classifier()

    def test_min_score_from_settings(self, monkeypatch):
        monkeypatch.setenv("DEALXL_CLASSIFIER_MIN_SCORE", "7")
        assert SheetClassifier().min_score == 7


class TestSheetFacts:
    """Facility, period and data-row detection."""

    def test_detect_periods(self):
        cells = [["Description", "Jan 2024", "Q2 2024", "12/31/23", "2024-03", 2024]]
        assert detect_periods(cells) == ["2023-12", "2024-01", "2024-03", "2024-06"]

    def test_detect_facilities_from_label(self):
        assert detect_facilities([["Facility: Sunrise Health"]]) == ["Sunrise Health"]

    def test_detect_facilities_near_ccn(self):
        assert detect_facilities([["CCN 505123", "Harbor View Manor"]]) == ["Harbor View Manor"]

    def test_first_data_row(self, make_sheet):
        cells = [["Description", "Annual"], ["WA- Owned SNFs"], ["Medicare Revenue", 2000000]]
        assert find_first_data_row(cells) == 2


class TestWorkbookClassifier:
    """Document-level classification."""

    @pytest.fixture
    def classifier(self) -> WorkbookClassifier:
        return WorkbookClassifier()

    def test_operating_review(self, classifier, statement_sheet):
        result = classifier.classify([statement_sheet], document_id="doc-1", filename="t13.xlsx")

        assert result.workbook_type == WorkbookType.OPERATING_REVIEW
        assert result.confidence == 1.0
        assert result.extraction_priority == 1
        assert result.document_id == "doc-1"
        assert any("T13" in indicator for indicator in result.indicators)

    def test_asset_valuation(self, classifier, valuation_sheet):
        result = classifier.classify([valuation_sheet])

        assert result.workbook_type == WorkbookType.ASSET_VALUATION
        assert result.confidence == pytest.approx(0.9)
        assert result.sheet_summary[0].suggested_type == "valuation"

    def test_loi_sheet_adds_evidence(self, classifier, valuation_sheet, loi_sheet):
        result = classifier.classify([valuation_sheet, loi_sheet])

        assert result.workbook_type == WorkbookType.ASSET_VALUATION
        assert result.confidence == 1.0
        assert "LOI sheet found" in result.indicators

    def test_portfolio_model(self, classifier, portfolio_sheets):
        result = classifier.classify(portfolio_sheets)

        assert result.workbook_type == WorkbookType.PORTFOLIO_MODEL
        assert result.extraction_priority == 3

    def test_ledger_mapping(self, classifier, mapping_sheet):
        result = classifier.classify([mapping_sheet])

        assert result.workbook_type == WorkbookType.LEDGER_MAPPING
        assert result.confidence == pytest.approx(0.4)
        assert result.extraction_priority == 0

    def test_unknown_below_min_score(self, classifier, make_sheet):
        result = classifier.classify([make_sheet("Notes", [["Call broker"]])])

        assert result.workbook_type == WorkbookType.UNKNOWN
        assert result.extraction_priority == 99

    def test_facility_named_sheets(self):
        assert is_facility_named_sheet("Cedar Ridge (SNF)")
        assert is_facility_named_sheet("Harbor View Manor")
        assert not is_facility_named_sheet("Current State")

    def test_is_structured_workbook(self, statement_sheet, make_sheet):
        assert is_structured_workbook([statement_sheet])
        assert not is_structured_workbook([make_sheet("Notes", [["Call broker"]])])
