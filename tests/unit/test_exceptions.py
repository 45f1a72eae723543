"""
Unit tests for custom exceptions.

Tests exception hierarchy and error formatting.
"""
import pytest

from backend.exceptions import (
    ConfigurationError,
    DealXLError,
    InsufficientComparablesError,
    NoUsableSheetsError,
    ValuationError,
    ValuationInputError,
    WorkbookError,
    WorksheetFormatError,
)


class TestExceptionHierarchy:
    """Tests for exception class hierarchy."""

    def test_base_exception(self):
        """Test base DealXLError."""
        exc = DealXLError("Test error")

        assert exc.error_code == "DXL-000"
        assert exc.message == "Test error"
        assert exc.http_status == 500

    def test_workbook_error(self):
        """Test WorkbookError inherits correctly."""
        exc = WorkbookError("Corrupt file")

        assert isinstance(exc, DealXLError)
        assert exc.error_code == "DXL-100"
        assert exc.http_status == 422

    def test_no_usable_sheets(self):
        """NoUsableSheetsError lists the sheets it looked at."""
        exc = NoUsableSheetsError(sheet_names=["Sheet1", "Sheet2"])

        assert isinstance(exc, WorkbookError)
        assert exc.error_code == "DXL-101"
        assert exc.details["sheet_names"] == ["Sheet1", "Sheet2"]

    def test_worksheet_format_error(self):
        """Test WorksheetFormatError."""
        exc = WorksheetFormatError("T13", "cells must be a list of rows")

        assert isinstance(exc, WorkbookError)
        assert exc.error_code == "DXL-102"
        assert "T13" in exc.message

    def test_configuration_error(self):
        """Test ConfigurationError."""
        assert ConfigurationError().error_code == "DXL-500"


class TestValuationExceptions:
    """Tests for valuation exceptions."""

    def test_valuation_error(self):
        """Test ValuationError."""
        exc = ValuationError("Valuation failed")

        assert exc.error_code == "DXL-400"
        assert exc.http_status == 400

    def test_valuation_input_error_records_method(self):
        """The failing method is kept in details."""
        exc = ValuationInputError("NOI required", method="cap_rate")

        assert isinstance(exc, ValuationError)
        assert exc.error_code == "DXL-401"
        assert exc.details["method"] == "cap_rate"

    def test_insufficient_comparables(self):
        """Test InsufficientComparablesError."""
        exc = InsufficientComparablesError(found=1, required=3)

        assert isinstance(exc, ValuationInputError)
        assert exc.error_code == "DXL-402"
        assert exc.details == {"found": 1, "required": 3, "method": "comparable_sales"}


class TestExceptionDetails:
    """Tests for exception details handling."""

    def test_custom_details(self):
        """Test exceptions with custom details."""
        exc = WorkbookError(
            message="Could not read workbook",
            details={"path": "deal.xlsx", "reason": "corrupt"}
        )

        assert exc.details["path"] == "deal.xlsx"
        assert exc.details["reason"] == "corrupt"

    def test_to_dict(self):
        """Test dictionary rendering."""
        exc = ValuationError("Valuation failed", details={"facility": "Sunrise"})

        assert exc.to_dict() == {
            "error": True,
            "error_code": "DXL-400",
            "message": "Valuation failed",
            "details": {"facility": "Sunrise"},
        }

    def test_error_code_override(self):
        """An explicit error code replaces the class default."""
        exc = DealXLError("Custom", error_code="DXL-999")
        assert exc.error_code == "DXL-999"

    def test_exception_can_be_raised(self):
        """Test that exceptions can be raised and caught."""
        with pytest.raises(DealXLError) as exc_info:
            raise WorkbookError("Test error")

        assert exc_info.value.error_code == "DXL-100"
