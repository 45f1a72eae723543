"""
Custom exceptions for DealXL.

Provides a hierarchy of exceptions with error codes for consistent error handling.
Extraction itself degrades to empty results plus warnings; these exceptions are
reserved for callers that violate an input contract.
"""
from typing import Optional, Dict, Any, List


class DealXLError(Exception):
    """
    Base exception for all DealXL errors.

    Attributes:
        error_code: Unique error code (e.g., DXL-001)
        message: Human-readable error message
        details: Additional error context
    """
    error_code: str = "DXL-000"
    http_status: int = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for JSON output."""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# Workbook Errors (DXL-1XX)
class WorkbookError(DealXLError):
    """Error while reading or interpreting a workbook."""
    error_code = "DXL-100"
    http_status = 422

    def __init__(self, message: str = "Failed to process workbook", **kwargs):
        super().__init__(message, **kwargs)


class NoUsableSheetsError(WorkbookError):
    """No worksheet in the submission carries any cell data."""
    error_code = "DXL-101"
    http_status = 422

    def __init__(self, sheet_names: Optional[List[str]] = None, **kwargs):
        message = "No usable worksheets found"
        super().__init__(message, details={"sheet_names": sheet_names or []}, **kwargs)


class WorksheetFormatError(WorkbookError):
    """Worksheet record is malformed (e.g., cells is not a list of rows)."""
    error_code = "DXL-102"
    http_status = 400

    def __init__(self, sheet_name: str, reason: str, **kwargs):
        message = f"Worksheet '{sheet_name}' is malformed: {reason}"
        super().__init__(message, details={"sheet_name": sheet_name, "reason": reason}, **kwargs)


# Valuation Errors (DXL-4XX)
class ValuationError(DealXLError):
    """Error during valuation."""
    error_code = "DXL-400"
    http_status = 400

    def __init__(self, message: str = "Valuation failed", **kwargs):
        super().__init__(message, **kwargs)


class ValuationInputError(ValuationError):
    """Inputs are insufficient or invalid for a valuation method."""
    error_code = "DXL-401"
    http_status = 400

    def __init__(self, message: str = "Invalid valuation input", method: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        if method:
            details["method"] = method
        super().__init__(message, details=details, **kwargs)


class InsufficientComparablesError(ValuationInputError):
    """Too few comparable sales to run the comparable-sales method."""
    error_code = "DXL-402"

    def __init__(self, found: int, required: int, **kwargs):
        message = f"Insufficient comparables: found {found}, need {required}"
        super().__init__(
            message,
            method="comparable_sales",
            details={"found": found, "required": required},
            **kwargs,
        )


# Configuration Errors (DXL-5XX)
class ConfigurationError(DealXLError):
    """Engine configuration is invalid."""
    error_code = "DXL-500"
    http_status = 500

    def __init__(self, message: str = "Invalid configuration", **kwargs):
        super().__init__(message, **kwargs)
