"""
Facility property-type classification.

Decides how each facility is valued:

1. Owned skilled nursing: EBITDA / cap rate (12.5%)
2. Leased: net income × multiplier (2.5x midpoint)
3. Assisted / specific-needs owned: EBITDA / cap rate (8%, 9% or 12% by SNC share)

A valuation entry's section is authoritative; otherwise the type is detected
from the facility's statement lines.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import structlog

from backend.config import get_settings
from backend.dealxl_engine.models import (
    FacilityClassification,
    FacilityRecord,
    FacilitySection,
    LineCategory,
    PropertyType,
    ValuationBasis,
    ValuationEntry,
)

logger = structlog.get_logger(__name__)

ASSISTED_ANNOTATION = re.compile(r"ALF|AL_IL|MC|IL|SNC", re.IGNORECASE)
SKILLED_ANNOTATION = re.compile(r"SNF", re.IGNORECASE)
LEASE_LINE = re.compile(r"lease|rent\s*expense|occupancy\s*cost", re.IGNORECASE)
PROPERTY_TAX_LINE = re.compile(r"property\s*tax|real\s*estate\s*tax", re.IGNORECASE)
ASSISTED_REVENUE_CODE = re.compile(r"^4(2[0-9]|23)")
SKILLED_REVENUE_CODE = re.compile(r"^400")
SNC_LINE = re.compile(r"specific\s*need|snc", re.IGNORECASE)
SNC_PERCENT_LINE = re.compile(r"snc\s*%|specific\s*need.*%|snc\s*percent", re.IGNORECASE)
BEDS_LINE = re.compile(r"beds|licensed", re.IGNORECASE)

CONFIDENCE_ENTRY = 0.95
CONFIDENCE_ENTRY_ONLY = 0.9
CONFIDENCE_DETECTED = 0.8
CONFIDENCE_DEFAULT = 0.6


def valuation_basis_for(property_type: PropertyType) -> ValuationBasis:
    if property_type == PropertyType.LEASED:
        return ValuationBasis.NET_INCOME_MULTIPLIER
    return ValuationBasis.EBITDA_CAP_RATE


def cap_rate_for(property_type: PropertyType, snc_percent: Optional[float] = None) -> float:
    """
    Cap rate from the property-type schedule.

    Assisted/specific-needs facilities step up with their SNC share:
    none -> alf_cap_rate_no_snc, up to snc_low_threshold -> alf_cap_rate_low_snc,
    above -> alf_cap_rate_high_snc. Leased facilities have no cap rate (0.0).
    """
    settings = get_settings()
    if property_type == PropertyType.OWNED_SKILLED:
        return settings.snf_cap_rate
    if property_type == PropertyType.LEASED:
        return 0.0
    if not snc_percent:
        return settings.alf_cap_rate_no_snc
    if snc_percent <= settings.snc_low_threshold:
        return settings.alf_cap_rate_low_snc
    return settings.alf_cap_rate_high_snc


def applicable_rate_for(
    property_type: PropertyType,
    snc_percent: Optional[float] = None,
    multiplier: Optional[float] = None,
) -> float:
    """Cap rate, or the multiplier for leased facilities."""
    if property_type == PropertyType.LEASED:
        return multiplier or get_settings().leased_multiplier
    return cap_rate_for(property_type, snc_percent)


@dataclass
class _Detection:
    property_type: PropertyType
    snc_percent: Optional[float] = None
    indicators: List[str] = field(default_factory=list)


class FacilityClassifier:
    """Classifies facilities from valuation entries and statement sections."""

    def classify(
        self,
        statement: Optional[FacilitySection] = None,
        entry: Optional[ValuationEntry] = None,
        name: Optional[str] = None,
    ) -> FacilityClassification:
        """
        Classify one facility.

        Args:
            statement: The facility's statement section, if parsed.
            entry: The facility's valuation entry, if parsed.
            name: Name to report; defaults to the statement or entry name.

        Returns:
            FacilityClassification with rate, beds and indicators.

        Raises:
            ValueError: If neither a statement nor an entry is given.
        """
        if statement is None and entry is None:
            raise ValueError("classify() needs a statement section or a valuation entry")
        name = name or (statement.facility_name if statement is not None else entry.facility_name)

        if entry is not None:
            beds = entry.beds or (self.extract_beds(statement) if statement is not None else 0.0)
            return FacilityClassification(
                facility_name=name,
                property_type=entry.property_type,
                valuation_basis=valuation_basis_for(entry.property_type),
                applicable_rate=applicable_rate_for(entry.property_type, entry.snc_percent, entry.multiplier),
                beds=beds,
                snc_percent=entry.snc_percent,
                confidence=CONFIDENCE_ENTRY if statement is not None else CONFIDENCE_ENTRY_ONLY,
                indicators=[f"Valuation entry section: {entry.property_type.value}"],
            )

        detection = self.detect_from_statement(statement)
        return FacilityClassification(
            facility_name=name,
            property_type=detection.property_type,
            valuation_basis=valuation_basis_for(detection.property_type),
            applicable_rate=applicable_rate_for(detection.property_type, detection.snc_percent),
            beds=self.extract_beds(statement),
            snc_percent=detection.snc_percent,
            confidence=CONFIDENCE_DETECTED if len(detection.indicators) > 1 else CONFIDENCE_DEFAULT,
            indicators=detection.indicators,
        )

    def classify_records(self, records: Sequence[FacilityRecord]) -> List[FacilityClassification]:
        """Classify every resolved facility record."""
        classifications = [
            self.classify(record.statement, record.valuation_entry, name=record.name)
            for record in records
            if record.statement is not None or record.valuation_entry is not None
        ]
        logger.info(
            "Facilities classified",
            count=len(classifications),
            leased=sum(1 for c in classifications if c.property_type == PropertyType.LEASED),
        )
        return classifications

    # -------------------------------------------------------------------------
    # Statement-based detection
    # -------------------------------------------------------------------------

    def detect_from_statement(self, statement: FacilitySection) -> _Detection:
        indicators: List[str] = []
        facility_type = statement.facility_type or ""

        if facility_type:
            if ASSISTED_ANNOTATION.search(facility_type):
                indicators.append(f"Facility type annotation: {facility_type}")
                return _Detection(PropertyType.ASSISTED_OWNED, self.detect_snc_percent(statement), indicators)
            if SKILLED_ANNOTATION.search(facility_type):
                indicators.append(f"Facility type annotation: {facility_type}")

        items = statement.line_items
        has_lease = any(LEASE_LINE.search(item.label) and item.annual != 0 for item in items)
        has_lease = has_lease or bool(statement.summary.lease_expense)
        has_property_tax = any(PROPERTY_TAX_LINE.search(item.label) and item.annual > 0 for item in items)

        if has_lease and not has_property_tax:
            indicators.append("Has lease expense, no property tax")
            return _Detection(PropertyType.LEASED, None, indicators)

        has_assisted_revenue = any(
            item.ledger_code and ASSISTED_REVENUE_CODE.match(item.ledger_code) and item.annual > 0
            for item in items
        )
        has_snc_revenue = any(SNC_LINE.search(item.label) and item.annual > 0 for item in items)
        if has_assisted_revenue or has_snc_revenue:
            indicators.append("Has ALF/SNC revenue lines")
            return _Detection(PropertyType.ASSISTED_OWNED, self.detect_snc_percent(statement), indicators)

        if any(item.ledger_code and SKILLED_REVENUE_CODE.match(item.ledger_code) and item.annual > 0 for item in items):
            indicators.append("Has SNF revenue codes (400xxx)")

        indicators.append("Default classification: owned skilled nursing")
        return _Detection(PropertyType.OWNED_SKILLED, None, indicators)

    @staticmethod
    def detect_snc_percent(statement: FacilitySection) -> Optional[float]:
        """Explicit 'SNC %' line, else the SNC share of revenue."""
        for item in statement.line_items:
            if SNC_PERCENT_LINE.search(item.label):
                value = item.annual
                if 0 <= value <= 1:
                    return value
                if 0 <= value <= 100:
                    return value / 100.0

        snc_revenue = sum(
            abs(item.annual) for item in statement.line_items
            if item.category == LineCategory.REVENUE and SNC_LINE.search(item.label)
        )
        total_revenue = abs(statement.summary.total_revenue)
        if snc_revenue > 0 and total_revenue > 0:
            return snc_revenue / total_revenue
        return None

    @staticmethod
    def extract_beds(statement: Optional[FacilitySection]) -> float:
        """Census beds, else patient days / (365 × occupancy), else a beds line."""
        if statement is None:
            return 0.0
        census = statement.census
        if census.beds:
            return census.beds
        if census.total_patient_days and census.occupancy:
            return float(round(census.total_patient_days / (365 * census.occupancy)))
        for item in statement.line_items:
            if BEDS_LINE.search(item.label) and 0 < item.annual < 500:
                return item.annual
        return 0.0
