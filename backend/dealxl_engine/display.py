"""
Display converter.

Reshapes an ExtractionResult into the generic rows a review grid renders:
facilities with line items and census, a valuations list, a financial summary
and a purchase recommendation.
"""

import re
from typing import Any, Dict, List, Optional

from backend.dealxl_engine.models import (
    ExtractionResult,
    FacilityRecord,
    FacilitySection,
    LineCategory,
    LineItem,
    PortfolioValuation,
)
from backend.dealxl_engine.valuation.portfolio import asset_type_for

ANNUAL_PERIOD = "Annual"
DEFAULT_OCCUPANCY = 0.85
RECOMMENDATION_HIGH_FACTOR = 1.05
RECOMMENDATION_LOW_FACTOR = 0.85

SUMMARY_METRICS = (
    ("Total Revenue", "total_revenue"),
    ("Total Expenses", "total_expenses"),
    ("EBITDAR", "ebitdar"),
    ("EBITDA", "ebitda"),
    ("Net Income", "net_income"),
    ("Management Fee", "management_fee"),
    ("Lease Expense", "lease_expense"),
)


def _slug(text: str) -> str:
    return re.sub(r"\s+", "-", text.strip().lower())


def _line_item_row(item: LineItem, index: int, prefix: str, total_revenue: float) -> Dict[str, Any]:
    category = "metric" if item.category == LineCategory.CENSUS else item.category.value
    percent = item.annual / total_revenue * 100 if total_revenue > 0 and item.annual else None
    return {
        "id": f"li-{prefix}-{index}",
        "category": category,
        "subcategory": item.subcategory or item.ledger_code or category,
        "label": item.label,
        "values": [{"period": ANNUAL_PERIOD, "value": item.annual}],
        "annual": item.annual,
        "ppd": item.ppd,
        "percent_of_revenue": percent,
        "confidence": item.confidence,
    }


def _metric_rows(section: FacilitySection, start: int, prefix: str) -> List[Dict[str, Any]]:
    rows = []
    for label, key in SUMMARY_METRICS:
        value = getattr(section.summary, key)
        if not value:
            continue
        rows.append({
            "id": f"li-{prefix}-metric-{start + len(rows)}",
            "category": "metric",
            "subcategory": key,
            "label": label,
            "values": [{"period": ANNUAL_PERIOD, "value": value}],
            "annual": value,
            "ppd": None,
            "percent_of_revenue": None,
            "confidence": 0.95,
        })
    return rows


def _census_row(section: Optional[FacilitySection], beds: float) -> Optional[Dict[str, Any]]:
    census = section.census if section is not None else None
    if (census is None or census.is_empty()) and beds <= 0:
        return None
    total_days = (census.total_patient_days if census else None) or (beds * 365 * DEFAULT_OCCUPANCY)
    adc = (census.average_daily_census if census else None) or (total_days / 365 if total_days else 0.0)
    occupancy = (census.occupancy if census else None) or (adc / beds if beds > 0 else DEFAULT_OCCUPANCY)
    return {
        "periods": [ANNUAL_PERIOD],
        "total_days": [round(total_days)],
        "average_daily_census": [round(adc, 1)],
        "occupancy": [round(occupancy, 3)],
    }


def _facility_row(record: FacilityRecord, index: int) -> Dict[str, Any]:
    section = record.statement
    prefix = record.name[:8].lower()
    line_items: List[Dict[str, Any]] = []
    if section is not None:
        total_revenue = section.summary.total_revenue
        line_items = [
            _line_item_row(item, i, prefix, total_revenue)
            for i, item in enumerate(item for item in section.line_items if item.annual != 0)
        ]
        line_items.extend(_metric_rows(section, len(line_items), prefix))

    if record.classification is not None:
        confidence = record.classification.confidence
    else:
        confidence = 0.6 if record.needs_review else 0.9

    return {
        "id": f"facility-{index}-{_slug(record.name)}",
        "name": record.name,
        "state": record.state,
        "city": record.city,
        "beds": record.beds,
        "property_type": record.property_type.value if record.property_type else None,
        "periods": (section.periods if section is not None and section.periods else [ANNUAL_PERIOD]),
        "line_items": line_items,
        "census": _census_row(section, record.beds),
        "needs_review": record.needs_review,
        "confidence": confidence,
    }


def _valuation_rows(valuation: Optional[PortfolioValuation]) -> List[Dict[str, Any]]:
    if valuation is None:
        return []
    total = valuation.total
    rows = [{
        "method": "portfolio",
        "label": "Property-Type Valuation",
        "value": total.total_value,
        "confidence": 90,
        "notes": (
            f"{total.facility_count} facilities, {total.total_beds:,.0f} beds, "
            f"${total.avg_value_per_bed:,.0f}/bed"
        ),
    }]
    for category in valuation.categories:
        rows.append({
            "method": f"portfolio_{category.category.value.replace('-', '_')}",
            "label": f"{category.category.value} ({category.valuation_method})",
            "value": category.total_value,
            "confidence": 85,
            "notes": f"{category.facility_count} facilities, {category.total_beds:,.0f} beds",
        })
    if valuation.dual_view is not None:
        rows.append({
            "method": "external_conservative",
            "label": "External/Lender View (Conservative)",
            "value": valuation.dual_view.external_value,
            "confidence": 75,
            "notes": "Higher cap rates, lower multipliers",
        })
    if valuation.sensitivity is not None and valuation.sensitivity.points:
        values = [p.value for p in valuation.sensitivity.points]
        rows.append({
            "method": "sensitivity_range",
            "label": "Sensitivity Range",
            "value": valuation.sensitivity.base_value,
            "confidence": 70,
            "notes": f"Range: ${min(values) / 1e6:.1f}M - ${max(values) / 1e6:.1f}M",
        })
    for facility in valuation.facilities:
        if facility.method_summary is None:
            continue
        for method in facility.method_summary.methods:
            rows.append({
                "method": method.method.value,
                "label": f"{facility.facility_name}: {method.method.value}",
                "value": method.value,
                "confidence": method.confidence,
                "notes": method.notes,
            })
    return rows


def _financial_summary(result: ExtractionResult) -> Dict[str, Any]:
    sections = result.statements.facilities if result.statements is not None else []
    total_revenue = sum(s.summary.total_revenue for s in sections)
    total_expenses = sum(s.summary.total_expenses for s in sections)
    noi = sum(s.summary.ebitda for s in sections)
    return {
        "total_revenue": total_revenue,
        "total_expenses": total_expenses,
        "noi": noi,
        "noi_margin": noi / total_revenue if total_revenue > 0 else 0.0,
        "total_beds": sum(c.beds for c in result.classifications),
        "facility_count": len(sections),
    }


def _purchase_recommendation(valuation: Optional[PortfolioValuation]) -> Optional[Dict[str, Any]]:
    if valuation is None:
        return None
    recommended = valuation.total.total_value
    low = valuation.dual_view.low if valuation.dual_view is not None else round(recommended * RECOMMENDATION_LOW_FACTOR)
    return {
        "recommended": recommended,
        "low": min(low, recommended),
        "high": round(recommended * RECOMMENDATION_HIGH_FACTOR),
        "per_bed": valuation.total.avg_value_per_bed,
        "method": "Property-Type Valuation",
    }


def to_line_item_view(result: ExtractionResult) -> Dict[str, Any]:
    """
    Convert an extraction result into grid-friendly rows.

    Args:
        result: Output of run_extraction().

    Returns:
        Dict with facilities, facility_identification, valuations,
        financial_summary, purchase_recommendation and confidence.
    """
    facilities = [_facility_row(record, i) for i, record in enumerate(result.facilities)]
    identification = [
        {
            "slot": i + 1,
            "name": c.facility_name,
            "licensed_beds": c.beds or None,
            "asset_type": asset_type_for(c.property_type).value,
            "is_verified": False,
        }
        for i, c in enumerate(result.classifications)
    ]
    return {
        "facilities": facilities,
        "facility_identification": identification,
        "valuations": _valuation_rows(result.portfolio_valuation),
        "financial_summary": _financial_summary(result),
        "purchase_recommendation": _purchase_recommendation(result.portfolio_valuation),
        "confidence": result.confidence,
        "warnings": list(result.warnings),
    }
