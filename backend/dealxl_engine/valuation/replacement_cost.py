"""
Replacement cost valuation.

Gross cost = land + building (area x cost/sf x regional multiplier) + soft
costs + FF&E, plus an entrepreneurial incentive. Physical depreciation is
straight-line over the useful life down to a residual value, using the
renovation-adjusted effective age.
"""

from dataclasses import asdict, dataclass
from typing import Optional

from backend.dealxl_engine.models import AssetType, ValuationInput, ValuationMethod, ValuationMethodResult
from backend.dealxl_engine.valuation.base import ValuationCalculator
from backend.dealxl_engine.valuation.market import (
    DEFAULT_LAND_VALUE_PER_ACRE,
    REPLACEMENT_COST_DEFAULTS,
    ReplacementCostDefaults,
)
from backend.exceptions import ValuationInputError

PLAUSIBLE_VALUE_PER_BED = (50_000, 300_000)


@dataclass
class ReplacementCostBreakdown:
    land_value: float
    building_cost: float
    soft_costs: float
    ffe_cost: float
    entrepreneurial_incentive: float
    gross_replacement_cost: float
    physical_depreciation: float
    final_value: float


def effective_age(inp: ValuationInput) -> float:
    """Age in years, reduced by up to half when the building was renovated."""
    if not inp.year_built:
        return 0.0
    base_age = max(0, inp.as_of.year - inp.year_built)
    if inp.year_renovated:
        since_renovation = max(0, inp.as_of.year - inp.year_renovated)
        reduction = min(base_age * 0.5, base_age - since_renovation)
        return max(0.0, base_age - reduction)
    return float(base_age)


class ReplacementCostMethod(ValuationCalculator):
    """Cost approach: what it would take to rebuild, less depreciation."""

    method = ValuationMethod.REPLACEMENT_COST

    def __init__(self, defaults: Optional[ReplacementCostDefaults] = None):
        self.defaults = defaults

    def missing_inputs(self, inp: ValuationInput) -> Optional[str]:
        if not inp.beds or inp.beds <= 0:
            return "positive bed count required"
        return None

    def breakdown(self, inp: ValuationInput) -> ReplacementCostBreakdown:
        settings = self.defaults or REPLACEMENT_COST_DEFAULTS.get(
            inp.asset_type, REPLACEMENT_COST_DEFAULTS[AssetType.SNF]
        )

        land_value = inp.land_value or 0.0
        if not land_value:
            acres = inp.acres or inp.beds * settings.acres_per_bed
            per_acre = settings.land_value_per_acre.get(inp.location_type, DEFAULT_LAND_VALUE_PER_ACRE)
            land_value = acres * per_acre

        square_footage = inp.square_footage or inp.beds * settings.sf_per_bed
        multiplier = settings.regional_multipliers.get((inp.region or "").lower(), 1.0)
        building_cost = square_footage * settings.construction_cost_per_sf * multiplier
        soft_costs = building_cost * settings.soft_cost_percent
        ffe_cost = inp.beds * settings.ffe_cost_per_bed

        subtotal = land_value + building_cost + soft_costs + ffe_cost
        incentive = subtotal * settings.entrepreneurial_incentive
        gross = subtotal + incentive

        age = min(effective_age(inp), settings.useful_life)
        depreciation_rate = (1 - settings.residual_value_percent) * (age / settings.useful_life)
        depreciation = (gross - land_value) * depreciation_rate

        return ReplacementCostBreakdown(
            land_value=land_value,
            building_cost=building_cost,
            soft_costs=soft_costs,
            ffe_cost=ffe_cost,
            entrepreneurial_incentive=incentive,
            gross_replacement_cost=gross,
            physical_depreciation=depreciation,
            final_value=gross - depreciation,
        )

    def calculate(self, inp: ValuationInput) -> ValuationMethodResult:
        if not inp.beds or inp.beds <= 0:
            raise ValuationInputError("Replacement cost valuation requires a valid bed count", method=self.method.value)

        result = self.breakdown(inp)

        score = 0
        if inp.square_footage:
            score += 2
        if inp.acres:
            score += 1
        if inp.land_value:
            score += 2
        if inp.year_built:
            score += 1
        low, high = PLAUSIBLE_VALUE_PER_BED
        if low < result.final_value / inp.beds < high:
            score += 1
        confidence = 80.0 if score >= 5 else 65.0 if score >= 3 else 50.0

        return ValuationMethodResult(
            method=self.method,
            value=float(round(result.final_value)),
            confidence=confidence,
            inputs_used=asdict(result),
            assumptions=[
                f"Effective age {effective_age(inp):.0f} years",
                f"Location type {inp.location_type}",
            ],
            notes="Depreciated replacement cost",
        )
