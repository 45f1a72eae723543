"""
Price per bed valuation: Value = Beds x adjusted market price per bed.
"""

from typing import List, Optional, Tuple

from backend.dealxl_engine.models import ValuationInput, ValuationMethod, ValuationMethodResult
from backend.dealxl_engine.valuation.base import ValuationCalculator, clamp_confidence
from backend.dealxl_engine.valuation.market import (
    AGE_DISCOUNT_PER_YEAR,
    AGE_DISCOUNT_START,
    MAX_AGE_DISCOUNT,
    STATE_PPB_ADJUSTMENTS,
    market_data_for,
    rating_multiplier,
    state_multiplier,
)
from backend.exceptions import ValuationInputError

RANGE_SPREAD = 0.15
OCCUPANCY_BAND = 0.05
OCCUPANCY_SENSITIVITY = 2.0


def adjusted_price_per_bed(inp: ValuationInput) -> Tuple[float, List[str]]:
    """Market price per bed after state, age, rating and occupancy adjustments."""
    market = market_data_for(inp.asset_type)
    adjustments: List[str] = []

    if inp.market_price_per_bed:
        price = inp.market_price_per_bed
        adjustments.append(f"Base: provided market price per bed (${price:,.0f})")
    else:
        price = market.avg_price_per_bed
        adjustments.append(f"Base: national {inp.asset_type.value} average (${price:,.0f})")

    multiplier = state_multiplier(inp.state)
    if multiplier != 1.0:
        price *= multiplier
        adjustments.append(f"State ({inp.state}): {multiplier - 1:+.0%}")

    if inp.year_built:
        age = inp.as_of.year - inp.year_built
        if age > AGE_DISCOUNT_START:
            discount = min((age - AGE_DISCOUNT_START) * AGE_DISCOUNT_PER_YEAR, MAX_AGE_DISCOUNT)
            price *= 1 - discount
            adjustments.append(f"Age ({age} years): -{discount:.1%}")

    multiplier = rating_multiplier(inp.cms_rating)
    if multiplier != 1.0:
        price *= multiplier
        adjustments.append(f"CMS rating ({inp.cms_rating}-star): {multiplier - 1:+.0%}")

    if inp.occupancy:
        diff = inp.occupancy - market.avg_occupancy
        if abs(diff) > OCCUPANCY_BAND:
            adjustment = diff * OCCUPANCY_SENSITIVITY
            price *= 1 + adjustment
            adjustments.append(f"Occupancy ({inp.occupancy:.0%}): {adjustment:+.1%}")

    return price, adjustments


class PricePerBedMethod(ValuationCalculator):
    """Market approach using price-per-bed benchmarks."""

    method = ValuationMethod.PRICE_PER_BED

    def missing_inputs(self, inp: ValuationInput) -> Optional[str]:
        if not inp.beds or inp.beds <= 0:
            return "positive bed count required"
        return None

    def calculate(self, inp: ValuationInput) -> ValuationMethodResult:
        if not inp.beds or inp.beds <= 0:
            raise ValuationInputError("Price per bed valuation requires a valid bed count", method=self.method.value)

        price, adjustments = adjusted_price_per_bed(inp)
        price = round(price)
        value = inp.beds * price

        confidence = 70.0
        if inp.market_price_per_bed:
            confidence += 10
        if inp.cms_rating:
            confidence += 5
        if inp.occupancy:
            confidence += 5
        if inp.year_built:
            confidence += 5
        if inp.state and inp.state.upper() in STATE_PPB_ADJUSTMENTS:
            confidence += 5

        inputs_used = {"beds": inp.beds, "price_per_bed": price}
        if inp.noi and inp.noi > 0:
            inputs_used["implied_cap_rate"] = inp.noi / value

        return ValuationMethodResult(
            method=self.method,
            value=float(round(value)),
            confidence=clamp_confidence(confidence),
            value_low=float(round(inp.beds * price * (1 - RANGE_SPREAD))),
            value_high=float(round(inp.beds * price * (1 + RANGE_SPREAD))),
            inputs_used=inputs_used,
            assumptions=adjustments,
            notes=f"Price per bed valuation using ${price:,.0f}/bed with {len(adjustments) - 1} adjustments",
        )
