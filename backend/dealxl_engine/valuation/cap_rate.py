"""
Cap rate valuation: Value = NOI / Cap Rate.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from backend.dealxl_engine.models import ValuationInput, ValuationMethod, ValuationMethodResult
from backend.dealxl_engine.valuation.base import ValuationCalculator, clamp_confidence, derive_noi
from backend.dealxl_engine.valuation.market import CAP_RATE_BY_RATING, market_data_for
from backend.exceptions import ValuationInputError

logger = structlog.get_logger(__name__)

EXPLICIT_SPREAD = 0.01
DEFAULT_SPREAD = 0.015


@dataclass
class CapRateChoice:
    rate: float
    low: float
    high: float
    source: str


def determine_cap_rate(inp: ValuationInput) -> CapRateChoice:
    """
    Pick the cap rate and its band.

    Order: explicit target, market rate, CMS rating band, asset-type default.
    """
    if inp.target_cap_rate:
        rate = inp.target_cap_rate
        return CapRateChoice(
            rate=rate,
            low=inp.cap_rate_low if inp.cap_rate_low is not None else rate - EXPLICIT_SPREAD,
            high=inp.cap_rate_high if inp.cap_rate_high is not None else rate + EXPLICIT_SPREAD,
            source="provided",
        )
    if inp.market_cap_rate:
        rate = inp.market_cap_rate
        return CapRateChoice(rate, rate - EXPLICIT_SPREAD, rate + EXPLICIT_SPREAD, "market")
    if inp.cms_rating in CAP_RATE_BY_RATING:
        low, high = CAP_RATE_BY_RATING[inp.cms_rating]
        return CapRateChoice((low + high) / 2, low, high, "cms_rating")

    rate = market_data_for(inp.asset_type).avg_cap_rate
    return CapRateChoice(rate, rate - DEFAULT_SPREAD, rate + DEFAULT_SPREAD, "asset_type_default")


class CapRateMethod(ValuationCalculator):
    """Income approach using NOI divided by a market capitalization rate."""

    method = ValuationMethod.CAP_RATE

    def missing_inputs(self, inp: ValuationInput) -> Optional[str]:
        if not inp.noi and not inp.ebitdar:
            return "NOI or EBITDAR required"
        return None

    def calculate(self, inp: ValuationInput) -> ValuationMethodResult:
        if not inp.noi and not inp.ebitdar and not inp.revenue:
            raise ValuationInputError("Cap rate valuation requires NOI, EBITDAR, or revenue", method=self.method.value)

        assumptions = []
        noi = inp.noi
        derived = False
        if not noi and inp.ebitdar:
            noi = derive_noi(inp)
            derived = True
            assumptions.append("NOI derived from EBITDAR less estimated rent (6% of revenue)")

        if not noi or noi <= 0:
            raise ValuationInputError("Valid NOI is required for cap rate valuation", method=self.method.value)

        choice = determine_cap_rate(inp)
        if choice.rate <= 0:
            raise ValuationInputError("Cap rate must be positive", method=self.method.value)
        assumptions.append(f"Cap rate {choice.rate:.2%} from {choice.source.replace('_', ' ')}")

        value = noi / choice.rate
        value_low = noi / choice.high
        value_high = noi / choice.low if choice.low > 0 else None

        confidence = 80.0
        if derived:
            confidence -= 10
        if choice.source == "provided":
            confidence += 10
        if choice.source == "asset_type_default":
            confidence -= 10
        if inp.cms_rating and inp.cms_rating >= 4:
            confidence += 5
        if inp.occupancy and inp.occupancy >= 0.85:
            confidence += 5

        logger.debug("Cap rate valuation", noi=noi, cap_rate=choice.rate, source=choice.source)
        return ValuationMethodResult(
            method=self.method,
            value=float(round(value)),
            confidence=clamp_confidence(confidence),
            value_low=float(round(value_low)),
            value_high=float(round(value_high)) if value_high is not None else None,
            inputs_used={
                "noi": noi,
                "cap_rate": choice.rate,
                "cap_rate_source": choice.source,
                "beds": inp.beds,
                "price_per_bed": value / inp.beds if inp.beds else None,
            },
            assumptions=assumptions,
            notes=f"Cap rate valuation using {choice.rate:.2%} cap rate based on {choice.source.replace('_', ' ')}",
        )
