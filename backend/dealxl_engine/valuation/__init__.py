"""
Valuation methods, reconciliation and portfolio valuation.
"""

from backend.dealxl_engine.valuation.cap_rate import CapRateMethod, determine_cap_rate
from backend.dealxl_engine.valuation.comparable_sales import ComparableSalesMethod, similarity_score
from backend.dealxl_engine.valuation.dcf import DCFMethod
from backend.dealxl_engine.valuation.engine import (
    DEFAULT_METHOD_WEIGHTS,
    DEFAULT_METHODS,
    ValuationEngine,
    validate_valuation_input,
)
from backend.dealxl_engine.valuation.noi_multiple import NOIMultipleMethod
from backend.dealxl_engine.valuation.portfolio import FacilityOverride, PortfolioValuator
from backend.dealxl_engine.valuation.price_per_bed import PricePerBedMethod
from backend.dealxl_engine.valuation.replacement_cost import ReplacementCostMethod
from backend.dealxl_engine.valuation.sensitivity import (
    cap_rate_sensitivity,
    multiplier_sensitivity,
    noi_sensitivity,
)

__all__ = [
    "CapRateMethod",
    "ComparableSalesMethod",
    "DCFMethod",
    "DEFAULT_METHOD_WEIGHTS",
    "DEFAULT_METHODS",
    "FacilityOverride",
    "NOIMultipleMethod",
    "PortfolioValuator",
    "PricePerBedMethod",
    "ReplacementCostMethod",
    "ValuationEngine",
    "cap_rate_sensitivity",
    "determine_cap_rate",
    "multiplier_sensitivity",
    "noi_sensitivity",
    "similarity_score",
    "validate_valuation_input",
]
