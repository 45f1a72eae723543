"""
Shared pieces of the valuation methods.
"""

from abc import ABC, abstractmethod
from typing import Optional

from backend.dealxl_engine.models import ValuationInput, ValuationMethod, ValuationMethodResult
from backend.dealxl_engine.valuation.market import ESTIMATED_RENT_SHARE

MIN_CONFIDENCE = 40.0
MAX_CONFIDENCE = 100.0


def clamp_confidence(score: float) -> float:
    return max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, score))


def derive_noi(inp: ValuationInput) -> Optional[float]:
    """EBITDAR less an estimated rent of 6% of revenue."""
    if inp.ebitdar is None:
        return None
    return inp.ebitdar - (inp.revenue * ESTIMATED_RENT_SHARE if inp.revenue else 0.0)


class ValuationCalculator(ABC):
    """
    One valuation method.

    Subclasses set `method` and implement calculate(); missing_inputs()
    lets the engine skip a method before calling it.
    """

    method: ValuationMethod

    def missing_inputs(self, inp: ValuationInput) -> Optional[str]:
        """Reason the method cannot run, or None when it can."""
        return None

    @abstractmethod
    def calculate(self, inp: ValuationInput) -> ValuationMethodResult:
        """
        Value the facility.

        Raises:
            ValuationInputError: If the inputs are insufficient or invalid.
        """
