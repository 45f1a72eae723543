"""
NOI multiple valuation: Value = NOI x multiple.
"""

from typing import Optional

from backend.dealxl_engine.models import ValuationInput, ValuationMethod, ValuationMethodResult
from backend.dealxl_engine.valuation.base import ValuationCalculator
from backend.exceptions import ValuationInputError

MULTIPLE_SPREAD = 0.5
CONFIDENCE = 65.0


class NOIMultipleMethod(ValuationCalculator):
    """Simple multiple applied to net operating income."""

    method = ValuationMethod.NOI_MULTIPLE

    def missing_inputs(self, inp: ValuationInput) -> Optional[str]:
        if not inp.noi or not inp.noi_multiple:
            return "NOI and NOI multiple required"
        return None

    def calculate(self, inp: ValuationInput) -> ValuationMethodResult:
        if not inp.noi or not inp.noi_multiple:
            raise ValuationInputError("NOI multiple valuation requires NOI and multiple", method=self.method.value)
        if inp.noi_multiple <= 0:
            raise ValuationInputError("NOI multiple must be positive", method=self.method.value)

        multiple = inp.noi_multiple
        return ValuationMethodResult(
            method=self.method,
            value=float(round(inp.noi * multiple)),
            confidence=CONFIDENCE,
            value_low=float(round(inp.noi * max(multiple - MULTIPLE_SPREAD, 0.0))),
            value_high=float(round(inp.noi * (multiple + MULTIPLE_SPREAD))),
            inputs_used={"noi": inp.noi, "noi_multiple": multiple, "beds": inp.beds},
            assumptions=[f"NOI multiple {multiple}x provided"],
            notes=f"NOI multiple valuation using {multiple}x multiple",
        )
