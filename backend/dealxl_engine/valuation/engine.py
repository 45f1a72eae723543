"""
Valuation reconciliation engine.

Runs the selected valuation methods against one ValuationInput and reconciles
them into a single recommended value:

- blend: sum(value * c) / sum(c), with c the method confidence (optionally
  multiplied by a per-method weight)
- recommended value: blend rounded to the nearest $100K, clamped into the
  [min, max] of the method values
- range: method bounds when supplied, else min * 0.95 .. max * 1.05
"""

from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from backend.config import get_settings
from backend.dealxl_engine.models import (
    AssetType,
    ComparableSale,
    InputValidation,
    SensitivityTable,
    ValuationInput,
    ValuationMethod,
    ValuationMethodResult,
    ValuationSummary,
)
from backend.dealxl_engine.valuation.base import ValuationCalculator
from backend.dealxl_engine.valuation.cap_rate import CapRateMethod
from backend.dealxl_engine.valuation.comparable_sales import ComparableSalesMethod
from backend.dealxl_engine.valuation.dcf import DCFMethod
from backend.dealxl_engine.valuation.noi_multiple import NOIMultipleMethod
from backend.dealxl_engine.valuation.price_per_bed import PricePerBedMethod
from backend.dealxl_engine.valuation.replacement_cost import ReplacementCostMethod
from backend.dealxl_engine.valuation.sensitivity import cap_rate_sensitivity, noi_sensitivity
from backend.exceptions import ValuationInputError

logger = structlog.get_logger(__name__)

DEFAULT_METHODS: Tuple[ValuationMethod, ...] = (
    ValuationMethod.CAP_RATE,
    ValuationMethod.PRICE_PER_BED,
    ValuationMethod.DCF,
)

# Optional source weights; pass as `weights=` to skew the blend
DEFAULT_METHOD_WEIGHTS: Dict[ValuationMethod, float] = {
    ValuationMethod.CAP_RATE: 0.35,
    ValuationMethod.PRICE_PER_BED: 0.20,
    ValuationMethod.COMPARABLE_SALES: 0.25,
    ValuationMethod.DCF: 0.15,
    ValuationMethod.NOI_MULTIPLE: 0.05,
    ValuationMethod.REPLACEMENT_COST: 0.10,
}

UNLISTED_METHOD_WEIGHT = 0.1

METHOD_DESCRIPTIONS: Dict[ValuationMethod, str] = {
    ValuationMethod.CAP_RATE: "Income approach using NOI divided by market capitalization rate",
    ValuationMethod.PRICE_PER_BED: "Market approach using price per bed benchmarks adjusted for property characteristics",
    ValuationMethod.COMPARABLE_SALES: "Market approach using recent sales of similar properties",
    ValuationMethod.DCF: "Income approach projecting future cash flows and discounting to present value",
    ValuationMethod.NOI_MULTIPLE: "Simple multiple applied to net operating income",
    ValuationMethod.REPLACEMENT_COST: "Cost approach using depreciated replacement cost",
}


class ValuationEngine:
    """
    Runs valuation methods and reconciles their results.

    Example:
        engine = ValuationEngine(comparables=sales)
        summary = engine.run(ValuationInput(beds=120, noi=1_000_000, state="WA"))
        print(summary.recommended_value, summary.value_low, summary.value_high)
    """

    def __init__(
        self,
        methods: Optional[Sequence[ValuationMethod]] = None,
        comparables: Optional[Sequence[ComparableSale]] = None,
        weights: Optional[Dict[ValuationMethod, float]] = None,
    ):
        self.methods = tuple(methods) if methods else DEFAULT_METHODS
        self.weights = dict(weights) if weights is not None else None
        self.calculators: Dict[ValuationMethod, ValuationCalculator] = {
            ValuationMethod.CAP_RATE: CapRateMethod(),
            ValuationMethod.PRICE_PER_BED: PricePerBedMethod(),
            ValuationMethod.DCF: DCFMethod(),
            ValuationMethod.NOI_MULTIPLE: NOIMultipleMethod(),
            ValuationMethod.COMPARABLE_SALES: ComparableSalesMethod(comparables),
            ValuationMethod.REPLACEMENT_COST: ReplacementCostMethod(),
        }

    def run(self, inp: ValuationInput, methods: Optional[Sequence[ValuationMethod]] = None) -> ValuationSummary:
        """
        Value one facility with every selected method.

        Args:
            inp: Normalized valuation inputs.
            methods: Methods to run; defaults to the engine's selection.

        Returns:
            ValuationSummary with the reconciled value, range and sensitivity.

        Raises:
            ValuationInputError: If no method could be applied.
        """
        warnings: List[str] = []
        results: List[ValuationMethodResult] = []

        for method in methods or self.methods:
            calculator = self.calculators[ValuationMethod(method)]
            missing = calculator.missing_inputs(inp)
            if missing:
                warnings.append(f"{calculator.method.value} skipped: {missing}")
                continue
            try:
                results.append(calculator.calculate(inp))
            except ValuationInputError as e:
                logger.warning("Valuation method failed", method=calculator.method.value, error=e.message)
                warnings.append(f"{calculator.method.value} failed: {e.message}")

        if not results:
            raise ValuationInputError(
                "No valuation methods could be applied with the provided inputs",
                details={"skipped": warnings},
            )

        weighted_average, confidence = self.blend(results)
        low, high = self.value_range(results)
        recommended = self.recommended_value(weighted_average, results)

        logger.info(
            "Valuation reconciled",
            facility=inp.facility_name,
            methods=[r.method.value for r in results],
            recommended=recommended,
        )
        return ValuationSummary(
            recommended_value=recommended,
            weighted_average=round(weighted_average, 2),
            value_low=round(low, 2),
            value_high=round(high, 2),
            confidence=round(confidence, 2),
            methods=results,
            sensitivity=self._sensitivity(results),
            warnings=warnings,
        )

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    def _weight(self, result: ValuationMethodResult) -> float:
        weight = 1.0
        if self.weights is not None:
            weight = self.weights.get(result.method, UNLISTED_METHOD_WEIGHT)
        return weight * result.confidence

    def blend(self, results: Sequence[ValuationMethodResult]) -> Tuple[float, float]:
        """(weighted average value, weighted mean confidence)"""
        weights = [self._weight(r) for r in results]
        total = sum(weights)
        if total <= 0:
            return (
                sum(r.value for r in results) / len(results),
                sum(r.confidence for r in results) / len(results),
            )
        value = sum(r.value * w for r, w in zip(results, weights)) / total
        confidence = sum(r.confidence * w for r, w in zip(results, weights)) / total
        return value, confidence

    @staticmethod
    def value_range(results: Sequence[ValuationMethodResult]) -> Tuple[float, float]:
        values = [r.value for r in results]
        if any(r.value_low is not None or r.value_high is not None for r in results):
            lows = values + [r.value_low for r in results if r.value_low is not None]
            highs = values + [r.value_high for r in results if r.value_high is not None]
            return min(lows), max(highs)
        settings = get_settings()
        return min(values) * settings.range_low_factor, max(values) * settings.range_high_factor

    @staticmethod
    def recommended_value(blend: float, results: Sequence[ValuationMethodResult]) -> float:
        rounding = get_settings().recommended_rounding
        rounded = round(blend / rounding) * rounding if rounding else blend
        values = [r.value for r in results]
        return float(min(max(rounded, min(values)), max(values)))

    @staticmethod
    def _sensitivity(results: Sequence[ValuationMethodResult]) -> List[SensitivityTable]:
        cap = next((r for r in results if r.method == ValuationMethod.CAP_RATE), None)
        if cap is None:
            return []
        noi = cap.inputs_used.get("noi")
        rate = cap.inputs_used.get("cap_rate")
        if not noi or not rate:
            return []
        return [cap_rate_sensitivity(noi, rate), noi_sensitivity(noi, rate)]

    @staticmethod
    def compare(results: Sequence[ValuationMethodResult], beds: float) -> List[Dict[str, Optional[float]]]:
        """Side-by-side value, price per bed and implied cap rate per method."""
        rows = []
        for r in results:
            noi = r.inputs_used.get("noi")
            rows.append({
                "method": r.method.value,
                "value": r.value,
                "price_per_bed": r.value / beds if beds else None,
                "implied_cap_rate": noi / r.value if noi and r.value else None,
                "confidence": r.confidence,
            })
        return rows


def validate_valuation_input(inp: ValuationInput) -> InputValidation:
    """Hard errors block a valuation; warnings flag inputs that would improve it."""
    errors: List[str] = []
    warnings: List[str] = []

    if not inp.beds or inp.beds <= 0:
        errors.append("Bed count is required and must be positive")
    if not inp.asset_type:
        errors.append("Asset type (SNF, ALF, ILF) is required")
    if not inp.state:
        errors.append("State is required")

    if not inp.noi and not inp.ebitdar:
        warnings.append("NOI or EBITDAR is recommended for income-based valuations")
    if not inp.cms_rating and inp.asset_type == AssetType.SNF:
        warnings.append("CMS rating improves valuation accuracy for SNF")
    if not inp.occupancy:
        warnings.append("Current occupancy improves valuation accuracy")
    if not inp.year_built:
        warnings.append("Year built helps adjust price per bed valuations")

    return InputValidation(valid=not errors, errors=errors, warnings=warnings)
