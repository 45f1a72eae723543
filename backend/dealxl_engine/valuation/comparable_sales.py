"""
Comparable sales valuation.

Each comparable gets a similarity score (100 less deductions for asset type,
state, size, sale age and occupancy) and a recency weight that decays from
1.0 to 0.5 over the maximum sale age. The subject is valued at its beds times
the weighted price per bed of the best comparables.
"""

from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence

import structlog

from backend.dealxl_engine.models import ComparableSale, ValuationInput, ValuationMethod, ValuationMethodResult
from backend.dealxl_engine.valuation.base import ValuationCalculator, clamp_confidence
from backend.exceptions import InsufficientComparablesError, ValuationInputError

logger = structlog.get_logger(__name__)

MAX_AGE_DAYS = 730
MIN_COMPARABLES = 3
TOP_COMPARABLES = 10


def similarity_score(subject: ValuationInput, comp: ComparableSale) -> float:
    """0-100 similarity between the subject and a comparable sale."""
    deduction = 0.0
    if comp.asset_type != subject.asset_type:
        deduction += 30
    if (comp.state or "").upper() != (subject.state or "").upper():
        deduction += 15

    if subject.beds:
        bed_diff = abs(comp.beds - subject.beds) / subject.beds
        if bed_diff > 0.5:
            deduction += 20
        elif bed_diff > 0.25:
            deduction += 10
        elif bed_diff > 0.1:
            deduction += 5

    age_days = (subject.as_of - comp.sale_date).days
    if age_days > 730:
        deduction += 15
    elif age_days > 365:
        deduction += 8
    elif age_days > 180:
        deduction += 4

    if subject.occupancy and comp.occupancy_at_sale:
        occupancy_diff = abs(comp.occupancy_at_sale - subject.occupancy)
        if occupancy_diff > 0.15:
            deduction += 10
        elif occupancy_diff > 0.08:
            deduction += 5

    return max(0.0, 100.0 - deduction)


def recency_weight(sale_date: date, as_of: date, max_age_days: int = MAX_AGE_DAYS) -> float:
    age_days = (as_of - sale_date).days
    if age_days > max_age_days:
        return 0.0
    return 0.5 + 0.5 * (1 - max(age_days, 0) / max_age_days)


@dataclass
class ScoredComparable:
    sale: ComparableSale
    similarity: float
    weight: float


class ComparableSalesMethod(ValuationCalculator):
    """
    Market approach using recent sales of similar properties.

    Args:
        comparables: Candidate sales.
        max_age_days: Sales older than this are ignored.
        min_comparables: Fewest valid sales the method accepts.
    """

    method = ValuationMethod.COMPARABLE_SALES

    def __init__(
        self,
        comparables: Optional[Sequence[ComparableSale]] = None,
        max_age_days: int = MAX_AGE_DAYS,
        min_comparables: int = MIN_COMPARABLES,
    ):
        self.comparables = list(comparables or [])
        self.max_age_days = max_age_days
        self.min_comparables = min_comparables

    def missing_inputs(self, inp: ValuationInput) -> Optional[str]:
        if len(self.comparables) < self.min_comparables:
            return f"at least {self.min_comparables} comparable sales required"
        if not inp.beds or inp.beds <= 0:
            return "positive bed count required"
        return None

    def score(self, inp: ValuationInput) -> List[ScoredComparable]:
        """Valid comparables, best weight first."""
        scored = []
        for sale in self.comparables:
            if sale.beds <= 0 or (inp.as_of - sale.sale_date).days > self.max_age_days:
                continue
            similarity = similarity_score(inp, sale)
            weight = (similarity / 100.0) * recency_weight(sale.sale_date, inp.as_of, self.max_age_days)
            scored.append(ScoredComparable(sale, similarity, weight))
        scored.sort(key=lambda c: -c.weight)
        return scored

    def calculate(self, inp: ValuationInput) -> ValuationMethodResult:
        if not inp.beds or inp.beds <= 0:
            raise ValuationInputError("Comparable sales valuation requires a valid bed count", method=self.method.value)

        scored = self.score(inp)
        if len(scored) < self.min_comparables:
            raise InsufficientComparablesError(found=len(scored), required=self.min_comparables)

        top = scored[:TOP_COMPARABLES]
        total_weight = sum(c.weight for c in top)
        if total_weight > 0:
            avg_ppb = sum(c.sale.price_per_bed * c.weight for c in top) / total_weight
        else:
            avg_ppb = sum(c.sale.price_per_bed for c in top) / len(top)
        if avg_ppb <= 0:
            raise ValuationInputError("Comparable sales carry no positive price per bed", method=self.method.value)

        ppb_values = [c.sale.price_per_bed for c in top]
        ppb_min, ppb_max = min(ppb_values), max(ppb_values)
        value = inp.beds * avg_ppb

        avg_similarity = sum(c.similarity for c in top) / len(top)
        confidence = 70.0
        if len(top) >= 5:
            confidence += 10
        if len(top) >= 8:
            confidence += 5
        if avg_similarity >= 80:
            confidence += 10
        elif avg_similarity >= 60:
            confidence += 5
        elif avg_similarity < 40:
            confidence -= 10
        spread = (ppb_max - ppb_min) / avg_ppb
        if spread < 0.2:
            confidence += 5
        elif spread > 0.5:
            confidence -= 10

        inputs_used = {
            "beds": inp.beds,
            "weighted_price_per_bed": avg_ppb,
            "comparables_used": len(top),
            "average_similarity": avg_similarity,
        }
        with_cap = [c for c in top if c.sale.cap_rate]
        if with_cap and total_weight > 0:
            inputs_used["average_cap_rate"] = sum(c.sale.cap_rate * c.weight for c in with_cap) / total_weight

        logger.debug("Comparable sales valued", comparables=len(top), price_per_bed=round(avg_ppb))
        return ValuationMethodResult(
            method=self.method,
            value=float(round(value)),
            confidence=clamp_confidence(confidence),
            value_low=float(round(inp.beds * ppb_min)),
            value_high=float(round(inp.beds * ppb_max)),
            inputs_used=inputs_used,
            assumptions=[
                f"{c.sale.property_name}: ${c.sale.price_per_bed:,.0f}/bed, similarity {c.similarity:.0f}"
                for c in top
            ],
            notes=(
                f"Analysis of {len(top)} comparable sales with weighted average "
                f"similarity of {avg_similarity:.0f}%"
            ),
        )
