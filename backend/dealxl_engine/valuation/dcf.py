"""
Discounted cash flow valuation.

Value = PV of projected NOI over the holding period + PV of the terminal value
(final-year NOI / terminal cap rate).
"""

from dataclasses import dataclass
from typing import List, Optional

from backend.dealxl_engine.models import AssetType, ValuationInput, ValuationMethod, ValuationMethodResult
from backend.dealxl_engine.valuation.base import ValuationCalculator, clamp_confidence, derive_noi
from backend.dealxl_engine.valuation.market import DCF_DEFAULTS
from backend.exceptions import ValuationInputError

RATE_SHIFT = 0.01


@dataclass
class CashFlow:
    year: int
    noi: float
    revenue: Optional[float] = None
    expenses: Optional[float] = None


def project_cash_flows(
    base_noi: float,
    years: int,
    revenue_growth: float,
    expense_growth: float,
    base_revenue: Optional[float] = None,
    base_expenses: Optional[float] = None,
) -> List[CashFlow]:
    """
    Grow revenue and expenses separately when both are known, otherwise grow
    NOI at revenue growth less half the expense/revenue growth gap.
    """
    flows: List[CashFlow] = []
    if base_revenue and base_expenses:
        revenue, expenses = base_revenue, base_expenses
        for year in range(1, years + 1):
            revenue *= 1 + revenue_growth
            expenses *= 1 + expense_growth
            flows.append(CashFlow(year, revenue - expenses, revenue, expenses))
        return flows

    noi_growth = revenue_growth - (expense_growth - revenue_growth) * 0.5
    noi = base_noi
    for year in range(1, years + 1):
        noi *= 1 + noi_growth
        flows.append(CashFlow(year, noi))
    return flows


def present_value(amount: float, rate: float, years: int) -> float:
    return amount / (1 + rate) ** years


def discounted_value(flows: List[CashFlow], discount_rate: float, terminal_cap_rate: float) -> float:
    operating = sum(present_value(cf.noi, discount_rate, cf.year) for cf in flows)
    terminal = flows[-1].noi / terminal_cap_rate
    return operating + present_value(terminal, discount_rate, flows[-1].year)


class DCFMethod(ValuationCalculator):
    """Income approach projecting cash flows and discounting to present value."""

    method = ValuationMethod.DCF

    def missing_inputs(self, inp: ValuationInput) -> Optional[str]:
        if not inp.noi and not inp.ebitdar:
            return "NOI or EBITDAR required"
        return None

    def calculate(self, inp: ValuationInput) -> ValuationMethodResult:
        if not inp.noi and not inp.ebitdar:
            raise ValuationInputError("DCF valuation requires NOI or EBITDAR", method=self.method.value)

        defaults = DCF_DEFAULTS.get(inp.asset_type, DCF_DEFAULTS[AssetType.SNF])
        years = inp.projection_years or 10
        if years < 1:
            raise ValuationInputError("Projection must cover at least one year", method=self.method.value)
        discount_rate = inp.discount_rate if inp.discount_rate is not None else defaults.discount_rate
        terminal_cap = inp.terminal_cap_rate if inp.terminal_cap_rate is not None else defaults.terminal_cap_rate
        revenue_growth = (
            inp.revenue_growth_rate if inp.revenue_growth_rate is not None else defaults.revenue_growth
        )
        expense_growth = (
            inp.expense_growth_rate if inp.expense_growth_rate is not None else defaults.expense_growth
        )

        assumptions = []
        base_noi = inp.noi
        if not base_noi:
            base_noi = derive_noi(inp)
            assumptions.append("NOI derived from EBITDAR less estimated rent (6% of revenue)")
        if not base_noi or base_noi <= 0:
            raise ValuationInputError("Positive NOI is required for DCF valuation", method=self.method.value)
        if terminal_cap <= RATE_SHIFT or discount_rate <= RATE_SHIFT:
            raise ValuationInputError("Discount and terminal cap rates must exceed 1%", method=self.method.value)

        flows = project_cash_flows(
            base_noi,
            years,
            revenue_growth,
            expense_growth,
            inp.revenue,
            inp.revenue - base_noi if inp.revenue else None,
        )

        pv_operating = sum(present_value(cf.noi, discount_rate, cf.year) for cf in flows)
        terminal_value = flows[-1].noi / terminal_cap
        pv_terminal = present_value(terminal_value, discount_rate, years)
        value = pv_operating + pv_terminal
        if value <= 0:
            raise ValuationInputError("Projected cash flows produce no value", method=self.method.value)

        value_low = discounted_value(flows, discount_rate + RATE_SHIFT, terminal_cap + RATE_SHIFT)
        value_high = discounted_value(flows, discount_rate - RATE_SHIFT, terminal_cap - RATE_SHIFT)

        terminal_share = pv_terminal / value * 100
        confidence = 75.0
        if inp.discount_rate is not None:
            confidence += 5
        if inp.revenue_growth_rate is not None:
            confidence += 5
        if inp.revenue:
            confidence += 5
        if terminal_share > 70 or terminal_share < 30:
            confidence -= 15
        elif terminal_share > 60 or terminal_share < 40:
            confidence -= 5

        assumptions.extend([
            f"{years}-year projection",
            f"Discount rate {discount_rate:.1%}",
            f"Terminal cap rate {terminal_cap:.2%}",
            f"Revenue growth {revenue_growth:.1%}, expense growth {expense_growth:.1%}",
        ])
        return ValuationMethodResult(
            method=self.method,
            value=float(round(value)),
            confidence=clamp_confidence(confidence),
            value_low=float(round(value_low)),
            value_high=float(round(value_high)),
            inputs_used={
                "noi": base_noi,
                "projection_years": years,
                "discount_rate": discount_rate,
                "terminal_cap_rate": terminal_cap,
                "pv_operating": pv_operating,
                "pv_terminal": pv_terminal,
                "terminal_value_share": terminal_share,
                "implied_going_in_cap": base_noi / value,
            },
            assumptions=assumptions,
            notes=(
                f"{years}-year DCF with {discount_rate:.0%} discount rate "
                f"and {terminal_cap:.1%} terminal cap"
            ),
        )
