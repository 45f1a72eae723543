"""
Sensitivity tables.

Each builder lays a symmetric grid around a base input and recomputes the
value at every point. Inputs are never mutated.
"""

from typing import Callable, List

from backend.dealxl_engine.models import SensitivityPoint, SensitivityTable
from backend.exceptions import ValuationInputError


def _grid(base: float, spread: float, steps: int) -> List[float]:
    half = max(steps // 2, 1)
    step = spread / half
    return [round(base + i * step, 10) for i in range(-half, half + 1)]


def _table(
    variable: str,
    base_input: float,
    inputs: List[float],
    formula: Callable[[float], float],
    label: Callable[[float], str],
) -> SensitivityTable:
    base_value = round(formula(base_input), 2)
    points = []
    for value_in in inputs:
        value = round(formula(value_in), 2)
        delta = round(value - base_value, 2)
        points.append(SensitivityPoint(
            input_value=value_in,
            value=value,
            delta=delta,
            delta_percent=delta / base_value * 100 if base_value else 0.0,
            label=label(value_in),
        ))
    return SensitivityTable(variable=variable, base_input=base_input, base_value=base_value, points=points)


def cap_rate_sensitivity(noi: float, base_cap: float, spread: float = 0.01, steps: int = 5) -> SensitivityTable:
    """
    Value = NOI / cap rate across base_cap ± spread.

    Args:
        noi: Net operating income.
        base_cap: Centre of the grid.
        spread: Distance from the centre to either end.
        steps: Number of grid points (odd counts centre on base_cap).

    Returns:
        SensitivityTable; grid points with a cap rate <= 0 are skipped.
    """
    if base_cap <= 0:
        raise ValuationInputError("Base cap rate must be positive", method="cap_rate")
    rates = [rate for rate in _grid(base_cap, spread, steps) if rate > 0]
    return _table("cap_rate", base_cap, rates, lambda rate: noi / rate, lambda rate: f"{rate:.2%}")


def noi_sensitivity(noi: float, cap_rate: float, spread: float = 0.10, steps: int = 5) -> SensitivityTable:
    """Value = NOI / cap rate with NOI varied by ± spread (a fraction of NOI)."""
    if cap_rate <= 0:
        raise ValuationInputError("Cap rate must be positive", method="cap_rate")
    factors = _grid(1.0, spread, steps)
    nois = [round(noi * factor, 2) for factor in factors]
    return _table(
        "noi",
        noi,
        nois,
        lambda value: value / cap_rate,
        lambda value: f"{value / noi - 1:+.0%}" if noi else "",
    )


def multiplier_sensitivity(
    net_income: float,
    base_multiplier: float,
    spread: float = 0.5,
    steps: int = 5,
) -> SensitivityTable:
    """Value = net income x multiplier across base ± spread; non-positive multipliers are skipped."""
    multipliers = [m for m in _grid(base_multiplier, spread, steps) if m > 0]
    return _table(
        "multiplier",
        base_multiplier,
        multipliers,
        lambda m: net_income * m,
        lambda m: f"{m:.2f}x",
    )
