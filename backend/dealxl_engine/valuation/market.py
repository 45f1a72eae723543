"""
Market reference data for the valuation methods.

National averages per asset type, CMS star-rating cap-rate bands and the
state / rating / region multipliers applied by the market approaches.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from backend.dealxl_engine.models import AssetType


@dataclass(frozen=True)
class MarketData:
    """National averages for one asset type."""
    avg_cap_rate: float
    avg_price_per_bed: float
    avg_occupancy: float


@dataclass(frozen=True)
class DCFDefaults:
    discount_rate: float
    terminal_cap_rate: float
    revenue_growth: float
    expense_growth: float


@dataclass(frozen=True)
class ReplacementCostDefaults:
    """Construction cost and depreciation assumptions for one asset type."""
    construction_cost_per_sf: float
    sf_per_bed: float
    useful_life: int
    residual_value_percent: float
    soft_cost_percent: float
    ffe_cost_per_bed: float
    entrepreneurial_incentive: float
    acres_per_bed: float
    land_value_per_acre: Dict[str, float]
    regional_multipliers: Dict[str, float]


DEFAULT_MARKET_DATA: Dict[AssetType, MarketData] = {
    AssetType.SNF: MarketData(avg_cap_rate=0.125, avg_price_per_bed=85_000, avg_occupancy=0.85),
    AssetType.ALF: MarketData(avg_cap_rate=0.075, avg_price_per_bed=150_000, avg_occupancy=0.88),
    AssetType.ILF: MarketData(avg_cap_rate=0.065, avg_price_per_bed=175_000, avg_occupancy=0.90),
}

# (low, high) cap rate by CMS overall star rating
CAP_RATE_BY_RATING: Dict[int, Tuple[float, float]] = {
    5: (0.095, 0.110),
    4: (0.105, 0.120),
    3: (0.115, 0.130),
    2: (0.125, 0.140),
    1: (0.135, 0.155),
}

# Price-per-bed multiplier relative to the national average
STATE_PPB_ADJUSTMENTS: Dict[str, float] = {
    "CA": 1.35,
    "NY": 1.25,
    "NJ": 1.20,
    "MA": 1.15,
    "CT": 1.15,
    "WA": 1.10,
    "CO": 1.10,
    "FL": 1.05,
    "TX": 0.95,
    "OH": 0.90,
    "PA": 0.95,
    "IL": 0.95,
    "GA": 0.92,
    "NC": 0.93,
    "AZ": 1.00,
    "MI": 0.88,
    "TN": 0.90,
    "IN": 0.85,
    "MO": 0.85,
    "WI": 0.88,
}

RATING_PPB_ADJUSTMENTS: Dict[int, float] = {
    5: 1.15,
    4: 1.05,
    3: 1.00,
    2: 0.90,
    1: 0.75,
}

AGE_DISCOUNT_START = 30
AGE_DISCOUNT_PER_YEAR = 0.005
MAX_AGE_DISCOUNT = 0.20

DCF_DEFAULTS: Dict[AssetType, DCFDefaults] = {
    AssetType.SNF: DCFDefaults(discount_rate=0.12, terminal_cap_rate=0.11, revenue_growth=0.025, expense_growth=0.03),
    AssetType.ALF: DCFDefaults(discount_rate=0.10, terminal_cap_rate=0.085, revenue_growth=0.03, expense_growth=0.025),
    AssetType.ILF: DCFDefaults(discount_rate=0.09, terminal_cap_rate=0.075, revenue_growth=0.035, expense_growth=0.025),
}

_REGIONS = {"west": 1.20, "northeast": 1.15, "southeast": 0.90, "midwest": 0.95, "southwest": 0.95}

REPLACEMENT_COST_DEFAULTS: Dict[AssetType, ReplacementCostDefaults] = {
    AssetType.SNF: ReplacementCostDefaults(
        construction_cost_per_sf=350,
        sf_per_bed=450,
        useful_life=40,
        residual_value_percent=0.20,
        soft_cost_percent=0.15,
        ffe_cost_per_bed=15_000,
        entrepreneurial_incentive=0.10,
        acres_per_bed=0.03,
        land_value_per_acre={"urban": 500_000, "suburban": 250_000, "rural": 75_000, "frontier": 25_000},
        regional_multipliers=dict(_REGIONS),
    ),
    AssetType.ALF: ReplacementCostDefaults(
        construction_cost_per_sf=300,
        sf_per_bed=550,
        useful_life=40,
        residual_value_percent=0.20,
        soft_cost_percent=0.12,
        ffe_cost_per_bed=12_000,
        entrepreneurial_incentive=0.12,
        acres_per_bed=0.025,
        land_value_per_acre={"urban": 600_000, "suburban": 300_000, "rural": 100_000, "frontier": 35_000},
        regional_multipliers=dict(_REGIONS),
    ),
    AssetType.ILF: ReplacementCostDefaults(
        construction_cost_per_sf=250,
        sf_per_bed=700,
        useful_life=45,
        residual_value_percent=0.25,
        soft_cost_percent=0.10,
        ffe_cost_per_bed=8_000,
        entrepreneurial_incentive=0.15,
        acres_per_bed=0.02,
        land_value_per_acre={"urban": 750_000, "suburban": 400_000, "rural": 125_000, "frontier": 50_000},
        regional_multipliers={"west": 1.25, "northeast": 1.15, "southeast": 0.88, "midwest": 0.92, "southwest": 0.90},
    ),
}

DEFAULT_LAND_VALUE_PER_ACRE = 200_000

# Share of revenue assumed to be rent when NOI is derived from EBITDAR
ESTIMATED_RENT_SHARE = 0.06


def market_data_for(asset_type: AssetType) -> MarketData:
    return DEFAULT_MARKET_DATA.get(asset_type, DEFAULT_MARKET_DATA[AssetType.SNF])


def state_multiplier(state: Optional[str]) -> float:
    return STATE_PPB_ADJUSTMENTS.get((state or "").upper(), 1.0)


def rating_multiplier(rating: Optional[int]) -> float:
    return RATING_PPB_ADJUSTMENTS.get(rating, 1.0) if rating else 1.0
