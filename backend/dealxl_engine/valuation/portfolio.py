"""
Portfolio valuation by property type.

1. Owned skilled nursing: EBITDA / cap rate
2. Leased: net income x multiplier
3. Assisted / specific-needs owned: EBITDA / cap rate stepped by SNC share

Produces per-facility values, category and portfolio totals, a cap-rate
sensitivity grid over the owned-skilled facilities and an external
(lender-style) view that brackets the internal value.
"""

from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from backend.config import get_settings
from backend.dealxl_engine.models import (
    AssetType,
    CategoryTotal,
    DualView,
    FacilityRecord,
    FacilityValuation,
    PortfolioTotal,
    PortfolioValuation,
    PropertyType,
    SensitivityPoint,
    SensitivityTable,
    ValuationInput,
    WarningLog,
)
from backend.dealxl_engine.valuation.engine import ValuationEngine
from backend.dealxl_engine.valuation_entries import CATEGORY_ORDER, valuation_method_label
from backend.exceptions import ValuationInputError

logger = structlog.get_logger(__name__)

STAGE = "portfolio_valuation"

SENSITIVITY_BPS = (-200, -150, -100, -50, 50, 100, 150, 200)
MIN_SENSITIVITY_RATE = 0.02


@dataclass
class FacilityOverride:
    """Per-facility replacements for the extracted rate or metrics."""
    cap_rate: Optional[float] = None
    multiplier: Optional[float] = None
    ebitda: Optional[float] = None
    net_income: Optional[float] = None


def override_key(name: str) -> str:
    return (name or "").lower().strip()


def asset_type_for(property_type: PropertyType) -> AssetType:
    return AssetType.ALF if property_type == PropertyType.ASSISTED_OWNED else AssetType.SNF


class PortfolioValuator:
    """
    Values resolved facility records.

    Example:
        valuator = PortfolioValuator()
        valuation = valuator.value(records, overrides={"sunrise": FacilityOverride(cap_rate=0.11)})
        print(valuation.total.total_value, valuation.dual_view.low)
    """

    def __init__(self, engine: Optional[ValuationEngine] = None, run_method_engine: bool = False):
        self.engine = engine or ValuationEngine()
        self.run_method_engine = run_method_engine

    def value(
        self,
        records: Sequence[FacilityRecord],
        overrides: Optional[Dict[str, FacilityOverride]] = None,
        warnings: Optional[WarningLog] = None,
        as_of: Optional[date] = None,
    ) -> PortfolioValuation:
        """
        Value every classified record.

        Args:
            records: Resolved facilities with classifications attached.
            overrides: FacilityOverride by lowercased facility name.
            warnings: Shared warnings channel.
            as_of: Valuation date passed to the method engine.

        Returns:
            PortfolioValuation
        """
        log = warnings if warnings is not None else WarningLog()
        overrides = {override_key(k): v for k, v in (overrides or {}).items()}

        facilities: List[FacilityValuation] = []
        for record in records:
            override = overrides.get(override_key(record.name)) or overrides.get(record.canonical_name)
            valuation = self.value_facility(record, override)
            if valuation is None:
                continue
            if self.run_method_engine:
                valuation.method_summary = self._run_engine(record, valuation, log, as_of)
            facilities.append(valuation)

        categories, total = self.totals(facilities)
        valuation = PortfolioValuation(
            facilities=facilities,
            categories=categories,
            total=total,
            sensitivity=self.sensitivity(facilities),
            dual_view=self.dual_view(facilities, total.total_value),
        )
        logger.info(
            "Portfolio valued",
            facilities=len(facilities),
            total_value=round(total.total_value),
        )
        return valuation

    # -------------------------------------------------------------------------
    # Per facility
    # -------------------------------------------------------------------------

    def value_facility(
        self,
        record: FacilityRecord,
        override: Optional[FacilityOverride] = None,
    ) -> Optional[FacilityValuation]:
        """Value one record; None when it is unclassified or has neither beds nor value."""
        classification = record.classification
        if classification is None:
            return None
        override = override or FacilityOverride()
        property_type = classification.property_type
        entry = record.valuation_entry

        ebitda, net_income = self._metrics(record, override)
        beds = record.beds or classification.beds

        if property_type == PropertyType.LEASED:
            multiplier = override.multiplier or (entry.multiplier if entry else None) or classification.applicable_rate
            metric_used, metric_value, rate = "Net Income", net_income, multiplier
            value = net_income * multiplier
            label = f"{multiplier:.1f}x Multiplier"
        else:
            cap_rate = override.cap_rate or (entry.cap_rate if entry else None) or classification.applicable_rate
            metric_used, metric_value, rate = "EBITDA", ebitda, cap_rate
            value = ebitda / cap_rate if cap_rate > 0 else 0.0
            label = f"{cap_rate * 100:.1f}% Cap Rate"
            if property_type == PropertyType.ASSISTED_OWNED and classification.snc_percent is not None:
                label += f" ({round(classification.snc_percent * 100)}% SNC)"

        if not beds and value == 0:
            return None

        return FacilityValuation(
            facility_name=record.name,
            property_type=property_type,
            beds=beds,
            metric_used=metric_used,
            metric_value=metric_value,
            rate_or_multiplier=rate,
            rate_label=label,
            value=float(round(value)),
            value_per_bed=float(round(value / beds)) if beds > 0 else 0.0,
            snc_percent=classification.snc_percent,
        )

    @staticmethod
    def _metrics(record: FacilityRecord, override: FacilityOverride) -> Tuple[float, float]:
        """EBITDA and net income: override, statement, current year, prior year."""
        ebitda = override.ebitda or 0.0
        net_income = override.net_income or 0.0
        if record.statement is not None:
            ebitda = ebitda or record.statement.summary.ebitda
            net_income = net_income or record.statement.summary.net_income
        entry = record.valuation_entry
        if entry is not None:
            ebitda = ebitda or entry.ebitda_current or entry.ebitda_prior or 0.0
            net_income = net_income or entry.net_income_current or entry.net_income_prior or 0.0
        return ebitda, net_income

    def _run_engine(
        self,
        record: FacilityRecord,
        valuation: FacilityValuation,
        log: WarningLog,
        as_of: Optional[date],
    ):
        inp = self.to_valuation_input(record, valuation, as_of)
        if inp is None:
            return None
        try:
            return self.engine.run(inp)
        except ValuationInputError as e:
            log.add(STAGE, f"Method engine skipped '{record.name}': {e.message}", facility=record.name)
            return None

    @staticmethod
    def to_valuation_input(
        record: FacilityRecord,
        valuation: FacilityValuation,
        as_of: Optional[date] = None,
    ) -> Optional[ValuationInput]:
        if valuation.beds <= 0:
            return None
        summary = record.statement.summary if record.statement is not None else None
        census = record.statement.census if record.statement is not None else None
        inp = ValuationInput(
            beds=valuation.beds,
            asset_type=asset_type_for(valuation.property_type),
            state=record.state,
            facility_name=record.name,
            noi=valuation.metric_value if valuation.metric_used == "EBITDA" and valuation.metric_value > 0 else None,
            ebitdar=summary.ebitdar if summary is not None and summary.ebitdar else None,
            revenue=summary.total_revenue if summary is not None and summary.total_revenue else None,
            expenses=summary.total_expenses if summary is not None and summary.total_expenses else None,
            target_cap_rate=valuation.rate_or_multiplier if valuation.metric_used == "EBITDA" else None,
            occupancy=census.occupancy if census is not None else None,
        )
        if as_of is not None:
            inp.as_of = as_of
        return inp

    # -------------------------------------------------------------------------
    # Aggregates
    # -------------------------------------------------------------------------

    @staticmethod
    def totals(facilities: Sequence[FacilityValuation]) -> Tuple[List[CategoryTotal], PortfolioTotal]:
        categories = []
        for property_type in CATEGORY_ORDER:
            members = [f for f in facilities if f.property_type == property_type]
            if not members:
                continue
            beds = sum(f.beds for f in members)
            value = sum(f.value for f in members)
            categories.append(CategoryTotal(
                category=property_type,
                facility_count=len(members),
                total_beds=beds,
                total_value=value,
                avg_value_per_bed=float(round(value / beds)) if beds > 0 else 0.0,
                valuation_method=valuation_method_label(property_type),
            ))

        beds = sum(f.beds for f in facilities)
        value = sum(f.value for f in facilities)
        return categories, PortfolioTotal(
            facility_count=len(facilities),
            total_beds=beds,
            total_value=value,
            avg_value_per_bed=value / beds if beds > 0 else 0.0,
        )

    @staticmethod
    def sensitivity(facilities: Sequence[FacilityValuation], base_cap_rate: Optional[float] = None) -> SensitivityTable:
        """Portfolio value as the owned-skilled cap rate moves ±200 bps in 50 bps steps."""
        base_rate = base_cap_rate if base_cap_rate is not None else get_settings().snf_cap_rate
        base_value = sum(f.value for f in facilities)
        points = []
        for bps in SENSITIVITY_BPS:
            rate = round(base_rate + bps / 10000, 10)
            if rate <= MIN_SENSITIVITY_RATE:
                continue
            total = sum(
                f.metric_value / rate if f.property_type == PropertyType.OWNED_SKILLED else f.value
                for f in facilities
            )
            delta = total - base_value
            points.append(SensitivityPoint(
                input_value=rate,
                value=float(round(total)),
                delta=float(round(delta)),
                delta_percent=delta / base_value * 100 if base_value > 0 else 0.0,
                label=f"{rate * 100:.1f}%",
            ))
        return SensitivityTable(
            variable="snf_cap_rate",
            base_input=base_rate,
            base_value=float(round(base_value)),
            points=points,
        )

    @staticmethod
    def dual_view(facilities: Sequence[FacilityValuation], internal_value: float) -> DualView:
        """External view: 12% SNF cap, 4.0x leased multiple, assisted cap + 200 bps."""
        settings = get_settings()
        external = 0.0
        for f in facilities:
            if f.property_type == PropertyType.OWNED_SKILLED:
                external += f.metric_value / settings.external_snf_cap_rate if f.metric_value > 0 else 0.0
            elif f.property_type == PropertyType.LEASED:
                external += f.metric_value * settings.external_leased_multiplier
            else:
                rate = f.rate_or_multiplier + settings.external_cap_rate_spread
                external += f.metric_value / rate if rate > 0 else 0.0

        low, high = sorted((round(external), round(internal_value)))
        return DualView(
            internal_value=float(round(internal_value)),
            external_value=float(round(external)),
            low=float(low),
            mid=float(round((low + high) / 2)),
            high=float(high),
        )
