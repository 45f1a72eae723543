"""
Tests for property-type portfolio valuation.
"""
import pytest

from backend.dealxl_engine.facility_classifier import FacilityClassifier
from backend.dealxl_engine.facility_resolver import FacilityResolver
from backend.dealxl_engine.models import FacilityRecord, PropertyType, ValuationEntry
from backend.dealxl_engine.statement_parser import StatementParser
from backend.dealxl_engine.valuation.portfolio import FacilityOverride, PortfolioValuator
from backend.dealxl_engine.valuation_entries import ValuationEntryParser


@pytest.fixture
def records(statement_sheet, valuation_sheet, loi_sheet):
    statements = StatementParser().parse([statement_sheet]).facilities
    entries = ValuationEntryParser().parse([valuation_sheet, loi_sheet]).entries
    resolver = FacilityResolver()
    resolved, _ = resolver.resolve(statements, entries)
    resolver.apply_classifications(resolved, FacilityClassifier().classify_records(resolved))
    return resolved


@pytest.fixture
def valuator() -> PortfolioValuator:
    return PortfolioValuator()


class TestFacilityValues:
    """Per-facility values by property type."""

    def test_values(self, valuator, records):
        facilities = valuator.value(records).facilities
        by_name = {f.facility_name: f for f in facilities}

        assert [f.facility_name for f in facilities] == ["Harbor View Manor", "Maple Grove", "Sunrise Health Center"]
        assert by_name["Sunrise Health Center"].value == 11_764_706
        assert by_name["Harbor View Manor"].value == 1_500_000
        assert by_name["Maple Grove"].value == 8_888_889

    def test_statement_ebitda_preferred(self, valuator, records):
        sunrise = valuator.value(records).facilities[2]

        assert sunrise.metric_used == "EBITDA"
        assert sunrise.metric_value == 1_000_000
        assert sunrise.rate_or_multiplier == 0.085
        assert sunrise.value_per_bed == 98_039

    def test_rate_labels(self, valuator, records):
        labels = [f.rate_label for f in valuator.value(records).facilities]
        assert labels == ["3.0x Multiplier", "9.0% Cap Rate (25% SNC)", "8.5% Cap Rate"]

    def test_override(self, valuator, records):
        overrides = {"Sunrise Health Center": FacilityOverride(cap_rate=0.1)}
        sunrise = valuator.value(records, overrides=overrides).facilities[2]
        assert sunrise.value == 10_000_000

    def test_unclassified_skipped(self, valuator):
        record = FacilityRecord(canonical_name="x", name="X", valuation_entry=ValuationEntry("X", PropertyType.LEASED, beds=10))
        assert valuator.value_facility(record) is None


class TestAggregates:
    """Totals, sensitivity and the external view."""

    def test_totals(self, valuator, records):
        valuation = valuator.value(records)

        assert valuation.total.facility_count == 3
        assert valuation.total.total_beds == 270
        assert valuation.total.total_value == 22_153_595
        assert [c.category for c in valuation.categories] == [
            PropertyType.OWNED_SKILLED,
            PropertyType.LEASED,
            PropertyType.ASSISTED_OWNED,
        ]

    def test_sensitivity(self, valuator, records):
        table = valuator.value(records).sensitivity

        assert table.base_input == 0.125
        assert table.base_value == 22_153_595
        assert len(table.points) == 8
        point = next(p for p in table.points if p.input_value == 0.13)
        assert point.value == 18_081_197
        assert point.label == "13.0%"

    def test_dual_view(self, valuator, records):
        view = valuator.value(records).dual_view

        assert view.internal_value == 22_153_595
        assert view.external_value == 17_606_061
        assert view.low == 17_606_061
        assert view.high == 22_153_595
        assert view.mid == 19_879_828

    def test_method_engine(self, records):
        valuation = PortfolioValuator(run_method_engine=True).value(records)
        sunrise = valuation.facilities[2]

        assert sunrise.method_summary is not None
        cap = next(m for m in sunrise.method_summary.methods if m.method.value == "cap_rate")
        assert cap.value == 11_764_706
