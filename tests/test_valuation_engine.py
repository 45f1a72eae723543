"""
Tests for the valuation reconciliation engine.
"""
import pytest

from backend.dealxl_engine.models import ValuationInput, ValuationMethod, ValuationMethodResult
from backend.dealxl_engine.valuation.engine import (
    DEFAULT_METHOD_WEIGHTS,
    ValuationEngine,
    validate_valuation_input,
)
from backend.exceptions import ValuationInputError


def result(value, confidence=70.0, method=ValuationMethod.CAP_RATE, **kwargs) -> ValuationMethodResult:
    return ValuationMethodResult(method=method, value=value, confidence=confidence, **kwargs)


@pytest.fixture
def subject() -> ValuationInput:
    return ValuationInput(beds=100, noi=1_000_000, target_cap_rate=0.1, noi_multiple=9.0)


class TestRun:
    """Running and reconciling methods."""

    def test_confidence_weighted_blend(self, subject):
        summary = ValuationEngine().run(subject, methods=[ValuationMethod.CAP_RATE, ValuationMethod.NOI_MULTIPLE])

        assert summary.weighted_average == pytest.approx(1_485_000_000 / 155, abs=0.01)
        assert summary.recommended_value == 9_600_000
        assert summary.confidence == pytest.approx(79.52)
        assert summary.value_low == 8_500_000
        assert summary.value_high == 11_111_111
        assert [m.method for m in summary.methods] == [ValuationMethod.CAP_RATE, ValuationMethod.NOI_MULTIPLE]

    def test_source_weights(self, subject):
        engine = ValuationEngine(
            methods=[ValuationMethod.CAP_RATE, ValuationMethod.NOI_MULTIPLE],
            weights=DEFAULT_METHOD_WEIGHTS,
        )
        assert engine.run(subject).recommended_value == 9_900_000

    def test_sensitivity_from_cap_rate(self, subject):
        summary = ValuationEngine().run(subject, methods=[ValuationMethod.CAP_RATE])

        assert [t.variable for t in summary.sensitivity] == ["cap_rate", "noi"]
        assert summary.sensitivity[0].base_input == 0.1

    def test_default_methods_bounded(self, subject):
        summary = ValuationEngine().run(subject)
        values = [m.value for m in summary.methods]

        assert len(values) == 3
        assert min(values) <= summary.recommended_value <= max(values)
        assert summary.value_low <= min(values)
        assert summary.value_high >= max(values)

    def test_skipped_methods_warn(self):
        summary = ValuationEngine().run(ValuationInput(beds=100))

        assert [m.method for m in summary.methods] == [ValuationMethod.PRICE_PER_BED]
        assert summary.recommended_value == 8_500_000
        assert summary.warnings == [
            "cap_rate skipped: NOI or EBITDAR required",
            "dcf skipped: NOI or EBITDAR required",
        ]
        assert summary.sensitivity == []

    def test_failed_method_warns(self):
        summary = ValuationEngine().run(ValuationInput(beds=100, noi=-5000), methods=["cap_rate", "price_per_bed"])

        assert len(summary.methods) == 1
        assert summary.warnings[0].startswith("cap_rate failed:")

    def test_nothing_applicable(self):
        with pytest.raises(ValuationInputError) as exc_info:
            ValuationEngine().run(ValuationInput(beds=0), methods=[ValuationMethod.CAP_RATE])

        assert exc_info.value.details["skipped"] == ["cap_rate skipped: NOI or EBITDAR required"]


class TestReconciliation:
    """Blend, range and rounding helpers."""

    def test_range_without_method_bounds(self):
        low, high = ValuationEngine.value_range([result(1_000_000), result(2_000_000)])
        assert low == pytest.approx(950_000)
        assert high == pytest.approx(2_100_000)

    def test_recommended_clamped_to_method_values(self):
        results = [result(1_020_000), result(1_040_000)]
        assert ValuationEngine.recommended_value(1_030_000, results) == 1_020_000

    def test_rounding_from_settings(self, monkeypatch):
        monkeypatch.setenv("DEALXL_RECOMMENDED_ROUNDING", "0")
        results = [result(1_000_000), result(2_000_000)]
        assert ValuationEngine.recommended_value(1_234_567, results) == 1_234_567

    def test_zero_confidence_falls_back_to_mean(self):
        value, confidence = ValuationEngine().blend([result(1_000_000, 0.0), result(3_000_000, 0.0)])
        assert value == 2_000_000
        assert confidence == 0.0

    def test_compare(self):
        rows = ValuationEngine.compare([result(10_000_000, inputs_used={"noi": 1_000_000})], beds=100)

        assert rows[0]["method"] == "cap_rate"
        assert rows[0]["price_per_bed"] == 100_000
        assert rows[0]["implied_cap_rate"] == pytest.approx(0.1)


class TestValidateInput:
    """Input validation."""

    def test_missing_required(self):
        validation = validate_valuation_input(ValuationInput(beds=0))

        assert validation.valid is False
        assert validation.errors == ["Bed count is required and must be positive", "State is required"]
        assert len(validation.warnings) == 4

    def test_complete(self):
        inp = ValuationInput(beds=100, state="WA", noi=1, cms_rating=4, occupancy=0.9, year_built=2001)
        validation = validate_valuation_input(inp)

        assert validation.valid is True
        assert validation.warnings == []
