"""
Unit tests for NumericParser.
"""
from decimal import Decimal

import pytest

from backend.services.numeric_parser import AmountKind, NumericParser, ParsedAmount, get_numeric_parser


@pytest.fixture
def parser() -> NumericParser:
    return NumericParser()


class TestPlainFigures:
    """Digits with and without grouping."""

    def test_integer(self, parser: NumericParser):
        result = parser.parse("1234")
        assert result.value == Decimal("1234")
        assert result.confidence == 1.0
        assert result.kind == AmountKind.NUMBER

    def test_grouped(self, parser: NumericParser):
        """Comma-grouped figures parse slightly below full confidence."""
        result = parser.parse("1,234,567.50")
        assert result.value == Decimal("1234567.50")
        assert result.confidence == 0.95

    def test_irregular_grouping(self, parser: NumericParser):
        result = parser.parse("12,34,567")
        assert result.value == Decimal("1234567")
        assert result.confidence == 0.7

    @pytest.mark.parametrize("text", ["", "   ", "-", "n/a", "Medicare Revenue", "Total 400100", "T12", "2024-12-31"])
    def test_not_a_figure(self, parser: NumericParser, text: str):
        """Blanks, placeholders and labels containing digits have no value."""
        result = parser.parse(text)
        assert result.value is None
        assert result.confidence == 0.0


class TestNegatives:
    """Accounting and sign conventions."""

    @pytest.mark.parametrize("text,expected", [
        ("(2,500)", Decimal("-2500")),
        ("-2500", Decimal("-2500")),
        ("2,500-", Decimal("-2500")),
        ("$-2,500", Decimal("-2500")),
        ("($2,500)", Decimal("-2500")),
        ("+2500", Decimal("2500")),
    ])
    def test_sign(self, parser: NumericParser, text: str, expected: Decimal):
        result = parser.parse(text)
        assert result.value == expected
        assert result.negative is (expected < 0)


class TestDollarsAndScale:
    """Currency markers, scale words and unit prices."""

    def test_dollar_sign(self, parser: NumericParser):
        result = parser.parse("$1,200,000")
        assert result.value == Decimal("1200000")
        assert result.kind == AmountKind.CURRENCY

    def test_usd_prefix(self, parser: NumericParser):
        assert parser.parse("USD 2,500").kind == AmountKind.CURRENCY

    @pytest.mark.parametrize("text,scale", [
        ("123K", 1_000),
        ("1.5M", 1_000_000),
        ("100MM", 1_000_000),
        ("2.5B", 1_000_000_000),
        ("3 million", 1_000_000),
        ("4.2 mil", 1_000_000),
    ])
    def test_scale(self, parser: NumericParser, text: str, scale: int):
        assert parser.parse(text).scale == scale

    def test_scaled_negative_dollars(self, parser: NumericParser):
        result = parser.parse("($1.5M)")
        assert result.value == Decimal("-1500000")
        assert result.kind == AmountKind.CURRENCY

    @pytest.mark.parametrize("text,unit", [
        ("$95,000/bed", "bed"),
        ("$120 per unit", "unit"),
        ("$210/sq. ft", "sqft"),
    ])
    def test_per_unit_price(self, parser: NumericParser, text: str, unit: str):
        result = parser.parse(text)
        assert result.per_unit == unit
        assert result.kind == AmountKind.CURRENCY
        assert result.value > 0


class TestRates:
    """Percentages, basis points and multiples."""

    def test_percent(self, parser: NumericParser):
        result = parser.parse("12.5%")
        assert result.value == Decimal("12.5")
        assert result.kind == AmountKind.PERCENT
        assert result.as_fraction == pytest.approx(0.125)

    def test_basis_points(self, parser: NumericParser):
        result = parser.parse("50 bps")
        assert result.value == Decimal("50")
        assert result.kind == AmountKind.BASIS_POINTS
        assert result.as_fraction == pytest.approx(0.005)

    def test_multiple(self, parser: NumericParser):
        result = parser.parse("8.5x")
        assert result.value == Decimal("8.5")
        assert result.kind == AmountKind.MULTIPLE
        assert result.as_fraction == pytest.approx(8.5)

    def test_unparsed_fraction(self):
        assert ParsedAmount(value=None, text="", confidence=0.0).as_fraction is None


class TestParseCell:
    """Worksheet cell conversion."""

    def test_native_numbers_pass_through(self, parser: NumericParser):
        assert parser.parse_cell(120) == 120.0
        assert parser.parse_cell(0.085) == 0.085
        assert parser.parse_cell(Decimal("7.25")) == 7.25

    def test_currency_text(self, parser: NumericParser):
        assert parser.parse_cell("$1,200,000") == 1200000.0

    def test_rates_become_fractions(self, parser: NumericParser):
        assert parser.parse_cell("8.5%") == pytest.approx(0.085)
        assert parser.parse_cell("25 bps") == pytest.approx(0.0025)

    def test_accounting_negative(self, parser: NumericParser):
        assert parser.parse_cell("(2,500)") == -2500.0

    @pytest.mark.parametrize("cell", [None, True, False, "", "Beds", "-", float("nan"), float("inf"), ["1"]])
    def test_non_numeric_cells(self, parser: NumericParser, cell):
        """Blanks, bools, labels, NaN and other objects give None."""
        assert parser.parse_cell(cell) is None

    def test_singleton(self):
        assert get_numeric_parser() is get_numeric_parser()
