"""
Tests for the valuation-entry parser.
"""
import pytest

from backend.dealxl_engine.models import PropertyType, ValuationEntry, WarningLog
from backend.dealxl_engine.valuation_entries import (
    ValuationEntryParser,
    section_type_of,
    summarize_entries,
    valuation_method_label,
)


@pytest.fixture
def parser() -> ValuationEntryParser:
    return ValuationEntryParser()


class TestSectionHeaders:
    """Property-type section detection."""

    @pytest.mark.parametrize("text,expected", [
        ("Owned – Skilled", PropertyType.OWNED_SKILLED),
        ("SNF - Owned", PropertyType.OWNED_SKILLED),
        ("Leased Facilities", PropertyType.LEASED),
        ("AL/IL", PropertyType.ASSISTED_OWNED),
        ("Specific Needs", PropertyType.ASSISTED_OWNED),
        ("Closed Wing 0", None),
    ])
    def test_section_type_of(self, text, expected):
        assert section_type_of(text) == expected

    def test_method_labels(self):
        assert valuation_method_label(PropertyType.LEASED) == "NI × Multiplier"
        assert valuation_method_label(PropertyType.OWNED_SKILLED) == "EBITDA / Cap Rate"


class TestValuationSheet:
    """The standard valuation sheet fixture."""

    def test_entries(self, parser, valuation_sheet):
        result = parser.parse([valuation_sheet])

        assert result.source_sheet == "Valuation"
        assert [e.facility_name for e in result.entries] == ["Sunrise Health Ctr", "Harbor View Manor", "Maple Grove"]
        assert [e.property_type for e in result.entries] == [
            PropertyType.OWNED_SKILLED,
            PropertyType.LEASED,
            PropertyType.ASSISTED_OWNED,
        ]

    def test_owned_entry(self, parser, valuation_sheet):
        sunrise = parser.parse([valuation_sheet]).entries[0]

        assert sunrise.beds == 120
        assert sunrise.cap_rate == 0.085
        assert sunrise.multiplier is None
        assert sunrise.ebitda == 2000000
        assert sunrise.value == 23529412
        assert sunrise.value_per_bed_prior == pytest.approx(23529412 / 120)
        assert sunrise.value_current is None

    def test_leased_entry_uses_multiplier(self, parser, valuation_sheet):
        harbor = parser.parse([valuation_sheet]).entries[1]

        assert harbor.multiplier == 3.0
        assert harbor.cap_rate is None
        assert harbor.net_income == 500000
        assert harbor.value == 1500000

    def test_snc_percent_normalized(self, parser, valuation_sheet):
        maple = parser.parse([valuation_sheet]).entries[2]
        assert maple.snc_percent == pytest.approx(0.25)
        assert maple.cap_rate == 0.09

    def test_totals_and_zero_bed_rows_skipped(self, parser, valuation_sheet):
        result = parser.parse([valuation_sheet])

        assert result.portfolio_total.facility_count == 3
        assert result.portfolio_total.total_beds == 270
        assert result.portfolio_total.total_value == pytest.approx(23529412 + 1500000 + 8888889)
        assert [c.category for c in result.category_totals] == [
            PropertyType.OWNED_SKILLED,
            PropertyType.LEASED,
            PropertyType.ASSISTED_OWNED,
        ]
        assert result.category_totals[1].valuation_method == "NI × Multiplier"
        assert result.warnings == []

    def test_listing_enrichment(self, parser, valuation_sheet, loi_sheet):
        entries = parser.parse([loi_sheet, valuation_sheet]).entries
        by_name = {e.facility_name: e for e in entries}

        assert (by_name["Sunrise Health Ctr"].city, by_name["Sunrise Health Ctr"].state) == ("Tacoma", "WA")
        assert (by_name["Harbor View Manor"].city, by_name["Harbor View Manor"].state) == ("Portland", "OR")
        assert by_name["Maple Grove"].city is None

    def test_enrich_returns_count(self, parser, valuation_sheet, loi_sheet):
        entries = parser.parse([valuation_sheet]).entries
        assert parser.enrich_from_listing(entries, loi_sheet) == 2


class TestRateResolution:
    """Cap rate versus multiplier and derived rates."""

    HEADER = ["Property", "Beds", "SNC %", "EBITDA", "Net Income", "Value"]

    def test_rates_derived_when_missing(self, parser, make_sheet):
        sheet = make_sheet("Valuation", [
            self.HEADER,
            ["Owned – Skilled"],
            ["Alpha Care", 100, None, 1000000, None, 10000000],
            ["Bravo Care", 100, None, 1250000, None, None],
            ["Leased"],
            ["Charlie Care", 80, None, None, 400000, None],
            ["Assisted Living"],
            ["Delta AL", 50, 40, 500000, None, None],
            ["Echo AL", 50, None, 500000, None, None],
        ])
        alpha, bravo, charlie, delta, echo = parser.parse([sheet]).entries

        assert alpha.cap_rate == pytest.approx(0.1)
        assert bravo.cap_rate == 0.125
        assert bravo.value is None
        assert charlie.multiplier == 2.5
        assert delta.cap_rate == 0.12
        assert echo.cap_rate == 0.08

    def test_row_without_beds_keeps_section(self, parser, make_sheet):
        """A facility row missing beds is skipped without switching the property type."""
        sheet = make_sheet("Valuation", [
            ["Property", "Beds", "Net Income", "Multiplier", "Value"],
            ["Leased"],
            ["Pine Assisted Living", None, 100000, 3.0, 300000],
            ["Beta Leased Home", 80, 200000, 3.0, 600000],
        ])
        entries = parser.parse([sheet]).entries

        assert [e.facility_name for e in entries] == ["Beta Leased Home"]
        assert entries[0].property_type == PropertyType.LEASED
        assert entries[0].multiplier == 3.0

    def test_value_computed_without_value_column(self, parser, make_sheet):
        sheet = make_sheet("Valuation", [
            ["Property", "Beds", "EBITDA", "Cap Rate"],
            ["Sunrise Health Ctr", 120, 1000000, 0.1],
        ])
        entry = parser.parse([sheet]).entries[0]

        assert entry.value_prior == pytest.approx(10000000)
        assert entry.value_per_bed_prior == pytest.approx(10000000 / 120)

    @pytest.mark.parametrize("rate,field", [(1.02, "multiplier"), (0.98, "cap rate")])
    def test_rate_near_one_warns(self, parser, make_sheet, rate, field):
        sheet = make_sheet("Valuation", [
            ["Property", "Beds", "Cap Rate", "EBITDA"],
            ["Sunrise Health Ctr", 120, rate, 1000000],
        ])
        log = WarningLog()
        result = parser.parse([sheet], warnings=log)

        entry = result.entries[0]
        assert (entry.multiplier if field == "multiplier" else entry.cap_rate) == rate
        assert len(result.warnings) == 1
        assert f"read as {field}" in result.warnings[0]
        assert log.items[0].context["facility"] == "Sunrise Health Ctr"

    def test_entry_rejects_both_rates(self):
        with pytest.raises(ValueError):
            ValuationEntry("X", PropertyType.LEASED, beds=10, cap_rate=0.1, multiplier=3.0)

    def test_entry_requires_beds(self):
        with pytest.raises(ValueError):
            ValuationEntry("X", PropertyType.LEASED, beds=0)


class TestLayoutFallbacks:
    """Sheets without a recognisable header."""

    def test_content_tier_reads_section_above(self, parser, make_sheet):
        sheet = make_sheet("Valuation", [
            ["Leased"],
            ["Harbor View Manor", 90],
        ])
        entry = parser.parse([sheet]).entries[0]

        assert entry.property_type == PropertyType.LEASED
        assert entry.multiplier == 2.5

    def test_empty_sheet_warns(self, parser, make_sheet):
        result = parser.parse([make_sheet("Valuation", [])])

        assert result.entries == []
        assert "Could not detect valuation column structure" in result.warnings[0]

    def test_no_sheets(self, parser):
        assert parser.parse([]).warnings == ["[valuation_entries] No valuation sheet found"]

    def test_select_summary_sheet(self, parser, make_sheet):
        notes = make_sheet("Notes", [["x"]])
        summary = make_sheet("Portfolio Summary", [["x"]])
        assert parser.select_sheet([notes, summary]) is summary


class TestSummarizeEntries:
    """Category and portfolio totals."""

    def test_missing_values_count_as_zero(self):
        entries = [
            ValuationEntry("A", PropertyType.LEASED, beds=100, multiplier=3.0, value_prior=3000000),
            ValuationEntry("B", PropertyType.LEASED, beds=50, multiplier=3.0),
        ]
        categories, total = summarize_entries(entries)

        assert len(categories) == 1
        assert categories[0].total_value == 3000000
        assert categories[0].avg_value_per_bed == pytest.approx(20000)
        assert total.total_beds == 150

    def test_empty(self):
        categories, total = summarize_entries([])
        assert categories == []
        assert total.avg_value_per_bed == 0.0
