"""
Tests for ledger-code mapping and the prefix rules.
"""
import pytest

from backend.dealxl_engine.ledger_mapping import (
    LedgerMappingBuilder,
    LedgerMappingCache,
    categorize_code,
    line_category_for_code,
    subcategorize_code,
)
from backend.dealxl_engine.models import LedgerMapping, LedgerMappingEntry, LineCategory, WarningLog


class TestPrefixRules:
    """Category and subcategory from code ranges."""

    @pytest.mark.parametrize("code,expected", [
        ("400110", "SNF Revenue"),
        ("420410", "ALF/RCF Revenue"),
        ("423100", "Memory Care Revenue"),
        ("450000", "Revenue"),
        ("500100", "Operating Expense"),
        ("611000", "Therapy Expense"),
        ("650000", "Expense"),
        ("700100", "Non-Operating"),
        ("800100", "Below-the-Line"),
        ("900100", "Unknown"),
    ])
    def test_categorize(self, code, expected):
        assert categorize_code(code) == expected

    def test_subcategorize(self):
        assert subcategorize_code("400110") == "medicare_revenue"
        assert subcategorize_code("420410") == "alf_private_revenue"
        assert subcategorize_code("500100") is None

    def test_line_category(self):
        assert line_category_for_code("400110") == LineCategory.REVENUE
        assert line_category_for_code("910000") == LineCategory.CENSUS
        assert line_category_for_code("700100") == LineCategory.EXPENSE


class TestLedgerMappingBuilder:
    """Building the crosswalk."""

    def test_build_from_header_layout(self, mapping_sheet):
        mapping = LedgerMappingBuilder().build([mapping_sheet])

        assert len(mapping) == 5
        entry = mapping.get("400110")
        assert entry.label == "Medicare Revenue"
        assert entry.category == "Revenue"
        assert entry.subcategory == "medicare_revenue"
        assert entry.line_category == LineCategory.REVENUE
        assert mapping.get("600010").line_category == LineCategory.EXPENSE
        assert mapping.source_sheet == "GL Mapping"
        assert mapping.cache_key == mapping_sheet.content_hash()

    def test_suffix_codes_fall_back_to_base(self, mapping_sheet):
        mapping = LedgerMappingBuilder().build([mapping_sheet])
        assert mapping.get("400110-99").label == "Medicare Revenue"
        assert "400110-99" in mapping
        assert mapping.get(None) is None

    def test_suffixed_entry_registers_base(self, make_sheet):
        sheet = make_sheet("Map", [["GL Code", "Description"], ["400110-01", "Medicare A"]])
        mapping = LedgerMappingBuilder().build([sheet])

        assert mapping.get("400110").code == "400110-01"
        assert mapping.get("400110").category == "SNF Revenue"

    def test_facility_override_columns(self, make_sheet):
        sheet = make_sheet("Crosswalk", [
            ["GL Code", "Description", "Category", "Sunrise (Opco)"],
            [400110, "Medicare Revenue", "Revenue", "400111"],
            [400210, "Medicaid Revenue", "Revenue", None],
        ])
        mapping = LedgerMappingBuilder().build([sheet])

        assert mapping.get("400110").override_for("SUNRISE ") == "400111"
        assert mapping.get("400210").facility_overrides == {}

    def test_content_tier_without_header(self, make_sheet):
        sheet = make_sheet("Codes", [
            ["Chart of accounts"],
            [500100, "Nursing Salaries"],
            [600010, "Administration"],
        ])
        mapping = LedgerMappingBuilder().build([sheet])

        assert mapping.get("500100").label == "Nursing Salaries"
        assert mapping.get("500100").category == "Operating Expense"

    def test_selects_mapping_named_sheet(self, make_sheet, mapping_sheet):
        other = make_sheet("Notes", [["nothing here"]])
        assert LedgerMappingBuilder().select_sheet([other, mapping_sheet]) is mapping_sheet

    def test_empty_sheet_warns(self, make_sheet):
        warnings = WarningLog()
        mapping = LedgerMappingBuilder().build([make_sheet("Map", [["Notes only"]])], warnings)

        assert len(mapping) == 0
        assert not mapping
        assert len(warnings) == 1
        assert warnings.items[0].stage == "ledger_mapping"

    def test_no_worksheets(self):
        warnings = WarningLog()
        assert len(LedgerMappingBuilder().build([], warnings)) == 0
        assert "No worksheet" in warnings.messages()[0]

    def test_mapping_is_read_only(self, mapping_sheet):
        mapping = LedgerMappingBuilder().build([mapping_sheet])
        with pytest.raises(TypeError):
            mapping._entries["999999"] = None

    def test_to_dict_sorted(self):
        mapping = LedgerMapping({
            "500100": LedgerMappingEntry("500100", "Nursing", "Operating Expense"),
            "400110": LedgerMappingEntry("400110", "Medicare", "Revenue"),
        })
        assert list(mapping.to_dict()["entries"]) == ["400110", "500100"]


class TestLedgerMappingCache:
    """Memoized builds keyed by sheet content."""

    def test_identical_content_is_built_once(self, make_sheet, mapping_sheet):
        cache = LedgerMappingCache()
        first = cache.get_or_build([mapping_sheet])
        second = cache.get_or_build([make_sheet("GL Mapping", mapping_sheet.cells)])

        assert first is second
        assert cache.hits == 1
        assert cache.misses == 1

    def test_changed_content_rebuilds(self, make_sheet, mapping_sheet):
        cache = LedgerMappingCache()
        cache.get_or_build([mapping_sheet])
        changed = make_sheet("GL Mapping", [["GL Code", "Description"], [400110, "Medicare"]])
        cache.get_or_build([changed])

        assert cache.misses == 2
        assert len(cache) == 2

    def test_eviction_and_clear(self, make_sheet):
        cache = LedgerMappingCache(max_entries=1)
        cache.get_or_build([make_sheet("Map", [["GL Code"], [400110]])])
        cache.get_or_build([make_sheet("Map", [["GL Code"], [400210]])])
        assert len(cache) == 1

        cache.clear()
        assert len(cache) == 0
        assert cache.hits == cache.misses == 0
