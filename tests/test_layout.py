"""
Tests for tiered column layout detection.
"""
import pytest

from backend.dealxl_engine.layout import (
    ColumnSpec,
    ContentScanTier,
    DefaultLayoutTier,
    HeaderScanTier,
    LayoutDetector,
    combine_probes,
    large_number_probe,
    ledger_code_probe,
    long_text_probe,
    short_integer_probe,
    text_and_amount_probe,
)

SPECS = [
    ColumnSpec("code", [r"\bcode\b", r"^gl"], required=True),
    ColumnSpec("label", [r"description", r"^label$"]),
    ColumnSpec("annual", [r"actual", r"annual"], exclude=r"budget"),
    ColumnSpec("value", [r"^value$"], collect=True),
]


class TestColumnSpec:
    """Header matching rules."""

    def test_patterns_are_case_insensitive(self):
        spec = ColumnSpec("annual", [r"annual"])
        assert spec.matches("annual total")
        assert spec.matches("ANNUAL")

    def test_exclude_wins(self):
        spec = SPECS[2]
        assert spec.matches("actual")
        assert not spec.matches("budget actual")

    def test_blank_header_never_matches(self):
        assert not SPECS[0].matches("")


class TestHeaderScanTier:
    """Header row detection."""

    def test_first_row_with_required_columns(self):
        cells = [
            ["Operating Statement"],
            ["GL Code", "Description", "Actual", "Budget Actual"],
            [400110, "Medicare", 100],
        ]
        layout = HeaderScanTier().detect(cells, SPECS)

        assert layout.header_row == 1
        assert layout.data_start_row == 2
        assert layout.columns == {"code": 0, "label": 1, "annual": 2}
        assert layout.tier == "header"

    def test_collected_columns_keep_every_match(self):
        cells = [["Code", "Value", "Value"]]
        layout = HeaderScanTier().detect(cells, SPECS)

        assert layout.all("value") == [1, 2]
        assert layout.nth("value", 1) == 2
        assert layout.nth("value", 2) is None
        assert layout.get("value") == 1

    def test_fixed_columns_fill_gaps(self):
        layout = HeaderScanTier(fixed={"label": 1}).detect([["Code"]], SPECS)
        assert layout["label"] == 1

    def test_no_required_match(self):
        assert HeaderScanTier().detect([["Description", "Actual"]], SPECS) is None

    def test_only_scans_max_rows(self):
        cells = [["x"]] * 3 + [["Code"]]
        assert HeaderScanTier(max_rows=3).detect(cells, SPECS) is None


class TestProbes:
    """Content probes."""

    def test_ledger_code_probe_with_amounts(self):
        probe = ledger_code_probe(with_amounts=True)
        row = [None, 400110, "Medicare Part A", 0, 1200000, 100000, 650.0]

        assert probe(row) == {"code": 1, "label": 2, "annual": 4, "monthly": 5, "ppd": 6}

    def test_ledger_code_probe_needs_amount(self):
        probe = ledger_code_probe(with_amounts=True)
        assert probe([400110, "Medicare Part A"]) is None
        assert ledger_code_probe()([400110, "Medicare Part A"]) == {"code": 0, "label": 1}

    def test_long_text_probe(self):
        assert long_text_probe()(["WA", "Sunrise Health"]) == {"name": 1}
        assert long_text_probe()(["WA", 1]) is None

    def test_short_integer_probe(self):
        assert short_integer_probe()(["Sunrise", 5, "120 beds"]) == {"beds": 2}
        assert short_integer_probe()(["Sunrise", 120.5]) is None

    def test_large_number_probe_code_in_first_column(self):
        row = [400110, "Medicare", 1200000, 100000]
        assert large_number_probe()(row) == {"label": 1, "code": 0, "annual": 2, "monthly": 3}

    def test_large_number_probe_needs_two_numbers(self):
        assert large_number_probe()(["Medicare", 1200000]) is None

    def test_text_and_amount_probe(self):
        assert text_and_amount_probe()(["WA", "EBITDA", 5, 500000]) == {"label": 1, "annual": 3}

    def test_combine_requires_all(self):
        probe = combine_probes(long_text_probe(), short_integer_probe())
        assert probe(["Sunrise Health", 120]) == {"name": 0, "beds": 1}
        assert probe(["Sunrise Health", 9000]) is None


class TestLayoutDetector:
    """Tier ordering."""

    @pytest.fixture
    def detector(self) -> LayoutDetector:
        return LayoutDetector(SPECS, [
            HeaderScanTier(max_rows=5),
            ContentScanTier([ledger_code_probe(with_amounts=True)], max_rows=10),
            DefaultLayoutTier({"code": 0, "label": 1, "annual": 2}, data_start_row=1),
        ])

    def test_header_tier_first(self, detector):
        layout = detector.detect([["GL Code", "Description", "Actual"], [400110, "Medicare", 5]])
        assert layout.tier == "header"

    def test_content_tier_when_no_header(self, detector):
        cells = [["Sunrise"], [None, 400110, "Medicare Part A", 1200000]]
        layout = detector.detect(cells)

        assert layout.tier == "content"
        assert layout.data_start_row == 1
        assert layout["annual"] == 3

    def test_default_tier_last(self, detector):
        layout = detector.detect([["Notes"], ["Nothing numeric"]])
        assert layout.tier == "default"
        assert layout.columns == {"code": 0, "label": 1, "annual": 2}

    def test_empty_sheet(self, detector):
        assert detector.detect([]) is None

    def test_with_tier_returns_copy(self, detector):
        extended = detector.with_tier(DefaultLayoutTier({"label": 0}), position=0)

        assert extended.detect([["GL Code"]]).tier == "default"
        assert detector.detect([["GL Code"]]).tier == "header"
