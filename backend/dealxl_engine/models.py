"""
Data model for the DealXL Engine.

Implements the typed representation shared by every layer:
- Worksheet input records (cell matrix + metadata) produced by a workbook reader
- Ledger mapping entries and the read-only mapping lookup
- Statement output: facility sections, line items, census and summary metrics
- Valuation entries with category and portfolio totals
- Portfolio scenarios, entity groups and their financials
- Facility classification and resolved facility records
- Valuation method results, sensitivity tables and summaries
- ExtractionResult with the shared warnings channel
"""

import hashlib
import json
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import date
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

import structlog

logger = structlog.get_logger(__name__)

CellValue = Union[str, int, float, None]


class SheetType(str, Enum):
    """Semantic worksheet types."""
    STATEMENT = "statement"
    CENSUS = "census"
    RATES = "rates"
    RENT_ROLL = "rent_roll"
    SUMMARY = "summary"
    UNKNOWN = "unknown"


class WorkbookType(str, Enum):
    """Document types a submitted workbook can represent."""
    LEDGER_MAPPING = "ledger_mapping"
    OPERATING_REVIEW = "operating_review"
    ASSET_VALUATION = "asset_valuation"
    PORTFOLIO_MODEL = "portfolio_model"
    UNKNOWN = "unknown"


class LineCategory(str, Enum):
    """Line item categories."""
    REVENUE = "revenue"
    EXPENSE = "expense"
    CENSUS = "census"
    METRIC = "metric"


class MatchSource(str, Enum):
    """How a line item's category was determined."""
    LEDGER_MAPPING = "ledger_mapping"  # code found in the crosswalk
    LEDGER_CODE = "ledger_code"        # well-formed code, prefix rules
    LABEL = "label"                    # label text heuristics


class PropertyType(str, Enum):
    """Property-type sections used in valuation models."""
    OWNED_SKILLED = "owned-skilled"
    LEASED = "leased"
    ASSISTED_OWNED = "assisted-specific-needs-owned"


class ValuationBasis(str, Enum):
    """Which earnings metric and rate a property type is valued on."""
    EBITDA_CAP_RATE = "ebitda_cap_rate"
    NET_INCOME_MULTIPLIER = "net_income_multiplier"


class AssetType(str, Enum):
    """Care-level asset types for market benchmarks."""
    SNF = "SNF"
    ALF = "ALF"
    ILF = "ILF"


class ValuationMethod(str, Enum):
    """Supported valuation methods."""
    CAP_RATE = "cap_rate"
    PRICE_PER_BED = "price_per_bed"
    DCF = "dcf"
    NOI_MULTIPLE = "noi_multiple"
    COMPARABLE_SALES = "comparable_sales"
    REPLACEMENT_COST = "replacement_cost"


class ConfidenceLevel(str, Enum):
    """Confidence levels for decisions."""
    HIGH = "high"      # >= 0.85
    MEDIUM = "medium"  # >= 0.65
    LOW = "low"        # >= 0.40
    VERY_LOW = "very_low"  # < 0.40

    @classmethod
    def from_score(cls, score: float) -> "ConfidenceLevel":
        """Bucket a 0-1 score."""
        if score >= 0.85:
            return cls.HIGH
        if score >= 0.65:
            return cls.MEDIUM
        if score >= 0.40:
            return cls.LOW
        return cls.VERY_LOW


# =============================================================================
# Worksheet Input
# =============================================================================

@dataclass
class SheetMetadata:
    """Reader-supplied facts about a worksheet."""
    has_formulas: bool = False
    has_merged_cells: bool = False
    first_data_row: int = 0


@dataclass
class Worksheet:
    """One worksheet as a rectangular-ish matrix of typed cells."""
    name: str
    cells: List[List[CellValue]] = field(default_factory=list)
    sheet_type: Optional[SheetType] = None
    headers: List[str] = field(default_factory=list)
    header_row: int = 0
    facilities_detected: List[str] = field(default_factory=list)
    periods_detected: List[str] = field(default_factory=list)
    metadata: SheetMetadata = field(default_factory=SheetMetadata)

    @property
    def row_count(self) -> int:
        return len(self.cells)

    @property
    def column_count(self) -> int:
        return max((len(row) for row in self.cells), default=0)

    def cell(self, row: int, col: int) -> CellValue:
        """Bounds-safe cell access."""
        if row < 0 or col < 0 or row >= len(self.cells):
            return None
        cells = self.cells[row]
        if cells is None or col >= len(cells):
            return None
        return cells[col]

    def row(self, index: int) -> List[CellValue]:
        """Bounds-safe row access."""
        if 0 <= index < len(self.cells) and self.cells[index] is not None:
            return self.cells[index]
        return []

    def is_empty(self) -> bool:
        """True when no cell carries a value."""
        for row in self.cells:
            for value in row or []:
                if value is not None and not (isinstance(value, str) and not value.strip()):
                    return False
        return True

    def content_hash(self) -> str:
        """Stable digest of the sheet name and cell matrix."""
        payload = json.dumps([self.name, self.cells], default=str, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# =============================================================================
# Classification
# =============================================================================

@dataclass
class SheetClassification:
    """Sheet classifier decision with its scoring rationale."""
    sheet_name: str
    sheet_type: SheetType
    scores: Dict[str, float] = field(default_factory=dict)
    matched_keywords: List[str] = field(default_factory=list)
    used_fallback: bool = False


@dataclass
class SheetSummary:
    """Per-sheet note in a workbook classification."""
    name: str
    row_count: int
    suggested_type: str


@dataclass
class WorkbookClassification:
    """Document-level type decision."""
    document_id: str
    filename: str
    workbook_type: WorkbookType
    confidence: float
    indicators: List[str] = field(default_factory=list)
    sheet_summary: List[SheetSummary] = field(default_factory=list)
    extraction_priority: int = 99


# =============================================================================
# Ledger Mapping
# =============================================================================

@dataclass(frozen=True)
class LedgerMappingEntry:
    """One crosswalk row: ledger code to canonical category."""
    code: str
    label: str
    category: str
    subcategory: Optional[str] = None
    facility_overrides: Mapping[str, str] = field(default_factory=dict)

    @property
    def base_code(self) -> str:
        return self.code.split("-", 1)[0]

    @property
    def line_category(self) -> LineCategory:
        """Collapse the free-text category to a line item category."""
        text = self.category.lower()
        if "revenue" in text:
            return LineCategory.REVENUE
        if "census" in text or "days" in text:
            return LineCategory.CENSUS
        if any(word in text for word in ("expense", "cost", "admin", "operating", "below", "therapy", "ancillary")):
            return LineCategory.EXPENSE
        if self.code.startswith("4"):
            return LineCategory.REVENUE
        if self.code.startswith("9"):
            return LineCategory.CENSUS
        return LineCategory.EXPENSE

    def override_for(self, facility_name: str) -> Optional[str]:
        """Facility-specific code override, matched case-insensitively."""
        wanted = facility_name.lower().strip()
        for name, code in self.facility_overrides.items():
            if name.lower().strip() == wanted:
                return code
        return None


class LedgerMapping:
    """
    Read-only lookup from ledger code to mapping entry.

    Built once per workbook and passed explicitly into every parser. The
    cache key is the content hash of the source worksheet.
    """

    def __init__(
        self,
        entries: Optional[Dict[str, LedgerMappingEntry]] = None,
        source_sheet: Optional[str] = None,
        cache_key: Optional[str] = None,
    ):
        self._entries: Mapping[str, LedgerMappingEntry] = MappingProxyType(dict(entries or {}))
        self.source_sheet = source_sheet
        self.cache_key = cache_key

    def get(self, code: Optional[str]) -> Optional[LedgerMappingEntry]:
        """Look up a code, falling back to its suffix-stripped base."""
        if not code:
            return None
        entry = self._entries.get(code)
        if entry is None and "-" in code:
            entry = self._entries.get(code.split("-", 1)[0])
        return entry

    def __contains__(self, code: object) -> bool:
        return isinstance(code, str) and self.get(code) is not None

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def items(self):
        return self._entries.items()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_sheet": self.source_sheet,
            "cache_key": self.cache_key,
            "entries": {code: to_serializable(entry) for code, entry in sorted(self._entries.items())},
        }


# =============================================================================
# Statement Output
# =============================================================================

@dataclass
class LineItem:
    """A facility-scoped statement line."""
    category: LineCategory
    label: str
    annual: float
    subcategory: Optional[str] = None
    ledger_code: Optional[str] = None
    monthly: Optional[float] = None
    ppd: Optional[float] = None
    budget_annual: Optional[float] = None
    budget_ppd: Optional[float] = None
    confidence: float = 0.6
    matched_by: MatchSource = MatchSource.LABEL
    row_index: Optional[int] = None
    mapped_label: Optional[str] = None


@dataclass
class CensusData:
    """Census sub-record of a facility section."""
    beds: Optional[float] = None
    total_patient_days: Optional[float] = None
    average_daily_census: Optional[float] = None
    occupancy: Optional[float] = None

    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (self.beds, self.total_patient_days, self.average_daily_census, self.occupancy)
        )


@dataclass
class SummaryMetrics:
    """Summary financials, synthesized separately from line items."""
    total_revenue: float = 0.0
    total_expenses: float = 0.0
    ebitdar: float = 0.0
    ebitda: float = 0.0
    net_income: float = 0.0
    management_fee: Optional[float] = None
    lease_expense: Optional[float] = None
    provider_tax: Optional[float] = None


@dataclass
class FacilitySection:
    """Statement parser output for one facility."""
    facility_name: str
    source_sheet: str
    facility_type: Optional[str] = None
    start_row: int = 0
    end_row: int = 0
    census: CensusData = field(default_factory=CensusData)
    line_items: List[LineItem] = field(default_factory=list)
    summary: SummaryMetrics = field(default_factory=SummaryMetrics)
    periods: List[str] = field(default_factory=list)

    def items_in(self, category: LineCategory) -> List[LineItem]:
        return [item for item in self.line_items if item.category == category]


@dataclass
class StatementResult:
    """All facility sections parsed from statement sheets."""
    facilities: List[FacilitySection] = field(default_factory=list)
    rollup: Optional[FacilitySection] = None
    periods: List[str] = field(default_factory=list)
    code_labels: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


# =============================================================================
# Valuation Entries
# =============================================================================

@dataclass
class ValuationEntry:
    """Per-facility valuation inputs from a valuation worksheet."""
    facility_name: str
    property_type: PropertyType
    beds: float
    snc_percent: Optional[float] = None
    cap_rate: Optional[float] = None
    multiplier: Optional[float] = None
    ebitda_prior: Optional[float] = None
    ebitda_current: Optional[float] = None
    net_income_prior: Optional[float] = None
    net_income_current: Optional[float] = None
    value_prior: Optional[float] = None
    value_current: Optional[float] = None
    value_per_bed_prior: Optional[float] = None
    value_per_bed_current: Optional[float] = None
    city: Optional[str] = None
    state: Optional[str] = None
    row_index: Optional[int] = None

    def __post_init__(self):
        if not self.beds or self.beds <= 0:
            raise ValueError(f"ValuationEntry '{self.facility_name}' requires a positive bed count")
        if self.cap_rate is not None and self.multiplier is not None:
            raise ValueError(f"ValuationEntry '{self.facility_name}' cannot carry both cap rate and multiplier")

    @property
    def ebitda(self) -> Optional[float]:
        return self.ebitda_current if self.ebitda_current else self.ebitda_prior

    @property
    def net_income(self) -> Optional[float]:
        return self.net_income_current if self.net_income_current else self.net_income_prior

    @property
    def value(self) -> Optional[float]:
        return self.value_current if self.value_current else self.value_prior


@dataclass
class CategoryTotal:
    """Aggregate of valuation entries sharing a property type."""
    category: PropertyType
    facility_count: int
    total_beds: float
    total_value: float
    avg_value_per_bed: float
    valuation_method: str


@dataclass
class PortfolioTotal:
    """Aggregate across all facilities."""
    facility_count: int = 0
    total_beds: float = 0.0
    total_value: float = 0.0
    avg_value_per_bed: float = 0.0


@dataclass
class ValuationEntryResult:
    """Valuation-entry parser output."""
    entries: List[ValuationEntry] = field(default_factory=list)
    category_totals: List[CategoryTotal] = field(default_factory=list)
    portfolio_total: PortfolioTotal = field(default_factory=PortfolioTotal)
    source_sheet: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


# =============================================================================
# Portfolio Model
# =============================================================================

@dataclass
class FinancialMetric:
    """One summary figure with optional monthly/ppd views."""
    annual: float = 0.0
    monthly: Optional[float] = None
    ppd: Optional[float] = None
    margin: Optional[float] = None


@dataclass
class BreakdownLine:
    """Revenue or expense line inside an entity group."""
    label: str
    annual: float
    monthly: Optional[float] = None
    ppd: Optional[float] = None


@dataclass
class PortfolioFinancials:
    """Financial summary of an entity group or a whole scenario."""
    total_revenue: FinancialMetric = field(default_factory=FinancialMetric)
    ebitdar: FinancialMetric = field(default_factory=FinancialMetric)
    ebitda: FinancialMetric = field(default_factory=FinancialMetric)
    management_fee: Optional[FinancialMetric] = None
    lease_expense: Optional[FinancialMetric] = None
    revenue_breakdown: List[BreakdownLine] = field(default_factory=list)
    expense_breakdown: List[BreakdownLine] = field(default_factory=list)


@dataclass
class EntityGroup:
    """Rollup grouping of facilities by ownership or geography."""
    name: str
    financials: PortfolioFinancials


@dataclass
class PortfolioScenario:
    """One scenario sheet of a portfolio model."""
    name: str
    sheet_name: str
    entity_groups: List[EntityGroup] = field(default_factory=list)
    totals: PortfolioFinancials = field(default_factory=PortfolioFinancials)


@dataclass
class PortfolioModelResult:
    """Portfolio-model parser output."""
    scenarios: List[PortfolioScenario] = field(default_factory=list)
    facilities: List[FacilitySection] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


# =============================================================================
# Facility Classification & Identity
# =============================================================================

@dataclass
class FacilityClassification:
    """Property-type decision for one facility."""
    facility_name: str
    property_type: PropertyType
    valuation_basis: ValuationBasis
    applicable_rate: float
    beds: float = 0.0
    snc_percent: Optional[float] = None
    confidence: float = 0.6
    indicators: List[str] = field(default_factory=list)


@dataclass
class FacilityMatch:
    """Outcome of comparing two facility names."""
    source_name: str
    target_name: str
    score: float
    accepted: bool
    needs_review: bool = False
    kind: str = ""


@dataclass
class FacilityRecord:
    """One resolved facility identity with merged attributes."""
    canonical_name: str
    name: str
    aliases: List[str] = field(default_factory=list)
    city: Optional[str] = None
    state: Optional[str] = None
    beds: float = 0.0
    property_type: Optional[PropertyType] = None
    statement: Optional[FacilitySection] = None
    valuation_entry: Optional[ValuationEntry] = None
    classification: Optional[FacilityClassification] = None
    needs_review: bool = False
    match_score: Optional[float] = None


# =============================================================================
# Valuation
# =============================================================================

@dataclass
class ValuationInput:
    """Normalized subject facility for the reconciliation engine."""
    beds: float
    asset_type: AssetType = AssetType.SNF
    state: Optional[str] = None
    facility_name: Optional[str] = None
    # Income
    noi: Optional[float] = None
    ebitdar: Optional[float] = None
    revenue: Optional[float] = None
    expenses: Optional[float] = None
    # Cap rate inputs
    target_cap_rate: Optional[float] = None
    cap_rate_low: Optional[float] = None
    cap_rate_high: Optional[float] = None
    market_cap_rate: Optional[float] = None
    noi_multiple: Optional[float] = None
    market_price_per_bed: Optional[float] = None
    # Property
    occupancy: Optional[float] = None
    cms_rating: Optional[int] = None
    year_built: Optional[int] = None
    year_renovated: Optional[int] = None
    square_footage: Optional[float] = None
    acres: Optional[float] = None
    land_value: Optional[float] = None
    region: Optional[str] = None
    location_type: str = "suburban"
    # DCF
    projection_years: int = 10
    discount_rate: Optional[float] = None
    terminal_cap_rate: Optional[float] = None
    revenue_growth_rate: Optional[float] = None
    expense_growth_rate: Optional[float] = None
    # Reference date for age and recency arithmetic
    as_of: date = field(default_factory=date.today)


@dataclass
class ComparableSale:
    """A closed transaction used by the comparable-sales method."""
    property_name: str
    asset_type: AssetType
    state: str
    beds: float
    sale_price: float
    sale_date: date
    city: Optional[str] = None
    cap_rate: Optional[float] = None
    occupancy_at_sale: Optional[float] = None

    @property
    def price_per_bed(self) -> float:
        return self.sale_price / self.beds if self.beds else 0.0


@dataclass
class ValuationMethodResult:
    """Output of one valuation method."""
    method: ValuationMethod
    value: float
    confidence: float
    value_low: Optional[float] = None
    value_high: Optional[float] = None
    inputs_used: Dict[str, Any] = field(default_factory=dict)
    assumptions: List[str] = field(default_factory=list)
    notes: str = ""


@dataclass
class SensitivityPoint:
    """One grid point of a sensitivity table."""
    input_value: float
    value: float
    delta: float
    delta_percent: float
    label: str = ""


@dataclass
class SensitivityTable:
    """Values recomputed across a symmetric grid of one input."""
    variable: str
    base_input: float
    base_value: float
    points: List[SensitivityPoint] = field(default_factory=list)


@dataclass
class ValuationSummary:
    """Blended result across valuation methods."""
    recommended_value: float
    weighted_average: float
    value_low: float
    value_high: float
    confidence: float
    methods: List[ValuationMethodResult] = field(default_factory=list)
    sensitivity: List[SensitivityTable] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class InputValidation:
    """Result of validating a ValuationInput."""
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class FacilityValuation:
    """Property-type valuation of one facility."""
    facility_name: str
    property_type: PropertyType
    beds: float
    metric_used: str
    metric_value: float
    rate_or_multiplier: float
    rate_label: str
    value: float
    value_per_bed: float
    snc_percent: Optional[float] = None
    method_summary: Optional[ValuationSummary] = None


@dataclass
class DualView:
    """Internal versus external (lender) value of the portfolio."""
    internal_value: float
    external_value: float
    low: float
    mid: float
    high: float


@dataclass
class PortfolioValuation:
    """Portfolio valuation across property types."""
    facilities: List[FacilityValuation] = field(default_factory=list)
    categories: List[CategoryTotal] = field(default_factory=list)
    total: PortfolioTotal = field(default_factory=PortfolioTotal)
    sensitivity: Optional[SensitivityTable] = None
    dual_view: Optional[DualView] = None


# =============================================================================
# Warnings & Result
# =============================================================================

@dataclass
class ExtractionWarning:
    """A human-readable, non-fatal finding from a parsing stage."""
    stage: str
    message: str
    context: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"[{self.stage}] {self.message}"


class WarningLog:
    """Shared warnings channel for one extraction run."""

    def __init__(self):
        self._items: List[ExtractionWarning] = []

    def add(self, stage: str, message: str, **context: Any) -> ExtractionWarning:
        warning = ExtractionWarning(stage=stage, message=message, context=context)
        self._items.append(warning)
        logger.warning(message, stage=stage, **context)
        return warning

    def extend(self, stage: str, messages: List[str]) -> None:
        for message in messages:
            self.add(stage, message)

    @property
    def items(self) -> List[ExtractionWarning]:
        return list(self._items)

    def messages(self) -> List[str]:
        return [str(item) for item in self._items]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[ExtractionWarning]:
        return iter(self._items)


@dataclass
class ExtractionResult:
    """Structured output of one extraction run."""
    workbooks: List[WorkbookClassification] = field(default_factory=list)
    sheet_classifications: List[SheetClassification] = field(default_factory=list)
    ledger_mapping: Optional[LedgerMapping] = None
    statements: Optional[StatementResult] = None
    valuation_entries: Optional[ValuationEntryResult] = None
    portfolio_model: Optional[PortfolioModelResult] = None
    classifications: List[FacilityClassification] = field(default_factory=list)
    facilities: List[FacilityRecord] = field(default_factory=list)
    facility_matches: List[FacilityMatch] = field(default_factory=list)
    portfolio_valuation: Optional[PortfolioValuation] = None
    confidence: float = 0.0
    warnings: List[str] = field(default_factory=list)
    as_of: Optional[date] = None

    @property
    def is_empty(self) -> bool:
        """True when nothing usable was extracted."""
        has_statements = bool(self.statements and self.statements.facilities)
        has_entries = bool(self.valuation_entries and self.valuation_entries.entries)
        has_scenarios = bool(self.portfolio_model and (
            self.portfolio_model.scenarios or self.portfolio_model.facilities
        ))
        return not (has_statements or has_entries or has_scenarios or self.ledger_mapping)

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)


def to_serializable(obj: Any) -> Any:
    """Recursively convert engine objects to JSON-friendly structures."""
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, LedgerMapping):
        return obj.to_dict()
    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_serializable(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, Mapping):
        return {str(k): to_serializable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_serializable(v) for v in obj]
    if isinstance(obj, date):
        return obj.isoformat()
    return obj
