"""
Orchestrator for the DealXL Engine.

Main entry point that coordinates the extraction pipeline:
Pass 1: Classify sheets and workbooks
Pass 2: Build the ledger mapping (explicit, cached by content hash)
Pass 3: Parse statements, valuation entries and portfolio models
Pass 4: Resolve facility identities across workbooks
Pass 5: Classify facilities by property type
Pass 6: Value the portfolio
Pass 7: Score overall confidence and collect warnings
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple, Union

import structlog

from backend.config import get_settings
from backend.dealxl_engine.classifier import SheetClassifier, get_sheet_classifier
from backend.dealxl_engine.facility_classifier import FacilityClassifier
from backend.dealxl_engine.facility_resolver import FacilityResolver
from backend.dealxl_engine.ledger_mapping import MAPPING_SHEET, LedgerMappingBuilder, LedgerMappingCache
from backend.dealxl_engine.models import (
    ComparableSale,
    ExtractionResult,
    FacilitySection,
    LedgerMapping,
    PortfolioModelResult,
    SheetClassification,
    StatementResult,
    ValuationEntryResult,
    ValuationMethod,
    WarningLog,
    WorkbookClassification,
    WorkbookType,
    Worksheet,
)
from backend.dealxl_engine.portfolio_model import PortfolioModelParser
from backend.dealxl_engine.statement_parser import StatementParser
from backend.dealxl_engine.valuation.engine import ValuationEngine
from backend.dealxl_engine.valuation.portfolio import FacilityOverride, PortfolioValuator
from backend.dealxl_engine.valuation_entries import ValuationEntryParser, summarize_entries
from backend.dealxl_engine.workbook_classifier import WorkbookClassifier
from backend.exceptions import NoUsableSheetsError, WorksheetFormatError

logger = structlog.get_logger(__name__)

ENTRY_CONFIDENCE = 0.9


@dataclass
class WorkbookInput:
    """One submitted workbook."""
    worksheets: List[Worksheet]
    document_id: str = ""
    filename: str = ""


@dataclass
class EngineOptions:
    """Per-call options; thresholds default to the configured settings."""
    run_portfolio_valuation: bool = True
    run_method_engine: bool = False
    valuation_methods: Optional[List[ValuationMethod]] = None
    comparables: List[ComparableSale] = field(default_factory=list)
    as_of: Optional[date] = None
    ledger_cache: Optional[LedgerMappingCache] = None
    facility_overrides: Dict[str, FacilityOverride] = field(default_factory=dict)
    facility_accept_threshold: float = field(default_factory=lambda: get_settings().facility_accept_threshold)
    facility_review_threshold: float = field(default_factory=lambda: get_settings().facility_review_threshold)


def run_extraction(
    inputs: Union[Sequence[Worksheet], Sequence[WorkbookInput]],
    options: Optional[EngineOptions] = None,
) -> ExtractionResult:
    """
    Main entry point for the DealXL Engine.

    Args:
        inputs: Worksheets of a single workbook, or several WorkbookInputs.
        options: Engine configuration options.

    Returns:
        ExtractionResult; structural problems surface as warnings.

    Raises:
        NoUsableSheetsError: If no worksheet carries any cell data.
        WorksheetFormatError: If a worksheet record is not a matrix of rows.
    """
    options = options or EngineOptions()
    workbooks = _as_workbooks(inputs)
    log = WarningLog()

    all_sheets = [sheet for wb in workbooks for sheet in wb.worksheets]
    if not any(not sheet.is_empty() for sheet in all_sheets):
        raise NoUsableSheetsError(sheet_names=[sheet.name for sheet in all_sheets])

    logger.info(
        "Starting DealXL extraction",
        workbooks=len(workbooks),
        sheets=len(all_sheets),
    )

    # Resolved once so every age and recency computation in the run shares it
    result = ExtractionResult(as_of=options.as_of or date.today())

    # =================================================================
    # Pass 1: CLASSIFICATION
    # =================================================================
    sheet_classifier = get_sheet_classifier()
    workbook_classifier = WorkbookClassifier()

    classified: List[Tuple[WorkbookClassification, List[Worksheet], int]] = []
    for index, workbook in enumerate(workbooks):
        sheets, sheet_results = _annotate(workbook.worksheets, sheet_classifier)
        result.sheet_classifications.extend(sheet_results)
        classification = workbook_classifier.classify(sheets, workbook.document_id, workbook.filename)
        result.workbooks.append(classification)
        classified.append((classification, sheets, index))

    classified.sort(key=lambda item: (item[0].extraction_priority, item[2]))

    # =================================================================
    # Pass 2: LEDGER MAPPING
    # =================================================================
    result.ledger_mapping = _build_ledger_mapping(classified, options, log)

    # =================================================================
    # Pass 3: PARSING
    # =================================================================
    statement_parser = StatementParser(classifier=sheet_classifier)
    entry_parser = ValuationEntryParser()
    portfolio_parser = PortfolioModelParser(statement_parser=statement_parser)

    statements: List[StatementResult] = []
    entry_results: List[ValuationEntryResult] = []
    portfolio_results: List[PortfolioModelResult] = []

    for classification, sheets, _ in classified:
        workbook_type = classification.workbook_type
        if workbook_type == WorkbookType.LEDGER_MAPPING:
            continue
        if workbook_type == WorkbookType.ASSET_VALUATION:
            entry_results.append(entry_parser.parse(sheets, log))
        elif workbook_type == WorkbookType.PORTFOLIO_MODEL:
            portfolio_results.append(portfolio_parser.parse(sheets, result.ledger_mapping, log))
        else:
            statements.append(statement_parser.parse(sheets, result.ledger_mapping, log))

    result.statements = _merge_statements(statements)
    result.valuation_entries = _merge_entries(entry_results)
    result.portfolio_model = _merge_portfolio(portfolio_results)

    # =================================================================
    # Pass 4-5: FACILITY RESOLUTION & CLASSIFICATION
    # =================================================================
    resolver = FacilityResolver(
        accept_threshold=options.facility_accept_threshold,
        review_threshold=options.facility_review_threshold,
    )
    sections = _statement_facilities(result)
    entries = result.valuation_entries.entries if result.valuation_entries else []
    result.facilities, result.facility_matches = resolver.resolve(sections, entries, warnings=log)

    result.classifications = FacilityClassifier().classify_records(result.facilities)
    resolver.apply_classifications(result.facilities, result.classifications)

    # =================================================================
    # Pass 6: PORTFOLIO VALUATION
    # =================================================================
    if options.run_portfolio_valuation and result.classifications:
        valuator = PortfolioValuator(
            engine=ValuationEngine(methods=options.valuation_methods, comparables=options.comparables),
            run_method_engine=options.run_method_engine,
        )
        result.portfolio_valuation = valuator.value(
            result.facilities,
            overrides=options.facility_overrides,
            warnings=log,
            as_of=result.as_of,
        )

    # =================================================================
    # Pass 7: CONFIDENCE & WARNINGS
    # =================================================================
    result.confidence = overall_confidence(result)
    if result.is_empty:
        log.add("orchestrator", "No statements, valuation entries or portfolio data were extracted")
    result.warnings = log.messages()

    logger.info(
        "DealXL extraction complete",
        facilities=len(result.facilities),
        classifications=len(result.classifications),
        confidence=round(result.confidence, 3),
        warnings=len(result.warnings),
    )
    return result


# =============================================================================
# Helper Functions
# =============================================================================

def _as_workbooks(inputs: Union[Sequence[Worksheet], Sequence[WorkbookInput]]) -> List[WorkbookInput]:
    items = list(inputs)
    if items and all(isinstance(item, Worksheet) for item in items):
        items = [WorkbookInput(worksheets=items)]
    workbooks = []
    for index, item in enumerate(items):
        if not isinstance(item, WorkbookInput):
            raise TypeError(f"Expected Worksheet or WorkbookInput, got {type(item).__name__}")
        for sheet in item.worksheets:
            _check_worksheet(sheet)
        workbooks.append(WorkbookInput(
            worksheets=list(item.worksheets),
            document_id=item.document_id or f"workbook-{index + 1}",
            filename=item.filename,
        ))
    return workbooks


def _check_worksheet(sheet: Worksheet) -> None:
    if not isinstance(sheet, Worksheet):
        raise TypeError(f"Expected Worksheet, got {type(sheet).__name__}")
    if not isinstance(sheet.cells, list):
        raise WorksheetFormatError(sheet.name, "cells must be a list of rows")
    for index, row in enumerate(sheet.cells):
        if row is not None and not isinstance(row, (list, tuple)):
            raise WorksheetFormatError(sheet.name, f"row {index} is not a list of cells")


def _annotate(
    worksheets: Sequence[Worksheet],
    classifier: SheetClassifier,
) -> Tuple[List[Worksheet], List[SheetClassification]]:
    """Annotated copies of the non-empty sheets; the inputs are left untouched."""
    sheets: List[Worksheet] = []
    results: List[SheetClassification] = []
    for sheet in worksheets:
        if sheet.is_empty():
            continue
        annotated, classification = classifier.annotate(sheet)
        sheets.append(annotated)
        results.append(classification)
    return sheets, results


def _build_ledger_mapping(
    classified: Sequence[Tuple[WorkbookClassification, List[Worksheet], int]],
    options: EngineOptions,
    log: WarningLog,
) -> Optional[LedgerMapping]:
    """Mapping from a mapping workbook, else from any sheet named like a crosswalk."""
    mapping_sheets: Optional[List[Worksheet]] = None
    for classification, sheets, _ in classified:
        if classification.workbook_type == WorkbookType.LEDGER_MAPPING and sheets:
            mapping_sheets = sheets
            break
    if mapping_sheets is None:
        named = [
            sheet for _, sheets, _ in classified for sheet in sheets
            if MAPPING_SHEET.search(sheet.name or "")
        ]
        if not named:
            return None
        mapping_sheets = named[:1]

    if options.ledger_cache is not None:
        mapping = options.ledger_cache.get_or_build(mapping_sheets, log)
    else:
        mapping = LedgerMappingBuilder().build(mapping_sheets, log)
    return mapping if mapping else None


def _merge_statements(results: Sequence[StatementResult]) -> Optional[StatementResult]:
    if not results:
        return None
    if len(results) == 1:
        return results[0]
    merged = StatementResult()
    seen = set()
    for part in results:
        for facility in part.facilities:
            key = facility.facility_name.lower().strip()
            if key not in seen:
                seen.add(key)
                merged.facilities.append(facility)
        merged.rollup = merged.rollup or part.rollup
        merged.periods.extend(part.periods)
        for code, label in part.code_labels.items():
            merged.code_labels.setdefault(code, label)
        merged.warnings.extend(part.warnings)
    merged.periods = sorted(set(merged.periods))
    return merged


def _merge_entries(results: Sequence[ValuationEntryResult]) -> Optional[ValuationEntryResult]:
    if not results:
        return None
    if len(results) == 1:
        return results[0]
    merged = ValuationEntryResult(source_sheet=next((r.source_sheet for r in results if r.source_sheet), None))
    for part in results:
        merged.entries.extend(part.entries)
        merged.warnings.extend(part.warnings)
    merged.category_totals, merged.portfolio_total = summarize_entries(merged.entries)
    return merged


def _merge_portfolio(results: Sequence[PortfolioModelResult]) -> Optional[PortfolioModelResult]:
    if not results:
        return None
    if len(results) == 1:
        return results[0]
    merged = PortfolioModelResult()
    for part in results:
        merged.scenarios.extend(part.scenarios)
        merged.facilities.extend(part.facilities)
        merged.warnings.extend(part.warnings)
    return merged


def _statement_facilities(result: ExtractionResult) -> List[FacilitySection]:
    sections: List[FacilitySection] = []
    seen = set()
    sources = []
    if result.statements is not None:
        sources.extend(result.statements.facilities)
    if result.portfolio_model is not None:
        sources.extend(result.portfolio_model.facilities)
    for section in sources:
        key = section.facility_name.lower().strip()
        if key not in seen:
            seen.add(key)
            sections.append(section)
    return sections


def overall_confidence(result: ExtractionResult) -> float:
    """
    Mean of the available quality factors, capped at 1.

    Factors: workbook classification confidence, share of statement
    facilities with EBITDA, valuation entries present, facility
    classification confidence.
    """
    factors: List[float] = []
    if result.workbooks:
        factors.append(sum(w.confidence for w in result.workbooks) / len(result.workbooks))
    if result.statements is not None and result.statements.facilities:
        facilities = result.statements.facilities
        factors.append(sum(1 for f in facilities if f.summary.ebitda) / len(facilities))
    if result.valuation_entries is not None and result.valuation_entries.entries:
        factors.append(ENTRY_CONFIDENCE)
    if result.classifications:
        factors.append(sum(c.confidence for c in result.classifications) / len(result.classifications))
    if not factors:
        return 0.0
    return min(sum(factors) / len(factors), 1.0)
