"""
Command-line entry point.

Reads one or more .xlsx workbooks, runs the extraction pipeline and prints the
result as JSON.

Usage:
    dealxl t13.xlsx valuation.xlsx --view
"""
import argparse
import json
import sys
from typing import List, Optional

from backend.dealxl_engine.display import to_line_item_view
from backend.dealxl_engine.orchestrator import EngineOptions, WorkbookInput, run_extraction
from backend.dealxl_engine.reader import read_workbook
from backend.exceptions import DealXLError
from backend.logging_config import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dealxl",
        description="Extract facility financials and portfolio valuations from deal workbooks.",
    )
    parser.add_argument("paths", nargs="+", help="Workbook files; each is submitted as its own workbook")
    parser.add_argument("--view", action="store_true", help="Print the review-grid view instead of the full result")
    parser.add_argument("--no-valuation", action="store_true", help="Skip portfolio valuation")
    parser.add_argument("--method-engine", action="store_true", help="Run the multi-method engine per facility")
    parser.add_argument("--log-level", default=None, help="Log level (defaults to DEALXL_LOG_LEVEL)")
    parser.add_argument("--json-logs", action="store_true", default=None, help="Render logs as JSON lines")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(level=args.log_level, json=args.json_logs)

    try:
        workbooks = [
            WorkbookInput(worksheets=read_workbook(path), document_id=f"workbook-{i + 1}", filename=path)
            for i, path in enumerate(args.paths)
        ]
        result = run_extraction(workbooks, EngineOptions(
            run_portfolio_valuation=not args.no_valuation,
            run_method_engine=args.method_engine,
        ))
    except DealXLError as e:
        print(json.dumps(e.to_dict(), indent=2, default=str), file=sys.stderr)
        return 1

    payload = to_line_item_view(result) if args.view else result.to_dict()
    print(json.dumps(payload, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
