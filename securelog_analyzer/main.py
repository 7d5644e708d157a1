from __future__ import annotations
"""Entry point of the security log analyzer.

This script wires all pieces together: it locates log files, runs the threat
analysis pipeline and writes the JSON report.  It also configures logging so
both console and file outputs are available.
"""

import argparse
import json
import logging
from pathlib import Path
from typing import List, Optional

from . import config
from .src.log_processor import process_logs
from .src.reputation import build_reputation_client
from .src.utils import discover_log_files

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Log to STDOUT and to the operational log file if permissions allow."""
    log_handlers: List[logging.Handler] = [logging.StreamHandler()]
    try:
        file_handler = logging.FileHandler(config.OPERATIONAL_LOG_FILE, encoding="utf-8")
        log_handlers.append(file_handler)
    except (PermissionError, FileNotFoundError):
        print(f"[CRITICAL] Cannot write to {config.OPERATIONAL_LOG_FILE}")

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s",
        handlers=log_handlers,
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="securelog-analyzer",
        description="Score source addresses found in security logs by threat level",
    )
    parser.add_argument(
        "paths",
        nargs="*",
        type=Path,
        help=f"log files to analyse (default: *.log/.gz/.bz2 under {config.TARGET_LOG_DIR})",
    )
    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=config.ANALYSIS_OUTPUT_FILE,
        help="where to write the JSON report",
    )
    parser.add_argument("--offline", action="store_true", help="never contact AbuseIPDB")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Locate log files and run the processing pipeline."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    log_paths: List[Path] = list(args.paths) or discover_log_files(config.TARGET_LOG_DIR)
    if not log_paths:
        logger.info(f"No log files found in {config.TARGET_LOG_DIR}")
        return 1

    report = process_logs(log_paths, reputation_client=build_reputation_client(offline=args.offline))
    try:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(report, f, ensure_ascii=False, indent=2)
    except PermissionError:
        logger.error(f"Cannot write analysis output to {args.output}")
        return 2

    parse_stats = report["parse"]
    summary = report["summary"]
    print(
        f"Parsed {parse_stats['parsed_lines']}/{parse_stats['total_lines']} lines; "
        f"{len(report['threats'])} sources "
        f"(high={summary['high']}, medium={summary['medium']}, low={summary['low']}); "
        f"report written to {args.output}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
