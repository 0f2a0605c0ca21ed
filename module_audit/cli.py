"""
Command line front-end.

Usage:
    module-audit                         # Analyze ./assets
    module-audit --assets DIR --test     # First archives only, quick check
    module-audit --keep-temp --json out.json
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from . import __version__
from .config import load_config, validate_config
from .logging_config import setup_logging
from .pipeline import AnalysisOptions, default_temp_dir, run_analysis

logger = logging.getLogger(__name__)


def _worker_count(value: str) -> int:
    try:
        count = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid worker count: {value!r}")
    if count < 1:
        raise argparse.ArgumentTypeError(f"worker count must be at least 1, got {count}")
    return count


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="module-audit",
        description="Detect version mismatches of same-named modules across distribution archives",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Usage:", 1)[1] if __doc__ else None,
    )
    parser.add_argument(
        "--assets",
        type=Path,
        default=Path("assets"),
        help="Directory containing the archives to analyze (default: ./assets)",
    )
    parser.add_argument(
        "--temp",
        type=Path,
        default=None,
        help="Extraction root (default: a fresh directory below the system temp dir)",
    )
    parser.add_argument(
        "--test", "-t",
        action="store_true",
        help="Test mode: process only the first few archives",
    )
    parser.add_argument(
        "--keep-temp", "-k",
        action="store_true",
        help="Keep extracted files after the run",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path.cwd(),
        help="Directory for the text and CSV reports (default: current directory)",
    )
    parser.add_argument(
        "--json",
        type=Path,
        default=None,
        metavar="PATH",
        help="Also write a JSON snapshot of all modules and mismatches",
    )
    parser.add_argument(
        "--config",
        default=None,
        metavar="PATH",
        help="Configuration file (YAML or JSON)",
    )
    parser.add_argument(
        "--extract-workers",
        type=_worker_count,
        default=None,
        metavar="N",
        help="Simultaneous archive extractions (default: available parallelism)",
    )
    parser.add_argument(
        "--analysis-workers",
        type=_worker_count,
        default=None,
        metavar="N",
        help="Simultaneous module analyses (default: twice the available parallelism)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Only warnings and errors on the console",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        metavar="PATH",
        help="Also write a full debug log to this file",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the module version audit."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose, quiet=args.quiet, log_file=args.log_file)

    try:
        config = load_config(args.config, verbose=args.verbose)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    for warning in validate_config(config):
        logger.warning(f"Config: {warning}")

    options = AnalysisOptions(
        assets_dir=args.assets,
        temp_dir=args.temp or default_temp_dir(),
        test_mode=args.test,
        keep_temp=args.keep_temp,
        output_dir=args.output_dir,
        json_path=args.json,
        config=config,
        extract_workers=args.extract_workers,
        analysis_workers=args.analysis_workers,
        verbose=args.verbose,
    )

    try:
        result = run_analysis(options)
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return 130
    except Exception as e:
        logger.error(f"Analysis failed: {e}", exc_info=args.verbose)
        return 1

    if result.extraction is not None and result.extraction.failures:
        logger.info(f"{len(result.extraction.failures)} archives could not be extracted")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(130)
