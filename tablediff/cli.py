"""
tablediff command line interface.
"""

import argparse
import os
import sys
from pathlib import Path
from typing import List, Optional

import yaml

from . import __version__
from .adapters.engines import Credentials
from .config.manager import ConfigManager, create_sample_config
from .config.models import CompareRequest, FileSource, QuerySource, Settings
from .core.errors import TableDiffError
from .core.orchestrator import ComparisonOrchestrator
from .ui.console import ConsoleRenderer
from .utils.logger import get_logger


logger = get_logger()

SAMPLE_CONFIG_NAME = "comparisons_sample.yaml"

# Passwords are read from the environment, never from argv
SOURCE_PASSWORD_ENV = "TABLEDIFF_SOURCE_PASSWORD"
TARGET_PASSWORD_ENV = "TABLEDIFF_TARGET_PASSWORD"
PASSWORD_ENV = "TABLEDIFF_PASSWORD"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tablediff",
        description="Compare CSV, Excel, inline and SQL sources and write an Excel diff report"
    )
    parser.add_argument(
        "--create-sample",
        action="store_true",
        help=f"Create sample configuration file ({SAMPLE_CONFIG_NAME})"
    )
    parser.add_argument(
        "--settings",
        help="YAML file whose 'defaults' section overrides built-in settings"
    )
    parser.add_argument("--log-level", help="DEBUG, INFO, WARN or ERROR")
    parser.add_argument("--log-file", help="Append JSON-lines logs to this file")
    parser.add_argument(
        "--version",
        action="version",
        version=f"tablediff v{__version__}"
    )

    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Run comparison jobs from a YAML file")
    run.add_argument("config", help="Jobs file")
    run.add_argument("--only", help="Run only the comparison with this name")

    compare = sub.add_parser("compare", help="Compare two sources")
    compare.add_argument("--source", required=True,
                         help="File path, or connection URL with --source-query")
    compare.add_argument("--target", required=True,
                         help="File path, or connection URL with --target-query")
    compare.add_argument("--source-query", help="SELECT to run on --source")
    compare.add_argument("--target-query", help="SELECT to run on --target")
    compare.add_argument("--source-user", help="Username for --source")
    compare.add_argument("--target-user", help="Username for --target")
    compare.add_argument("--key", help="Key column(s), comma separated")
    compare.add_argument("--source-key", help="Key column(s) on the source side")
    compare.add_argument("--target-key", help="Key column(s) on the target side")
    compare.add_argument("--ignore", action="append", default=[],
                         help="Column(s) to ignore, repeatable or comma separated")
    compare.add_argument("--threshold", action="append", default=[],
                         metavar="COL=PCT", help="Tolerated percentage difference")
    compare.add_argument("--out", help="Output directory")
    compare.add_argument("--report-name", help="Report file name")
    compare.add_argument("--delimiter", help="Delimiter for both files")
    compare.add_argument("--no-header", action="store_true",
                         help="Files have no header row")
    compare.add_argument("--concurrent", action="store_true",
                         help="Fetch source and target concurrently")

    preview = sub.add_parser("preview", help="Preview a query")
    preview.add_argument("--target", required=True, help="Connection URL")
    preview.add_argument("--query", required=True, help="SELECT to preview")
    preview.add_argument("--rows", type=int, help="Number of rows")
    preview.add_argument("--user", help="Username")

    export = sub.add_parser("export", help="Export a query to Excel")
    export.add_argument("--target", required=True, help="Connection URL")
    export.add_argument("--query", required=True, help="SELECT to export")
    export.add_argument("--out", help="Output directory")
    export.add_argument("--sheet", help="Sheet name")
    export.add_argument("--report-name", help="Report file name")
    export.add_argument("--user", help="Username")

    test = sub.add_parser("test-connection", help="Check that a database is reachable")
    test.add_argument("--target", required=True, help="Connection URL")
    test.add_argument("--user", help="Username")

    return parser


def _credentials(user: Optional[str], password_env: str) -> Credentials:
    password = os.environ.get(password_env)
    if password is None:
        password = os.environ.get(PASSWORD_ENV)
    return Credentials(username=user, password=password)


def _descriptor(location: str, query: Optional[str], user: Optional[str],
                key: Optional[str], password_env: str, args):
    if query:
        return QuerySource(target=location, query=query,
                           credentials=_credentials(user, password_env), key=key)
    return FileSource(
        path=location,
        delimiter=args.delimiter,
        has_header=False if args.no_header else None,
        key=key,
    )


def _load_settings(args) -> Settings:
    if args.settings:
        manager = ConfigManager(Path(args.settings))
        manager.load()
        return manager.settings
    return Settings()


def run_jobs(args, settings: Settings, renderer: ConsoleRenderer) -> int:
    manager = ConfigManager(Path(args.config))
    manager.load()
    settings = manager.settings if not args.settings else settings
    _configure_logging(args, settings)

    requests = manager.comparisons
    if args.only:
        requests = [manager.get_comparison(args.only)]

    orchestrator = ComparisonOrchestrator(settings=settings)
    summaries = []
    for request in requests:
        summary = orchestrator.compare(request)
        renderer.show_summary(summary)
        summaries.append(summary)

    if len(summaries) > 1:
        renderer.show_batch(summaries)
    return 0 if summaries and all(s.succeeded for s in summaries) else 1


def run_compare(args, settings: Settings, renderer: ConsoleRenderer) -> int:
    if args.concurrent:
        settings.fetch_mode = "concurrent"

    ignore: List[str] = []
    for value in args.ignore:
        ignore.extend(c.strip() for c in value.split(",") if c.strip())

    request = CompareRequest(
        source=_descriptor(args.source, args.source_query, args.source_user,
                           args.source_key, SOURCE_PASSWORD_ENV, args),
        target=_descriptor(args.target, args.target_query, args.target_user,
                           args.target_key, TARGET_PASSWORD_ENV, args),
        key=args.key,
        ignore_columns=tuple(ignore),
        thresholds=args.threshold,
        output_dir=args.out,
        report_name=args.report_name,
    )
    summary = ComparisonOrchestrator(settings=settings).compare(request)
    renderer.show_summary(summary)
    return 0 if summary.succeeded else 1


def _configure_logging(args, settings: Settings):
    logger.configure(
        level=args.log_level or settings.log_level,
        log_file=args.log_file or settings.log_file,
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    renderer = ConsoleRenderer()

    if args.create_sample:
        try:
            path = create_sample_config(Path(SAMPLE_CONFIG_NAME))
        except FileExistsError as e:
            renderer.log_error(str(e))
            return 1
        renderer.log_success(f"Sample configuration created: {path}")
        return 0

    if not args.command:
        parser.print_help()
        return 1

    try:
        settings = _load_settings(args)
        _configure_logging(args, settings)

        if args.command == "run":
            return run_jobs(args, settings, renderer)

        if args.command == "compare":
            return run_compare(args, settings, renderer)

        orchestrator = ComparisonOrchestrator(settings=settings)

        if args.command == "preview":
            result = orchestrator.preview_query(
                args.target, args.query,
                credentials=_credentials(args.user, PASSWORD_ENV),
                rows=args.rows,
            )
            renderer.show_preview(result)
            return 0 if result["status"] == "SUCCESS" else 1

        if args.command == "export":
            result = orchestrator.export_query(
                args.target, args.query,
                credentials=_credentials(args.user, PASSWORD_ENV),
                output_dir=args.out,
                sheet_name=args.sheet,
                report_name=args.report_name,
            )
            if result["status"] == "SUCCESS":
                renderer.log_success(f"{result['message']}: {result['reportFile']}")
                return 0
            renderer.log_error(result["message"], {"kind": result.get("errorKind")})
            return 1

        if args.command == "test-connection":
            status = orchestrator.test_connection(
                args.target, _credentials(args.user, PASSWORD_ENV))
            renderer.show_connection(status)
            return 0 if status["status"] == "SUCCESS" else 1

    except (FileNotFoundError, KeyError, yaml.YAMLError) as e:
        renderer.log_error(str(e))
        return 1
    except TableDiffError as e:
        renderer.log_error(e.message, {"kind": e.kind})
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
