"""Command line entry point for the reporter."""
from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from .config import ReporterConfig, load_config
from .errors import ReporterError
from .report import Reporter
from .timerange import DEFAULT_FROM, DEFAULT_TO, TimeRange

logger = logging.getLogger(__name__)


def _variable(raw: str) -> tuple[str, str]:
    if "=" not in raw:
        raise argparse.ArgumentTypeError(f"expected key=value, got {raw!r}")
    key, value = raw.split("=", 1)
    return key, value


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dashboard-reporter", description="Render dashboards into PDF reports")
    parser.add_argument("--config", type=Path, help="Path to YAML configuration", default=None)
    parser.add_argument("--app-url", type=str, help="Base URL of the dashboard server", default=None)
    parser.add_argument("--remote-chrome-url", type=str, help="DevTools URL of a running browser", default=None)
    parser.add_argument("--layout", choices=("simple", "grid"), default=None)
    parser.add_argument("--orientation", choices=("portrait", "landscape"), default=None)
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    commands = parser.add_subparsers(dest="command", required=True)

    report = commands.add_parser("report", help="Write the PDF report of a dashboard")
    report.add_argument("uid", help="Dashboard UID")
    report.add_argument("--from", dest="from_", default=DEFAULT_FROM, help="Start of the time range")
    report.add_argument("--to", default=DEFAULT_TO, help="End of the time range")
    report.add_argument("--var", dest="variables", type=_variable, action="append", default=[],
                        help="Template variable as key=value, repeatable")
    report.add_argument("--include-panel", action="append", default=[], help="Panel ID to include")
    report.add_argument("--exclude-panel", action="append", default=[], help="Panel ID to exclude")
    report.add_argument("--include-panel-data", action="append", default=[], help="Panel ID to add data tables for")
    report.add_argument("--theme", choices=("light", "dark"), default=None, help="Theme of this report")
    report.add_argument("--output", type=Path, default=None, help="Target file, defaults to the dashboard title")

    panels = commands.add_parser("panels", help="List the panels found in a dashboard")
    panels.add_argument("uid", help="Dashboard UID")
    panels.add_argument("--mode", choices=("default", "full"), default=None)
    panels.add_argument("--var", dest="variables", type=_variable, action="append", default=[])
    return parser


def build_config(args: argparse.Namespace) -> ReporterConfig:
    config = load_config(args.config)
    # CLI flags override the file and the environment
    if args.app_url:
        config.app_url = args.app_url
    if args.remote_chrome_url:
        config.remote_chrome_url = args.remote_chrome_url
    if args.layout:
        config.layout = args.layout
    if args.orientation:
        config.orientation = args.orientation
    return config.validate()


def _report_overrides(args: argparse.Namespace) -> dict[str, list[str]]:
    overrides: dict[str, list[str]] = {}
    for param, values in (
        ("includePanelID", args.include_panel),
        ("excludePanelID", args.exclude_panel),
        ("includePanelDataID", args.include_panel_data),
    ):
        if values:
            overrides[param] = list(values)
    if args.theme:
        overrides["theme"] = [args.theme]
    return overrides


def _collect_variables(pairs: List[tuple[str, str]]) -> dict[str, list[str]]:
    variables: dict[str, list[str]] = {}
    for key, value in pairs:
        variables.setdefault(key, []).append(value)
    return variables


def _run_report(reporter: Reporter, args: argparse.Namespace, cancel: threading.Event) -> int:
    time_range = TimeRange.create(args.from_, args.to)
    variables = _collect_variables(args.variables)
    target = args.output
    partial = Path(f"{target}.part") if target else Path(f".{args.uid}.pdf.part")
    try:
        with partial.open("wb") as sink:
            filename = reporter.generate_report(
                args.uid, time_range, variables, sink, cancel=cancel, overrides=_report_overrides(args)
            )
        final = target or Path(filename)
        partial.replace(final)
    finally:
        partial.unlink(missing_ok=True)
    logger.info("report written to %s", final)
    print(final)
    return 0


def _run_panels(reporter: Reporter, args: argparse.Namespace, cancel: threading.Event) -> int:
    panels = reporter.extract_panels(args.uid, _collect_variables(args.variables), mode=args.mode, cancel=cancel)
    for panel in panels:
        grid = panel.grid_pos
        print(json.dumps({"id": panel.id, "title": panel.title, "gridPos": {"x": grid.x, "y": grid.y, "w": grid.w, "h": grid.h}}))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    args = build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = build_config(args)
    except (ReporterError, OSError) as exc:
        logger.error("invalid configuration: %s", exc)
        return 2

    cancel = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: cancel.set())

    try:
        with Reporter(config) as reporter:
            if args.command == "report":
                return _run_report(reporter, args, cancel)
            return _run_panels(reporter, args, cancel)
    except ReporterError as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
