"""
Command-line entry point.

Usage:
    spark                      # Interactive update dashboard
    spark --list               # Probe once and print a table
    spark --catalog tools.yml  # Use a custom tool catalog
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Sequence

from . import __version__
from .catalog import ToolDescriptor, load_catalog
from .common import SparkError
from .config import Config, load_config
from .detector import Detector
from .executor import UpdateExecutor
from .keymap import translate_key
from .logging_config import setup_logging
from .render import render_snapshot, render_table
from .runner import SessionRunner
from .session import SessionController, ToolRuntimeState, compute_status
from .terminal import KeyReader, cbreak_mode, dashboard_screen, is_interactive, terminal_width

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spark",
        description="Interactive update dashboard for developer tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", help="Configuration file (YAML or JSON)")
    parser.add_argument("--catalog", help="Tool catalog file (defaults to the built-in inventory)")
    parser.add_argument("--log-file", help="Debug log file for the dashboard session")
    parser.add_argument(
        "--probe-timeout",
        type=float,
        metavar="SECONDS",
        help="Timeout for each version probe",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="Probe all tools once and print a table (no updates)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _detector(config: Config) -> Detector:
    return Detector(
        probe_timeout=config.preferences.probe_timeout_seconds,
        warmup_timeout=config.preferences.warmup_timeout_seconds,
    )


def probe_all(tools: Sequence[ToolDescriptor], detector: Detector, max_workers: int) -> list[ToolRuntimeState]:
    """
    Probe every tool once, without the dashboard.

    Args:
        tools: Catalog descriptors
        detector: Version detector
        max_workers: Thread pool size

    Returns:
        Runtime states with resting statuses, in catalog order
    """
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="spark-probe") as pool:
        warm = pool.submit(detector.warm_up)
        local_versions = list(pool.map(detector.local_version, tools))
        warm.result()

    states = []
    for tool, local in zip(tools, local_versions):
        state = ToolRuntimeState(
            tool=tool,
            local_version=local,
            remote_version=detector.remote_version(tool, local),
        )
        states.append(replace(state, status=compute_status(state)))
    return states


def cmd_list(config: Config, tools: Sequence[ToolDescriptor]) -> int:
    """Print a one-shot status table."""
    states = probe_all(tools, _detector(config), config.preferences.max_workers)
    print(render_table(states))
    return EXIT_OK


def _read_keys(runner: SessionRunner, reader: KeyReader) -> None:
    for key in reader:
        snapshot = runner.snapshot
        intent = translate_key(snapshot.state, key, filter_active=bool(snapshot.filter_text))
        if intent is not None:
            runner.post(intent)


def cmd_dashboard(config: Config, tools: Sequence[ToolDescriptor]) -> int:
    """Run the interactive dashboard until the user quits."""
    detector = _detector(config)
    executor = UpdateExecutor(timeout=config.preferences.update_timeout_seconds, detector=detector)
    controller = SessionController(tools, protected_categories=config.protected_categories)

    with dashboard_screen() as draw, cbreak_mode():
        runner = SessionRunner(
            controller,
            detector,
            executor,
            max_workers=config.preferences.max_workers,
            splash_seconds=config.ui.splash_seconds,
            tick_seconds=config.ui.tick_seconds,
            on_snapshot=lambda snapshot: draw(render_snapshot(snapshot, terminal_width())),
        )
        reader = threading.Thread(
            target=_read_keys,
            args=(runner, KeyReader()),
            name="spark-keys",
            daemon=True,
        )
        reader.start()
        code = runner.run()

    if runner.aborted:
        # An update subprocess may still be running on a pool thread
        print("\nInterrupted", file=sys.stderr)
        logging.shutdown()
        os._exit(code)
    return code


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for spark."""
    args = build_parser().parse_args(argv)

    setup_logging(verbose=args.verbose)

    try:
        config = load_config(args.config)
        if args.probe_timeout is not None:
            config = replace(
                config,
                preferences=replace(config.preferences, probe_timeout_seconds=args.probe_timeout),
            )
        if args.catalog:
            config = replace(config, catalog_path=args.catalog)
        if args.log_file:
            config = replace(config, log_file=args.log_file)

        tools = load_catalog(config.catalog_path)
    except SparkError as e:
        logger.error(e.message)
        if e.remediation:
            logger.error(f"Remediation: {e.remediation}")
        return EXIT_FATAL

    logger.debug(f"Loaded {len(tools)} tools (config: {config.source or 'defaults'})")

    if args.list:
        return cmd_list(config, tools)

    if not is_interactive():
        logger.error("The dashboard needs an interactive terminal (use --list for a plain table)")
        return EXIT_FATAL

    # The dashboard owns the screen: log to file only
    setup_logging(level=config.log_level, log_file=config.log_file, verbose=args.verbose, quiet=True)
    logger.info(f"Starting dashboard with {len(tools)} tools")
    return cmd_dashboard(config, tools)


def run() -> None:
    """Console script wrapper with Ctrl-C handling."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(EXIT_INTERRUPTED)


if __name__ == "__main__":
    run()
