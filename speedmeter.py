#!/usr/bin/env python3
"""
speedmeter -- latency and throughput measurement from the terminal.

Usage::

    python speedmeter.py                     # rich dashboard
    python speedmeter.py --simple            # plain text
    python speedmeter.py --json              # JSON to stdout
    python speedmeter.py -o result.json      # save to file
    python speedmeter.py --csv log.csv       # append CSV row
    python speedmeter.py --history           # show past results
    python speedmeter.py --serve --port 3000 # WebSocket server for browsers
    python speedmeter.py --config my.json    # alternate endpoint config
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Optional

from meter.config import SpeedTestConfig, config_path, load_config
from meter.history import load_history, save_result
from meter.logging_setup import configure_logging
from meter.models import RunStatus, TestRun
from meter.orchestrator import SpeedTestOrchestrator
from meter.transport import AiohttpTransport
from ui.dashboard import RunDashboard, console, print_header, print_history
from ui.output import (
    format_csv_header,
    format_csv_row,
    format_text_result,
    run_to_dict,
    save_json,
)
from ui.server import SpeedTestServer

logger = logging.getLogger("speedmeter")


# ---------------------------------------------------------------------------
# Core test runner
# ---------------------------------------------------------------------------

async def run_speedtest(
    config: SpeedTestConfig,
    *,
    json_output: bool = False,
    output_file: Optional[str] = None,
    csv_file: Optional[str] = None,
    simple: bool = False,
) -> TestRun:
    """Execute one run, render it, and persist the outcome."""
    show_ui = not json_output and not simple

    if show_ui:
        print_header()

    dashboard = RunDashboard(quiet=not show_ui)

    async with AiohttpTransport() as transport:
        orchestrator = SpeedTestOrchestrator(transport, config=config)
        try:
            test_run = await orchestrator.run(dashboard.handle)
        except asyncio.CancelledError:
            orchestrator.cancel()
            raise

    result_json = run_to_dict(test_run)

    if simple and test_run.status is RunStatus.COMPLETED:
        print(format_text_result(
            ping_ms=test_run.ping.latency_ms if test_run.ping else None,
            download_mbps=test_run.download.speed_mbps,
            upload_mbps=test_run.upload.speed_mbps,
            peak_download_mbps=test_run.download.peak_mbps or 0.0,
        ))

    if json_output:
        print(json.dumps(result_json, indent=2))

    if output_file:
        save_json(result_json, output_file)
        if not json_output:
            console.print(f"\n[green]Results saved to:[/green] {output_file}")

    if csv_file:
        _append_csv(csv_file, test_run)
        if not json_output:
            console.print(f"[green]CSV row appended to:[/green] {csv_file}")

    save_result(result_json)
    return test_run


def _append_csv(path: str, test_run: TestRun) -> None:
    """Append a single CSV row, writing the header if the file is new."""
    write_header = not os.path.isfile(path) or os.path.getsize(path) == 0
    with open(path, "a", encoding="utf-8") as fh:
        if write_header:
            fh.write(format_csv_header() + "\n")
        fh.write(format_csv_row(test_run) + "\n")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="speedmeter -- HTTP latency and throughput testing",
    )
    # Output modes
    parser.add_argument("--json", "-j", action="store_true", help="Output results as JSON")
    parser.add_argument("--output", "-o", type=str, metavar="FILE", help="Save results to JSON file")
    parser.add_argument("--csv", type=str, metavar="FILE", help="Append results as CSV row")
    parser.add_argument("--simple", "-s", action="store_true", help="Simple output mode (no dashboard)")

    # Configuration
    parser.add_argument("--config", "-c", type=str, metavar="FILE", help=f"Config file (default: {config_path()})")
    parser.add_argument("--watchdog", type=float, metavar="SECS", help="Abort the run after this many seconds")
    parser.add_argument("--verbose", "-v", action="count", default=0, help="More logging (-v info, -vv debug)")

    # Server mode
    parser.add_argument("--serve", action="store_true", help="Run the WebSocket server instead of a single test")
    parser.add_argument("--host", type=str, default="localhost", help="Server bind address (default: localhost)")
    parser.add_argument("--port", type=int, default=int(os.environ.get("PORT", 3000)), help="Server port (default: $PORT or 3000)")

    # History
    parser.add_argument("--history", action="store_true", help="Show past test results and exit")
    return parser


def main(argv: Optional[list] = None) -> None:
    args = build_parser().parse_args(argv)

    level = {0: "WARNING", 1: "INFO"}.get(args.verbose, "DEBUG")
    if args.serve and args.verbose == 0:
        level = "INFO"
    configure_logging(level)

    # History mode
    if args.history:
        print_history(load_history())
        return

    config = load_config(args.config)
    if args.watchdog is not None:
        config.watchdog_seconds = args.watchdog

    try:
        config.validate()
    except (ValueError, TypeError) as exc:
        console.print(f"[red]Invalid configuration: {exc}[/red]")
        sys.exit(1)

    try:
        if args.serve:
            asyncio.run(SpeedTestServer(config, host=args.host, port=args.port).serve_forever())
            return

        test_run = asyncio.run(
            run_speedtest(
                config,
                json_output=args.json,
                output_file=args.output,
                csv_file=args.csv,
                simple=args.simple,
            )
        )
    except KeyboardInterrupt:
        console.print("\n[yellow]Test cancelled by user[/yellow]")
        sys.exit(1)
    except Exception as exc:
        logger.debug("Unhandled error", exc_info=True)
        console.print(f"\n[red]Error: {exc}[/red]")
        sys.exit(1)

    if test_run.status is not RunStatus.COMPLETED:
        sys.exit(2)


if __name__ == "__main__":
    main()
