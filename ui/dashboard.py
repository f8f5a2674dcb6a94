"""
Rich-based terminal dashboard for speed test runs.

All formatting helpers live in ``meter.stats`` -- this module only does
presentation via the ``rich`` library.  ``RunDashboard.handle`` is an
event consumer: pass it straight to ``SpeedTestOrchestrator.run``.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from meter.history import format_history_table, summarize_history
from meter.models import (
    Event,
    Measurement,
    Phase,
    PhaseCompleted,
    PhaseFailed,
    PhaseStarted,
    Progress as ProgressEvent,
    RunCompleted,
    RunFailed,
    TestRun,
)
from meter.stats import format_latency, format_speed

console = Console()
err_console = Console(stderr=True)

_PHASE_COLORS = {
    Phase.PING: "yellow",
    Phase.DOWNLOAD: "green",
    Phase.UPLOAD: "blue",
}


# ---------------------------------------------------------------------------
# Histogram helper
# ---------------------------------------------------------------------------

_BARS = "▁▂▃▄▅▆▇█"


def create_histogram(values: List[float]) -> str:
    """Return a single-line Unicode bar-chart."""
    if not values:
        return "No data"

    lo, hi = min(values), max(values)
    span = hi - lo if hi > lo else 1.0
    return "".join(
        _BARS[min(int((v - lo) / span * (len(_BARS) - 1)), len(_BARS) - 1)]
        for v in values
    )


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------

def print_header() -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]speedmeter[/bold cyan]\n"
            "[dim]Latency and throughput over plain HTTP[/dim]",
            border_style="cyan",
        )
    )
    console.print()


def print_measurement(measurement: Measurement) -> None:
    """Print a one-phase result table."""
    color = _PHASE_COLORS[measurement.kind]
    table = Table(title=f"{measurement.kind.value.title()} Results", box=box.ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    if measurement.kind is Phase.PING:
        table.add_row("Latency", f"[bold {color}]{format_latency(measurement.latency_ms or 0)}[/bold {color}]")
        table.add_row("Jitter", f"{measurement.jitter_ms or 0.0:.2f} ms")
    else:
        table.add_row("Speed", f"[bold {color}]{format_speed(measurement.speed_mbps)}[/bold {color}]")
        table.add_row("Peak", format_speed(measurement.peak_mbps or 0.0))
        table.add_row("Data Transferred", f"{(measurement.bytes_total or 0) / 1_000_000:.1f} MB")
    table.add_row("Duration", f"{measurement.duration_seconds:.1f} s")
    table.add_row("Samples", str(measurement.sample_count))
    console.print(table)


def print_final_results(test_run: TestRun) -> None:
    ping = format_latency(test_run.ping.latency_ms) if test_run.ping and test_run.ping.latency_ms is not None else "n/a"
    download = format_speed(test_run.download.speed_mbps) if test_run.download else "n/a"
    upload = format_speed(test_run.upload.speed_mbps) if test_run.upload else "n/a"
    console.print()
    console.print(
        Panel.fit(
            f"[bold white]   Ping:[/bold white]  [bold yellow]{ping}[/bold yellow]\n"
            f"[bold white]   Download:[/bold white]  [bold green]{download}[/bold green]\n"
            f"[bold white]   Upload:[/bold white]  [bold blue]{upload}[/bold blue]",
            title="[bold]Results[/bold]",
            border_style="cyan",
        )
    )
    console.print()


def print_history(entries: List[Dict[str, Any]]) -> None:
    if not entries:
        console.print("[dim]No history yet.[/dim]")
        return

    table = Table(title="Recent Runs", box=box.ROUNDED)
    table.add_column("When", style="dim")
    table.add_column("Status")
    table.add_column("Ping", justify="right")
    table.add_column("Download", justify="right")
    table.add_column("Upload", justify="right")

    rows = format_history_table(entries)
    for row in rows:
        table.add_row(
            row["timestamp"],
            row["status"],
            format_latency(row["ping"]) if row["ping"] is not None else "n/a",
            format_speed(row["download"]),
            format_speed(row["upload"]),
        )
    console.print(table)
    console.print(
        f"[dim]Download trend:[/dim] [green]{create_histogram([r['download'] for r in rows])}[/green]"
    )

    summary = summarize_history(entries)
    if summary["completed"]:
        console.print(
            f"[dim]Average over {summary['completed']} of {summary['runs']} runs:[/dim] "
            f"down {format_speed(summary['download_mbps'] or 0.0)}, "
            f"up {format_speed(summary['upload_mbps'] or 0.0)}"
        )


# ---------------------------------------------------------------------------
# Event-driven display
# ---------------------------------------------------------------------------

class ProgressDisplay:
    """Manages a ``rich`` progress bar during download / upload tests."""

    def __init__(self) -> None:
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            BarColumn(bar_width=40),
            TextColumn("[bold cyan]{task.fields[speed]}[/bold cyan]"),
            TimeElapsedColumn(),
            console=console,
        )
        self._task_id = None

    def start(self, description: str, determinate: bool) -> None:
        self.progress.start()
        self._task_id = self.progress.add_task(
            description, total=100 if determinate else None, speed="...",
        )

    def update(self, speed_mbps: float, fraction: Optional[float] = None) -> None:
        if self._task_id is None:
            return
        fields: Dict[str, Any] = {"speed": format_speed(speed_mbps) if speed_mbps > 0 else "..."}
        if fraction is not None:
            fields["completed"] = fraction * 100
        self.progress.update(self._task_id, **fields)

    def stop(self) -> None:
        if self._task_id is not None:
            self.progress.stop()
            self._task_id = None


class RunDashboard:
    """Renders a run's event stream.

    With *quiet* only skipped phases and failures are reported, and on stderr,
    so stdout stays free for machine-readable output.
    """

    def __init__(self, quiet: bool = False) -> None:
        self.quiet = quiet
        self._bar = ProgressDisplay()

    @property
    def _notices(self) -> Console:
        return err_console if self.quiet else console

    def handle(self, event: Event) -> None:
        if isinstance(event, PhaseStarted):
            if self.quiet:
                return
            console.print(f"\n[bold]Testing {event.phase.value}...[/bold]")
            if event.phase is not Phase.PING:
                self._bar.start(event.phase.value.title(), determinate=event.phase is Phase.UPLOAD)
        elif isinstance(event, ProgressEvent):
            if not self.quiet:
                self._bar.update(event.sample.mbps, event.fraction)
        elif isinstance(event, PhaseCompleted):
            self._bar.stop()
            if not self.quiet:
                print_measurement(event.measurement)
        elif isinstance(event, PhaseFailed):
            self._notices.print(f"[yellow]{event.phase.value.title()} skipped:[/yellow] {event.message}")
        elif isinstance(event, RunCompleted):
            if not self.quiet:
                print_final_results(event.test_run)
        elif isinstance(event, RunFailed):
            self._bar.stop()
            self._notices.print(f"\n[bold red]Test failed ({event.reason.value}):[/bold red] {event.message}")
