"""UI layer -- Rich dashboard, output formatters, and the WebSocket server."""

from .dashboard import (
    ProgressDisplay,
    RunDashboard,
    console,
    create_histogram,
    print_final_results,
    print_header,
    print_history,
    print_measurement,
)
from .output import (
    event_to_dict,
    format_csv_header,
    format_csv_row,
    format_text_result,
    run_to_dict,
    save_json,
)
from .server import SpeedTestServer

__all__ = [
    "ProgressDisplay",
    "RunDashboard",
    "SpeedTestServer",
    "console",
    "create_histogram",
    "event_to_dict",
    "format_csv_header",
    "format_csv_row",
    "format_text_result",
    "print_final_results",
    "print_header",
    "print_history",
    "print_measurement",
    "run_to_dict",
    "save_json",
]
