"""Centralized logging configuration."""
from __future__ import annotations

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "WARNING", console: Optional[Console] = None) -> None:
    """Route every ``meter`` / ``ui`` logger through a single rich handler."""
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        log_time_format="%H:%M:%S",
    )
    handler.setFormatter(logging.Formatter("%(name)s - %(message)s"))

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.WARNING))

    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    # aiohttp and websockets are chatty at INFO.
    for noisy in ("aiohttp", "websockets"):
        logging.getLogger(noisy).setLevel(max(root_logger.level, logging.WARNING))
