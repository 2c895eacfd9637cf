"""Rich console logging for DevProbe.

stdout carries the protocol stream, so every handler writes to stderr.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_NOISY_LOGGERS = ("mcp", "anyio", "PIL", "asyncio")


def setup_logging(level: str = "INFO") -> None:
    """Install a single RichHandler on the root logger."""
    console = Console(stderr=True)
    handler = RichHandler(
        console=console,
        rich_tracebacks=True,
        show_path=False,
        markup=False,
        log_time_format="[%X]",
    )
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
