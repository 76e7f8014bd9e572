# src/agent/logging_config.py
"""
Central logging configuration for the presence agent.

Call configure_logging() from your main entrypoint once, for example:

    from agent.logging_config import configure_logging
    configure_logging()

Records go through a rich RichHandler, so levels are colored and
tracebacks are readable in a terminal.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler

# Chatty third-party loggers kept at WARNING unless asked otherwise.
_NOISY_LOGGERS = ("discord", "discord.gateway", "discord.client", "asyncio")


def configure_logging(
    level: Union[int, str] = logging.INFO,
    console: Optional[Console] = None,
) -> None:
    """
    Configure root logging if no handlers are attached yet.

    Args:
        level: default logging level (e.g., logging.INFO, "DEBUG")
        console: rich Console to log to; shares the reporter's console
            so log lines and chat lines do not interleave mid-line.
    """
    root = logging.getLogger()

    # Don't duplicate handlers if someone already configured logging.
    if root.handlers:
        return

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handler = RichHandler(
        console=console,
        show_path=False,
        rich_tracebacks=True,
        markup=False,
        log_time_format="[%H:%M:%S]",
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(level)

    if level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
