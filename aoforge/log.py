"""Logging setup for the CLI: rich-formatted root handler."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

from aoforge.config import settings


def setup_logging(level: str | None = None) -> None:
    """Install a RichHandler on the root logger.

    Safe to call more than once; an existing RichHandler is left in place
    and only the level is updated.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel((level or settings.log_level).upper())

    for handler in root_logger.handlers:
        if isinstance(handler, RichHandler):
            return

    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        markup=False,
        show_path=False,
        show_time=False,
    )
    root_logger.addHandler(handler)
