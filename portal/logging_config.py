"""
Logging configuration for the portal backend.

Console logging through rich, shared by the API server and the CLI.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler


LOG_FORMAT = "%(name)s: %(message)s"


def setup_logging(level: str = "INFO", console: Console = None) -> logging.Logger:
    """
    Install a single rich console handler on the root logger.

    Calling it again replaces the previous handler, so the API factory and
    the CLI can both call it safely.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)

    return root_logger
