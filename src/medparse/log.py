"""Logging setup: Rich console output on stderr."""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from medparse.config import settings

NOISY_LOGGERS = ("aiohttp", "openai", "httpx", "httpcore", "PIL")


def setup_logging(log_level: Optional[str] = None, verbose: bool = False) -> None:
    """Configure the root logger.

    Args:
        log_level: Logging level (defaults to settings).
        verbose: Show local variables in rich tracebacks.
    """
    log_level = (log_level or settings.log_level).upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=False,
        rich_tracebacks=True,
        tracebacks_show_locals=verbose,
    )
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug("Logging configured at %s", log_level)
