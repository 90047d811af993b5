"""Logging setup shared by the sync server and client processes."""

import logging
import sys

from reelsync.core.config import get_settings

# Third-party loggers that are chatty at DEBUG (frame dumps, connection pools).
_NOISY_LOGGERS = ("websockets", "httpx", "httpcore")


def setup_logging(level: int | None = None) -> None:
    """Configure root logging to stdout.

    Args:
        level: Explicit level; defaults to DEBUG when settings.debug, else INFO.
            Transport libraries stay at WARNING unless level is DEBUG.
    """
    if level is None:
        level = logging.DEBUG if get_settings().debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    library_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)
