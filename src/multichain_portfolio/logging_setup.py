"""Logging configuration using rich."""

import logging

from rich.logging import RichHandler

NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "web3")


def configure_logging(level: str = "INFO") -> None:
    """
    Configure root logging with a rich handler.

    Parameters
    ----------
    level : str
        Level name; unknown names fall back to INFO

    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)

    handler = RichHandler(rich_tracebacks=True, show_path=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
