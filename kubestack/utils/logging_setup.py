"""Root logger configuration for command-line entry points."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

from kubestack.constants.defaults import LOG_LEVEL_DEFAULT

_NOISY_LOGGERS = ("httpx", "httpcore")


def configure_logging(level: str = LOG_LEVEL_DEFAULT, console: Console | None = None) -> None:
    """Install a single rich handler on the root logger.

    Library modules only create loggers; handlers are attached here once.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


__all__ = ["configure_logging"]
