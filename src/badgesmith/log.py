"""Logging setup for the service and the CLI."""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

_HANDLER_NAME = "badgesmith"


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Attach one stream handler to the ``badgesmith`` logger.

    Safe to call repeatedly; the handler is replaced, never duplicated.
    """
    root = logging.getLogger("badgesmith")
    for handler in list(root.handlers):
        if handler.get_name() == _HANDLER_NAME:
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    return root
