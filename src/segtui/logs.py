from __future__ import annotations

import logging
from pathlib import Path

from .paths import APP_NAME, log_path

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: int = logging.INFO, path: Path | None = None) -> Path | None:
    """Send package logs to a file so they never draw over the terminal UI.

    Returns the log file in use, or None when it could not be opened; in that
    case records are dropped rather than written to stderr.
    """
    logger = logging.getLogger(APP_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(level)
    logger.propagate = False
    try:
        target = path or log_path()
        target.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(target, encoding="utf-8")
    except OSError:
        logger.addHandler(logging.NullHandler())
        return None
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    return target
