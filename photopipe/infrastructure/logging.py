from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_HANDLER_NAME = "photopipe-stream"


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Install a single stream handler on the package logger. Safe to call twice."""
    logger = logging.getLogger("photopipe")
    logger.setLevel(level if isinstance(level, int) else level.upper())
    if not any(h.get_name() == _HANDLER_NAME for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger
