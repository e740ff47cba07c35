from __future__ import annotations

import logging
import os

LOGGER_NAME = "pocketbase_client"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"

_HANDLER_MARKER = "_pocketbase_client_handler"


def configure_logging(level: str | None = None) -> logging.Logger:
    resolved_level = (level or os.getenv("PB_LOG_LEVEL", "INFO")).strip().upper()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(resolved_level)

    for handler in logger.handlers:
        if getattr(handler, _HANDLER_MARKER, False):
            handler.setLevel(resolved_level)
            return logger

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.setLevel(resolved_level)
    setattr(handler, _HANDLER_MARKER, True)
    logger.addHandler(handler)
    return logger
