#!/usr/bin/env python3
"""
Shared logger setup helpers for the recommendation controller.

Every module logs through logging.getLogger(__name__). The entry point calls
setup_logging once so all of those loggers reach the same handlers through
the root logger.
"""

import logging
import os
import sys
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
CONSOLE_HANDLER_NAME = "recommendation-console"
FILE_HANDLER_NAME = "recommendation-file"


def resolve_level(level: Union[int, str]) -> int:
    """Accept a logging level as a number or a name such as "debug"."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    if isinstance(resolved, int):
        return resolved
    return logging.INFO


def _has_app_handlers(logger: logging.Logger) -> bool:
    return any(h.get_name() in (CONSOLE_HANDLER_NAME, FILE_HANDLER_NAME) for h in logger.handlers)


def get_app_logger(
    name: Optional[str],
    level: Union[int, str] = logging.INFO,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Attach the console (and optional file) handler to `name` once; None is the root logger."""
    logger = logging.getLogger(name)
    if _has_app_handlers(logger):
        return logger

    level = resolve_level(level)
    logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.set_name(CONSOLE_HANDLER_NAME)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        try:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(log_file, mode="a")
            file_handler.set_name(FILE_HANDLER_NAME)
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            # Keep console logging even if file logging is unavailable.
            logger.warning(f"⚠️ Could not open log file {log_file}: {e}")

    return logger


def setup_logging(level: Union[int, str] = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    return get_app_logger(None, level, log_file)
