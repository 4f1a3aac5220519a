#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
@file logger.py
@brief Модуль настройки логирования
@details Настраивает логгер проекта и даёт короткие обёртки log_* для всех уровней.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Dict, Any, Optional

# Global project logger
LOGGER = logging.getLogger("procwarden")

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _ensure_basic_config() -> None:
    """
    Ensure a basic config is present so early log_* calls work before setup_logger()
    """
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=logging.INFO,
            format=DEFAULT_FORMAT,
            stream=sys.stdout,
        )


_ensure_basic_config()


def setup_logger(config: Dict[str, Any]) -> logging.Logger:
    """
    Configure the project logger.
    config:
      - level: DEBUG|INFO|WARNING|ERROR|CRITICAL
      - format: log line format
      - file: path to log file (empty/None disables file logging)
      - console: enable console logging (default True)
      - max_bytes: rotating file max size (default 5MB)
      - backup_count: number of rotations (default 5)
    """
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    fmt = config.get("format", DEFAULT_FORMAT)
    log_file = config.get("file")

    console_enabled = config.get("console", True)

    max_bytes = int(config.get("max_bytes", 5 * 1024 * 1024))
    backup_count = int(config.get("backup_count", 5))

    # Clean previous handlers to avoid duplication
    for handler in list(LOGGER.handlers):
        LOGGER.removeHandler(handler)
        handler.close()
    LOGGER.setLevel(level)
    LOGGER.propagate = False

    formatter = logging.Formatter(fmt)

    if console_enabled:
        console_handler = logging.StreamHandler(stream=sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        LOGGER.addHandler(console_handler)

    if log_file:
        try:
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            LOGGER.addHandler(file_handler)
        except OSError as e:
            LOGGER.error(f"Failed to set up file logger: {e}")

    LOGGER.debug("Logger 'procwarden' configured")
    return LOGGER


def get_logger() -> logging.Logger:
    return LOGGER


# --- Standard helpers ---

def log_debug(message: str, exc: Optional[BaseException] = None) -> None:
    LOGGER.debug(message, exc_info=exc) if exc else LOGGER.debug(message)

def log_info(message: str, exc: Optional[BaseException] = None) -> None:
    LOGGER.info(message, exc_info=exc) if exc else LOGGER.info(message)

def log_warning(message: str, exc: Optional[BaseException] = None) -> None:
    LOGGER.warning(message, exc_info=exc) if exc else LOGGER.warning(message)

def log_error(message: str, exc: Optional[BaseException] = None) -> None:
    LOGGER.error(message, exc_info=exc) if exc else LOGGER.error(message)
