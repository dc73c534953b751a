from __future__ import annotations

import logging
import os
import traceback
from datetime import datetime
from pathlib import Path

_LOGGER = logging.getLogger("layersynth.logging")
_PACKAGE_LOGGER = "layersynth"
_LOG_DIR_ENV = "LAYERSYNTH_LOG_DIR"
_LOG_LEVEL_ENV = "LAYERSYNTH_LOG_LEVEL"
_DEBUG_ENV = "LAYERSYNTH_DEBUG"
_LOG_FILE = "layersynth.log"


def debug_enabled() -> bool:
    return bool(os.environ.get(_DEBUG_ENV))


def get_log_dir() -> Path:
    configured = os.environ.get(_LOG_DIR_ENV)
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".cache" / "layersynth" / "logs"


def get_log_path() -> Path:
    return get_log_dir() / _LOG_FILE


def configure_logging() -> None:
    """Attach a NullHandler to the package logger and honour LAYERSYNTH_LOG_LEVEL."""

    logger = logging.getLogger(_PACKAGE_LOGGER)
    if not any(isinstance(handler, logging.NullHandler) for handler in logger.handlers):
        logger.addHandler(logging.NullHandler())
    level_name = os.environ.get(_LOG_LEVEL_ENV)
    if not level_name:
        return
    level = logging.getLevelName(level_name.strip().upper())
    if isinstance(level, int):
        logger.setLevel(level)
    else:
        _LOGGER.warning("Ignoring unknown %s=%r", _LOG_LEVEL_ENV, level_name)


def log_exception(context: str, exc: BaseException) -> Path | None:
    try:
        log_dir = get_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        path = get_log_path()
        timestamp = datetime.now().isoformat()
        with path.open("a", encoding="utf-8") as handle:
            handle.write(f"[{timestamp}] {context} failed: {type(exc).__name__}: {exc}\n")
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=handle)
            handle.write("\n")
        return path
    except Exception as log_exc:
        _LOGGER.warning("Failed to write log file: %s", log_exc, exc_info=True)
        return None
