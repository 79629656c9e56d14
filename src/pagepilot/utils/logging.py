"""Logging for the assistant pipeline.

Everything goes to a rotating ``pagepilot.log``; the console only gets a copy
in debug runs. Most of what the pipeline logs is degraded context (failed
extraction, unreachable document store, unsaved chats), so per-module levels
can be raised or lowered without touching code::

    PAGEPILOT_LOG_LEVELS="pagepilot.context=DEBUG,httpx=INFO"
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Mapping

__all__ = ["LOG_FORMAT", "get_log_path", "parse_module_levels", "setup_logging"]

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_FILE_NAME = "pagepilot.log"
LOG_DIR_ENV = "PAGEPILOT_LOG_DIR"
LOG_LEVELS_ENV = "PAGEPILOT_LOG_LEVELS"

_DEFAULT_LOG_DIR = Path.home() / ".pagepilot" / "logs"
# HTTP and SDK chatter would drown the pipeline's own warnings.
_QUIET_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_LOG_PATH: Path | None = None


def parse_module_levels(value: str | None) -> dict[str, int]:
    """Parse ``name=LEVEL`` pairs separated by commas; unknown levels are skipped."""

    levels: dict[str, int] = {}
    for item in (value or "").split(","):
        name, _, level_name = item.partition("=")
        name, level_name = name.strip(), level_name.strip().upper()
        if not name or not level_name:
            continue
        level = logging.getLevelName(level_name)
        if isinstance(level, int):
            levels[name] = level
    return levels


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = False,
    module_levels: Mapping[str, int] | None = None,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Configure the root logger and return the log file path.

    Repeated calls are no-ops unless ``force`` is set. ``module_levels``
    defaults to whatever ``PAGEPILOT_LOG_LEVELS`` names.
    """

    global _LOG_PATH
    if _LOG_PATH is not None and not force:
        return _LOG_PATH

    target_dir = Path(log_dir or os.environ.get(LOG_DIR_ENV) or _DEFAULT_LOG_DIR).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / LOG_FILE_NAME
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handlers: list[logging.Handler] = [file_handler]
    if console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)

    overrides = dict(module_levels) if module_levels is not None else parse_module_levels(os.environ.get(LOG_LEVELS_ENV))
    quiet = max(level, logging.WARNING)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(overrides.pop(name, quiet))
    for name, module_level in overrides.items():
        logging.getLogger(name).setLevel(module_level)

    _LOG_PATH = log_path
    return log_path


def get_log_path() -> Path | None:
    """Return the active log file, or ``None`` before :func:`setup_logging` ran."""

    return _LOG_PATH
