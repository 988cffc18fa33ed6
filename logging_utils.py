"""Tagged console logging shared by the detector, the player and the CLI.

Output looks like ``[INFO][808] Bass detector connected | source=kick.wav``.
add_log_file() mirrors the same records, timestamped, into a file.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

LOGGER_NAME = "muscly808"
CONSOLE_FORMAT = "[%(levelname)s][%(tag)s] %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s][%(tag)s] %(message)s"

_logger = logging.getLogger(LOGGER_NAME)
if not _logger.handlers:
    _console = logging.StreamHandler()
    _console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    _logger.addHandler(_console)
    _logger.setLevel(logging.INFO)
    # Third-party handlers on the root logger would not know about %(tag)s
    _logger.propagate = False


class _TagAdapter(logging.LoggerAdapter):
    def process(self, msg: Any, kwargs: dict[str, Any]):
        tag = kwargs.pop("tag", "App")
        kwargs.setdefault("extra", {})["tag"] = tag
        return msg, kwargs


_logger_adapter = _TagAdapter(_logger, {})


def _level_value(level: str | None) -> int:
    level_name = (level or "INFO").upper()
    if level_name == "WARN":
        level_name = "WARNING"
    value = getattr(logging, level_name, logging.INFO)
    return value if isinstance(value, int) else logging.INFO


def format_fields(message: str, fields: dict[str, Any]) -> str:
    if not fields:
        return message
    extras = " ".join(f"{k}={v}" for k, v in fields.items())
    return f"{message} | {extras}"


def log_event(level: str, tag: str, message: str, **fields: Any) -> None:
    """Log a message with level+tag, appending key=value fields when provided."""
    _logger_adapter.log(_level_value(level), format_fields(message, fields), tag=tag)


def set_log_level(level: str) -> None:
    """Set global log level (DEBUG/INFO/WARNING/ERROR)."""
    _logger.setLevel(_level_value(level))


def get_log_level() -> str:
    """Return current global log level name."""
    return logging.getLevelName(_logger.level)


def add_log_file(path: str | Path) -> logging.Handler:
    """Also write every record to *path* (appending). Returns the handler so
    callers can remove it again with remove_log_handler()."""
    handler = logging.FileHandler(Path(path), encoding="utf-8")
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    _logger.addHandler(handler)
    return handler


def remove_log_handler(handler: logging.Handler) -> None:
    _logger.removeHandler(handler)
    handler.close()
