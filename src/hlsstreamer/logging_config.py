"""Process-wide logging setup.

One stdout handler on the root logger, formatted as aligned text columns
(``timestamp | logger | LEVEL | message``) or as NDJSON when LOG_FORMAT=json.
Uvicorn is started with ``log_config=None`` so its loggers reach the root
handler unchanged.

Child-process lines relayed into the log carry carriage returns and ANSI
colors from FFmpeg progress output; both formatters strip them.
"""
from __future__ import annotations

import json
import logging
import os
import re
import sys
from datetime import datetime, timezone
from typing import Callable, Final

_CONTROL_CHARS: Final[re.Pattern[str]] = re.compile(
    r'\x1b\[[0-9;]*[A-Za-z]|[\r\x00-\x08\x0b\x0c\x0e-\x1f\x7f]'
)
"""ANSI escape sequences and control characters other than tab and newline."""

LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
FORMATS: Final[tuple[str, ...]] = ("text", "json")


def sanitize_message(message: str) -> str:
    """Return message with terminal control sequences removed."""
    return _CONTROL_CHARS.sub('', message)


def _utc_timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()


class TextFormatter(logging.Formatter):
    """Aligned columns for terminals and ``docker logs``."""

    name_width = 40

    def format(self, record: logging.LogRecord) -> str:
        name = record.name
        if len(name) > self.name_width:
            name = "..." + name[len(name) - self.name_width + 3:]

        line = " | ".join((
            _utc_timestamp(record),
            name.ljust(self.name_width),
            record.levelname.ljust(8),
            sanitize_message(record.getMessage()),
        ))
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class JSONFormatter(logging.Formatter):
    """One JSON object per line with timestamp, level, logger and message keys.

    A formatted traceback is added under ``exception`` when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": _utc_timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": sanitize_message(record.getMessage()),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def _env_choice(
    name: str, choices: tuple[str, ...], default: str, normalize: Callable[[str], str]
) -> str:
    value = os.getenv(name, default)
    normalized = normalize(value)
    if normalized not in choices:
        logging.warning(f"Unsupported {name}={value!r}, falling back to {default}")
        return default
    return normalized


def get_log_level() -> int:
    """Logging level from LOG_LEVEL, INFO when unset or unknown."""
    return getattr(logging, _env_choice("LOG_LEVEL", LEVELS, "INFO", str.upper))


def get_log_format() -> str:
    """``"text"`` or ``"json"`` from LOG_FORMAT, text when unset or unknown."""
    return _env_choice("LOG_FORMAT", FORMATS, "text", str.lower)


def configure_logging() -> None:
    """Replace the root logger's handlers with a single stdout handler.

    Environment:
        LOG_LEVEL: DEBUG, INFO, WARNING, ERROR or CRITICAL (default INFO)
        LOG_FORMAT: text or json (default text)
    """
    level = get_log_level()
    log_format = get_log_format()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if log_format == "json" else TextFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    root.info(f"Logging: level={logging.getLevelName(level)}, format={log_format}")
