"""
Structured logging configuration for daoscope.

Log lines never carry credentials: API keys in query strings, the Dune and
CoinGecko key headers and bearer tokens are redacted from messages,
exception text and extra fields. URLs are reduced to their path.

Usage:
    from daoscope.logging_config import setup_logging, get_logger

    setup_logging()  # Call once at startup
    logger = get_logger(__name__)
    logger.info("message", extra={"source": "dune"})
"""

from __future__ import annotations

import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlsplit

import orjson

_URL_PATTERN = re.compile(r"(https?://[^\s\"'<>]+)")

_SENSITIVE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # Key headers of the analytics and price sources
    (re.compile(r"\b(x-dune-api-key|x-cg-demo-api-key)['\"]?\s*[=:]\s*['\"]?[\w\-]+['\"]?", re.I),
     "[API_KEY]"),
    # apikey=..., api_key: ...
    (re.compile(r"\b(api[_-]?key|apikey)['\"]?\s*[=:]\s*['\"]?[\w\-]+['\"]?", re.I), "[API_KEY]"),
    (re.compile(r"\bbearer\s+[\w\-\.]+", re.I), "[TOKEN]"),
]

# Extra fields whose name contains any of these are dropped
BLOCKED_FIELDS: frozenset[str] = frozenset(
    {
        "api_key",
        "apikey",
        "secret",
        "password",
        "authorization",
        "bearer",
        "credential",
        "x-dune-api-key",
        "x-cg-demo-api-key",
        "headers",
    }
)

# Fields replaced by a placeholder (or, for url, by its path)
REDACTED_FIELDS: dict[str, str] = {
    "url": "endpoint",
    "body": "[BODY]",
    "payload": "[PAYLOAD]",
    "params": "[PARAMS]",
    "query": "[QUERY]",
}

# LogRecord attributes that are not user extras
_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "message",
        "taskName",
    }
)

MAX_LIST_ITEMS = 10
MAX_DEPTH = 3


def _url_path(url: str) -> str:
    return urlsplit(url).path or "/"


def _replace_url(match: re.Match[str]) -> str:
    path = _url_path(match.group(1))
    return path if path != "/" else "[URL]"


def sanitize_text(text: str) -> str:
    """Strip query strings from URLs and redact credentials in free text."""
    if not text:
        return text
    result = _URL_PATTERN.sub(_replace_url, text)
    for pattern, replacement in _SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def filter_fields(fields: dict[str, Any], *, _depth: int = 0) -> dict[str, Any]:
    """Drop blocked fields and sanitize the rest (nested dicts up to MAX_DEPTH)."""
    if _depth > MAX_DEPTH:
        return {"_truncated": "max depth exceeded"}

    filtered: dict[str, Any] = {}
    for key, value in fields.items():
        key_lower = key.lower()
        if any(blocked in key_lower for blocked in BLOCKED_FIELDS):
            continue
        if key_lower in REDACTED_FIELDS:
            if key_lower == "url" and isinstance(value, str):
                filtered["endpoint"] = _url_path(value)
            else:
                filtered[key] = REDACTED_FIELDS[key_lower]
            continue

        if isinstance(value, (int, float, bool, type(None))):
            filtered[key] = value
        elif isinstance(value, str):
            filtered[key] = sanitize_text(value)
        elif isinstance(value, (list, tuple)):
            if len(value) <= MAX_LIST_ITEMS:
                filtered[key] = [
                    sanitize_text(v) if isinstance(v, str) else v for v in value
                ]
            else:
                filtered[key] = f"[list:{len(value)} items]"
        elif isinstance(value, dict):
            filtered[key] = filter_fields(value, _depth=_depth + 1)
        else:
            filtered[key] = sanitize_text(str(value))
    return filtered


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line.

    {"ts":"2024-01-01T00:00:00.000+00:00","level":"INFO","logger":"...","msg":"...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": sanitize_text(record.getMessage()),
        }
        if record.levelno >= logging.WARNING:
            entry["file"] = record.filename
            entry["line"] = record.lineno
        if record.exc_info:
            entry["exc"] = sanitize_text(self.formatException(record.exc_info))

        extra = _extra_fields(record)
        if extra:
            entry.update(filter_fields(extra))

        return orjson.dumps(entry, default=str).decode()


class SimpleFormatter(logging.Formatter):
    """Human-readable single-line output with filtered extras."""

    def format(self, record: logging.LogRecord) -> str:
        line = f"{record.levelname:8s} {record.name}: {sanitize_text(record.getMessage())}"
        extra = filter_fields(_extra_fields(record))
        if extra:
            line = f"{line} | " + " ".join(f"{k}={v}" for k, v in extra.items())
        if record.exc_info:
            line = f"{line}\n{sanitize_text(self.formatException(record.exc_info))}"
        return line


def setup_logging(
    *,
    level: int | str = logging.INFO,
    json_format: bool = True,
    stream: Any = None,
) -> None:
    """
    Configure root logging. Call once at startup.

    Args:
        level: Log level (default INFO).
        json_format: JSON lines (default) or human-readable output.
        stream: Output stream (default stderr).
    """
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(JsonFormatter() if json_format else SimpleFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
