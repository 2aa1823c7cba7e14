"""Centralized logging helpers shared by the CLI, backends and resolver.

Provides one place to configure the root logger and small helpers that keep
structured DEBUG traces consistent across modules:

- configure_logging(): level from RESFIND_LOG_LEVEL, text or JSON output
  from RESFIND_LOG_FORMAT.
- extra_context(): builds the ``extra=`` payload for log calls.
- is_debug_enabled(): cheap guard before building debug payloads.
- safe_url() / redact(): keep credentials out of log output.
- Timer: context manager measuring elapsed milliseconds.
"""
from __future__ import annotations

import json
import logging
import os
import re
import time
import urllib.parse
from typing import Any, Dict, Optional

from constants import Constants

ENV_LOG_LEVEL = "RESFIND_LOG_LEVEL"
ENV_LOG_FORMAT = "RESFIND_LOG_FORMAT"

# Attributes present on every LogRecord; anything else came from extra=
_RESERVED_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()
) | {"message", "asctime"}

_SENSITIVE_PARAMS = ("token", "apikey", "api_key", "key", "password", "secret", "sig", "signature")
_SECRET_PATTERN = re.compile(
    r"(?i)(authorization|token|apikey|api_key|password|secret)(\s*[:=]\s*)(\S+)"
)
REDACTED = "***"


class JsonFormatter(logging.Formatter):
    """Render records as one JSON object per line, including extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED_RECORD_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Configure the root logger once per process.

    Args:
        level: Level name; falls back to RESFIND_LOG_LEVEL, then INFO.
        fmt: "text" or "json"; falls back to RESFIND_LOG_FORMAT, then text.
    """
    level_name = (level or os.environ.get(ENV_LOG_LEVEL) or "INFO").upper()
    level_value = getattr(logging, level_name, logging.INFO)
    style = (fmt or os.environ.get(ENV_LOG_FORMAT) or "text").lower()

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_resfind_handler", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler()
    if style == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(Constants.LOG_FORMAT))
    handler._resfind_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(level_value)


def extra_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra=`` mapping, dropping None values.

    Common keys: event, component, action, target, outcome, repository.
    """
    return {key: value for key, value in fields.items() if value is not None}


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True when the logger would emit DEBUG records."""
    return logger.isEnabledFor(logging.DEBUG)


def safe_url(url: Optional[str]) -> Optional[str]:
    """Strip userinfo and mask sensitive query parameters in a URL."""
    if not url:
        return url
    try:
        parts = urllib.parse.urlsplit(url)
    except ValueError:
        return redact(url)
    netloc = parts.netloc.rsplit("@", 1)[-1]
    query = parts.query
    if query:
        pairs = urllib.parse.parse_qsl(query, keep_blank_values=True)
        masked = [
            (k, REDACTED if k.lower() in _SENSITIVE_PARAMS else v) for k, v in pairs
        ]
        query = urllib.parse.urlencode(masked, safe="$'(),*: ")
    return urllib.parse.urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))


def redact(text: Optional[str]) -> Optional[str]:
    """Mask anything that looks like a credential assignment in free text."""
    if not text:
        return text
    return _SECRET_PATTERN.sub(lambda m: f"{m.group(1)}{m.group(2)}{REDACTED}", text)


class Timer:
    """Context manager measuring wall-clock duration."""

    def __init__(self) -> None:
        self._start: float = 0.0
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        self._end = None
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._end = time.perf_counter()

    def duration_ms(self) -> float:
        """Elapsed milliseconds; valid inside or after the with-block."""
        end = self._end if self._end is not None else time.perf_counter()
        return round((end - self._start) * 1000.0, 2)
