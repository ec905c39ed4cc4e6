from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

# Standard log record attributes that should not be treated as "extra" context.
_STANDARD_LOG_RECORD_ATTRS = {
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
    "message",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "exc_info",
    "exc_text",
    "stack_info",
    "taskName",
    "asctime",
    "level_color",
    "name_color",
    "source_color",
    "reset",
}

# Carried across awaits, so every line logged while a lesson runs is tagged with it.
_LOG_CONTEXT: ContextVar[dict[str, Any] | None] = ContextVar("log_context", default=None)

DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

APP_LOGGER_PREFIX = "lessondeck"

# Markdown's logger is named "MARKDOWN" and is chatty at DEBUG.
_DEFAULT_THIRD_PARTY_LEVELS: dict[str, str] = {
    "MARKDOWN": "WARNING",
    "urllib3": "WARNING",
    "asyncio": "WARNING",
}


def _build_log_format(include_source: bool) -> str:
    """Return the colored format string; color fields are filled by ColorFormatter."""

    source = "%(source_color)s%(filename)s:%(lineno)d%(reset)s | " if include_source else ""
    return (
        "%(level_color)s%(asctime)s | %(levelname)s%(reset)s | "
        "%(name_color)s%(name)s%(reset)s | "
        f"{source}"
        "%(level_color)s%(message)s%(reset)s"
    )


class ContextInjectionFilter(logging.Filter):
    """Copies the current log_context() fields onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _LOG_CONTEXT.get()
        if not context:
            return True

        for key, value in context.items():
            if key in _STANDARD_LOG_RECORD_ATTRS:
                continue
            setattr(record, key, value)
        return True


class ThirdPartyLevelFilter(logging.Filter):
    """Drop third-party records below their configured threshold."""

    def __init__(self, *, app_prefix: str, third_party_levels: Mapping[str, int]) -> None:
        super().__init__()
        self.app_prefix = app_prefix
        self.third_party_levels = dict(third_party_levels)

    def is_app_logger(self, name: str) -> bool:
        return name == "__main__" or name == self.app_prefix or name.startswith(f"{self.app_prefix}.")

    def match_level(self, name: str) -> int:
        best_level = logging.WARNING
        best_len = -1
        for prefix, level in self.third_party_levels.items():
            if (name == prefix or name.startswith(prefix + ".")) and len(prefix) > best_len:
                best_level = level
                best_len = len(prefix)
        return best_level

    def filter(self, record: logging.LogRecord) -> bool:
        if self.is_app_logger(record.name):
            return True
        return record.levelno >= self.match_level(record.name)


class SmartContextFormatter(logging.Formatter):
    """Formatter that appends all extra fields as key=value context."""

    def format(self, record: logging.LogRecord) -> str:
        base_message = super().format(record)
        extra_fields = {key: value for key, value in record.__dict__.items() if key not in _STANDARD_LOG_RECORD_ATTRS}
        if not extra_fields:
            return base_message

        context_str = " ".join(f"{key}={value}" for key, value in extra_fields.items())
        return f"{base_message} [{context_str}]"


class ColorFormatter(SmartContextFormatter):
    """Colorize timestamp+level+message by level, name/source by fixed blues."""

    _RESET = "\x1b[0m"
    _LEVEL_COLORS = {
        "DEBUG": "\x1b[36m",  # cyan
        "INFO": "\x1b[32m",  # green
        "WARNING": "\x1b[33m",  # yellow
        "ERROR": "\x1b[31m",  # red
        "CRITICAL": "\x1b[1;31m",  # bold red
    }
    _NAME_COLOR = "\x1b[34m"
    _SOURCE_COLOR = "\x1b[94m"

    def format(self, record: logging.LogRecord) -> str:
        record.level_color = self._LEVEL_COLORS.get(record.levelname, "")  # type: ignore[attr-defined]
        record.name_color = self._NAME_COLOR  # type: ignore[attr-defined]
        record.source_color = self._SOURCE_COLOR  # type: ignore[attr-defined]
        record.reset = self._RESET  # type: ignore[attr-defined]
        return super().format(record)


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Temporarily attach context fields to all log lines in this scope."""

    current = _LOG_CONTEXT.get() or {}
    token = _LOG_CONTEXT.set({**current, **kwargs})
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


def get_log_context() -> Mapping[str, Any]:
    """Return the current logging context (useful for debugging/tests)."""

    return _LOG_CONTEXT.get() or {}


def _resolve_log_level(raw_level: str) -> int:
    return getattr(logging, raw_level.upper().strip(), logging.INFO)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _use_color() -> bool:
    return _env_flag("LOG_COLOR", sys.stdout.isatty())


def _resolve_third_party_levels(overrides: Mapping[str, str] | None) -> dict[str, int]:
    merged = {**_DEFAULT_THIRD_PARTY_LEVELS, **(overrides or {})}
    levels: dict[str, int] = {}
    for name, level_name in merged.items():
        level = getattr(logging, level_name.upper(), logging.WARNING)
        # Third-party loggers never go below WARNING.
        levels[name] = max(level, logging.WARNING)
    return levels


def setup_logging(
    *,
    log_level: str | None = None,
    third_party_levels: Mapping[str, str] | None = None,
) -> None:
    """
    Configure global, context-aware logging for the batch run.

    Environment variables:
    - LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL (default: INFO)
    - LOG_COLOR: enable ANSI colors (default: auto when TTY)
    """
    root_level = _resolve_log_level(log_level or os.getenv("LOG_LEVEL", "INFO"))

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    logging.captureWarnings(True)

    handler = logging.StreamHandler(sys.stdout)
    formatter: logging.Formatter
    if _use_color():
        formatter = ColorFormatter(_build_log_format(include_source=True), datefmt=DEFAULT_DATE_FORMAT)
    else:
        plain_format = "%(asctime)s | %(levelname)s | %(name)s | %(filename)s:%(lineno)d | %(message)s"
        formatter = SmartContextFormatter(plain_format, datefmt=DEFAULT_DATE_FORMAT)

    handler.setFormatter(formatter)
    handler.addFilter(ContextInjectionFilter())
    handler.addFilter(
        ThirdPartyLevelFilter(
            app_prefix=APP_LOGGER_PREFIX,
            third_party_levels=_resolve_third_party_levels(third_party_levels),
        )
    )
    root_logger.addHandler(handler)
    root_logger.setLevel(root_level)

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={"log_level": logging.getLevelName(root_level)},
    )
