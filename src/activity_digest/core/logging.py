"""
Centralised logging helpers for the activity digest tooling.

Modules obtain loggers via :func:`get_logger` rather than attaching their own
handlers, so every line shares one format: the usual level/name/message prefix
followed by structured ``key=value`` extras (source, day, attempt, ...).
"""

from __future__ import annotations

import json
import logging
import os
import sys
from copy import copy
from logging import Logger, LoggerAdapter
from typing import Any, Iterable, Mapping, MutableMapping, Optional, Sequence

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LEVEL = "INFO"
_ENV_LEVEL = "ACTIVITY_DIGEST_LOG_LEVEL"
_ENV_COLOR = "ACTIVITY_DIGEST_LOG_COLOR"
_EXTRA_FOCUS_ORDER: Sequence[str] = (
    "phase",
    "step",
    "status",
    "result",
    "source",
    "day",
    "operation",
    "attempt",
    "delay",
    "method",
    "url",
    "status_code",
    "duration_ms",
    "error_kind",
    "tags",
)

_LEVEL_STYLES = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[95m",
}
_RESET = "\033[0m"

_RESERVED_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}

_configured = False


def _resolve_level(level: Optional[int | str]) -> int:
    if isinstance(level, int):
        return level
    candidate = (level or os.getenv(_ENV_LEVEL) or DEFAULT_LEVEL).upper()
    resolved = logging.getLevelName(candidate)
    return resolved if isinstance(resolved, int) else logging.INFO


def _supports_color(stream: Any) -> bool:
    preference = (os.getenv(_ENV_COLOR) or "auto").strip().lower()
    if preference in {"1", "true", "yes", "on"}:
        return True
    if preference in {"0", "false", "no", "off"}:
        return False
    return hasattr(stream, "isatty") and bool(stream.isatty())


def _iter_extras(record: logging.LogRecord) -> Iterable[tuple[str, Any]]:
    payload = {key: value for key, value in record.__dict__.items() if key not in _RESERVED_ATTRS and not key.startswith("_") and value is not None}

    for key in _EXTRA_FOCUS_ORDER:
        if key in payload:
            yield key, payload.pop(key)

    for key in sorted(payload):
        yield key, payload[key]


def _format_extra_value(value: Any) -> str:
    if isinstance(value, (list, tuple, set)):
        return "[" + ", ".join(_format_extra_value(item) for item in value) + "]"
    if isinstance(value, Mapping):
        return json.dumps(value, ensure_ascii=False, default=str)
    if isinstance(value, float):
        return f"{value:.4g}"
    return str(value)


class StructuredLogFormatter(logging.Formatter):
    """Formatter that appends structured extras and supports optional colour output."""

    def __init__(self, *, use_color: bool = False) -> None:
        super().__init__(DEFAULT_FORMAT, datefmt=DEFAULT_DATE_FORMAT)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        working = copy(record)
        if self.use_color:
            style = _LEVEL_STYLES.get(working.levelname.strip().upper())
            if style:
                working.levelname = f"{style}{working.levelname}{_RESET}"
        base = super().format(working)
        extras = " ".join(f"{key}={_format_extra_value(value)}" for key, value in _iter_extras(record))
        if extras:
            return f"{base} | {extras}"
        return base


def _build_handler(level: Optional[int | str]) -> logging.Handler:
    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(_resolve_level(level))
    handler.setFormatter(StructuredLogFormatter(use_color=_supports_color(handler.stream)))
    return handler


def configure_logging(level: Optional[int | str] = None, *, force: bool = False) -> None:
    """
    Configure root logging handlers unless already initialised.

    Parameters
    ----------
    level:
        Optional logging level override. Falls back to ``ACTIVITY_DIGEST_LOG_LEVEL`` or ``INFO``.
    force:
        When ``True`` the configuration is reapplied even if previously initialised.
    """

    global _configured
    if _configured and not force:
        return
    logging.basicConfig(level=_resolve_level(level), handlers=[_build_handler(level)], force=force)
    _configured = True


def get_logger(
    name: str,
    *,
    level: Optional[int | str] = None,
    tags: Optional[Sequence[str]] = None,
    extra: Optional[Mapping[str, object]] = None,
) -> LoggerAdapter:
    """
    Return a :class:`logging.LoggerAdapter` bound to ``name``.

    ``tags`` and ``extra`` are attached to every record emitted through the
    adapter and rendered by :class:`StructuredLogFormatter`.
    """

    configure_logging(level)
    base: Logger = logging.getLogger(name)
    if level is not None:
        base.setLevel(_resolve_level(level))
    payload: MutableMapping[str, object] = {}
    if tags:
        payload["tags"] = tuple(tags)
    if extra:
        payload.update({key: value for key, value in extra.items() if value is not None})
    return _MergingAdapter(base, payload)


class _MergingAdapter(LoggerAdapter):
    """LoggerAdapter that merges call-site ``extra`` with the bound payload."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        merged = dict(self.extra or {})
        call_extra = kwargs.get("extra")
        if call_extra:
            merged.update(call_extra)
        kwargs["extra"] = merged
        return msg, kwargs


def bind_extra(logger: LoggerAdapter, **extra: object) -> LoggerAdapter:
    """Return a child adapter with additional bound fields, leaving ``logger`` untouched."""

    current = dict(logger.extra) if isinstance(logger.extra, Mapping) else {}
    current.update({key: value for key, value in extra.items() if value is not None})
    return _MergingAdapter(logger.logger, current)


def log_progress(
    logger: LoggerAdapter | Logger,
    message: str,
    *,
    phase: Optional[str] = None,
    step: Optional[str] = None,
    status: Optional[str] = None,
    result: Optional[str] = None,
    level: int = logging.INFO,
    extra: Optional[Mapping[str, object]] = None,
) -> None:
    """Emit a progress line tagged with the current phase/step and its outcome."""

    payload: MutableMapping[str, object] = dict(extra or {})
    for key, value in (("phase", phase), ("step", step), ("status", status), ("result", result)):
        if value:
            payload[key] = value
    logger.log(level, message, extra=payload)
