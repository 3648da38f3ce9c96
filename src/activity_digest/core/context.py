"""
Execution context shared across CLI commands.

Bundles the loaded settings, the source allowlist requested by the caller and
runtime flags so command handlers stay declarative.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import tzinfo
from logging import LoggerAdapter
from typing import Mapping, MutableSet, Optional, Sequence

from ..config import Settings, load_settings
from .dates import resolve_timezone
from .logging import get_logger as _get_logger


@dataclass(slots=True)
class ExecutionOptions:
    """
    Flags controlling how commands behave at runtime.

    Attributes
    ----------
    dry_run:
        When ``True`` commands only print their plan without network calls or
        file writes.
    trace:
        Emit request/response trace lines for every HTTP call.
    observability_tags:
        Additional tags attached to every log line.
    """

    dry_run: bool = False
    trace: bool = False
    observability_tags: Sequence[str] = field(default_factory=tuple)


@dataclass(slots=True)
class ExecutionContext:
    """
    Shared execution context across CLI commands.

    Attributes
    ----------
    enabled_sources:
        Source IDs requested by the caller. Empty means every source.
    settings:
        Configuration loaded from TOML and environment overrides.
    options:
        Runtime flags.
    """

    enabled_sources: MutableSet[str]
    settings: Settings
    options: ExecutionOptions = field(default_factory=ExecutionOptions)

    @classmethod
    def build_default(
        cls,
        *,
        enabled_sources: Optional[Sequence[str]] = None,
        options: Optional[ExecutionOptions] = None,
        settings: Optional[Settings] = None,
    ) -> "ExecutionContext":
        """
        Construct a context, loading settings when none are supplied.

        ``options.trace`` is switched on when the configuration file asks for it.
        """

        resolved_settings = settings or load_settings(strict=False)
        resolved_options = options or ExecutionOptions()
        if resolved_settings.trace:
            resolved_options.trace = True
        return cls(
            enabled_sources=set(enabled_sources or []),
            settings=resolved_settings,
            options=resolved_options,
        )

    @property
    def timezone(self) -> tzinfo:
        return resolve_timezone(self.settings.timezone)

    def is_enabled(self, source_id: str) -> bool:
        """Return ``True`` when ``source_id`` is in the allowlist or no allowlist is set."""

        if not self.enabled_sources:
            return True
        return source_id in self.enabled_sources

    def enable(self, source_id: str) -> None:
        self.enabled_sources.add(source_id)

    def disable(self, source_id: str) -> None:
        self.enabled_sources.discard(source_id)

    def get_logger(self, name: str, *, extra: Optional[Mapping[str, object]] = None) -> LoggerAdapter:
        """Return a logger adapter carrying the context's observability tags."""

        tags = tuple(self.options.observability_tags)
        return _get_logger(name, tags=tags if tags else None, extra=extra)
