"""
Capability contract for activity sources.

Adapters are intentionally narrow: they report whether they are configured,
optionally warm a cache for the whole date range, and return canonical
activities for a single calendar day. Retry, circuit breaking and failure
isolation across sources are handled by the executor and the aggregator.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import UTC, date, datetime, tzinfo
from logging import LoggerAdapter
from typing import List, Protocol, Tuple, runtime_checkable

from ..core.dates import day_bounds
from ..core.logging import get_logger
from ..models import Activity


@runtime_checkable
class SourceAdapter(Protocol):
    """Protocol implemented by all activity sources."""

    @property
    def source_id(self) -> str:
        """Identifier used in configuration and logs (e.g. ``gitlab``)."""

    def is_configured(self) -> bool:
        """Return ``True`` when the source is enabled and has its credentials. Must not perform I/O."""

    async def preload_range(self, start: date, end: date) -> None:
        """Optionally fetch the whole range once before day-by-day iteration."""

    async def fetch_for_date(self, day: date) -> List[Activity]:
        """Return activities whose timestamp falls on ``day``; an empty list when there are none."""


class BaseSourceAdapter(ABC):
    """
    Convenience base class for adapters.

    Subclasses set ``source_id`` and implement :meth:`is_configured` and
    :meth:`fetch_for_date`. :meth:`preload_range` defaults to a no-op.
    """

    source_id: str = "source"

    def __init__(self, *, timezone: tzinfo = UTC, logger: LoggerAdapter | None = None) -> None:
        self.timezone = timezone
        self.logger = logger or get_logger(f"{self.__class__.__module__}.{self.__class__.__name__}", extra={"source": self.source_id})

    @abstractmethod
    def is_configured(self) -> bool: ...

    @abstractmethod
    async def fetch_for_date(self, day: date) -> List[Activity]: ...

    async def preload_range(self, start: date, end: date) -> None:
        self.logger.debug(f"No preload implemented for {self.source_id}")

    def day_bounds(self, day: date) -> Tuple[datetime, datetime]:
        return day_bounds(day, self.timezone)
