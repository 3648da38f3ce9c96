"""
Two-phase aggregation across activity sources.

Phase 1 warms every enabled adapter's cache for the whole range concurrently.
Phase 2 walks the calendar day by day and asks each adapter, in a fixed order,
for that day's activities. A failing adapter contributes nothing for the step
that failed; it never aborts the run or affects other adapters.
"""

from __future__ import annotations

from datetime import date
from logging import LoggerAdapter
from typing import Iterable, List, Optional, Sequence

import anyio

from ..adapters.base import SourceAdapter
from ..core.dates import DateRange
from ..core.errors import log_error
from ..core.logging import get_logger, log_progress
from ..models import Activity, DailySummary, build_daily_summary


class ActivityAggregator:
    """
    Build one :class:`DailySummary` per calendar day from a set of adapters.

    Parameters
    ----------
    adapters:
        Adapters in the order their activities should appear within a day.
    logger:
        Optional logger adapter; defaults to the module logger.
    """

    def __init__(self, adapters: Iterable[SourceAdapter], *, logger: Optional[LoggerAdapter] = None) -> None:
        self.adapters: Sequence[SourceAdapter] = tuple(adapters)
        self.logger = logger or get_logger(__name__)

    def enabled_adapters(self) -> List[SourceAdapter]:
        enabled: List[SourceAdapter] = []
        for adapter in self.adapters:
            try:
                configured = adapter.is_configured()
            except Exception as exc:
                log_error(self.logger, exc, f"check configuration for {adapter.source_id}", extra={"source": adapter.source_id})
                continue
            if configured:
                enabled.append(adapter)
            else:
                self.logger.info(f"{adapter.source_id} is not configured, skipping", extra={"source": adapter.source_id})
        return enabled

    async def run(self, start: date, end: date) -> List[DailySummary]:
        """
        Aggregate activities for every day in ``[start, end]``.

        Raises
        ------
        ValidationError
            If ``start`` is after ``end``. No adapter is called in that case.
        """

        date_range = DateRange(start, end)
        adapters = self.enabled_adapters()
        log_progress(
            self.logger,
            f"Aggregating {date_range.describe()} from {len(adapters)} source(s)",
            phase="aggregate",
            status="started",
            extra={"day": str(date_range)},
        )

        await self._preload(adapters, date_range)

        summaries: List[DailySummary] = []
        for day in date_range:
            activities: List[Activity] = []
            for adapter in adapters:
                activities.extend(await self._fetch_day(adapter, day))
            summary = build_daily_summary(day, activities)
            log_progress(
                self.logger,
                f"{day.isoformat()}: {summary.rollup.total} activities",
                phase="fetch",
                step=day.isoformat(),
                result=str(summary.rollup.total),
            )
            summaries.append(summary)

        total = sum(summary.rollup.total for summary in summaries)
        log_progress(
            self.logger,
            f"Aggregated {total} activities across {len(summaries)} day(s)",
            phase="aggregate",
            status="completed",
            result=str(total),
        )
        return summaries

    async def _preload(self, adapters: Sequence[SourceAdapter], date_range: DateRange) -> None:
        if not adapters:
            return
        log_progress(self.logger, f"Preloading {len(adapters)} source(s)", phase="preload", status="started")
        async with anyio.create_task_group() as task_group:
            for adapter in adapters:
                task_group.start_soon(self._preload_one, adapter, date_range)
        log_progress(self.logger, "Preload finished", phase="preload", status="completed")

    async def _preload_one(self, adapter: SourceAdapter, date_range: DateRange) -> None:
        try:
            await adapter.preload_range(date_range.start, date_range.end)
        except Exception as exc:
            log_error(self.logger, exc, f"preload {adapter.source_id}", extra={"source": adapter.source_id})

    async def _fetch_day(self, adapter: SourceAdapter, day: date) -> List[Activity]:
        try:
            return list(await adapter.fetch_for_date(day))
        except Exception as exc:
            log_error(
                self.logger,
                exc,
                f"fetch {adapter.source_id} activities",
                extra={"source": adapter.source_id, "day": day.isoformat()},
            )
            return []
