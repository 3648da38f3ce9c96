"""
Canonical activity records and daily summaries.

Adapters build :class:`Activity` instances through :func:`create_activity`;
the aggregator groups them into one :class:`DailySummary` per calendar day.
Both are frozen once constructed.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from .core.errors import ValidationError


class SourceType(str, Enum):
    """Source types shipped with the tool. Adapters may use other strings."""

    GITLAB = "gitlab"
    SLACK = "slack"
    TEAMS = "teams"
    JIRA = "jira"


_EMPTY_METADATA: Mapping[str, Any] = MappingProxyType({})


@dataclass(frozen=True, slots=True)
class Activity:
    """
    A single normalized activity.

    Attributes
    ----------
    id:
        Adapter-assigned identifier, conventionally ``{source_type}-{kind}-{source_id}``.
    source_type:
        Source system the record came from, e.g. ``gitlab``.
    timestamp:
        Timezone-aware instant of the activity.
    title:
        One-line summary.
    description, author, url:
        Optional details.
    metadata:
        Read-only mapping of source-specific fields.
    """

    id: str
    source_type: str
    timestamp: datetime
    title: str
    description: Optional[str] = None
    author: Optional[str] = None
    url: Optional[str] = None
    metadata: Mapping[str, Any] = field(default=_EMPTY_METADATA)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.source_type,
            "timestamp": self.timestamp.isoformat(),
            "title": self.title,
            "description": self.description,
            "author": self.author,
            "url": self.url,
            "metadata": dict(self.metadata),
        }


def make_activity_id(source_type: str | SourceType, kind: str, source_id: object) -> str:
    """Compose the ``{source_type}-{kind}-{source_id}`` identifier."""

    return f"{_type_value(source_type)}-{kind}-{source_id}"


def _type_value(source_type: str | SourceType) -> str:
    return source_type.value if isinstance(source_type, SourceType) else str(source_type)


def create_activity(
    source_type: str | SourceType,
    id: str,
    timestamp: datetime,
    title: str,
    description: Optional[str] = None,
    author: Optional[str] = None,
    url: Optional[str] = None,
    metadata: Optional[Mapping[str, Any]] = None,
) -> Activity:
    """Build an immutable :class:`Activity` from already-resolved fields."""

    type_value = _type_value(source_type)
    if not type_value:
        raise ValidationError("Activity source type must not be empty.", field="source_type", value=source_type)
    if not id:
        raise ValidationError("Activity id must not be empty.", field="id", value=id)
    if not title:
        raise ValidationError("Activity title must not be empty.", field="title", value=title)
    if not isinstance(timestamp, datetime) or timestamp.tzinfo is None:
        raise ValidationError("Activity timestamp must be a timezone-aware datetime.", field="timestamp", value=timestamp)
    return Activity(
        id=id,
        source_type=type_value,
        timestamp=timestamp,
        title=title,
        description=description,
        author=author,
        url=url,
        metadata=MappingProxyType(dict(metadata)) if metadata else _EMPTY_METADATA,
    )


@dataclass(frozen=True, slots=True)
class ActivityRollup:
    total: int
    by_type: Mapping[str, int]
    by_author: Mapping[str, int]

    def to_dict(self) -> Dict[str, Any]:
        return {"total": self.total, "by_type": dict(self.by_type), "by_author": dict(self.by_author)}


@dataclass(frozen=True, slots=True)
class DailySummary:
    date: date
    activities: Tuple[Activity, ...]
    rollup: ActivityRollup

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "activities": [activity.to_dict() for activity in self.activities],
            "summary": self.rollup.to_dict(),
        }


def build_daily_summary(day: date, activities: Iterable[Activity]) -> DailySummary:
    """Bucket ``activities`` for ``day`` and compute counts per type and author."""

    ordered = tuple(activities)
    by_type = Counter(activity.source_type for activity in ordered)
    by_author = Counter(activity.author for activity in ordered if activity.author)
    rollup = ActivityRollup(
        total=len(ordered),
        by_type=MappingProxyType(dict(by_type)),
        by_author=MappingProxyType(dict(by_author)),
    )
    return DailySummary(date=day, activities=ordered, rollup=rollup)
