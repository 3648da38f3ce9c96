"""
Aggregate daily activity from GitLab and other work tools into daily summaries.

The :mod:`activity_digest.services.aggregator` module exposes
:class:`ActivityAggregator`, the main developer-facing surface. Adapters for
individual sources live under :mod:`activity_digest.adapters`.
"""

from .models import Activity, ActivityRollup, DailySummary, SourceType, build_daily_summary, create_activity
from .services import ActivityAggregator

__all__ = [
    "Activity",
    "ActivityAggregator",
    "ActivityRollup",
    "DailySummary",
    "SourceType",
    "build_daily_summary",
    "create_activity",
]
