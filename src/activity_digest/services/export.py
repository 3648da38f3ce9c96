"""
Serialise daily summaries to JSON or CSV.
"""

from __future__ import annotations

import csv
import io
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from ..core.dates import days_in_range, format_date_range
from ..core.errors import FileSystemError, ValidationError
from ..models import DailySummary

CSV_COLUMNS = ("date", "type", "author", "title", "description", "url", "timestamp")
SUPPORTED_SUFFIXES = (".json", ".csv")


def summaries_to_payload(summaries: Sequence[DailySummary], *, generated_at: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Wrap summaries in the JSON envelope.

    The envelope carries ``generated_at``, ``date_range``, ``total_days``,
    ``total_activities`` and the per-day ``summaries``.
    """

    generated = generated_at or datetime.now(UTC)
    if summaries:
        start, end = summaries[0].date, summaries[-1].date
        date_range: Optional[Dict[str, str]] = {"start": start.isoformat(), "end": end.isoformat(), "label": format_date_range(start, end)}
        total_days = days_in_range(start, end)
    else:
        date_range = None
        total_days = 0
    return {
        "generated_at": generated.isoformat(),
        "date_range": date_range,
        "total_days": total_days,
        "total_activities": sum(summary.rollup.total for summary in summaries),
        "summaries": [summary.to_dict() for summary in summaries],
    }


def render_json(summaries: Sequence[DailySummary], *, generated_at: Optional[datetime] = None) -> str:
    return json.dumps(summaries_to_payload(summaries, generated_at=generated_at), indent=2, ensure_ascii=False)


def render_csv(summaries: Sequence[DailySummary]) -> str:
    """One row per activity, in summary order."""

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for summary in summaries:
        for activity in summary.activities:
            writer.writerow(
                [
                    summary.date.isoformat(),
                    activity.source_type,
                    activity.author or "",
                    activity.title,
                    activity.description or "",
                    activity.url or "",
                    activity.timestamp.isoformat(),
                ]
            )
    return buffer.getvalue()


def write_summaries(summaries: Sequence[DailySummary], path: Path) -> Path:
    """Write ``summaries`` to ``path``; the format follows the file suffix."""

    suffix = path.suffix.lower()
    if suffix == ".json":
        content = render_json(summaries)
    elif suffix == ".csv":
        content = render_csv(summaries)
    else:
        raise ValidationError(
            f"Unsupported output format '{path.suffix}'. Use one of: {', '.join(SUPPORTED_SUFFIXES)}.",
            field="output",
            value=str(path),
        )
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise FileSystemError(f"Failed to write {path}: {exc}", operation="write", path=str(path)) from exc
    return path
