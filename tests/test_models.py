from __future__ import annotations

import dataclasses
from datetime import UTC, date, datetime

import pytest

from activity_digest.core.errors import ValidationError
from activity_digest.models import SourceType, build_daily_summary, create_activity, make_activity_id

WHEN = datetime(2024, 1, 1, 9, 30, tzinfo=UTC)


def test_create_activity_keeps_fields():
    activity = create_activity(
        SourceType.GITLAB,
        make_activity_id(SourceType.GITLAB, "commit", "abc123"),
        WHEN,
        "Commit: fix parser",
        description="Long message",
        author="Jane",
        url="https://gitlab.example.com/c/abc123",
        metadata={"short_id": "abc"},
    )

    assert activity.id == "gitlab-commit-abc123"
    assert activity.source_type == "gitlab"
    assert activity.metadata["short_id"] == "abc"
    payload = activity.to_dict()
    assert payload["type"] == "gitlab"
    assert payload["timestamp"] == "2024-01-01T09:30:00+00:00"


def test_activity_is_immutable():
    activity = create_activity("slack", "slack-message-1", WHEN, "Message", metadata={"channel": "general"})

    with pytest.raises(dataclasses.FrozenInstanceError):
        activity.title = "changed"  # type: ignore[misc]
    with pytest.raises(TypeError):
        activity.metadata["channel"] = "random"  # type: ignore[index]


def test_custom_source_types_are_accepted():
    assert create_activity("calendar", "calendar-event-1", WHEN, "Standup").source_type == "calendar"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"id": ""},
        {"title": ""},
        {"timestamp": datetime(2024, 1, 1, 9, 30)},
    ],
)
def test_create_activity_rejects_invalid_input(kwargs):
    base = {"source_type": "gitlab", "id": "gitlab-issue-1", "timestamp": WHEN, "title": "Issue"}
    base.update(kwargs)
    with pytest.raises(ValidationError):
        create_activity(**base)


def test_rollup_arithmetic(activity_factory):
    activities = [
        activity_factory("a", source_type="gitlab", author="john"),
        activity_factory("b", source_type="gitlab", author="jane"),
        activity_factory("c", source_type="slack", author="john"),
        activity_factory("d", source_type="jira", author=None),
    ]

    summary = build_daily_summary(date(2024, 1, 1), activities)

    assert summary.rollup.total == len(summary.activities) == 4
    assert sum(summary.rollup.by_type.values()) == summary.rollup.total
    assert dict(summary.rollup.by_type) == {"gitlab": 2, "slack": 1, "jira": 1}
    assert dict(summary.rollup.by_author) == {"john": 2, "jane": 1}
    assert sum(summary.rollup.by_author.values()) == 3
    assert [activity.id for activity in summary.activities] == ["a", "b", "c", "d"]


def test_empty_summary_to_dict():
    payload = build_daily_summary(date(2024, 1, 2), []).to_dict()
    assert payload == {"date": "2024-01-02", "activities": [], "summary": {"total": 0, "by_type": {}, "by_author": {}}}
