from __future__ import annotations

from datetime import UTC, date, datetime
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import pytest
from typer.testing import CliRunner

from activity_digest.cli.main import app
from activity_digest.core.logging import configure_logging
from activity_digest.models import Activity, create_activity


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    for key in ("ACTIVITY_DIGEST_CONFIG", "GITLAB_ENABLED", "GITLAB_BASE_URL", "GITLAB_ACCESS_TOKEN", "GITLAB_PROJECT_IDS"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def cli_runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def cli_app():
    return app


@pytest.fixture()
def config_file(tmp_path) -> Path:
    path = tmp_path / "digest.toml"
    path.write_text(
        """
timezone = "UTC"

[gitlab]
enabled = true
base_url = "https://gitlab.example.com"
access_token = "glpat-test"
project_ids = ["42"]

[retry]
preset = "fast"
""",
        encoding="utf-8",
    )
    return path


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sleeps() -> List[float]:
    return []


@pytest.fixture()
def fake_sleep(sleeps):
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep


def make_activity(
    activity_id: str,
    *,
    source_type: str = "gitlab",
    when: Optional[datetime] = None,
    author: Optional[str] = "john",
    title: str = "Did a thing",
) -> Activity:
    return create_activity(
        source_type,
        activity_id,
        when or datetime(2024, 1, 1, 12, 0, tzinfo=UTC),
        title,
        author=author,
    )


class FakeAdapter:
    """In-memory adapter recording every call it receives."""

    def __init__(
        self,
        source_id: str,
        activities: Optional[Mapping[date, List[Activity]]] = None,
        *,
        configured: bool = True,
        preload_error: Optional[BaseException] = None,
        fetch_errors: Optional[Mapping[date, BaseException]] = None,
        configured_error: Optional[BaseException] = None,
    ) -> None:
        self.source_id = source_id
        self.activities: Dict[date, List[Activity]] = dict(activities or {})
        self.configured = configured
        self.preload_error = preload_error
        self.fetch_errors = dict(fetch_errors or {})
        self.configured_error = configured_error
        self.calls: List[tuple] = []

    def is_configured(self) -> bool:
        self.calls.append(("is_configured",))
        if self.configured_error is not None:
            raise self.configured_error
        return self.configured

    async def preload_range(self, start: date, end: date) -> None:
        self.calls.append(("preload", start, end))
        if self.preload_error is not None:
            raise self.preload_error

    async def fetch_for_date(self, day: date) -> List[Activity]:
        self.calls.append(("fetch", day))
        if day in self.fetch_errors:
            raise self.fetch_errors[day]
        return list(self.activities.get(day, []))


@pytest.fixture()
def activity_factory():
    return make_activity


@pytest.fixture()
def adapter_factory():
    return FakeAdapter


@pytest.fixture(scope="session", autouse=True)
def structured_logging():
    configure_logging("DEBUG")
