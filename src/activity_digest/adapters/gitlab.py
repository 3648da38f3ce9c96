"""
GitLab activity source.

Talks to the GitLab REST API v4 through :class:`TracedHTTPClient` and turns the
current user's commits, merge requests and issues into canonical activities.

Metadata keys
-------------
Every GitLab activity carries ``action`` (``commit``, ``merge_request`` or
``issue``), ``project_id`` and ``project_name``. Additionally:

* commits: ``short_id``, ``author_email``
* merge requests: ``iid``, ``state``, ``merge_status``, ``source_branch``,
  ``target_branch``, ``author_email``, ``assignee_email``
* issues: ``iid``, ``state``, ``labels``, ``milestone``, ``author_email``,
  ``assignee_email``
"""

from __future__ import annotations

from collections import defaultdict
from datetime import UTC, date, datetime, tzinfo
from logging import LoggerAdapter
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

import anyio
import httpx

from ..config import GitLabSettings
from ..core.dates import DateRange, local_date, parse_timestamp, range_bounds
from ..core.errors import AppError, DataProcessingError, log_error
from ..core.resilience import API_CIRCUIT_BREAKER, CONSERVATIVE, CircuitBreakerConfig, OperationExecutor, RetryPolicy
from ..models import Activity, SourceType, create_activity, make_activity_id
from .auth import AccessToken, StaticTokenProvider, TokenProvider
from .base import BaseSourceAdapter
from .http import TracedHTTPClient

SERVICE_NAME = "GitLab"
API_PREFIX = "/api/v4"
REQUEST_TIMEOUT = 30.0


def _project_name(item: Mapping[str, Any], project: Mapping[str, Any]) -> Optional[str]:
    return item.get("project_name") or project.get("name")


def _person(item: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = item.get(key)
    return value if isinstance(value, Mapping) else {}


def _item_id(item: Mapping[str, Any], kind: str) -> Any:
    value = item.get("id")
    if value is None or value == "":
        raise DataProcessingError(f"GitLab {kind} without an id.", operation="normalize", data_type=kind)
    return value


def _timestamp(item: Mapping[str, Any], kind: str) -> datetime:
    value = item.get("created_at")
    if not isinstance(value, str):
        raise DataProcessingError(f"GitLab {kind} {item.get('id')} has no created_at.", operation="normalize", data_type=kind)
    return parse_timestamp(value)


def commit_activity(commit: Mapping[str, Any], project: Mapping[str, Any]) -> Activity:
    title = commit.get("title") or commit.get("short_id") or str(commit.get("id"))
    return create_activity(
        SourceType.GITLAB,
        make_activity_id(SourceType.GITLAB, "commit", _item_id(commit, "commit")),
        _timestamp(commit, "commit"),
        f"Commit: {title}",
        description=commit.get("message"),
        author=commit.get("author_name"),
        url=commit.get("web_url"),
        metadata={
            "action": "commit",
            "short_id": commit.get("short_id"),
            "project_id": commit.get("project_id", project.get("id")),
            "project_name": _project_name(commit, project),
            "author_email": commit.get("author_email"),
        },
    )


def merge_request_activity(mr: Mapping[str, Any], project: Mapping[str, Any]) -> Activity:
    state = mr.get("state")
    action = state if state in ("merged", "closed") else "created"
    author = _person(mr, "author")
    return create_activity(
        SourceType.GITLAB,
        make_activity_id(SourceType.GITLAB, "mr", _item_id(mr, "merge request")),
        _timestamp(mr, "merge request"),
        f"Merge Request {action}: {mr.get('title') or mr.get('iid')}",
        description=mr.get("description"),
        author=author.get("name"),
        url=mr.get("web_url"),
        metadata={
            "action": "merge_request",
            "iid": mr.get("iid"),
            "state": state,
            "merge_status": mr.get("merge_status"),
            "project_id": mr.get("project_id", project.get("id")),
            "project_name": _project_name(mr, project),
            "source_branch": mr.get("source_branch"),
            "target_branch": mr.get("target_branch"),
            "author_email": author.get("email"),
            "assignee_email": _person(mr, "assignee").get("email"),
        },
    )


def issue_activity(issue: Mapping[str, Any], project: Mapping[str, Any]) -> Activity:
    state = issue.get("state")
    action = "closed" if state == "closed" else "created"
    author = _person(issue, "author")
    return create_activity(
        SourceType.GITLAB,
        make_activity_id(SourceType.GITLAB, "issue", _item_id(issue, "issue")),
        _timestamp(issue, "issue"),
        f"Issue {action}: {issue.get('title') or issue.get('iid')}",
        description=issue.get("description"),
        author=author.get("name"),
        url=issue.get("web_url"),
        metadata={
            "action": "issue",
            "iid": issue.get("iid"),
            "state": state,
            "project_id": issue.get("project_id", project.get("id")),
            "project_name": _project_name(issue, project),
            "labels": tuple(issue.get("labels") or ()),
            "milestone": _person(issue, "milestone").get("title"),
            "author_email": author.get("email"),
            "assignee_email": _person(issue, "assignee").get("email"),
        },
    )


ProjectFetcher = Callable[[Mapping[str, Any], datetime, datetime], Awaitable[List[Activity]]]


class GitLabAdapter(BaseSourceAdapter):
    """
    Activity source for a single GitLab instance.

    Parameters
    ----------
    settings:
        Connection details and feature flags.
    executor:
        Shared executor; its circuit breakers are keyed per host and method.
    retry_policy:
        Retry budget per request. GitLab defaults to the ``conservative`` preset.
    circuit_breaker:
        Breaker thresholds, ``None`` to disable.
    trace:
        Emit paired request/response trace lines.
    timezone:
        Reference timezone for day boundaries.
    token_provider:
        Bearer token source. Defaults to the personal access token from
        ``settings``.
    transport:
        Optional ``httpx`` transport, mainly for tests.
    """

    source_id = SourceType.GITLAB.value

    def __init__(
        self,
        settings: GitLabSettings,
        *,
        executor: Optional[OperationExecutor] = None,
        retry_policy: RetryPolicy = CONSERVATIVE,
        circuit_breaker: Optional[CircuitBreakerConfig] = API_CIRCUIT_BREAKER,
        trace: bool = False,
        timezone: tzinfo = UTC,
        token_provider: Optional[TokenProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
        logger: Optional[LoggerAdapter] = None,
    ) -> None:
        super().__init__(timezone=timezone, logger=logger)
        self.settings = settings
        headers = {"Accept": "application/json", "User-Agent": "activity-digest"}
        if token_provider is None:
            token_provider = StaticTokenProvider(SERVICE_NAME, AccessToken(settings.access_token or ""))
        interval = 1.0 / settings.requests_per_second if settings.requests_per_second > 0 else 0.0
        self.client = TracedHTTPClient(
            service_name=SERVICE_NAME,
            base_url=f"{settings.base_url.rstrip('/')}{API_PREFIX}",
            executor=executor or OperationExecutor(),
            timeout=REQUEST_TIMEOUT,
            default_headers=headers,
            retry_policy=retry_policy,
            circuit_breaker=circuit_breaker,
            trace=trace,
            min_request_interval=interval,
            token_provider=token_provider,
            transport=transport,
            sleep=sleep,
        )
        self._user: Optional[Dict[str, Any]] = None
        self._projects: Optional[List[Dict[str, Any]]] = None
        self._preloaded: Optional[DateRange] = None
        self._cache: Dict[date, List[Activity]] = {}

    def is_configured(self) -> bool:
        return self.settings.is_complete

    # -- Lookups ---------------------------------------------------------------

    async def current_user(self) -> Dict[str, Any]:
        """Return the authenticated user, fetched once per adapter."""

        if self._user is None:
            payload = await self.client.get_json("/user")
            if not isinstance(payload, dict):
                raise DataProcessingError("Unexpected payload for GitLab /user.", operation="current-user", data_type="dict")
            self._user = payload
            self.logger.debug(f"Fetching activities for {payload.get('name')} ({payload.get('username')})")
        return self._user

    async def projects(self) -> List[Dict[str, Any]]:
        """
        Projects to scan: the configured IDs, or every project the user is a member of.

        A configured project that cannot be fetched is logged and skipped.
        """

        if self._projects is not None:
            return self._projects
        if not self.settings.project_ids:
            projects = await self.client.get_paginated("/projects", params={"membership": "true", "simple": "true"})
        else:
            projects = []
            for project_id in self.settings.project_ids:
                try:
                    payload = await self.client.get_json(f"/projects/{project_id}")
                except AppError as exc:
                    log_error(self.logger, exc, f"fetch GitLab project {project_id}")
                    continue
                if isinstance(payload, dict):
                    projects.append(payload)
        self._projects = [project for project in projects if isinstance(project, dict)]
        return self._projects

    # -- Per-kind fetches ------------------------------------------------------

    async def fetch_commits(self, project: Mapping[str, Any], since: datetime, until: datetime) -> List[Activity]:
        user = await self.current_user()
        commits = await self.client.get_paginated(
            f"/projects/{project['id']}/repository/commits",
            params={"since": _iso(since), "until": _iso(until)},
        )
        email = user.get("email")
        name = user.get("name")
        mine = [
            commit
            for commit in commits
            if (email and commit.get("author_email") == email) or (name and commit.get("author_name") == name)
        ]
        return self._normalize(mine, commit_activity, project, "commit")

    async def fetch_merge_requests(self, project: Mapping[str, Any], since: datetime, until: datetime) -> List[Activity]:
        params = await self._authored_params(since, until)
        items = await self.client.get_paginated(f"/projects/{project['id']}/merge_requests", params=params)
        return self._normalize(items, merge_request_activity, project, "merge request")

    async def fetch_issues(self, project: Mapping[str, Any], since: datetime, until: datetime) -> List[Activity]:
        params = await self._authored_params(since, until)
        items = await self.client.get_paginated(f"/projects/{project['id']}/issues", params=params)
        return self._normalize(items, issue_activity, project, "issue")

    def _normalize(
        self,
        items: List[Any],
        build: Callable[[Mapping[str, Any], Mapping[str, Any]], Activity],
        project: Mapping[str, Any],
        kind: str,
    ) -> List[Activity]:
        """Normalise ``items`` one by one; a malformed record is logged and skipped."""

        activities: List[Activity] = []
        for item in items:
            if not isinstance(item, Mapping):
                continue
            try:
                activities.append(build(item, project))
            except AppError as exc:
                log_error(
                    self.logger,
                    exc,
                    f"normalize GitLab {kind}",
                    extra={"project": project.get("name") or project.get("id"), "item_id": item.get("id")},
                )
        return activities

    async def _authored_params(self, since: datetime, until: datetime) -> Dict[str, Any]:
        user = await self.current_user()
        params: Dict[str, Any] = {"created_after": _iso(since), "created_before": _iso(until), "state": "all"}
        if user.get("id") is not None:
            params["author_id"] = user["id"]
        elif user.get("username"):
            params["author_username"] = user["username"]
        return params

    def _enabled_fetchers(self) -> List[tuple[str, ProjectFetcher]]:
        fetchers: List[tuple[str, ProjectFetcher]] = []
        if self.settings.fetch_commits:
            fetchers.append(("commits", self.fetch_commits))
        if self.settings.fetch_merge_requests:
            fetchers.append(("merge requests", self.fetch_merge_requests))
        if self.settings.fetch_issues:
            fetchers.append(("issues", self.fetch_issues))
        return fetchers

    async def collect(self, since: datetime, until: datetime) -> List[Activity]:
        """
        Gather every enabled activity kind across all projects for ``[since, until]``.

        ``since`` and ``until`` bound the API queries; results are kept when their
        local calendar date falls on one of the covered days.

        Failures for one project and kind are logged and skipped; failures to
        resolve the user or the project list propagate.
        """

        await self.current_user()
        activities: List[Activity] = []
        for project in await self.projects():
            for label, fetcher in self._enabled_fetchers():
                try:
                    activities.extend(await fetcher(project, since, until))
                except AppError as exc:
                    log_error(
                        self.logger,
                        exc,
                        f"fetch GitLab {label}",
                        extra={"project": project.get("name") or project.get("id")},
                    )
        first, last = local_date(since, self.timezone), local_date(until, self.timezone)
        return [activity for activity in activities if first <= local_date(activity.timestamp, self.timezone) <= last]

    # -- Adapter contract ------------------------------------------------------

    async def preload_range(self, start: date, end: date) -> None:
        date_range = DateRange(start, end)
        since, until = range_bounds(start, end, self.timezone)
        activities = await self.collect(since, until)
        buckets: Dict[date, List[Activity]] = defaultdict(list)
        for activity in activities:
            buckets[local_date(activity.timestamp, self.timezone)].append(activity)
        self._cache = dict(buckets)
        self._preloaded = date_range
        self.logger.info(
            f"Preloaded {len(activities)} GitLab activities for {date_range}",
            extra={"result": len(activities)},
        )

    async def fetch_for_date(self, day: date) -> List[Activity]:
        if self._preloaded is not None and day in self._preloaded:
            return list(self._cache.get(day, ()))
        since, until = self.day_bounds(day)
        activities = await self.collect(since, until)
        self.logger.info(f"Fetched {len(activities)} GitLab activities for {day.isoformat()}", extra={"day": day.isoformat()})
        return activities


def _iso(instant: datetime) -> str:
    return instant.astimezone(UTC).isoformat()
