from __future__ import annotations

from activity_digest.adapters.gitlab import GitLabAdapter
from activity_digest.cli.adapters import build_adapters, resolve_adapter
from activity_digest.config import load_settings, parse_settings
from activity_digest.core.context import ExecutionContext, ExecutionOptions
from activity_digest.core.resilience import OperationExecutor


def test_resolve_adapter_gitlab(config_file):
    context = ExecutionContext.build_default(settings=load_settings(config_file), options=ExecutionOptions(trace=True))

    adapter = resolve_adapter("gitlab", context, OperationExecutor())

    assert isinstance(adapter, GitLabAdapter)
    assert adapter.is_configured()
    assert adapter.client.trace is True
    assert adapter.client.base_url == "https://gitlab.example.com/api/v4"
    assert adapter.client.retry_policy.max_attempts == 2
    assert "Authorization" not in adapter.client.default_headers
    assert adapter.client.token_provider.token.value == "glpat-test"


def test_resolve_adapter_unknown():
    context = ExecutionContext.build_default(settings=parse_settings({}, environ={}))
    assert resolve_adapter("myspace", context, OperationExecutor()) is None


def test_build_adapters_shares_executor_and_respects_allowlist():
    settings = parse_settings({"gitlab": {"access_token": "tok"}}, environ={})
    executor = OperationExecutor()

    adapters = build_adapters(ExecutionContext.build_default(settings=settings), executor)
    assert [adapter.source_id for adapter in adapters] == ["gitlab"]
    assert adapters[0].client.executor is executor

    restricted = ExecutionContext.build_default(settings=settings, enabled_sources=["jira"])
    assert build_adapters(restricted, executor) == []
