"""
Helpers for resolving activity source adapters in CLI contexts.
"""

from __future__ import annotations

from typing import List, Optional

from ..adapters import GitLabAdapter, SourceAdapter
from ..core.context import ExecutionContext
from ..core.resilience import OperationExecutor

KNOWN_SOURCES = ("gitlab",)


def resolve_adapter(source_id: str, context: ExecutionContext, executor: OperationExecutor) -> Optional[SourceAdapter]:
    """
    Locate a concrete adapter implementation for ``source_id``.

    Returns ``None`` for unknown identifiers. The adapter is returned even when
    it is not configured so callers can report its status.
    """

    settings = context.settings
    resilience = settings.resilience
    if source_id == "gitlab":
        return GitLabAdapter(
            settings.gitlab,
            executor=executor,
            retry_policy=resilience.retry,
            circuit_breaker=resilience.circuit_breaker,
            trace=context.options.trace,
            timezone=context.timezone,
            logger=context.get_logger(f"{GitLabAdapter.__module__}.GitLabAdapter", extra={"source": source_id}),
        )
    return None


def build_adapters(context: ExecutionContext, executor: Optional[OperationExecutor] = None) -> List[SourceAdapter]:
    """Instantiate every known adapter allowed by the context, sharing one executor."""

    shared = executor or OperationExecutor(logger=context.get_logger("activity_digest.core.resilience"))
    adapters: List[SourceAdapter] = []
    for source_id in KNOWN_SOURCES:
        if not context.is_enabled(source_id):
            continue
        adapter = resolve_adapter(source_id, context, shared)
        if adapter is not None:
            adapters.append(adapter)
    return adapters
