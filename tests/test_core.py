from __future__ import annotations

import logging

import pytest

from activity_digest.config import parse_settings
from activity_digest.core.context import ExecutionContext, ExecutionOptions
from activity_digest.core.dates import resolve_timezone
from activity_digest.core.logging import StructuredLogFormatter, bind_extra, configure_logging, get_logger, log_progress


def test_execution_context_build_default():
    settings = parse_settings({}, environ={})
    context = ExecutionContext.build_default(enabled_sources=["gitlab", "jira"], settings=settings)

    assert context.is_enabled("gitlab")
    assert context.is_enabled("jira")
    assert not context.is_enabled("slack")

    context.enable("slack")
    assert context.is_enabled("slack")
    context.disable("slack")
    assert not context.is_enabled("slack")

    assert isinstance(context.options, ExecutionOptions)
    assert context.timezone is resolve_timezone("UTC")


def test_empty_allowlist_enables_everything():
    context = ExecutionContext.build_default(settings=parse_settings({}, environ={}))
    assert context.is_enabled("anything")


def test_trace_flag_from_settings_enables_tracing():
    context = ExecutionContext.build_default(settings=parse_settings({"trace": True}, environ={}))
    assert context.options.trace is True


@pytest.fixture
def reset_logging_handlers():
    root = logging.getLogger()
    existing_handlers = list(root.handlers)
    yield
    root.handlers = existing_handlers


class _ListHandler(logging.Handler):
    def __init__(self, formatter: logging.Formatter):
        super().__init__()
        self.records: list[logging.LogRecord] = []
        self.setFormatter(formatter)

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - trivial
        self.records.append(record)


def test_structured_formatter_appends_extras_in_focus_order():
    formatter = StructuredLogFormatter(use_color=False)
    record = logging.LogRecord(
        name="test.logger",
        level=logging.INFO,
        pathname=__file__,
        lineno=42,
        msg="Fetching activities",
        args=(),
        exc_info=None,
    )
    record.source = "gitlab"
    record.phase = "fetch"
    record.attempt = 2
    record.tags = ("nightly",)

    formatted = formatter.format(record)

    assert "Fetching activities" in formatted
    assert formatted.endswith("| phase=fetch source=gitlab attempt=2 tags=[nightly]")


def test_configure_logging_installs_structured_formatter(reset_logging_handlers):
    configure_logging(force=True)
    root = logging.getLogger()
    assert root.handlers, "expected at least one handler configured"
    assert isinstance(root.handlers[0].formatter, StructuredLogFormatter)


def test_log_progress_populates_record_extras(reset_logging_handlers):
    configure_logging(force=True)
    logger = get_logger("test.progress", tags=["digest"], extra={"source": "gitlab"})
    root = logging.getLogger()
    collector = _ListHandler(root.handlers[0].formatter)
    root.addHandler(collector)
    try:
        log_progress(logger, "Preloading", phase="preload", status="started", extra={"day": "2024-01-01"})
    finally:
        root.removeHandler(collector)

    record = collector.records[0]
    assert record.phase == "preload"
    assert record.status == "started"
    assert record.source == "gitlab"
    assert record.day == "2024-01-01"
    assert record.tags == ("digest",)
    formatted = collector.format(record)
    assert "phase=preload" in formatted
    assert "source=gitlab" in formatted


def test_bind_extra_leaves_parent_untouched():
    parent = get_logger("test.bind", extra={"source": "gitlab"})
    child = bind_extra(parent, day="2024-01-02")

    assert child.extra == {"source": "gitlab", "day": "2024-01-02"}
    assert parent.extra == {"source": "gitlab"}
