"""
Primary Typer application wiring for the activity digest CLI.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional, Tuple

import anyio
import typer

from ..config import load_settings
from ..core.context import ExecutionContext, ExecutionOptions
from ..core.dates import PERIODS, DateRange, parse_date, resolve_period
from ..core.errors import AppError, recovery_suggestions, user_message
from ..core.logging import configure_logging
from ..core.resilience import OperationExecutor
from ..services import ActivityAggregator, render_json, write_summaries
from .adapters import KNOWN_SOURCES, build_adapters, resolve_adapter

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Aggregate daily activity from work tools into per-day summaries.\n\n"
        "Command groups:\n"
        "- summarize: fetch activities for a period or date range and emit JSON/CSV.\n"
        "- sources: inspect which activity sources are configured."
    ),
)
sources_app = typer.Typer(help="Inspect configured activity sources.")
app.add_typer(sources_app, name="sources")


def _report_error(exc: AppError) -> None:
    typer.echo(f"Error: {user_message(exc)}", err=True)
    typer.echo(f"Details: {exc}", err=True)
    typer.echo("Suggestions:", err=True)
    for suggestion in recovery_suggestions(exc):
        typer.echo(f"  - {suggestion}", err=True)


@app.callback(invoke_without_command=False)
def main(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="TOML configuration file. Defaults to ACTIVITY_DIGEST_CONFIG or .secrets/secret.toml.",
        dir_okay=False,
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)."),
    trace: bool = typer.Option(False, "--trace", help="Log every HTTP request and response status."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the execution plan without fetching anything."),
    tag: Optional[List[str]] = typer.Option(None, "--tag", help="Observability tag attached to every log line. Can be repeated."),
) -> None:
    """
    Configure global execution context.

    The callback stores the resolved execution context in Typer's state so child
    commands can retrieve it via :class:`typer.Context`.
    """

    if log_level:
        configure_logging(log_level, force=True)
    try:
        settings = load_settings(config_file)
    except AppError as exc:
        _report_error(exc)
        raise typer.Exit(code=1) from exc

    options = ExecutionOptions(dry_run=dry_run, trace=trace, observability_tags=tuple(tag or ()))
    context = ExecutionContext.build_default(options=options, settings=settings)
    state = ctx.ensure_object(dict)
    state["context"] = context


def _require_context(ctx: typer.Context) -> ExecutionContext:
    state = ctx.ensure_object(dict)
    context = state.get("context")
    if not isinstance(context, ExecutionContext):
        raise typer.Exit(code=2)
    return context


def _resolve_range(period: Optional[str], start_date: Optional[str], end_date: Optional[str], today: date) -> DateRange:
    if start_date or end_date:
        if period:
            raise typer.BadParameter("Use either --period or --start-date/--end-date, not both.")
        if not (start_date and end_date):
            raise typer.BadParameter("Both --start-date and --end-date are required for a custom range.")
        return DateRange(parse_date(start_date), parse_date(end_date))
    return resolve_period(period or "today", today)


@app.command("summarize")
def summarize(
    ctx: typer.Context,
    period: Optional[str] = typer.Option(None, "--period", "-p", help=f"Predefined period: {', '.join(PERIODS)}."),
    start_date: Optional[str] = typer.Option(None, "--start-date", help="First day (YYYY-MM-DD)."),
    end_date: Optional[str] = typer.Option(None, "--end-date", help="Last day (YYYY-MM-DD), inclusive."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the result to a .json or .csv file.", dir_okay=False),
    source: Optional[List[str]] = typer.Option(None, "--source", "-s", help="Restrict to these source IDs. Can be repeated."),
) -> None:
    """Aggregate activities into one summary per day."""

    context = _require_context(ctx)
    logger = context.get_logger(__name__)
    for source_id in source or ():
        if source_id not in KNOWN_SOURCES:
            raise typer.BadParameter(f"Unknown source '{source_id}'. Known sources: {', '.join(KNOWN_SOURCES)}.")
        context.enable(source_id)

    try:
        date_range = _resolve_range(period, start_date, end_date, datetime.now(context.timezone).date())
        adapters = build_adapters(context)
        if context.options.dry_run:
            plan = {
                "date_range": {"start": date_range.start.isoformat(), "end": date_range.end.isoformat()},
                "days": len(date_range),
                "sources": [{"id": adapter.source_id, "configured": adapter.is_configured()} for adapter in adapters],
                "output": str(output) if output else None,
            }
            typer.echo(json.dumps(plan, indent=2))
            return

        logger.info(f"Generating summaries for {date_range} ({date_range.describe()})")
        aggregator = ActivityAggregator(adapters, logger=logger)
        summaries = anyio.run(aggregator.run, date_range.start, date_range.end)
        if output:
            written = write_summaries(summaries, output)
            typer.echo(f"Wrote {len(summaries)} daily summaries to {written}")
        else:
            typer.echo(render_json(summaries))
    except AppError as exc:
        _report_error(exc)
        raise typer.Exit(code=1) from exc


def _source_rows(context: ExecutionContext) -> List[Tuple[str, bool, bool]]:
    executor = OperationExecutor()
    rows: List[Tuple[str, bool, bool]] = []
    for source_id in KNOWN_SOURCES:
        adapter = resolve_adapter(source_id, context, executor)
        configured = bool(adapter and adapter.is_configured())
        rows.append((source_id, configured, context.is_enabled(source_id)))
    return rows


@sources_app.command("list")
def sources_list(ctx: typer.Context) -> None:
    """List known activity sources and whether they are configured."""

    context = _require_context(ctx)
    header = f"{'ID':<12} {'Configured':<11} Enabled"
    typer.echo(header)
    typer.echo("-" * len(header))
    for source_id, configured, enabled in _source_rows(context):
        typer.echo(f"{source_id:<12} {'yes' if configured else 'no':<11} {'yes' if enabled else 'no'}")
