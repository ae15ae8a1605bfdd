"""
Root Typer application for the siteagents CLI.

Every command works against the SQLite execution ledger at
``settings.database_path`` unless ``--database`` points elsewhere.
"""

from __future__ import annotations

import asyncio
import sys

import typer
from typer import Typer

from siteagents.cli.utils import (
    console,
    fail,
    open_dispatcher,
    output_dict,
    output_json,
    output_table,
    parse_json_option,
)
from siteagents.core.errors import RecordNotFoundError, ValidationError
from siteagents.core.logging import configure_logging
from siteagents.execution.models import AgentCategory, ExecutionRequest, ExecutionStatus, HistoryFilters

app = Typer(
    name="siteagents",
    help="siteagents — run construction agents and inspect their audit trail.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from siteagents import __version__

        typer.echo(f"siteagents {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log dispatch events to stderr."),
) -> None:
    """siteagents CLI — run agents, browse history, review flagged results."""
    level = "DEBUG" if verbose else "WARNING"
    configure_logging(level=level, json_format=False, stream=sys.stderr)


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("agents")
def list_agents(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List registered agents and their actions."""
    dispatcher, store = open_dispatcher(database)
    try:
        handlers = dispatcher.registry.list_handlers()
    finally:
        store.close()

    if json_out:
        output_json(handlers)
        return
    rows = [{**h, "actions": ", ".join(h["actions"])} for h in handlers]
    output_table(rows, title="Agents")


@app.command()
def run(
    category: str = typer.Argument(..., help="Agent category, e.g. SAFETY"),
    input: str | None = typer.Option(None, "--input", "-i", help="JSON input payload"),
    context: str | None = typer.Option(None, "--context", "-c", help="JSON context (organizationId, projectId, ...)"),
    data: str | None = typer.Option(None, "--data", help="JSON file seeding the domain store"),
    timeout: float | None = typer.Option(None, "--timeout", help="Seconds before the agent is abandoned"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run one agent and record the execution."""
    request = ExecutionRequest(
        category=category,
        context=parse_json_option(context, "--context"),
        input=parse_json_option(input, "--input"),
        requested_by="cli",
    )

    dispatcher, store = open_dispatcher(database, data)
    try:
        outcome = asyncio.run(dispatcher.execute(request, timeout=timeout))
    finally:
        store.close()

    if json_out:
        output_json(outcome.to_dict())
    else:
        output_dict(outcome.to_dict(), title=f"Execution: {outcome.execution_id or '-'}")
    if not outcome.success:
        raise typer.Exit(code=1)


@app.command()
def history(
    category: str | None = typer.Option(None, "--category", "-c"),
    organization: str | None = typer.Option(None, "--organization", "-o"),
    project: str | None = typer.Option(None, "--project", "-p"),
    status: str | None = typer.Option(None, "--status", "-s"),
    limit: int | None = typer.Option(None, "--limit", "-n", min=1),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List recorded executions, newest first."""
    if category and AgentCategory.parse(category) is None:
        fail(f"Invalid category: {category}")
    if status and status.upper() not in ExecutionStatus.__members__:
        fail(f"Invalid status: {status}")

    filters = HistoryFilters(
        category=category,
        organization_id=organization,
        project_id=project,
        status=status,
        limit=limit,
    )
    dispatcher, store = open_dispatcher(database)
    try:
        records = asyncio.run(dispatcher.get_execution_history(filters))
    finally:
        store.close()

    if json_out:
        output_json([r.to_dict() for r in records])
        return
    output_table(
        [
            {
                "id": r.id,
                "category": r.category,
                "status": r.status.value,
                "organization": r.organization_id,
                "confidence": r.confidence,
                "ms": r.execution_time_ms,
                "created": r.created_at.isoformat(timespec="seconds"),
            }
            for r in records
        ],
        title="Executions",
    )


@app.command()
def show(
    execution_id: str = typer.Argument(..., help="Execution ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show one execution record and its reviews."""
    dispatcher, store = open_dispatcher(database)
    try:
        record = asyncio.run(dispatcher.get_execution(execution_id))
        reviews = asyncio.run(dispatcher.list_reviews(execution_id)) if record else []
    finally:
        store.close()

    if record is None:
        fail(f"Execution not found: {execution_id}")

    payload = record.to_dict()
    payload["reviews"] = [r.to_dict() for r in reviews]
    if json_out:
        output_json(payload)
    else:
        output_dict(payload, title=f"Execution: {execution_id}")


@app.command()
def review(
    execution_id: str = typer.Argument(..., help="Execution ID"),
    reviewer: str = typer.Option(..., "--reviewer", "-r"),
    approve: bool = typer.Option(True, "--approve/--reject"),
    notes: str | None = typer.Option(None, "--notes"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Approve or reject an execution awaiting review."""
    dispatcher, store = open_dispatcher(database)
    try:
        result = asyncio.run(dispatcher.review_execution(execution_id, reviewer, approve, notes))
    except (RecordNotFoundError, ValidationError) as e:
        fail(e.message)
    finally:
        store.close()

    if json_out:
        output_json(result.to_dict())
    else:
        verdict = "[green]approved[/green]" if result.approved else "[red]rejected[/red]"
        console.print(f"Execution {execution_id} {verdict} by {result.reviewer}")
