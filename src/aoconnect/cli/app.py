"""
Root Typer application for the aoconnect CLI.

Read-only commands: results, dry runs and scheduler lookups. Anything that
signs needs a wallet, and wallet handling stays out of the CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from aoconnect.cli.utils import err_console, make_client, output_result, run
from aoconnect.client.poller import NOT_YET_AVAILABLE
from aoconnect.core.logging import configure_logging

app = Typer(
    name="aoconnect",
    help="aoconnect: talk to ao processes from the terminal.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("aoconnect")
        except PackageNotFoundError:
            v = "0.1.0"
        typer.echo(f"aoconnect {v}")
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
    log_level: str = typer.Option("WARNING", "--log-level", help="Log level for stderr logs."),
) -> None:
    """aoconnect CLI: read results, dry-run messages, locate schedulers."""
    configure_logging(level=log_level, json_format=False)


# ── Commands ─────────────────────────────────────────────────────────────


def _parse_tags(raw: list[str]) -> list[tuple[str, str]]:
    tags = []
    for item in raw:
        name, sep, value = item.partition("=")
        if not sep:
            err_console.print(f"[bold red]Error[/bold red]: tag {item!r} must look like Name=Value")
            raise typer.Exit(code=2)
        tags.append((name, value))
    return tags


@app.command("result")
def result_cmd(
    process_id: str = typer.Argument(..., help="Process id"),
    message_id: str = typer.Argument(..., help="Message id"),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Poll until the result is computed."),
    cu_url: str | None = typer.Option(None, "--cu-url", help="Compute unit URL."),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Read the result of one message."""

    async def _go():
        client = make_client(cu_url=cu_url)
        try:
            if wait:
                return await client.result(process_id, message_id)
            return await client.fetch(process_id, message_id)
        finally:
            await client.aclose()

    outcome = run(_go())
    if outcome is NOT_YET_AVAILABLE:
        err_console.print("[yellow]Result not yet available.[/yellow]")
        raise typer.Exit(code=2)
    output_result(outcome, as_json=json_out, title=f"Result {message_id}")


@app.command("results")
def results_cmd(
    process_id: str = typer.Argument(..., help="Process id"),
    from_: str | None = typer.Option(None, "--from", help="Start cursor (exclusive)."),
    to: str | None = typer.Option(None, "--to", help="End cursor (inclusive)."),
    sort: str = typer.Option("ASC", "--sort", help="ASC or DESC."),
    limit: int = typer.Option(25, "--limit", "-n"),
    cu_url: str | None = typer.Option(None, "--cu-url", help="Compute unit URL."),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List a page of results for a process."""

    async def _go():
        client = make_client(cu_url=cu_url)
        try:
            return await client.results(process_id, from_=from_, to=to, sort=sort, limit=limit)
        finally:
            await client.aclose()

    page = run(_go())
    if json_out:
        output_result(list(page.edges), as_json=True)
        return
    rows = [
        {
            "cursor": edge.cursor,
            "messages": len(edge.node.messages),
            "spawns": len(edge.node.spawns),
            "error": edge.node.error or "",
        }
        for edge in page.edges
    ]
    output_result(rows, title=f"Results {process_id}")


@app.command("dryrun")
def dryrun_cmd(
    process_id: str = typer.Argument(..., help="Process id"),
    data: str = typer.Option("1234", "--data", "-d", help="Message data."),
    tag: list[str] = typer.Option([], "--tag", "-t", help="Tag as Name=Value; repeatable."),
    owner: str | None = typer.Option(None, "--owner", help="Owner address to evaluate as."),
    cu_url: str | None = typer.Option(None, "--cu-url", help="Compute unit URL."),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Evaluate a message without sending it."""
    tags = _parse_tags(tag)

    async def _go():
        client = make_client(cu_url=cu_url)
        try:
            return await client.dryrun(process_id, data, tags, owner=owner)
        finally:
            await client.aclose()

    outcome = run(_go())
    output_result(outcome, as_json=json_out, title="Dry run")


@app.command("locate")
def locate_cmd(
    process_id: str = typer.Argument(..., help="Process id"),
    gateway_url: str | None = typer.Option(None, "--gateway-url", help="Arweave gateway URL."),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the scheduler responsible for a process."""

    async def _go():
        client = make_client(gateway_url=gateway_url)
        try:
            return await client.locate(process_id)
        finally:
            await client.aclose()

    resolution = run(_go())
    output_result(
        {
            "process_id": process_id,
            "scheduler": resolution.address,
            "url": resolution.url,
            "alternates": list(resolution.location.urls[1:]),
            "ttl_seconds": resolution.location.ttl_seconds,
            "stale": resolution.stale,
        },
        as_json=json_out,
        title="Scheduler",
    )
