"""
CLI utility helpers: output formatting, client construction, async bridging.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Coroutine
from dataclasses import asdict
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from aoconnect.client.connect import AOClient, connect
from aoconnect.core.errors import AOError

console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")


# ── Client helpers ───────────────────────────────────────────────────────


def make_client(cu_url: str | None = None, gateway_url: str | None = None) -> AOClient:
    """Build a client, overriding only the URLs given on the command line."""
    overrides: dict[str, Any] = {}
    if cu_url:
        overrides["cu_url"] = cu_url
    if gateway_url:
        overrides["gateway_url"] = gateway_url
    return connect(**overrides)


def run(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro* to completion, turning ``AOError`` into exit code 1."""
    try:
        return asyncio.run(coro)
    except AOError as e:
        fail(e)


def fail(error: AOError) -> None:
    err_console.print(
        f"[bold red]Error[/bold red] ({error.category.value}): {error.message}"
    )
    raise typer.Exit(code=1)


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump(by_alias=True)
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def output_result(data: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render a model, dict or list of them to the terminal."""
    if as_json:
        payload = [_to_dict(d) for d in data] if isinstance(data, list | tuple) else _to_dict(data)
        console.print_json(json.dumps(payload, default=str))
        return

    if isinstance(data, list):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        _print_table(data, title=title)
    else:
        _print_dict(_to_dict(data), title=title)


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(items: list, *, title: str = "") -> None:
    """Render a list of dataclasses/dicts as a Rich table."""
    first = _to_dict(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in first:
        table.add_column(col, overflow="fold")
    for item in items:
        d = _to_dict(item)
        table.add_row(*(str(v) for v in d.values()))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
