"""
CLI utility helpers: registry loading, store construction, output formatting.
"""

from __future__ import annotations

import importlib
import json
from collections.abc import Mapping
from dataclasses import asdict
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from taskward.core.config import TaskwardSettings, get_settings
from taskward.core.errors import TaskSchedulerError
from taskward.core.scheduling import SqlRunStore, TaskRegistry

console = Console()
err_console = Console(stderr=True)


# ── Registry / store helpers ─────────────────────────────────────────────


def load_registry(path: str | None) -> TaskRegistry:
    """Import ``package.module:ATTRIBUTE`` and return it as a ``TaskRegistry``."""
    if not path:
        raise typer.BadParameter("pass --registry module:ATTRIBUTE or set TASKWARD_REGISTRY")

    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise typer.BadParameter(f"expected module:ATTRIBUTE, got {path!r}")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise typer.BadParameter(f"cannot import {module_name!r}: {e}") from e

    registry = getattr(module, attr, None)
    if registry is None:
        raise typer.BadParameter(f"{module_name!r} has no attribute {attr!r}")
    if isinstance(registry, TaskRegistry):
        return registry
    if isinstance(registry, Mapping):
        try:
            return TaskRegistry(registry)
        except TaskSchedulerError as e:
            fail(e)
    raise typer.BadParameter(f"{path!r} is not a task registry")


def open_store(database: str | None = None) -> tuple[SqlRunStore, TaskwardSettings]:
    """SQL store from settings, optionally pointed at another database URL."""
    settings = get_settings()
    if database:
        settings = settings.model_copy(update={"database_url": database})
    store = SqlRunStore.from_settings(settings)
    store.create_schema()
    return store, settings


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def output(data: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render a dataclass, dict or list of them to the terminal."""
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


def fail(error: TaskSchedulerError) -> None:
    """Print a scheduler error and exit non-zero."""
    err_console.print(f"[bold red]Error[/bold red] ({error.code.value}): {error.message}")
    raise typer.Exit(code=1)


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(items: list, *, title: str = "") -> None:
    first = _to_dict(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in first:
        table.add_column(col, overflow="fold")
    for item in items:
        d = _to_dict(item)
        table.add_row(*("" if v is None else str(v) for v in d.values()))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
