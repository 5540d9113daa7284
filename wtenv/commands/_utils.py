"""Shared utilities for wtenv CLI commands."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any, NoReturn, TypeVar

import click
from rich.console import Console
from rich.markup import escape

from wtenv.config import WtenvConfig
from wtenv.constants import EnvironmentStatus, HealthStatus
from wtenv.environment import EnvironmentManager
from wtenv.store import JsonWorktreeStore
from wtenv.types import EnvironmentInstance

T = TypeVar("T")

console = Console()

STATUS_COLORS = {
    EnvironmentStatus.STOPPED: "dim",
    EnvironmentStatus.STARTING: "cyan",
    EnvironmentStatus.RUNNING: "green",
    EnvironmentStatus.STOPPING: "yellow",
    EnvironmentStatus.ERROR: "red",
}

HEALTH_COLORS = {
    HealthStatus.HEALTHY: "green",
    HealthStatus.UNHEALTHY: "red",
    HealthStatus.UNKNOWN: "dim",
}


def load_config(ctx: click.Context) -> WtenvConfig:
    """Config for this invocation, loaded once per context."""
    obj = ctx.ensure_object(dict)
    if "config" not in obj:
        obj["config"] = WtenvConfig.load(obj.get("config_path"))
    return obj["config"]


def open_store(ctx: click.Context) -> JsonWorktreeStore:
    obj = ctx.ensure_object(dict)
    if "store" not in obj:
        obj["store"] = JsonWorktreeStore(obj.get("store_path"))
    return obj["store"]


def build_manager(ctx: click.Context) -> EnvironmentManager:
    obj = ctx.ensure_object(dict)
    if "manager" not in obj:
        obj["manager"] = EnvironmentManager(open_store(ctx), load_config(ctx))
    return obj["manager"]


def resolve_worktree(ctx: click.Context, ref: str) -> str:
    """Expand a worktree name or ID prefix to its full ID."""
    return open_store(ctx).resolve_id(ref)


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


def fail(error: Exception | str) -> NoReturn:
    """Print an error and exit with status 1."""
    console.print(f"[red]Error:[/red] {escape(str(error))}", highlight=False)
    raise SystemExit(1)


def format_status(status: EnvironmentStatus) -> str:
    color = STATUS_COLORS.get(status, "white")
    return f"[{color}]{status.value}[/{color}]"


def format_health(instance: EnvironmentInstance) -> str:
    check = instance.last_health_check
    if check is None:
        return "[dim]-[/dim]"
    color = HEALTH_COLORS.get(check.status, "white")
    return f"[{color}]{check.status.value}[/{color}] {escape(check.message)}"


def print_instance(name: str, instance: EnvironmentInstance) -> None:
    """One-line summary of a snapshot after an operation."""
    console.print(f"[bold]{name}[/bold]: {format_status(instance.status)}  {format_health(instance)}")
    for url in instance.access_urls:
        console.print(f"  {url.name}: [cyan]{url.url}[/cyan]")
