"""wtenv health commands - single health tick and the monitor loop."""

import asyncio

import click

from wtenv.commands._utils import (
    build_manager,
    console,
    fail,
    load_config,
    open_store,
    print_instance,
    resolve_worktree,
    run_async,
)
from wtenv.monitor import HealthMonitor


@click.command()
@click.argument("worktree")
@click.pass_context
def health(ctx: click.Context, worktree: str) -> None:
    """Run one health check for a worktree.

    Only `starting` and `running` environments are probed.
    """
    try:
        worktree_id = resolve_worktree(ctx, worktree)
        instance = run_async(build_manager(ctx).check_health(worktree_id))
    except Exception as e:  # noqa: BLE001 — intentional: CLI reports every failure as exit 1
        fail(e)

    print_instance(worktree, instance)


@click.command()
@click.option("--interval", type=float, default=None, help="Seconds between health checks")
@click.option("--poll", type=float, default=10.0, show_default=True, help="Seconds between store re-syncs")
@click.pass_context
def monitor(ctx: click.Context, interval: float | None, poll: float) -> None:
    """Continuously health-check every active environment.

    Runs until interrupted with Ctrl+C.
    """
    settings = load_config(ctx).environment
    manager = build_manager(ctx)
    store = open_store(ctx)

    health_monitor = HealthMonitor.from_settings(manager, settings)
    if interval is not None:
        health_monitor.interval_seconds = interval

    console.print(
        f"[bold cyan]wtenv monitor[/bold cyan] - checking every "
        f"{health_monitor.interval_seconds:g}s (Ctrl+C to stop)"
    )
    try:
        asyncio.run(health_monitor.run(store.list_all, poll_seconds=poll))
    except KeyboardInterrupt:
        console.print("\n[yellow]Monitor stopped[/yellow]")
    except Exception as e:  # noqa: BLE001 — intentional: CLI reports every failure as exit 1
        fail(e)
