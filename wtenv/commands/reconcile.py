"""wtenv reconcile command - repair snapshots after a daemon restart."""

import click
from rich.table import Table

from wtenv.commands._utils import build_manager, console, fail, open_store, run_async
from wtenv.environment import ReconcileAction

ACTION_STYLES = {
    ReconcileAction.UNCHANGED: "dim",
    ReconcileAction.RECOVERED: "green",
    ReconcileAction.CONTAINER_RUNNING: "yellow",
    ReconcileAction.MISSING: "red",
}


@click.command()
@click.pass_context
def reconcile(ctx: click.Context) -> None:
    """Reconcile persisted environment snapshots with reality.

    Snapshots stuck in `stopping` are moved to `stopped`. Containers still
    running behind a stopped snapshot are reported, never touched.
    """
    try:
        ids = [r.worktree_id for r in open_store(ctx).list_sync()]
        actions = run_async(build_manager(ctx).reconcile(ids))
    except Exception as e:  # noqa: BLE001 — intentional: CLI reports every failure as exit 1
        fail(e)

    if not actions:
        console.print("[dim]No worktrees registered[/dim]")
        return

    table = Table(show_header=True)
    table.add_column("Worktree")
    table.add_column("Action")
    for worktree_id, action in actions.items():
        style = ACTION_STYLES.get(action, "white")
        table.add_row(worktree_id[:8], f"[{style}]{action}[/{style}]")
    console.print(table)
