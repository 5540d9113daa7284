"""wtenv status command - show environment snapshots."""

import json

import click
from rich.markup import escape
from rich.table import Table

from wtenv.commands._utils import console, fail, format_health, format_status, open_store, resolve_worktree
from wtenv.types import WorktreeRecord


@click.command()
@click.argument("worktree", required=False)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def status(ctx: click.Context, worktree: str | None, json_output: bool) -> None:
    """Show environment status for one or all worktrees.

    Examples:

        wtenv status

        wtenv status feature-auth --json
    """
    try:
        store = open_store(ctx)
        if worktree:
            records = [store.get_sync(resolve_worktree(ctx, worktree))]
        else:
            records = sorted(store.list_sync(), key=lambda r: r.unique_id)
    except Exception as e:  # noqa: BLE001 — intentional: CLI reports every failure as exit 1
        fail(e)

    if json_output:
        click.echo(json.dumps([r.to_dict() for r in records], indent=2, default=str))
        return

    if not records:
        console.print("[dim]No worktrees registered[/dim]")
        return

    show_status_table(records)


def show_status_table(records: list[WorktreeRecord]) -> None:
    """Render worktree snapshots as a table."""
    table = Table(show_header=True)
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Health")
    table.add_column("Container")
    table.add_column("SSH", justify="center")
    table.add_column("URLs")

    for record in records:
        instance = record.environment_instance
        table.add_row(
            record.worktree_id[:8],
            escape(record.display_name),
            format_status(instance.status),
            format_health(instance),
            record.container_name or "[dim]-[/dim]",
            str(record.ssh_port) if record.ssh_port else "-",
            ", ".join(u.url for u in instance.access_urls) or "-",
        )

    console.print(table)
