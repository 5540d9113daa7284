"""wtenv container commands - inspect and manage worktree containers."""

import getpass
import json
from pathlib import Path

import click

from wtenv.commands._utils import build_manager, console, fail, open_store, resolve_worktree, run_async
from wtenv.ports import app_internal_port_from_url


@click.group()
def container() -> None:
    """Manage per-worktree containers."""


@container.command()
@click.argument("worktree")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def info(ctx: click.Context, worktree: str, json_output: bool) -> None:
    """Show container name, live status and ports."""
    try:
        record = open_store(ctx).get_sync(resolve_worktree(ctx, worktree))
        details = run_async(
            build_manager(ctx).containers.get_container_info(record.worktree_id, record.unique_id)
        )
    except Exception as e:  # noqa: BLE001 — intentional: CLI reports every failure as exit 1
        fail(e)

    if json_output:
        click.echo(
            json.dumps(
                {
                    "name": details.name,
                    "status": details.status,
                    "ssh_port": record.ssh_port or details.ssh_port,
                    "app_port": details.app_port,
                },
                indent=2,
            )
        )
        return

    console.print(f"[bold]Container:[/bold] {details.name}")
    console.print(f"[bold]Status:[/bold]    {details.status}")
    console.print(f"[bold]SSH port:[/bold]  {record.ssh_port or details.ssh_port}")
    console.print(f"[bold]App port:[/bold]  {details.app_port}")


@container.command()
@click.argument("worktree")
@click.option("--user", "username", default=None, help="SSH username (defaults to current user)")
@click.pass_context
def ssh(ctx: click.Context, worktree: str, username: str | None) -> None:
    """Print the SSH command for a running worktree container."""
    try:
        record = open_store(ctx).get_sync(resolve_worktree(ctx, worktree))
        conn = run_async(
            build_manager(ctx).containers.get_ssh_connection_info(
                record.worktree_id,
                record.unique_id,
                username or getpass.getuser(),
                stored_port=record.ssh_port,
            )
        )
    except Exception as e:  # noqa: BLE001 — intentional: CLI reports every failure as exit 1
        fail(e)

    click.echo(conn.connection_string)


@container.command()
@click.argument("worktree")
@click.pass_context
def destroy(ctx: click.Context, worktree: str) -> None:
    """Stop and remove a worktree's container."""
    try:
        worktree_id = resolve_worktree(ctx, worktree)
        removed = run_async(build_manager(ctx).containers.destroy_container(worktree_id))
    except Exception as e:  # noqa: BLE001 — intentional: CLI reports every failure as exit 1
        fail(e)

    if removed:
        console.print(f"[green]✓[/green] Container for {worktree} destroyed")
    else:
        console.print(f"[dim]No container for {worktree}[/dim]")


@container.command()
@click.argument("worktree")
@click.pass_context
def recreate(ctx: click.Context, worktree: str) -> None:
    """Destroy and recreate a worktree's container."""
    try:
        store = open_store(ctx)
        record = store.get_sync(resolve_worktree(ctx, worktree))
        containers = build_manager(ctx).containers
        env = record.environment
        internal_port = app_internal_port_from_url(env.health_check_url or env.app_url)
        result = run_async(
            containers.recreate_container(
                record.worktree_id,
                Path(record.path),
                Path(record.repo_path),
                unique_id=record.unique_id,
                app_internal_port=internal_port,
                app_external_port=containers.calculate_app_external_port(record.unique_id)
                if internal_port
                else None,
            )
        )
        run_async(
            store.patch(
                record.worktree_id,
                {"ssh_port": result.ssh_port, "container_name": result.container_name},
            )
        )
    except Exception as e:  # noqa: BLE001 — intentional: CLI reports every failure as exit 1
        fail(e)

    console.print(
        f"[green]✓[/green] Container {result.container_name} recreated (SSH port {result.ssh_port})"
    )
