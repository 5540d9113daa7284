"""wtenv register commands - add and remove worktree records."""

import uuid
from pathlib import Path

import click

from wtenv.commands._utils import build_manager, console, fail, open_store, resolve_worktree, run_async
from wtenv.types import WorktreeEnvironmentConfig, WorktreeRecord


@click.command()
@click.argument("name")
@click.option(
    "--path",
    "worktree_path",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
    help="Worktree directory",
)
@click.option(
    "--repo",
    "repo_path",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Parent repository directory (defaults to the worktree's parent)",
)
@click.option("--id", "worktree_id", default=None, help="Worktree ID (generated when omitted)")
@click.option("--unique-id", type=int, default=None, help="Numeric worktree ID used for port derivation")
@click.option("--start", "start_command", default=None, help="Start command")
@click.option("--stop", "stop_command", default=None, help="Stop command")
@click.option("--nuke", "nuke_command", default=None, help="Nuke command")
@click.option("--logs", "logs_command", default=None, help="Logs command")
@click.option("--health-url", default=None, help="Health check URL")
@click.option("--app-url", default=None, help="App URL shown once started")
@click.pass_context
def register(
    ctx: click.Context,
    name: str,
    worktree_path: Path,
    repo_path: Path | None,
    worktree_id: str | None,
    unique_id: int | None,
    start_command: str | None,
    stop_command: str | None,
    nuke_command: str | None,
    logs_command: str | None,
    health_url: str | None,
    app_url: str | None,
) -> None:
    """Register a worktree and its environment commands.

    Commands are stored as given; they are not templated.

    Examples:

        wtenv register feature-auth --path ../feature-auth \\
            --start "docker compose up -d" --stop "docker compose down" \\
            --health-url http://localhost:5173/health
    """
    try:
        store = open_store(ctx)
        existing = store.list_sync()
        if unique_id is None:
            unique_id = max((r.unique_id for r in existing), default=0) + 1
        elif any(r.unique_id == unique_id and r.worktree_id != worktree_id for r in existing):
            fail(f"Unique ID {unique_id} is already used by another worktree")

        path = worktree_path.resolve()
        record = WorktreeRecord(
            worktree_id=worktree_id or str(uuid.uuid4()),
            name=name,
            path=path,
            repo_path=(repo_path or path.parent).resolve(),
            unique_id=unique_id,
            environment=WorktreeEnvironmentConfig(
                start_command=start_command,
                stop_command=stop_command,
                nuke_command=nuke_command,
                logs_command=logs_command,
                health_check_url=health_url,
                app_url=app_url,
            ),
        )
        store.add(record)
    except Exception as e:  # noqa: BLE001 — intentional: CLI reports every failure as exit 1
        fail(e)

    console.print(f"[green]✓[/green] Registered [bold]{name}[/bold] ({record.worktree_id})")


@click.command()
@click.argument("worktree")
@click.option("--destroy-container", is_flag=True, help="Also remove the worktree's container")
@click.pass_context
def unregister(ctx: click.Context, worktree: str, destroy_container: bool) -> None:
    """Clear a worktree's environment and remove its record."""
    try:
        worktree_id = resolve_worktree(ctx, worktree)
        manager = build_manager(ctx)
        run_async(manager.clear(worktree_id))
        if destroy_container and manager.containers.enabled:
            run_async(manager.containers.destroy_container(worktree_id))
        open_store(ctx).remove(worktree_id)
    except Exception as e:  # noqa: BLE001 — intentional: CLI reports every failure as exit 1
        fail(e)

    console.print(f"[green]✓[/green] Unregistered {worktree}")
