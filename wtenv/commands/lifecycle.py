"""wtenv lifecycle commands - start, stop, restart and nuke environments."""

import click

from wtenv.commands._utils import build_manager, console, fail, print_instance, resolve_worktree, run_async
from wtenv.constants import EnvironmentStatus


@click.command()
@click.argument("worktree")
@click.pass_context
def start(ctx: click.Context, worktree: str) -> None:
    """Start a worktree environment.

    The environment stays `starting` until a health check succeeds.

    Examples:

        wtenv start feature-auth
    """
    try:
        worktree_id = resolve_worktree(ctx, worktree)
        instance = run_async(build_manager(ctx).start(worktree_id))
    except KeyboardInterrupt:
        console.print("\n[yellow]Aborted[/yellow]")
        return
    except Exception as e:  # noqa: BLE001 — intentional: CLI reports every failure as exit 1
        fail(e)

    print_instance(worktree, instance)
    if instance.status is EnvironmentStatus.ERROR:
        raise SystemExit(1)


@click.command()
@click.argument("worktree")
@click.pass_context
def stop(ctx: click.Context, worktree: str) -> None:
    """Stop a worktree environment.

    Examples:

        wtenv stop feature-auth
    """
    try:
        worktree_id = resolve_worktree(ctx, worktree)
        instance = run_async(build_manager(ctx).stop(worktree_id))
    except Exception as e:  # noqa: BLE001 — intentional: CLI reports every failure as exit 1
        fail(e)

    print_instance(worktree, instance)


@click.command()
@click.argument("worktree")
@click.pass_context
def restart(ctx: click.Context, worktree: str) -> None:
    """Restart a worktree environment (stop if running, then start)."""
    try:
        worktree_id = resolve_worktree(ctx, worktree)
        instance = run_async(build_manager(ctx).restart(worktree_id))
    except Exception as e:  # noqa: BLE001 — intentional: CLI reports every failure as exit 1
        fail(e)

    print_instance(worktree, instance)
    if instance.status is EnvironmentStatus.ERROR:
        raise SystemExit(1)


@click.command()
@click.argument("worktree")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
def nuke(ctx: click.Context, worktree: str, yes: bool) -> None:
    """Run the destructive nuke command for a worktree.

    This typically destroys databases and volumes.

    Examples:

        wtenv nuke feature-auth --yes
    """
    if not yes and not click.confirm(
        f"Nuke environment for {worktree}? All data and volumes will be destroyed", default=False
    ):
        console.print("[yellow]Aborted[/yellow]")
        return

    try:
        worktree_id = resolve_worktree(ctx, worktree)
        instance = run_async(build_manager(ctx).nuke(worktree_id))
    except Exception as e:  # noqa: BLE001 — intentional: CLI reports every failure as exit 1
        fail(e)

    print_instance(worktree, instance)
    if instance.status is EnvironmentStatus.ERROR:
        raise SystemExit(1)
