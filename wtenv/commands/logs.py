"""wtenv logs command - fetch recent environment logs."""

import json

import click

from wtenv.commands._utils import build_manager, console, fail, resolve_worktree, run_async


@click.command()
@click.argument("worktree")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def logs(ctx: click.Context, worktree: str, json_output: bool) -> None:
    """Show recent logs from a worktree's logs command.

    Examples:

        wtenv logs feature-auth

        wtenv logs feature-auth --json
    """
    try:
        worktree_id = resolve_worktree(ctx, worktree)
        result = run_async(build_manager(ctx).get_logs(worktree_id))
    except Exception as e:  # noqa: BLE001 — intentional: CLI reports every failure as exit 1
        fail(e)

    if json_output:
        click.echo(json.dumps(result.to_dict(), indent=2))
    elif not result.configured:
        console.print(f"[yellow]{result.message}[/yellow]")
    else:
        if result.logs:
            click.echo(result.logs)
        if result.truncated:
            console.print("[dim](output truncated)[/dim]")

    if result.error:
        fail(result.error)
