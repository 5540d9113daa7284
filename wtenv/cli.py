"""wtenv command-line interface."""

from pathlib import Path

import click

from wtenv import __version__
from wtenv.commands import (
    container,
    health,
    logs,
    monitor,
    nuke,
    reconcile,
    register,
    restart,
    start,
    status,
    stop,
    unregister,
)
from wtenv.config import WtenvConfig
from wtenv.logging import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="wtenv")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="WTENV_CONFIG",
    default=None,
    help="Config file (default: .wtenv/config.yaml)",
)
@click.option(
    "--store",
    "store_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="WTENV_STORE",
    default=None,
    help="Worktree store file (default: .wtenv/worktrees.json)",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warn", "error"]),
    envvar="WTENV_LOG_LEVEL",
    default=None,
    help="Override the configured log level",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, store_path: Path | None, log_level: str | None) -> None:
    """wtenv - Worktree environment lifecycle engine.

    Start, stop and health-check the app environment of each git worktree.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["store_path"] = store_path

    try:
        config = WtenvConfig.load(config_path)
    except Exception as e:  # noqa: BLE001 — intentional: invalid config is reported, not raised
        raise click.ClickException(f"Invalid config: {e}") from e
    ctx.obj["config"] = config

    log_cfg = config.logging
    setup_logging(
        level=log_level or log_cfg.level,
        log_dir=log_cfg.directory if log_cfg.json_output else None,
        json_output=log_cfg.json_output,
        console_output=True,
        max_bytes=log_cfg.max_log_size_mb * 1024 * 1024,
    )


cli.add_command(register)
cli.add_command(unregister)
cli.add_command(start)
cli.add_command(stop)
cli.add_command(restart)
cli.add_command(nuke)
cli.add_command(health)
cli.add_command(monitor)
cli.add_command(logs)
cli.add_command(status)
cli.add_command(reconcile)
cli.add_command(container)


if __name__ == "__main__":
    cli()
