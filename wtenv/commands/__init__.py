"""wtenv CLI commands."""

from wtenv.commands.container import container
from wtenv.commands.health import health, monitor
from wtenv.commands.lifecycle import nuke, restart, start, stop
from wtenv.commands.logs import logs
from wtenv.commands.reconcile import reconcile
from wtenv.commands.register import register, unregister
from wtenv.commands.status import status

__all__ = [
    "container",
    "health",
    "logs",
    "monitor",
    "nuke",
    "reconcile",
    "register",
    "restart",
    "start",
    "status",
    "stop",
    "unregister",
]
