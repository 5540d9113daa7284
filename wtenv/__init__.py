"""wtenv - Worktree environment lifecycle engine.

Start, stop, restart, nuke and health-check per-worktree app environments,
optionally isolated in one container per worktree.
"""

__version__ = "0.1.0"

from wtenv.config import WtenvConfig
from wtenv.constants import ContainerStatus, EnvironmentStatus, HealthStatus
from wtenv.containers import ContainerManager
from wtenv.environment import EnvironmentManager
from wtenv.exceptions import (
    ConfigurationError,
    ContainerError,
    ContainerNotFoundError,
    EnvironmentAlreadyRunningError,
    StoreError,
    WorktreeNotFoundError,
    WtenvError,
)
from wtenv.health import HealthProber
from wtenv.monitor import HealthMonitor
from wtenv.runner import CommandResult, CommandRunner, ContainerTarget, HostTarget
from wtenv.store import InMemoryWorktreeStore, JsonWorktreeStore, WorktreeStore
from wtenv.types import EnvironmentInstance, HealthCheck, LogsResult, WorktreeEnvironmentConfig, WorktreeRecord

__all__ = [
    "__version__",
    "EnvironmentStatus",
    "HealthStatus",
    "ContainerStatus",
    "WtenvConfig",
    # Engine
    "EnvironmentManager",
    "HealthMonitor",
    "CommandRunner",
    "CommandResult",
    "HostTarget",
    "ContainerTarget",
    "ContainerManager",
    "HealthProber",
    # Store
    "WorktreeStore",
    "InMemoryWorktreeStore",
    "JsonWorktreeStore",
    # Types
    "WorktreeRecord",
    "WorktreeEnvironmentConfig",
    "EnvironmentInstance",
    "HealthCheck",
    "LogsResult",
    # Errors
    "WtenvError",
    "ConfigurationError",
    "EnvironmentAlreadyRunningError",
    "ContainerError",
    "ContainerNotFoundError",
    "StoreError",
    "WorktreeNotFoundError",
]
