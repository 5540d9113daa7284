"""wtenv constants and enumerations."""

from enum import Enum


class EnvironmentStatus(Enum):
    """Lifecycle status of a worktree environment."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


class HealthStatus(Enum):
    """Outcome recorded by the last health check."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class ContainerStatus(Enum):
    """Live container state as reported by the runtime."""

    RUNNING = "running"
    STOPPED = "stopped"
    NOT_FOUND = "not_found"


class CommandLabel(Enum):
    """Labels written to the build log header for each invocation."""

    START = "START"
    STOP = "STOP"
    NUKE = "NUKE"
    LOGS = "LOGS"


# Statuses the health tick acts on
ACTIVE_STATUSES = frozenset({EnvironmentStatus.STARTING, EnvironmentStatus.RUNNING})

# Container defaults
DEFAULT_CONTAINER_PREFIX = "wtenv-wt"
DEFAULT_CONTAINER_IMAGE = "wtenv/workspace:latest"
DEFAULT_CONTAINER_RUNTIME = "docker"
DEFAULT_WORKSPACE_MOUNT = "/workspace"
DEFAULT_REPO_MOUNT = "/repo"
DEFAULT_RESTART_POLICY = "unless-stopped"
DEFAULT_STOP_GRACE_SECONDS = 30
DEFAULT_RUNTIME_TIMEOUT_SECONDS = 60
SHORT_ID_LENGTH = 8

# Deterministic port bases
DEFAULT_SSH_BASE_PORT = 2222
DEFAULT_APP_BASE_PORT = 16000
CONTAINER_SSH_PORT = 22

# Environment command defaults
DEFAULT_STOP_TIMEOUT_SECONDS = 120
DEFAULT_NUKE_TIMEOUT_SECONDS = 300
DEFAULT_LOGS_TIMEOUT_SECONDS = 10
DEFAULT_LOGS_MAX_BYTES = 100_000
DEFAULT_LOGS_MAX_LINES = 100
DEFAULT_HEALTH_CHECK_TIMEOUT_SECONDS = 5
DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS = 5
DEFAULT_STARTUP_GRACE_SECONDS = 2
DEFAULT_RESTART_DELAY_SECONDS = 1.0
# Seconds between SIGTERM and SIGKILL when a command must be killed
KILL_GRACE_SECONDS = 5

# File locations
WTENV_DIR = ".wtenv"
CONFIG_FILE = ".wtenv/config.yaml"
STORE_FILE = ".wtenv/worktrees.json"
LOGS_DIR = ".wtenv/logs"
BUILD_LOG_PATH = ".wtenv/build.log"

# Snapshot messages
MSG_STOPPED = "Environment stopped"
MSG_NUKED = "Environment nuked - all data and volumes destroyed"
MSG_PROCESS_RUNNING = "Process running"
MSG_NO_HEALTH_CHECK = "No health check configured"
MSG_NO_LOGS_COMMAND = "No logs command configured"
MSG_RECOVERED = "Recovered from interrupted operation"
