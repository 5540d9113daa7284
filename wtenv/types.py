"""wtenv data types.

Worktree records as held by the store, the mutable environment snapshot,
and the result objects returned by the runner, prober and container manager.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from wtenv.constants import EnvironmentStatus, HealthStatus

__all__ = [
    "AccessUrl",
    "ContainerCreateResult",
    "ContainerInfo",
    "EnvironmentInstance",
    "HealthCheck",
    "LogsResult",
    "ManagedProcess",
    "ProbeResult",
    "SSHConnectionInfo",
    "WorktreeEnvironmentConfig",
    "WorktreeRecord",
    "utc_now",
]


def utc_now() -> str:
    """Current time as an ISO 8601 UTC string."""
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class WorktreeEnvironmentConfig:
    """Fully-resolved environment commands, fixed at worktree creation."""

    start_command: str | None = None
    stop_command: str | None = None
    nuke_command: str | None = None
    logs_command: str | None = None
    health_check_url: str | None = None
    app_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> WorktreeEnvironmentConfig:
        data = data or {}
        return cls(
            start_command=data.get("start_command") or None,
            stop_command=data.get("stop_command") or None,
            nuke_command=data.get("nuke_command") or None,
            logs_command=data.get("logs_command") or None,
            health_check_url=data.get("health_check_url") or None,
            app_url=data.get("app_url") or None,
        )


@dataclass
class HealthCheck:
    """Outcome of the most recent health check."""

    status: HealthStatus
    message: str
    timestamp: str = field(default_factory=utc_now)

    def same_outcome(self, other: HealthCheck | None) -> bool:
        """Compare status and message, ignoring the timestamp."""
        return other is not None and self.status == other.status and self.message == other.message

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "status": self.status.value, "message": self.message}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HealthCheck:
        return cls(
            status=HealthStatus(data.get("status", HealthStatus.UNKNOWN.value)),
            message=data.get("message", ""),
            timestamp=data.get("timestamp") or utc_now(),
        )


@dataclass(frozen=True)
class AccessUrl:
    """Named URL where the running environment can be reached."""

    name: str
    url: str


@dataclass
class EnvironmentInstance:
    """Persisted runtime snapshot of a worktree environment."""

    status: EnvironmentStatus = EnvironmentStatus.STOPPED
    last_health_check: HealthCheck | None = None
    access_urls: list[AccessUrl] = field(default_factory=list)
    pid: int | None = None

    def comparable(self) -> dict[str, Any]:
        """Snapshot content with timestamps stripped, for change detection."""
        data = self.to_dict()
        if data["last_health_check"] is not None:
            data["last_health_check"].pop("timestamp", None)
        return data

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "last_health_check": self.last_health_check.to_dict() if self.last_health_check else None,
            "access_urls": [asdict(u) for u in self.access_urls],
            "process": {"pid": self.pid} if self.pid is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> EnvironmentInstance:
        data = data or {}
        check = data.get("last_health_check")
        process = data.get("process") or {}
        return cls(
            status=EnvironmentStatus(data.get("status", EnvironmentStatus.STOPPED.value)),
            last_health_check=HealthCheck.from_dict(check) if check else None,
            access_urls=[AccessUrl(u["name"], u["url"]) for u in data.get("access_urls") or []],
            pid=process.get("pid"),
        )


@dataclass
class WorktreeRecord:
    """A worktree as seen by the environment engine."""

    worktree_id: str
    path: Path
    repo_path: Path
    unique_id: int
    name: str = ""
    environment: WorktreeEnvironmentConfig = field(default_factory=WorktreeEnvironmentConfig)
    environment_instance: EnvironmentInstance = field(default_factory=EnvironmentInstance)
    ssh_port: int | None = None
    container_name: str | None = None

    @property
    def status(self) -> EnvironmentStatus:
        return self.environment_instance.status

    @property
    def display_name(self) -> str:
        return self.name or self.worktree_id[:8]

    def to_dict(self) -> dict[str, Any]:
        return {
            "worktree_id": self.worktree_id,
            "name": self.name,
            "path": str(self.path),
            "repo_path": str(self.repo_path),
            "unique_id": self.unique_id,
            "environment": self.environment.to_dict(),
            "environment_instance": self.environment_instance.to_dict(),
            "ssh_port": self.ssh_port,
            "container_name": self.container_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorktreeRecord:
        return cls(
            worktree_id=data["worktree_id"],
            name=data.get("name", ""),
            path=Path(data["path"]),
            repo_path=Path(data["repo_path"]),
            unique_id=int(data["unique_id"]),
            environment=WorktreeEnvironmentConfig.from_dict(data.get("environment")),
            environment_instance=EnvironmentInstance.from_dict(data.get("environment_instance")),
            ssh_port=data.get("ssh_port"),
            container_name=data.get("container_name"),
        )


@dataclass
class ManagedProcess:
    """In-memory kill handle for a command started by this engine instance."""

    worktree_id: str
    process: asyncio.subprocess.Process
    pid: int
    log_path: Path | None
    started_at: datetime = field(default_factory=datetime.now)

    def is_alive(self) -> bool:
        return self.process.returncode is None


@dataclass
class ProbeResult:
    """Classified outcome of a single health probe."""

    healthy: bool
    message: str
    status_code: int | None = None


@dataclass
class LogsResult:
    """Output of a logs command, trimmed for display."""

    logs: str = ""
    timestamp: str = field(default_factory=utc_now)
    truncated: bool = False
    configured: bool = True
    message: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ContainerCreateResult:
    """Identity of a freshly created container."""

    container_name: str
    ssh_port: int


@dataclass
class ContainerInfo:
    """Derived container identity plus live status."""

    name: str
    status: str
    ssh_port: int
    app_port: int


@dataclass
class SSHConnectionInfo:
    """How to reach a worktree container over SSH."""

    host: str
    port: int
    username: str

    @property
    def connection_string(self) -> str:
        return f"ssh -p {self.port} {self.username}@{self.host}"
