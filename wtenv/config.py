"""wtenv configuration management using Pydantic."""

from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, Field

from wtenv.constants import (
    BUILD_LOG_PATH,
    CONFIG_FILE,
    DEFAULT_APP_BASE_PORT,
    DEFAULT_CONTAINER_IMAGE,
    DEFAULT_CONTAINER_PREFIX,
    DEFAULT_CONTAINER_RUNTIME,
    DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS,
    DEFAULT_HEALTH_CHECK_TIMEOUT_SECONDS,
    DEFAULT_LOGS_MAX_BYTES,
    DEFAULT_LOGS_MAX_LINES,
    DEFAULT_LOGS_TIMEOUT_SECONDS,
    DEFAULT_NUKE_TIMEOUT_SECONDS,
    DEFAULT_REPO_MOUNT,
    DEFAULT_RESTART_DELAY_SECONDS,
    DEFAULT_RESTART_POLICY,
    DEFAULT_RUNTIME_TIMEOUT_SECONDS,
    DEFAULT_SSH_BASE_PORT,
    DEFAULT_STARTUP_GRACE_SECONDS,
    DEFAULT_STOP_GRACE_SECONDS,
    DEFAULT_STOP_TIMEOUT_SECONDS,
    DEFAULT_WORKSPACE_MOUNT,
    LOGS_DIR,
)
from wtenv.env import DEFAULT_INTERNAL_ENV_VARS


class VolumeMount(BaseModel):
    """Extra bind mount added to every worktree container."""

    source: str
    target: str
    mode: str = Field(default="rw", pattern="^(rw|ro)$")


class ContainerConfig(BaseModel):
    """Container isolation settings."""

    enabled: bool = False
    runtime: str = Field(default=DEFAULT_CONTAINER_RUNTIME, pattern="^(docker|podman)$")
    image: str = DEFAULT_CONTAINER_IMAGE
    name_prefix: str = DEFAULT_CONTAINER_PREFIX
    workspace_path: str = DEFAULT_WORKSPACE_MOUNT
    repo_path: str = DEFAULT_REPO_MOUNT
    restart_policy: str = Field(
        default=DEFAULT_RESTART_POLICY, pattern="^(no|always|unless-stopped|on-failure)$"
    )
    memory_limit: str | None = None
    cpu_limit: float | None = Field(default=None, gt=0, le=64)
    extra_volumes: list[VolumeMount] = Field(default_factory=list)
    stop_grace_seconds: int = Field(default=DEFAULT_STOP_GRACE_SECONDS, ge=0, le=600)
    runtime_timeout_seconds: int = Field(default=DEFAULT_RUNTIME_TIMEOUT_SECONDS, ge=1, le=3600)


class SSHConfig(BaseModel):
    """SSH port exposure for worktree containers."""

    base_port: int = Field(default=DEFAULT_SSH_BASE_PORT, ge=1, le=65535)
    host: str = "localhost"
    dynamic_port: bool = Field(
        default=False,
        description="Let the runtime pick the host SSH port instead of base_port + unique_id",
    )


class AppConfig(BaseModel):
    """External app port exposure for worktree containers."""

    base_port: int = Field(default=DEFAULT_APP_BASE_PORT, ge=1, le=65535)
    host: str = "localhost"


class EnvironmentSettings(BaseModel):
    """Timeouts and caps for environment commands and health checks."""

    start_timeout_seconds: int | None = Field(default=None, ge=1)
    stop_timeout_seconds: int | None = Field(default=DEFAULT_STOP_TIMEOUT_SECONDS, ge=1)
    nuke_timeout_seconds: int | None = Field(default=DEFAULT_NUKE_TIMEOUT_SECONDS, ge=1)
    logs_timeout_seconds: int = Field(default=DEFAULT_LOGS_TIMEOUT_SECONDS, ge=1, le=600)
    logs_max_bytes: int = Field(default=DEFAULT_LOGS_MAX_BYTES, ge=1)
    logs_max_lines: int = Field(default=DEFAULT_LOGS_MAX_LINES, ge=1)
    health_check_timeout_seconds: float = Field(
        default=DEFAULT_HEALTH_CHECK_TIMEOUT_SECONDS, gt=0, le=120
    )
    health_check_interval_seconds: float = Field(
        default=DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS, gt=0, le=3600
    )
    startup_grace_seconds: float = Field(default=DEFAULT_STARTUP_GRACE_SECONDS, ge=0, le=600)
    restart_delay_seconds: float = Field(default=DEFAULT_RESTART_DELAY_SECONDS, ge=0, le=60)
    build_log_path: str = BUILD_LOG_PATH
    internal_env_vars: list[str] = Field(default_factory=lambda: sorted(DEFAULT_INTERNAL_ENV_VARS))


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="info", pattern="^(debug|info|warn|error)$")
    directory: str = LOGS_DIR
    json_output: bool = False
    max_log_size_mb: int = Field(default=10, ge=1, le=1000)


class WtenvConfig(BaseModel):
    """Complete wtenv configuration."""

    container: ContainerConfig = Field(default_factory=ContainerConfig)
    ssh: SSHConfig = Field(default_factory=SSHConfig)
    app: AppConfig = Field(default_factory=AppConfig)
    environment: EnvironmentSettings = Field(default_factory=EnvironmentSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "WtenvConfig":
        """Load configuration from YAML file.

        Args:
            config_path: Path to config file. Defaults to .wtenv/config.yaml

        Returns:
            WtenvConfig instance
        """
        config_path = Path(CONFIG_FILE) if config_path is None else Path(config_path)

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WtenvConfig":
        """Create configuration from dictionary.

        Args:
            data: Configuration dictionary

        Returns:
            WtenvConfig instance
        """
        return cls(**data)

    def save(self, config_path: str | Path | None = None) -> None:
        """Save configuration to YAML file.

        Args:
            config_path: Path to save config. Defaults to .wtenv/config.yaml
        """
        config_path = Path(CONFIG_FILE) if config_path is None else Path(config_path)

        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary.

        Returns:
            Configuration as dictionary
        """
        return self.model_dump()

    @property
    def container_isolation(self) -> bool:
        """Whether environment commands run inside per-worktree containers."""
        return self.container.enabled
