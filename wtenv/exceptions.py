"""wtenv exception hierarchy."""

from typing import Any


class WtenvError(Exception):
    """Base exception for all wtenv errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationError(WtenvError):
    """Operation rejected because the worktree or engine is not configured for it."""

    def __init__(
        self, message: str, worktree_id: str | None = None, details: dict[str, Any] | None = None
    ) -> None:
        super().__init__(message, details)
        self.worktree_id = worktree_id


class EnvironmentAlreadyRunningError(ConfigurationError):
    """Start requested while the environment is already running."""

    pass


class ContainerError(WtenvError):
    """Error in container runtime operations."""

    def __init__(
        self,
        message: str,
        container_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.container_name = container_name


class ContainerNotFoundError(ContainerError):
    """Container expected to exist is missing from the runtime."""

    pass


class StoreError(WtenvError):
    """Error reading or writing worktree records."""

    pass


class WorktreeNotFoundError(StoreError):
    """No record exists for the requested worktree."""

    def __init__(self, worktree_id: str) -> None:
        super().__init__(f"Worktree {worktree_id} not found", {"worktree_id": worktree_id})
        self.worktree_id = worktree_id
