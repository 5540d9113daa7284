"""Pytest configuration and fixtures for wtenv tests."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from tests.mocks import MockCommandRunner, MockContainerManager, MockHealthProber
from wtenv.config import WtenvConfig
from wtenv.constants import EnvironmentStatus
from wtenv.environment import EnvironmentManager
from wtenv.store import InMemoryWorktreeStore
from wtenv.types import EnvironmentInstance, WorktreeEnvironmentConfig, WorktreeRecord

WORKTREE_ID = "0192ab3c-7d4e-4f00-9a1b-2c3d4e5f6a7b"


@pytest.fixture
def worktree_path(tmp_path: Path) -> Path:
    """Create a worktree directory inside a fake repository.

    Returns:
        Path to the worktree directory
    """
    path = tmp_path / "repo" / "feature-auth"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def make_record(worktree_path: Path) -> Callable[..., WorktreeRecord]:
    """Factory for worktree records with sensible defaults."""

    def _make(
        worktree_id: str = WORKTREE_ID,
        status: EnvironmentStatus = EnvironmentStatus.STOPPED,
        unique_id: int = 3,
        **env: Any,
    ) -> WorktreeRecord:
        commands = {
            "start_command": "docker compose up -d",
            "stop_command": "docker compose down",
            "nuke_command": "docker compose down -v",
            "logs_command": "docker compose logs --tail 100",
            "health_check_url": "http://localhost:5173/health",
            "app_url": "http://localhost:5173",
        }
        commands.update(env)
        return WorktreeRecord(
            worktree_id=worktree_id,
            name="feature-auth",
            path=worktree_path,
            repo_path=worktree_path.parent,
            unique_id=unique_id,
            environment=WorktreeEnvironmentConfig(**commands),
            environment_instance=EnvironmentInstance(status=status),
        )

    return _make


@pytest.fixture
def store() -> InMemoryWorktreeStore:
    return InMemoryWorktreeStore()


@pytest.fixture
def runner() -> MockCommandRunner:
    return MockCommandRunner()


@pytest.fixture
def prober() -> MockHealthProber:
    return MockHealthProber()


@pytest.fixture
def containers() -> MockContainerManager:
    return MockContainerManager(enabled=False)


@pytest.fixture
def config() -> WtenvConfig:
    return WtenvConfig()


@pytest.fixture
def sleeps() -> list[float]:
    """Records delays passed to the manager's sleep function."""
    return []


@pytest.fixture
def manager(
    store: InMemoryWorktreeStore,
    config: WtenvConfig,
    runner: MockCommandRunner,
    containers: MockContainerManager,
    prober: MockHealthProber,
    sleeps: list[float],
) -> EnvironmentManager:
    """EnvironmentManager wired to in-memory collaborators."""

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    return EnvironmentManager(
        store,
        config,
        runner=runner,  # type: ignore[arg-type]
        containers=containers,  # type: ignore[arg-type]
        prober=prober,  # type: ignore[arg-type]
        base_env={"PATH": "/usr/bin", "PORT": "3030", "NODE_ENV": "production", "APP_MODE": "dev"},
        sleep=fake_sleep,
    )
