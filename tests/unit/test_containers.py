"""Tests for wtenv containers module."""

import asyncio
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from wtenv.config import VolumeMount, WtenvConfig
from wtenv.constants import ContainerStatus
from wtenv.containers import ContainerManager
from wtenv.exceptions import ContainerError, ContainerNotFoundError
from wtenv.runner import ContainerTarget

pytestmark = pytest.mark.docker

WORKTREE_ID = "0192ab3c-7d4e-4f00-9a1b-2c3d4e5f6a7b"
NAME = "wtenv-wt-0192ab3c"


class FakeRuntime:
    """Scripted replacement for ContainerManager._run_runtime."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.responses: dict[str, Any] = {"port": "0.0.0.0:2225\n[::]:2225\n"}

    @staticmethod
    def key(args: tuple[str, ...]) -> str:
        if args[:2] == ("inspect", "-f"):
            return "running"
        return args[0]

    def on(self, key: str, response: Any) -> None:
        self.responses[key] = response

    def verbs(self) -> list[str]:
        return [self.key(c) for c in self.calls]

    async def __call__(self, *args: str, timeout: float | None = None, container_name: str | None = None) -> str:
        self.calls.append(args)
        response = self.responses.get(self.key(args), "")
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def config() -> WtenvConfig:
    config = WtenvConfig()
    config.container.enabled = True
    return config


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def manager(config: WtenvConfig, runtime: FakeRuntime) -> ContainerManager:
    manager = ContainerManager(config)
    manager._run_runtime = runtime  # type: ignore[method-assign]
    return manager


def set_state(runtime: FakeRuntime, status: ContainerStatus) -> None:
    if status is ContainerStatus.RUNNING:
        runtime.on("running", "true\n")
    elif status is ContainerStatus.STOPPED:
        runtime.on("running", "false\n")
    else:
        runtime.on("running", ContainerError("No such object", NAME))
        runtime.on("inspect", ContainerError("No such object", NAME))


class TestIdentity:
    """Tests for deterministic naming and ports."""

    def test_defaults(self) -> None:
        manager = ContainerManager()

        assert manager.enabled is False
        assert manager.runtime == "docker"
        assert manager.generate_container_name(WORKTREE_ID) == NAME
        assert manager.calculate_ssh_port(3) == 2225
        assert manager.calculate_app_external_port(3) == 16003

    def test_custom_prefix_and_bases(self, config: WtenvConfig) -> None:
        config.container.name_prefix = "dev"
        config.ssh.base_port = 3000
        config.app.base_port = 9000
        manager = ContainerManager(config)

        assert manager.generate_container_name(WORKTREE_ID) == "dev-0192ab3c"
        assert manager.calculate_ssh_port(7) == 3007
        assert manager.calculate_app_external_port(7) == 9007

    def test_exec_target(self, manager: ContainerManager) -> None:
        target = manager.exec_target(NAME, {"APP_MODE": "dev"})

        assert target == ContainerTarget(NAME, "/workspace", "docker", {"APP_MODE": "dev"})


class TestStatus:
    """Tests for live status queries."""

    @pytest.mark.parametrize(
        "status", [ContainerStatus.RUNNING, ContainerStatus.STOPPED, ContainerStatus.NOT_FOUND]
    )
    @pytest.mark.asyncio
    async def test_get_container_status(self, manager: ContainerManager, runtime: FakeRuntime, status) -> None:
        set_state(runtime, status)

        assert await manager.get_container_status(NAME) is status

    @pytest.mark.asyncio
    async def test_status_is_never_cached(self, manager: ContainerManager, runtime: FakeRuntime) -> None:
        set_state(runtime, ContainerStatus.RUNNING)
        assert await manager.is_container_running(NAME)

        set_state(runtime, ContainerStatus.STOPPED)
        assert not await manager.is_container_running(NAME)


class TestCreateContainer:
    """Tests for create_container."""

    @pytest.mark.asyncio
    async def test_create_with_fixed_ports(self, manager: ContainerManager, runtime: FakeRuntime, tmp_path: Path) -> None:
        worktree = tmp_path / "repo" / "feature-auth"

        result = await manager.create_container(
            WORKTREE_ID, worktree, tmp_path / "repo", unique_id=3, app_internal_port=5173, app_external_port=16003
        )

        assert result.container_name == NAME
        assert result.ssh_port == 2225
        assert runtime.verbs() == ["create", "start", "port", "exec"]

        create = runtime.calls[0]
        assert create[create.index("--name") + 1] == NAME
        assert create[create.index("--hostname") + 1] == NAME
        assert f"{worktree}:/workspace:rw" in create
        assert f"{tmp_path / 'repo'}:/repo:rw" in create
        assert "2225:22" in create
        assert "16003:5173" in create
        assert create[create.index("--restart") + 1] == "unless-stopped"
        assert "--init" in create
        assert f"wtenv.worktree_id={WORKTREE_ID}" in create
        assert "wtenv.managed=true" in create
        assert create[-1] == "wtenv/workspace:latest"

    @pytest.mark.asyncio
    async def test_create_with_dynamic_ssh_port(
        self, config: WtenvConfig, manager: ContainerManager, runtime: FakeRuntime, tmp_path: Path
    ) -> None:
        config.ssh.dynamic_port = True
        runtime.on("port", "0.0.0.0:32768\n")

        result = await manager.create_container(WORKTREE_ID, tmp_path, tmp_path, unique_id=3)

        assert "0:22" in runtime.calls[0]
        assert result.ssh_port == 32768

    @pytest.mark.asyncio
    async def test_create_without_app_port(self, manager: ContainerManager, runtime: FakeRuntime, tmp_path: Path) -> None:
        await manager.create_container(WORKTREE_ID, tmp_path, tmp_path, unique_id=3)

        create = runtime.calls[0]
        assert [create[i + 1] for i, a in enumerate(create) if a == "-p"] == ["2225:22"]

    @pytest.mark.asyncio
    async def test_create_with_limits_and_extra_volumes(
        self, config: WtenvConfig, manager: ContainerManager, runtime: FakeRuntime, tmp_path: Path
    ) -> None:
        config.container.memory_limit = "2g"
        config.container.cpu_limit = 1.5
        config.container.extra_volumes = [VolumeMount(source="/cache", target="/root/.cache", mode="ro")]

        await manager.create_container(WORKTREE_ID, tmp_path, tmp_path, unique_id=3)

        create = runtime.calls[0]
        assert create[create.index("--memory") + 1] == "2g"
        assert create[create.index("--cpus") + 1] == "1.5"
        assert "/cache:/root/.cache:ro" in create

    @pytest.mark.asyncio
    async def test_create_fixes_git_pointer(self, manager: ContainerManager, runtime: FakeRuntime, tmp_path: Path) -> None:
        await manager.create_container(WORKTREE_ID, tmp_path / "feature-auth", tmp_path, unique_id=3)

        exec_call = runtime.calls[-1]
        assert exec_call[:4] == ("exec", NAME, "sh", "-c")
        assert "gitdir: /repo/.git/worktrees/feature-auth" in exec_call[4]
        assert "/workspace/.git" in exec_call[4]

    @pytest.mark.asyncio
    async def test_git_pointer_failure_is_not_fatal(
        self, manager: ContainerManager, runtime: FakeRuntime, tmp_path: Path
    ) -> None:
        runtime.on("exec", ContainerError("exec failed", NAME))

        result = await manager.create_container(WORKTREE_ID, tmp_path, tmp_path, unique_id=3)

        assert result.ssh_port == 2225

    @pytest.mark.asyncio
    async def test_start_failure_removes_container(
        self, manager: ContainerManager, runtime: FakeRuntime, tmp_path: Path
    ) -> None:
        runtime.on("start", ContainerError("port is already allocated", NAME))

        with pytest.raises(ContainerError, match="already allocated"):
            await manager.create_container(WORKTREE_ID, tmp_path, tmp_path, unique_id=3)

        assert runtime.calls[-1] == ("rm", "-f", NAME)

    @pytest.mark.asyncio
    async def test_unparsable_port_removes_container(
        self, manager: ContainerManager, runtime: FakeRuntime, tmp_path: Path
    ) -> None:
        runtime.on("port", "garbage\n")

        with pytest.raises(ContainerError, match="Failed to parse SSH port"):
            await manager.create_container(WORKTREE_ID, tmp_path, tmp_path, unique_id=3)

        assert runtime.calls[-1] == ("rm", "-f", NAME)

    @pytest.mark.asyncio
    async def test_create_failure_propagates(self, manager: ContainerManager, runtime: FakeRuntime, tmp_path: Path) -> None:
        runtime.on("create", ContainerError("image not found", NAME))

        with pytest.raises(ContainerError, match="image not found"):
            await manager.create_container(WORKTREE_ID, tmp_path, tmp_path, unique_id=3)

        assert runtime.verbs() == ["create"]


class TestLifecycle:
    """Tests for ensure_container_running, destroy and recreate."""

    @pytest.mark.asyncio
    async def test_ensure_missing_raises(self, manager: ContainerManager, runtime: FakeRuntime) -> None:
        set_state(runtime, ContainerStatus.NOT_FOUND)

        with pytest.raises(ContainerNotFoundError):
            await manager.ensure_container_running(WORKTREE_ID)

    @pytest.mark.asyncio
    async def test_ensure_starts_stopped(self, manager: ContainerManager, runtime: FakeRuntime, tmp_path: Path) -> None:
        set_state(runtime, ContainerStatus.STOPPED)

        name = await manager.ensure_container_running(WORKTREE_ID, tmp_path)

        assert name == NAME
        assert ("start", NAME) in runtime.calls
        assert runtime.verbs()[-1] == "exec"

    @pytest.mark.asyncio
    async def test_ensure_running_is_noop(self, manager: ContainerManager, runtime: FakeRuntime) -> None:
        set_state(runtime, ContainerStatus.RUNNING)

        await manager.ensure_container_running(WORKTREE_ID)

        assert "start" not in runtime.verbs()

    @pytest.mark.asyncio
    async def test_destroy_missing_returns_false(self, manager: ContainerManager, runtime: FakeRuntime) -> None:
        set_state(runtime, ContainerStatus.NOT_FOUND)

        assert await manager.destroy_container(WORKTREE_ID) is False
        assert "rm" not in runtime.verbs()

    @pytest.mark.asyncio
    async def test_destroy_stops_then_removes(self, manager: ContainerManager, runtime: FakeRuntime) -> None:
        set_state(runtime, ContainerStatus.RUNNING)

        assert await manager.destroy_container(WORKTREE_ID) is True
        assert ("stop", "-t", "30", NAME) in runtime.calls
        assert runtime.calls[-1] == ("rm", "-f", NAME)

    @pytest.mark.asyncio
    async def test_destroy_tolerates_stop_failure(self, manager: ContainerManager, runtime: FakeRuntime) -> None:
        set_state(runtime, ContainerStatus.STOPPED)
        runtime.on("stop", ContainerError("already stopped", NAME))

        assert await manager.destroy_container(WORKTREE_ID) is True
        assert runtime.calls[-1] == ("rm", "-f", NAME)

    @pytest.mark.asyncio
    async def test_recreate(self, manager: ContainerManager, runtime: FakeRuntime, tmp_path: Path) -> None:
        set_state(runtime, ContainerStatus.RUNNING)

        result = await manager.recreate_container(WORKTREE_ID, tmp_path, tmp_path, unique_id=3)

        verbs = runtime.verbs()
        assert verbs.index("rm") < verbs.index("create")
        assert result.container_name == NAME


class TestIntrospection:
    """Tests for container info and SSH connection info."""

    @pytest.mark.asyncio
    async def test_container_info(self, manager: ContainerManager, runtime: FakeRuntime) -> None:
        set_state(runtime, ContainerStatus.STOPPED)

        info = await manager.get_container_info(WORKTREE_ID, 3)

        assert info.name == NAME
        assert info.status == "stopped"
        assert info.ssh_port == 2225
        assert info.app_port == 16003

    @pytest.mark.asyncio
    async def test_ssh_requires_running_container(self, manager: ContainerManager, runtime: FakeRuntime) -> None:
        set_state(runtime, ContainerStatus.STOPPED)

        with pytest.raises(ContainerError, match="Container is not running"):
            await manager.get_ssh_connection_info(WORKTREE_ID, 3, "dev")

    @pytest.mark.asyncio
    async def test_ssh_prefers_live_port(self, manager: ContainerManager, runtime: FakeRuntime) -> None:
        set_state(runtime, ContainerStatus.RUNNING)
        runtime.on("port", "0.0.0.0:40001\n")

        info = await manager.get_ssh_connection_info(WORKTREE_ID, 3, "dev", stored_port=30000)

        assert info.port == 40001
        assert info.connection_string == "ssh -p 40001 dev@localhost"

    @pytest.mark.asyncio
    async def test_ssh_falls_back_to_stored_port(self, manager: ContainerManager, runtime: FakeRuntime) -> None:
        set_state(runtime, ContainerStatus.RUNNING)
        runtime.on("port", ContainerError("no port", NAME))

        info = await manager.get_ssh_connection_info(WORKTREE_ID, 3, "dev", stored_port=30000)

        assert info.port == 30000

    @pytest.mark.asyncio
    async def test_ssh_falls_back_to_calculated_port(self, manager: ContainerManager, runtime: FakeRuntime) -> None:
        set_state(runtime, ContainerStatus.RUNNING)
        runtime.on("port", "")

        info = await manager.get_ssh_connection_info(WORKTREE_ID, 3, "dev")

        assert info.port == 2225


class TestRunRuntime:
    """Tests for the runtime subprocess wrapper."""

    @staticmethod
    def _process(returncode: int, stdout: bytes = b"", stderr: bytes = b"") -> MagicMock:
        proc = MagicMock()
        proc.returncode = returncode
        proc.communicate = AsyncMock(return_value=(stdout, stderr))
        return proc

    @pytest.mark.asyncio
    async def test_returns_stdout(self) -> None:
        manager = ContainerManager()
        proc = self._process(0, b"true\n")

        with patch("wtenv.containers.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)) as mock_exec:
            output = await manager._run_runtime("inspect", "-f", "{{.State.Running}}", NAME)

        assert output == "true\n"
        assert mock_exec.call_args.args == ("docker", "inspect", "-f", "{{.State.Running}}", NAME)

    @pytest.mark.asyncio
    async def test_non_zero_exit_raises_with_stderr(self) -> None:
        manager = ContainerManager()
        proc = self._process(1, stderr=b"Error: No such container\n")

        with patch("wtenv.containers.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(ContainerError) as exc_info:
                await manager._run_runtime("start", NAME, container_name=NAME)

        assert exc_info.value.container_name == NAME
        assert exc_info.value.details["exit_code"] == 1
        assert "No such container" in exc_info.value.details["stderr"]

    @pytest.mark.asyncio
    async def test_missing_runtime_binary(self) -> None:
        manager = ContainerManager()

        with patch(
            "wtenv.containers.asyncio.create_subprocess_exec",
            AsyncMock(side_effect=FileNotFoundError("docker")),
        ):
            with pytest.raises(ContainerError, match="unavailable"):
                await manager._run_runtime("ps")

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self) -> None:
        manager = ContainerManager()
        proc = self._process(0)
        proc.wait = AsyncMock()

        async def hang() -> tuple[bytes, bytes]:
            await asyncio.sleep(10)
            return b"", b""

        proc.communicate = hang

        with patch("wtenv.containers.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(ContainerError, match="timed out"):
                await manager._run_runtime("start", NAME, timeout=0.05)

        proc.kill.assert_called_once()
