"""Per-worktree container lifecycle management.

Each worktree gets at most one long-lived container, named and port-mapped
deterministically from the worktree identity. Container state is always queried
live from the runtime (docker or podman); nothing is cached here.
"""

from __future__ import annotations

import asyncio
import shlex
from collections.abc import Mapping
from pathlib import Path

from wtenv.config import WtenvConfig
from wtenv.constants import CONTAINER_SSH_PORT, ContainerStatus
from wtenv.exceptions import ContainerError, ContainerNotFoundError
from wtenv.logging import get_logger
from wtenv.ports import calculate_app_port, calculate_ssh_port, container_name_for, parse_port_output
from wtenv.runner import ContainerTarget
from wtenv.types import ContainerCreateResult, ContainerInfo, SSHConnectionInfo

logger = get_logger("containers")


class ContainerManager:
    """Create, start, inspect and destroy worktree containers.

    Example:
        manager = ContainerManager(WtenvConfig.load())
        result = await manager.create_container(wt_id, wt_path, repo_path)
        target = manager.exec_target(result.container_name)
    """

    def __init__(self, config: WtenvConfig | None = None) -> None:
        self.config = config or WtenvConfig()

    @property
    def enabled(self) -> bool:
        return self.config.container.enabled

    @property
    def runtime(self) -> str:
        return self.config.container.runtime

    # Identity

    def generate_container_name(self, worktree_id: str) -> str:
        return container_name_for(worktree_id, self.config.container.name_prefix)

    def calculate_ssh_port(self, unique_id: int) -> int:
        return calculate_ssh_port(unique_id, self.config.ssh.base_port)

    def calculate_app_external_port(self, unique_id: int) -> int:
        return calculate_app_port(unique_id, self.config.app.base_port)

    # Runtime plumbing

    async def _run_runtime(
        self, *args: str, timeout: float | None = None, container_name: str | None = None
    ) -> str:
        """Run one runtime CLI call and return its stdout.

        Raises:
            ContainerError: If the call cannot be spawned, times out or exits non-zero
        """
        cmd = [self.runtime, *args]
        timeout = timeout or self.config.container.runtime_timeout_seconds
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ContainerError(
                f"Container runtime '{self.runtime}' unavailable: {e}", container_name
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise ContainerError(
                f"'{' '.join(cmd[:2])}' timed out after {timeout}s", container_name
            ) from e

        if proc.returncode != 0:
            err = stderr.decode(errors="replace").strip()
            raise ContainerError(
                f"'{' '.join(cmd[:2])}' failed: {err or 'exit code ' + str(proc.returncode)}",
                container_name,
                details={"exit_code": proc.returncode, "stderr": err},
            )
        return stdout.decode(errors="replace")

    # Live state

    async def container_exists(self, name: str) -> bool:
        try:
            await self._run_runtime("inspect", name, container_name=name)
            return True
        except ContainerError:
            return False

    async def is_container_running(self, name: str) -> bool:
        try:
            output = await self._run_runtime(
                "inspect", "-f", "{{.State.Running}}", name, container_name=name
            )
        except ContainerError:
            return False
        return output.strip() == "true"

    async def get_container_status(self, name: str) -> ContainerStatus:
        """Live status of a container: running, stopped or not_found."""
        if await self.is_container_running(name):
            return ContainerStatus.RUNNING
        if await self.container_exists(name):
            return ContainerStatus.STOPPED
        return ContainerStatus.NOT_FOUND

    # Lifecycle

    async def create_container(
        self,
        worktree_id: str,
        worktree_path: Path,
        repo_path: Path,
        unique_id: int | None = None,
        app_internal_port: int | None = None,
        app_external_port: int | None = None,
    ) -> ContainerCreateResult:
        """Create and start the container for a worktree.

        Args:
            worktree_id: Worktree ID the container belongs to
            worktree_path: Host path mounted read-write at the workspace path
            repo_path: Parent repository mounted at the repo path
            unique_id: Worktree numeric ID, required for the fixed SSH port
            app_internal_port: Port the app listens on inside the container
            app_external_port: Host port to publish the app on

        Returns:
            ContainerCreateResult with the container name and host SSH port

        Raises:
            ContainerError: If any runtime call fails. A container that was
                created but could not be started is removed first.
        """
        cfg = self.config.container
        name = self.generate_container_name(worktree_id)

        if self.config.ssh.dynamic_port or unique_id is None:
            ssh_binding = f"0:{CONTAINER_SSH_PORT}"
        else:
            ssh_binding = f"{self.calculate_ssh_port(unique_id)}:{CONTAINER_SSH_PORT}"

        args = [
            "create",
            "--name", name,
            "--hostname", name,
            "-v", f"{worktree_path}:{cfg.workspace_path}:rw",
            "-v", f"{repo_path}:{cfg.repo_path}:rw",
            "-p", ssh_binding,
        ]  # fmt: skip
        if app_internal_port and app_external_port:
            args.extend(["-p", f"{app_external_port}:{app_internal_port}"])
            logger.info(f"Exposing app port {app_external_port} -> {app_internal_port}")
        args.extend(["--restart", cfg.restart_policy, "--init"])
        args.extend(["--label", f"wtenv.worktree_id={worktree_id}", "--label", "wtenv.managed=true"])
        if cfg.memory_limit:
            args.extend(["--memory", cfg.memory_limit])
        if cfg.cpu_limit:
            args.extend(["--cpus", f"{cfg.cpu_limit:g}"])
        for volume in cfg.extra_volumes:
            args.extend(["-v", f"{volume.source}:{volume.target}:{volume.mode}"])
        args.append(cfg.image)

        logger.info(f"Creating container {name} for worktree {worktree_id}")
        await self._run_runtime(*args, container_name=name)

        try:
            await self._run_runtime("start", name, container_name=name)
            port_output = await self._run_runtime(
                "port", name, str(CONTAINER_SSH_PORT), container_name=name
            )
            ssh_port = parse_port_output(port_output)
            if ssh_port is None:
                raise ContainerError(
                    f"Failed to parse SSH port from runtime output: {port_output.strip()!r}", name
                )
        except ContainerError:
            logger.error(f"Container {name} failed after create, removing it")
            try:
                await self._run_runtime("rm", "-f", name, container_name=name)
            except ContainerError as cleanup_error:
                logger.warning(f"Cleanup of {name} failed: {cleanup_error}")
            raise

        await self._fix_git_pointer(name, worktree_path)
        logger.info(f"Container {name} created with SSH port {ssh_port}")
        return ContainerCreateResult(container_name=name, ssh_port=ssh_port)

    async def ensure_container_running(
        self, worktree_id: str, worktree_path: Path | None = None
    ) -> str:
        """Start the worktree's container if it exists but is stopped.

        Returns:
            Container name

        Raises:
            ContainerNotFoundError: If the container does not exist
        """
        name = self.generate_container_name(worktree_id)
        if not await self.container_exists(name):
            raise ContainerNotFoundError(f"No container {name} for worktree {worktree_id}", name)

        if not await self.is_container_running(name):
            logger.info(f"Starting stopped container {name}")
            await self._run_runtime("start", name, container_name=name)
            if worktree_path is not None:
                await self._fix_git_pointer(name, worktree_path)

        return name

    async def destroy_container(self, worktree_id: str) -> bool:
        """Stop and remove the worktree's container.

        Returns:
            True if a container was removed, False if none existed
        """
        name = self.generate_container_name(worktree_id)
        if not await self.container_exists(name):
            logger.debug(f"No container {name} for worktree {worktree_id}")
            return False

        logger.info(f"Destroying container {name}")
        grace = self.config.container.stop_grace_seconds
        try:
            await self._run_runtime(
                "stop", "-t", str(grace), name, timeout=grace + 30, container_name=name
            )
        except ContainerError as e:
            logger.debug(f"Stop of {name} failed, forcing removal: {e}")

        await self._run_runtime("rm", "-f", name, container_name=name)
        logger.info(f"Container {name} destroyed")
        return True

    async def recreate_container(
        self,
        worktree_id: str,
        worktree_path: Path,
        repo_path: Path,
        unique_id: int | None = None,
        app_internal_port: int | None = None,
        app_external_port: int | None = None,
    ) -> ContainerCreateResult:
        """Destroy any existing container and create a fresh one."""
        logger.info(f"Recreating container for worktree {worktree_id}")
        await self.destroy_container(worktree_id)
        return await self.create_container(
            worktree_id,
            worktree_path,
            repo_path,
            unique_id=unique_id,
            app_internal_port=app_internal_port,
            app_external_port=app_external_port,
        )

    # Introspection

    async def get_container_info(self, worktree_id: str, unique_id: int) -> ContainerInfo:
        name = self.generate_container_name(worktree_id)
        status = await self.get_container_status(name)
        return ContainerInfo(
            name=name,
            status=status.value,
            ssh_port=self.calculate_ssh_port(unique_id),
            app_port=self.calculate_app_external_port(unique_id),
        )

    async def get_ssh_connection_info(
        self,
        worktree_id: str,
        unique_id: int,
        username: str,
        stored_port: int | None = None,
    ) -> SSHConnectionInfo:
        """SSH coordinates for a running worktree container.

        The live port mapping wins over the stored port, which wins over the
        calculated one.

        Raises:
            ContainerError: If the container is not running
        """
        name = self.generate_container_name(worktree_id)
        if not await self.is_container_running(name):
            raise ContainerError("Container is not running. Start the container first.", name)

        port: int | None
        try:
            output = await self._run_runtime(
                "port", name, str(CONTAINER_SSH_PORT), container_name=name
            )
            port = parse_port_output(output)
        except ContainerError as e:
            logger.debug(f"Could not query SSH port for {name}: {e}")
            port = None

        if port is None:
            port = stored_port or self.calculate_ssh_port(unique_id)

        return SSHConnectionInfo(host=self.config.ssh.host, port=port, username=username)

    def exec_target(self, name: str, env: Mapping[str, str] | None = None) -> ContainerTarget:
        """Runner target executing inside the named container's workspace."""
        return ContainerTarget(
            container_name=name,
            workdir=self.config.container.workspace_path,
            runtime=self.runtime,
            env=dict(env or {}),
        )

    async def _fix_git_pointer(self, name: str, worktree_path: Path) -> None:
        """Point the worktree's .git file at the in-container repository mount."""
        cfg = self.config.container
        gitdir = f"{cfg.repo_path}/.git/worktrees/{Path(worktree_path).name}"
        script = f"echo {shlex.quote('gitdir: ' + gitdir)} > {shlex.quote(cfg.workspace_path + '/.git')}"
        try:
            await self._run_runtime("exec", name, "sh", "-c", script, container_name=name)
        except ContainerError as e:
            logger.warning(f"Failed to fix .git file in {name}: {e}")
