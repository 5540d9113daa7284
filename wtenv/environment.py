"""Environment lifecycle state machine.

EnvironmentManager drives a worktree environment through

    stopped -> starting -> running -> stopping -> stopped

with `error` reachable from any command failure. Commands run on the host or,
with container isolation enabled, inside the worktree's container. Snapshots
are written back to the record store only when something other than a
timestamp changed.

The manager never schedules itself: callers (the CLI, HealthMonitor) invoke
check_health periodically.
"""

from __future__ import annotations

import asyncio
import os
import signal
from collections.abc import Awaitable, Callable, Iterable, Mapping
from pathlib import Path

from wtenv.config import WtenvConfig
from wtenv.constants import (
    ACTIVE_STATUSES,
    MSG_NO_HEALTH_CHECK,
    MSG_NO_LOGS_COMMAND,
    MSG_NUKED,
    MSG_PROCESS_RUNNING,
    MSG_RECOVERED,
    MSG_STOPPED,
    CommandLabel,
    ContainerStatus,
    EnvironmentStatus,
    HealthStatus,
)
from wtenv.containers import ContainerManager
from wtenv.env import build_container_env, build_process_environment
from wtenv.exceptions import (
    ConfigurationError,
    ContainerError,
    EnvironmentAlreadyRunningError,
    WorktreeNotFoundError,
)
from wtenv.health import HealthProber
from wtenv.log_writer import BuildLog, tail_lines
from wtenv.logging import get_logger, get_worktree_logger
from wtenv.ports import app_internal_port_from_url
from wtenv.runner import CommandRunner, ExecutionTarget, HostTarget
from wtenv.store import WorktreeStore
from wtenv.types import (
    AccessUrl,
    EnvironmentInstance,
    HealthCheck,
    LogsResult,
    ManagedProcess,
    WorktreeRecord,
)

logger = get_logger("environment")


class ReconcileAction:
    """Outcome labels returned by EnvironmentManager.reconcile."""

    UNCHANGED = "unchanged"
    RECOVERED = "recovered"
    CONTAINER_RUNNING = "container_running"
    MISSING = "missing"


class EnvironmentManager:
    """Start, stop, restart, nuke and health-check worktree environments.

    All mutating operations for one worktree are serialized by a per-worktree
    asyncio.Lock. Log retrieval is read-only and runs without the lock.

    Example:
        manager = EnvironmentManager(JsonWorktreeStore(), WtenvConfig.load())
        await manager.start(worktree_id)
        await manager.check_health(worktree_id)
    """

    def __init__(
        self,
        store: WorktreeStore,
        config: WtenvConfig | None = None,
        runner: CommandRunner | None = None,
        containers: ContainerManager | None = None,
        prober: HealthProber | None = None,
        base_env: Mapping[str, str] | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        """Initialize the manager.

        Args:
            store: Record store the snapshots are read from and written to
            config: Engine configuration. Defaults to WtenvConfig()
            runner: Command runner. Defaults to CommandRunner()
            containers: Container manager. Defaults to one built from config
            prober: Health prober. Defaults to one built from config
            base_env: Process environment commands start from. Defaults to os.environ
            sleep: Awaitable used for the restart delay
        """
        self.store = store
        self.config = config or WtenvConfig()
        self.settings = self.config.environment
        self.runner = runner or CommandRunner()
        self.containers = containers or ContainerManager(self.config)
        self.prober = prober or HealthProber(
            timeout_seconds=self.settings.health_check_timeout_seconds,
            runtime=self.config.container.runtime,
        )
        self.base_env = base_env
        self._sleep = sleep
        self._processes: dict[str, ManagedProcess] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, worktree_id: str) -> asyncio.Lock:
        lock = self._locks.get(worktree_id)
        if lock is None:
            lock = self._locks[worktree_id] = asyncio.Lock()
        return lock

    def tracked_process(self, worktree_id: str) -> ManagedProcess | None:
        """Live process handle recorded by the last start, if any."""
        return self._processes.get(worktree_id)

    # Snapshot persistence

    async def update_environment(
        self, worktree_id: str, instance: EnvironmentInstance, current: EnvironmentInstance | None = None
    ) -> EnvironmentInstance:
        """Persist a snapshot unless only timestamps changed.

        A health check with the same status and message as the stored one
        keeps the stored timestamp.

        Args:
            worktree_id: Worktree to update
            instance: Desired snapshot
            current: Stored snapshot, fetched when not given

        Returns:
            The snapshot now in effect
        """
        if current is None:
            current = (await self.store.get(worktree_id)).environment_instance

        if instance.last_health_check is not None and instance.last_health_check.same_outcome(
            current.last_health_check
        ):
            instance.last_health_check = current.last_health_check

        if instance.comparable() == current.comparable():
            return current

        await self.store.patch(worktree_id, {"environment_instance": instance})
        return instance

    # Target resolution

    def _build_log_path(self, record: WorktreeRecord) -> Path:
        return Path(record.path) / self.settings.build_log_path

    def _command_env(self) -> dict[str, str]:
        return build_process_environment(self.base_env, internal_vars=self.settings.internal_env_vars)

    async def _resolve_target(
        self,
        record: WorktreeRecord,
        env: Mapping[str, str],
        *,
        create: bool = False,
        wake: bool = True,
    ) -> ExecutionTarget:
        """Pick where a command runs for this worktree.

        Args:
            record: Worktree record
            env: Scrubbed host environment, filtered before crossing into a container
            create: Lazily create a missing container and fall back to the
                host if the container cannot be made available
            wake: Start an existing stopped container

        Returns:
            HostTarget or ContainerTarget
        """
        host = HostTarget(Path(record.path))
        if not self.containers.enabled:
            return host

        wt_log = get_worktree_logger(record.worktree_id)
        name = self.containers.generate_container_name(record.worktree_id)
        try:
            status = await self.containers.get_container_status(name)
            if status is ContainerStatus.STOPPED and wake:
                await self.containers.ensure_container_running(record.worktree_id, Path(record.path))
            elif status is ContainerStatus.STOPPED:
                return host
            elif status is ContainerStatus.NOT_FOUND:
                if not create:
                    return host
                await self._create_container(record)
        except ContainerError as e:
            if not create:
                wt_log.warning(f"Container {name} unavailable, running on host: {e}")
                return host
            wt_log.warning(f"Container unavailable, falling back to host execution: {e}")
            try:
                BuildLog(self._build_log_path(record)).note(f"Container {name} unavailable, running on host: {e}")
            except OSError as log_error:
                wt_log.warning(f"Build log unavailable: {log_error}")
            return host

        if record.container_name != name:
            await self.store.patch(record.worktree_id, {"container_name": name})
        return self.containers.exec_target(name, build_container_env(env))

    async def _create_container(self, record: WorktreeRecord) -> None:
        env_cfg = record.environment
        internal_port = app_internal_port_from_url(env_cfg.health_check_url or env_cfg.app_url)
        external_port = (
            self.containers.calculate_app_external_port(record.unique_id) if internal_port else None
        )
        result = await self.containers.create_container(
            record.worktree_id,
            Path(record.path),
            Path(record.repo_path),
            unique_id=record.unique_id,
            app_internal_port=internal_port,
            app_external_port=external_port,
        )
        await self.store.patch(
            record.worktree_id,
            {"ssh_port": result.ssh_port, "container_name": result.container_name},
        )
        record.ssh_port = result.ssh_port
        record.container_name = result.container_name

    # Process handles

    def _liveness_check(self, worktree_id: str) -> HealthCheck:
        managed = self._processes.get(worktree_id)
        if managed is not None and managed.is_alive():
            return HealthCheck(status=HealthStatus.HEALTHY, message=MSG_PROCESS_RUNNING)
        return HealthCheck(status=HealthStatus.UNKNOWN, message=MSG_NO_HEALTH_CHECK)

    async def _release_process(self, worktree_id: str) -> bool:
        """Drop the tracked handle, terminating it if still alive.

        Returns:
            True if a handle was tracked
        """
        managed = self._processes.pop(worktree_id, None)
        if managed is None:
            return False
        if managed.is_alive():
            logger.info(f"Terminating tracked process {managed.pid} for worktree {worktree_id}")
            await self.runner.terminate(managed.process)
        return True

    def _kill_persisted_pid(self, worktree_id: str, pid: int) -> str | None:
        """SIGTERM a PID recorded by an earlier engine instance.

        Returns:
            Problem description, or None if the signal was sent or the PID is gone
        """
        try:
            os.kill(pid, signal.SIGTERM)
            logger.info(f"Sent SIGTERM to persisted PID {pid} for worktree {worktree_id}")
        except ProcessLookupError:
            logger.debug(f"Persisted PID {pid} for worktree {worktree_id} already exited")
        except PermissionError as e:
            logger.warning(f"Failed to kill process {pid}: {e}")
            return f"Failed to kill process {pid}: {e}"
        return None

    # Operations

    async def start(self, worktree_id: str) -> EnvironmentInstance:
        """Start the worktree environment.

        Raises:
            EnvironmentAlreadyRunningError: If the environment is running
            ConfigurationError: If no start command is configured
            WorktreeNotFoundError: If the worktree does not exist
        """
        async with self._lock_for(worktree_id):
            record = await self.store.get(worktree_id)
            return await self._start(record)

    async def _start(self, record: WorktreeRecord) -> EnvironmentInstance:
        worktree_id = record.worktree_id
        wt_log = get_worktree_logger(worktree_id)
        command = record.environment.start_command

        if record.status is EnvironmentStatus.RUNNING:
            raise EnvironmentAlreadyRunningError("Environment is already running", worktree_id)
        if not command:
            raise ConfigurationError("No start command configured for this worktree", worktree_id)

        current = record.environment_instance
        current = await self.update_environment(
            worktree_id,
            EnvironmentInstance(
                status=EnvironmentStatus.STARTING,
                last_health_check=None,
                access_urls=list(current.access_urls),
                pid=current.pid,
            ),
            current,
        )

        wt_log.info(f"Starting environment for {record.display_name}: {command}")
        env = self._command_env()
        target = await self._resolve_target(record, env, create=True)
        log_path = self._build_log_path(record)

        def track(process: asyncio.subprocess.Process) -> None:
            self._processes[worktree_id] = ManagedProcess(
                worktree_id=worktree_id, process=process, pid=process.pid, log_path=log_path
            )

        result = await self.runner.run(
            command,
            target,
            label=CommandLabel.START.value,
            log_path=log_path,
            env=env,
            timeout=self.settings.start_timeout_seconds,
            on_spawn=track,
            log=wt_log,
        )

        if not result.success:
            self._processes.pop(worktree_id, None)
            wt_log.error(f"Start failed for {record.display_name}: {result.error_message}")
            return await self.update_environment(
                worktree_id,
                EnvironmentInstance(
                    status=EnvironmentStatus.ERROR,
                    last_health_check=HealthCheck(
                        status=HealthStatus.UNHEALTHY, message=result.error_message or "Start failed"
                    ),
                    access_urls=list(current.access_urls),
                    pid=None,
                ),
                current,
            )

        wt_log.info(f"Start command completed for {record.display_name}")
        app_url = record.environment.app_url
        managed = self._processes.get(worktree_id)
        instance = EnvironmentInstance(
            status=EnvironmentStatus.STARTING,
            last_health_check=None
            if record.environment.health_check_url
            else self._liveness_check(worktree_id),
            access_urls=[AccessUrl(name="App", url=app_url)] if app_url else [],
            pid=managed.pid if managed is not None else None,
        )
        return await self.update_environment(worktree_id, instance, current)

    async def stop(self, worktree_id: str) -> EnvironmentInstance:
        """Stop the worktree environment.

        Always ends in `stopped`. Command or kill failures are logged and
        reflected in the health message.

        Raises:
            WorktreeNotFoundError: If the worktree does not exist
        """
        async with self._lock_for(worktree_id):
            record = await self.store.get(worktree_id)
            return await self._stop(record)

    async def _stop(self, record: WorktreeRecord) -> EnvironmentInstance:
        worktree_id = record.worktree_id
        wt_log = get_worktree_logger(worktree_id)
        current = record.environment_instance
        current = await self.update_environment(
            worktree_id,
            EnvironmentInstance(
                status=EnvironmentStatus.STOPPING,
                last_health_check=current.last_health_check,
                access_urls=list(current.access_urls),
                pid=current.pid,
            ),
            current,
        )

        problem: str | None = None
        command = record.environment.stop_command
        if command:
            wt_log.info(f"Stopping environment for {record.display_name}: {command}")
            env = self._command_env()
            target = await self._resolve_target(record, env)
            result = await self.runner.run(
                command,
                target,
                label=CommandLabel.STOP.value,
                log_path=self._build_log_path(record),
                env=env,
                timeout=self.settings.stop_timeout_seconds,
                log=wt_log,
            )
            if not result.success:
                problem = result.error_message
                wt_log.error(f"Stop failed for {record.display_name}: {problem}")
            await self._release_process(worktree_id)
        elif not await self._release_process(worktree_id) and current.pid is not None:
            problem = self._kill_persisted_pid(worktree_id, current.pid)

        if problem is None:
            check = HealthCheck(status=HealthStatus.UNKNOWN, message=MSG_STOPPED)
        else:
            check = HealthCheck(status=HealthStatus.UNHEALTHY, message=f"{MSG_STOPPED} with errors: {problem}")

        wt_log.info(f"Environment stopped for {record.display_name}")
        return await self.update_environment(
            worktree_id,
            EnvironmentInstance(status=EnvironmentStatus.STOPPED, last_health_check=check),
            current,
        )

    async def restart(self, worktree_id: str) -> EnvironmentInstance:
        """Stop (when running), wait the restart delay, then start.

        The whole sequence holds the worktree lock.
        """
        async with self._lock_for(worktree_id):
            record = await self.store.get(worktree_id)
            if record.status is EnvironmentStatus.RUNNING:
                await self._stop(record)
                await self._sleep(self.settings.restart_delay_seconds)
                record = await self.store.get(worktree_id)
            return await self._start(record)

    async def nuke(self, worktree_id: str) -> EnvironmentInstance:
        """Run the destructive nuke command.

        Raises:
            ConfigurationError: If no nuke command is configured
            WorktreeNotFoundError: If the worktree does not exist
        """
        async with self._lock_for(worktree_id):
            record = await self.store.get(worktree_id)
            command = record.environment.nuke_command
            if not command:
                raise ConfigurationError("No nuke command configured for this worktree", worktree_id)

            wt_log = get_worktree_logger(worktree_id)
            current = record.environment_instance
            current = await self.update_environment(
                worktree_id,
                EnvironmentInstance(
                    status=EnvironmentStatus.STOPPING,
                    last_health_check=current.last_health_check,
                    access_urls=list(current.access_urls),
                    pid=current.pid,
                ),
                current,
            )

            wt_log.warning(f"Nuking environment for {record.display_name}: {command}")
            env = self._command_env()
            target = await self._resolve_target(record, env)
            result = await self.runner.run(
                command,
                target,
                label=CommandLabel.NUKE.value,
                log_path=self._build_log_path(record),
                env=env,
                timeout=self.settings.nuke_timeout_seconds,
                log=wt_log,
            )
            await self._release_process(worktree_id)

            if not result.success:
                wt_log.error(f"Nuke failed for {record.display_name}: {result.error_message}")
                return await self.update_environment(
                    worktree_id,
                    EnvironmentInstance(
                        status=EnvironmentStatus.ERROR,
                        last_health_check=HealthCheck(
                            status=HealthStatus.UNHEALTHY,
                            message=result.error_message or "Nuke failed",
                        ),
                        access_urls=list(current.access_urls),
                        pid=current.pid,
                    ),
                    current,
                )

            return await self.update_environment(
                worktree_id,
                EnvironmentInstance(
                    status=EnvironmentStatus.STOPPED,
                    last_health_check=HealthCheck(status=HealthStatus.UNKNOWN, message=MSG_NUKED),
                ),
                current,
            )

    async def check_health(self, worktree_id: str) -> EnvironmentInstance:
        """Run one health tick.

        Only `starting` and `running` environments are probed. A successful
        probe is the only way from `starting` to `running`; failed probes while
        starting write nothing.
        """
        async with self._lock_for(worktree_id):
            record = await self.store.get(worktree_id)
            current = record.environment_instance
            if current.status not in ACTIVE_STATUSES:
                return current

            url = record.environment.health_check_url
            if not url:
                return await self.update_environment(
                    worktree_id,
                    EnvironmentInstance(
                        status=current.status,
                        last_health_check=self._liveness_check(worktree_id),
                        access_urls=list(current.access_urls),
                        pid=current.pid,
                    ),
                    current,
                )

            container_name = None
            if self.containers.enabled:
                name = record.container_name or self.containers.generate_container_name(worktree_id)
                if await self.containers.is_container_running(name):
                    container_name = name

            result = await self.prober.probe(url, container_name=container_name)
            previous = current.last_health_check.status if current.last_health_check else None

            if result.healthy:
                status = EnvironmentStatus.RUNNING
                check = HealthCheck(status=HealthStatus.HEALTHY, message=result.message)
                if current.status is EnvironmentStatus.STARTING:
                    logger.info(f"First successful health check for {record.display_name}, now running")
            elif current.status is EnvironmentStatus.STARTING:
                return current
            else:
                status = current.status
                check = HealthCheck(status=HealthStatus.UNHEALTHY, message=result.message)

            if previous is not check.status:
                logger.info(
                    f"Health status changed for {record.display_name}: "
                    f"{previous.value if previous else 'unknown'} -> {check.status.value} ({result.message})"
                )

            return await self.update_environment(
                worktree_id,
                EnvironmentInstance(
                    status=status,
                    last_health_check=check,
                    access_urls=list(current.access_urls),
                    pid=current.pid,
                ),
                current,
            )

    async def get_logs(self, worktree_id: str) -> LogsResult:
        """Fetch recent environment logs through the logs command.

        Never raises for command failures; they come back in LogsResult.error.
        """
        record = await self.store.get(worktree_id)
        command = record.environment.logs_command
        if not command:
            return LogsResult(configured=False, message=MSG_NO_LOGS_COMMAND)

        env = self._command_env()
        target = await self._resolve_target(record, env, wake=False)
        result = await self.runner.run(
            command,
            target,
            label=CommandLabel.LOGS.value,
            env=env,
            timeout=self.settings.logs_timeout_seconds,
            max_output_bytes=self.settings.logs_max_bytes,
            capture=True,
        )

        output = result.output
        if result.timed_out or result.spawn_error is not None:
            return LogsResult(logs=output, error=result.error_message)
        if not result.success and not result.truncated and not output:
            return LogsResult(error=result.error_message)

        logs, dropped = tail_lines(output, self.settings.logs_max_lines)
        return LogsResult(logs=logs, truncated=result.truncated or dropped)

    async def clear(self, worktree_id: str) -> EnvironmentInstance:
        """Reset the snapshot to its defaults, e.g. when a worktree is archived."""
        async with self._lock_for(worktree_id):
            await self._release_process(worktree_id)
            return await self.update_environment(worktree_id, EnvironmentInstance())

    async def reconcile(self, worktree_ids: Iterable[str]) -> dict[str, str]:
        """Startup pass over persisted snapshots.

        Snapshots stuck in `stopping` are moved to `stopped`. A container still
        running behind a `stopped` or `error` snapshot is only reported.

        Returns:
            Mapping of worktree ID to a ReconcileAction label
        """
        actions: dict[str, str] = {}
        for worktree_id in worktree_ids:
            async with self._lock_for(worktree_id):
                try:
                    record = await self.store.get(worktree_id)
                except WorktreeNotFoundError:
                    actions[worktree_id] = ReconcileAction.MISSING
                    continue

                status = record.status
                if status is EnvironmentStatus.STOPPING:
                    logger.info(f"Recovering {record.display_name} from interrupted stop")
                    await self.update_environment(
                        worktree_id,
                        EnvironmentInstance(
                            status=EnvironmentStatus.STOPPED,
                            last_health_check=HealthCheck(status=HealthStatus.UNKNOWN, message=MSG_RECOVERED),
                        ),
                        record.environment_instance,
                    )
                    actions[worktree_id] = ReconcileAction.RECOVERED
                elif status in (EnvironmentStatus.STOPPED, EnvironmentStatus.ERROR) and self.containers.enabled:
                    name = record.container_name or self.containers.generate_container_name(worktree_id)
                    if await self.containers.is_container_running(name):
                        logger.warning(
                            f"Container {name} is running but {record.display_name} is {status.value}"
                        )
                        actions[worktree_id] = ReconcileAction.CONTAINER_RUNNING
                    else:
                        actions[worktree_id] = ReconcileAction.UNCHANGED
                else:
                    actions[worktree_id] = ReconcileAction.UNCHANGED
        return actions
