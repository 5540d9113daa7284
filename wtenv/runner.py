"""Command runner for environment commands.

One runner executes start/stop/nuke/logs commands either directly on the host
or through `<runtime> exec` inside a worktree container. Output is mirrored to
the per-worktree build log and the engine logger as it arrives.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from wtenv.constants import KILL_GRACE_SECONDS
from wtenv.log_writer import BuildLog
from wtenv.logging import get_logger

logger = get_logger("runner")

# Bytes read from the child per iteration
CHUNK_SIZE = 4096

# Seconds between checks for shell exit
EXIT_POLL_SECONDS = 0.05

# Seconds to keep reading buffered output after the shell exits
OUTPUT_DRAIN_SECONDS = 0.5


@dataclass(frozen=True)
class HostTarget:
    """Run a command with `sh -c` in a host directory."""

    cwd: Path

    def argv(self, command: str) -> list[str]:
        return ["sh", "-c", command]

    @property
    def host_cwd(self) -> Path | None:
        return self.cwd

    @property
    def workdir(self) -> str:
        return str(self.cwd)

    def describe(self) -> str:
        return "host"


@dataclass(frozen=True)
class ContainerTarget:
    """Run a command with `<runtime> exec` inside a running container."""

    container_name: str
    workdir: str
    runtime: str = "docker"
    env: Mapping[str, str] = field(default_factory=dict)

    def argv(self, command: str) -> list[str]:
        args = [self.runtime, "exec", "-w", self.workdir]
        for key, value in sorted(self.env.items()):
            args.extend(["-e", f"{key}={value}"])
        args.extend([self.container_name, "sh", "-c", command])
        return args

    @property
    def host_cwd(self) -> Path | None:
        return None

    def describe(self) -> str:
        return f"container {self.container_name}"


ExecutionTarget = HostTarget | ContainerTarget


@dataclass
class CommandResult:
    """Outcome of one command invocation."""

    command: str
    label: str
    exit_code: int | None = None
    signal: int | None = None
    timed_out: bool = False
    truncated: bool = False
    output_bytes: bytes = b""
    duration_ms: int = 0
    timeout_seconds: float | None = None
    spawn_error: str | None = None

    @property
    def success(self) -> bool:
        return self.spawn_error is None and not self.timed_out and self.exit_code == 0

    @property
    def output(self) -> str:
        return self.output_bytes.decode("utf-8", errors="replace")

    @property
    def error_message(self) -> str | None:
        """Short human-readable failure description, None on success."""
        name = self.label.capitalize()
        if self.spawn_error is not None:
            return f"{name} command failed to launch: {self.spawn_error}"
        if self.timed_out:
            return f"{name} command timed out after {self.timeout_seconds:g}s"
        if self.signal is not None:
            return f"{name} command killed by signal {self.signal}"
        if self.exit_code != 0:
            return f"{name} command exited with code {self.exit_code}"
        return None

    def outcome_line(self) -> str:
        """Footer line for the build log."""
        if self.spawn_error is not None:
            return f"Failed to launch: {self.spawn_error}"
        if self.timed_out:
            return f"Timed out after {self.timeout_seconds:g}s"
        if self.signal is not None:
            return f"Killed by signal {self.signal}"
        return f"Exit code: {self.exit_code}"


class CommandRunner:
    """Executes shell commands against a host or container target.

    The runner never raises for command failures: spawn errors, non-zero exits,
    signals and timeouts all come back as a CommandResult.
    """

    def __init__(self, kill_grace_seconds: float = KILL_GRACE_SECONDS) -> None:
        self.kill_grace_seconds = kill_grace_seconds
        self._drains: set[asyncio.Task[None]] = set()

    async def run(
        self,
        command: str,
        target: ExecutionTarget,
        *,
        label: str,
        log_path: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        max_output_bytes: int | None = None,
        capture: bool = False,
        on_spawn: Callable[[asyncio.subprocess.Process], None] | None = None,
        log: logging.Logger | logging.LoggerAdapter | None = None,  # type: ignore[type-arg]
    ) -> CommandResult:
        """Run a command to completion.

        Args:
            command: Shell command string
            target: Where to execute it
            label: Invocation label written to the build log (START, STOP, ...)
            log_path: Build log to append to. None disables file mirroring
            env: Process environment. None inherits the daemon's
            timeout: Wall-clock limit in seconds
            max_output_bytes: Stop reading and terminate after this many bytes
            capture: Keep output in the result
            on_spawn: Called with the live child process right after spawn
            log: Logger that receives mirrored output lines

        Returns:
            CommandResult describing the outcome
        """
        sink = log or logger
        result = CommandResult(command=command, label=label, timeout_seconds=timeout)
        build_log = BuildLog(log_path) if log_path is not None else None
        started = time.monotonic()
        detached = False

        try:
            if build_log is not None:
                try:
                    build_log.open()
                    build_log.write_header(label, command, target.workdir, target.describe())
                except OSError as e:
                    sink.warning(f"Build log {log_path} unavailable, logging {label} output only: {e}")
                    with contextlib.suppress(OSError):
                        build_log.close()
                    build_log = None

            try:
                process = await asyncio.create_subprocess_exec(
                    *target.argv(command),
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                    cwd=target.host_cwd,
                    env=dict(env) if env is not None else None,
                    start_new_session=True,
                )
            except OSError as e:
                sink.error(f"{label} command failed to launch: {e}")
                result.spawn_error = str(e)
                return result

            if on_spawn is not None:
                on_spawn(process)

            captured = bytearray()

            def mirror(chunk: bytes) -> None:
                nonlocal build_log
                if build_log is not None:
                    try:
                        build_log.write(chunk)
                    except OSError as e:
                        sink.warning(f"Build log {log_path} write failed, logging {label} output only: {e}")
                        with contextlib.suppress(OSError):
                            build_log.close()
                        build_log = None
                if capture:
                    captured.extend(chunk)
                for line in chunk.decode("utf-8", errors="replace").splitlines():
                    sink.debug(f"[{label}] {line}")

            async def pump() -> None:
                received = 0
                assert process.stdout is not None
                while True:
                    chunk = await process.stdout.read(CHUNK_SIZE)
                    if not chunk:
                        return
                    if detached:
                        continue
                    if max_output_bytes is not None and received + len(chunk) > max_output_bytes:
                        chunk = chunk[: max_output_bytes - received]
                        result.truncated = True
                    received += len(chunk)
                    if chunk:
                        mirror(chunk)
                    if result.truncated:
                        await self.terminate(process)
                        return

            reader = asyncio.create_task(pump())
            try:
                await asyncio.wait_for(self._settle(process, reader), timeout=timeout)
            except TimeoutError:
                result.timed_out = True
                sink.warning(f"{label} command timed out after {timeout}s, terminating")
                await self.terminate(process)
            finally:
                if not reader.done():
                    # Backgrounded children still hold the pipe
                    detached = True
                    self._detach(reader)

            returncode = process.returncode
            if returncode is not None and returncode < 0:
                result.signal = -returncode
            else:
                result.exit_code = returncode
            result.output_bytes = bytes(captured)
            return result
        finally:
            result.duration_ms = int((time.monotonic() - started) * 1000)
            if build_log is not None:
                try:
                    build_log.write_footer(result.outcome_line(), result.duration_ms)
                except OSError as e:
                    sink.warning(f"Build log {log_path} footer write failed: {e}")
                finally:
                    with contextlib.suppress(OSError):
                        build_log.close()

    async def _settle(self, process: asyncio.subprocess.Process, reader: asyncio.Task[None]) -> None:
        """Wait until the shell has exited and its output is read.

        Output still buffered when the shell exits is drained for up to
        OUTPUT_DRAIN_SECONDS. A pipe held open past that by a background child
        is left to the reader.
        """
        exited = asyncio.create_task(self._wait_exit(process))
        try:
            await asyncio.wait({reader, exited}, return_when=asyncio.FIRST_COMPLETED)
            if reader.done():
                reader.result()
                await exited
                return
            await asyncio.wait({reader}, timeout=OUTPUT_DRAIN_SECONDS)
            if reader.done():
                reader.result()
        finally:
            exited.cancel()

    def _detach(self, reader: asyncio.Task[None]) -> None:
        """Keep reading a pipe nobody waits on so its writers never block."""
        self._drains.add(reader)
        reader.add_done_callback(self._drain_finished)

    def _drain_finished(self, task: asyncio.Task[None]) -> None:
        self._drains.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Detached output reader stopped: {task.exception()}")

    @staticmethod
    async def _wait_exit(process: asyncio.subprocess.Process) -> int:
        # Process.wait() also waits for the pipes to close
        while process.returncode is None:
            await asyncio.sleep(EXIT_POLL_SECONDS)
        return process.returncode

    async def terminate(self, process: asyncio.subprocess.Process) -> None:
        """SIGTERM the child's process group, then SIGKILL after the grace period."""
        if process.returncode is not None:
            return
        self._signal_group(process, signal.SIGTERM)
        try:
            await asyncio.wait_for(self._wait_exit(process), timeout=self.kill_grace_seconds)
        except TimeoutError:
            logger.warning(f"Process {process.pid} ignored SIGTERM, sending SIGKILL")
            self._signal_group(process, signal.SIGKILL)
            await self._wait_exit(process)

    @staticmethod
    def _signal_group(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
        try:
            os.killpg(process.pid, sig)
        except ProcessLookupError:
            pass
        except PermissionError:
            process.send_signal(sig)
