"""Append-only build log for environment commands.

Each worktree keeps one human-readable log file. Every start/stop/nuke
invocation appends a header block, the raw command output, and a footer with
the outcome, so the file doubles as an audit trail across daemon restarts.
"""

from __future__ import annotations

from pathlib import Path
from typing import IO

from wtenv.types import utc_now


class BuildLog:
    """Writes invocation blocks to a per-worktree build log.

    Usage::

        with BuildLog(path) as log:
            log.write_header("START", "npm run dev", "/work/tree", "host")
            log.write(b"...output...")
            log.write_footer("Exit code: 0", 1200)
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._file: IO[bytes] | None = None

    def __enter__(self) -> BuildLog:
        self.open()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def open(self) -> None:
        """Open the log for appending, creating parent directories."""
        if self._file is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, "ab")  # noqa: SIM115

    def close(self) -> None:
        """Flush and close the log file."""
        if self._file is not None:
            self._file.flush()
            self._file.close()
            self._file = None

    def write_header(self, label: str, command: str, cwd: str, target: str) -> None:
        """Write the block header for one invocation.

        Args:
            label: Invocation label (START, STOP, NUKE)
            command: Shell command being run
            cwd: Working directory the command runs in
            target: Where the command executes (host or container name)
        """
        self._write_text(
            f"\n=== {label} ===\n"
            f"Command: {command}\n"
            f"Cwd: {cwd}\n"
            f"Target: {target}\n"
            f"Started: {utc_now()}\n"
            f"---\n"
        )

    def write(self, chunk: bytes) -> None:
        """Append raw command output."""
        if self._file is None:
            raise RuntimeError("BuildLog is not open")
        self._file.write(chunk)
        self._file.flush()

    def write_footer(self, outcome: str, duration_ms: int) -> None:
        """Write the block footer.

        Args:
            outcome: Outcome line, e.g. "Exit code: 0" or "Timed out after 30s"
            duration_ms: Wall-clock duration of the invocation
        """
        self._write_text(f"\n---\n{outcome}\nFinished: {utc_now()} ({duration_ms}ms)\n")

    def note(self, message: str) -> None:
        """Append a standalone engine note outside any invocation block."""
        was_open = self._file is not None
        self.open()
        try:
            self._write_text(f"[{utc_now()}] {message}\n")
        finally:
            if not was_open:
                self.close()

    def _write_text(self, text: str) -> None:
        self.write(text.encode("utf-8"))


def tail_lines(text: str, max_lines: int) -> tuple[str, bool]:
    """Keep the last max_lines lines of text.

    Returns:
        Tuple of (trimmed text, whether lines were dropped)
    """
    lines = text.split("\n")
    if len(lines) <= max_lines:
        return text, False
    return "\n".join(lines[-max_lines:]), True
