"""Worktree record stores.

The environment engine reads worktree records and writes snapshot changes
back through a small async `get`/`patch` interface. Two implementations are
provided: an in-memory store for embedding and tests, and a JSON file store
with cross-process locking used by the CLI.
"""

from __future__ import annotations

import asyncio
import contextlib
import fcntl
import json
import tempfile
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from wtenv.constants import STORE_FILE
from wtenv.exceptions import StoreError, WorktreeNotFoundError
from wtenv.logging import get_logger
from wtenv.types import EnvironmentInstance, WorktreeEnvironmentConfig, WorktreeRecord

logger = get_logger("store")

STORE_VERSION = 1

# Record fields a patch may touch
PATCHABLE_FIELDS = frozenset(
    {"environment_instance", "ssh_port", "container_name", "name", "environment"}
)


@runtime_checkable
class WorktreeStore(Protocol):
    """Record store used by the environment engine."""

    async def get(self, worktree_id: str) -> WorktreeRecord:
        """Fetch a record. Raises WorktreeNotFoundError when missing."""
        ...

    async def patch(self, worktree_id: str, changes: dict[str, Any]) -> WorktreeRecord:
        """Apply a partial update and return the updated record."""
        ...


def _serialize_changes(changes: dict[str, Any]) -> dict[str, Any]:
    unknown = set(changes) - PATCHABLE_FIELDS
    if unknown:
        raise StoreError(f"Cannot patch fields: {sorted(unknown)}")

    data: dict[str, Any] = {}
    for key, value in changes.items():
        if isinstance(value, EnvironmentInstance | WorktreeEnvironmentConfig):
            data[key] = value.to_dict()
        else:
            data[key] = value
    return data


class InMemoryWorktreeStore:
    """Process-local store. Records are copied in and out, never shared."""

    def __init__(self, records: list[WorktreeRecord] | None = None) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        for record in records or []:
            self._records[record.worktree_id] = record.to_dict()

    def add(self, record: WorktreeRecord) -> None:
        self._records[record.worktree_id] = record.to_dict()

    async def get(self, worktree_id: str) -> WorktreeRecord:
        data = self._records.get(worktree_id)
        if data is None:
            raise WorktreeNotFoundError(worktree_id)
        return WorktreeRecord.from_dict(data)

    async def patch(self, worktree_id: str, changes: dict[str, Any]) -> WorktreeRecord:
        data = self._records.get(worktree_id)
        if data is None:
            raise WorktreeNotFoundError(worktree_id)
        data.update(_serialize_changes(changes))
        return WorktreeRecord.from_dict(data)

    async def list_all(self) -> list[WorktreeRecord]:
        return [WorktreeRecord.from_dict(d) for d in self._records.values()]


class JsonWorktreeStore:
    """File-backed store with fcntl locking and atomic writes.

    Every mutation takes an exclusive lock on a sidecar `.lock` file, reloads
    the file, applies the change, and writes through a temp file + rename. The
    previous content is kept as `<file>.bak`.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path or STORE_FILE)
        self._lock = threading.RLock()

    @contextlib.contextmanager
    def _file_lock(self, exclusive: bool) -> Iterator[None]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        lock_fd = open(self.path.with_suffix(".lock"), "w")  # noqa: SIM115
        try:
            fcntl.flock(lock_fd, fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
            with self._lock:
                yield
        finally:
            try:
                fcntl.flock(lock_fd, fcntl.LOCK_UN)
            except OSError as e:
                logger.debug(f"Lock release failed: {e}")
            lock_fd.close()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {"version": STORE_VERSION, "worktrees": {}}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StoreError(f"Failed to parse store file {self.path}: {e}") from e
        data.setdefault("worktrees", {})
        return data

    def _write(self, data: dict[str, Any]) -> None:
        if self.path.exists():
            self.path.with_suffix(".json.bak").write_text(self.path.read_text())

        temp_fd, temp_path = tempfile.mkstemp(suffix=".tmp", prefix="worktrees_", dir=self.path.parent)
        temp_file = Path(temp_path)
        try:
            with open(temp_fd, "w") as f:
                json.dump(data, f, indent=2, default=str)
            temp_file.replace(self.path)
        except Exception:
            if temp_file.exists():
                temp_file.unlink()
            raise

    # Synchronous core, run in a worker thread by the async API

    def get_sync(self, worktree_id: str) -> WorktreeRecord:
        with self._file_lock(exclusive=False):
            raw = self._read()["worktrees"].get(worktree_id)
        if raw is None:
            raise WorktreeNotFoundError(worktree_id)
        return WorktreeRecord.from_dict(raw)

    def _patch_sync(self, worktree_id: str, changes: dict[str, Any]) -> WorktreeRecord:
        serialized = _serialize_changes(changes)
        with self._file_lock(exclusive=True):
            data = self._read()
            raw = data["worktrees"].get(worktree_id)
            if raw is None:
                raise WorktreeNotFoundError(worktree_id)
            raw.update(serialized)
            self._write(data)
        logger.debug(f"Patched worktree {worktree_id}: {sorted(serialized)}")
        return WorktreeRecord.from_dict(raw)

    def add(self, record: WorktreeRecord) -> None:
        """Insert or replace a record."""
        with self._file_lock(exclusive=True):
            data = self._read()
            data["worktrees"][record.worktree_id] = record.to_dict()
            self._write(data)
        logger.info(f"Registered worktree {record.worktree_id} ({record.display_name})")

    def remove(self, worktree_id: str) -> None:
        with self._file_lock(exclusive=True):
            data = self._read()
            if data["worktrees"].pop(worktree_id, None) is None:
                raise WorktreeNotFoundError(worktree_id)
            self._write(data)

    def list_sync(self) -> list[WorktreeRecord]:
        with self._file_lock(exclusive=False):
            raw = self._read()["worktrees"]
        return [WorktreeRecord.from_dict(d) for d in raw.values()]

    def resolve_id(self, prefix: str) -> str:
        """Expand a unique worktree ID prefix or name to the full ID.

        Raises:
            WorktreeNotFoundError: If nothing matches
            StoreError: If the prefix is ambiguous
        """
        records = self.list_sync()
        exact = [r.worktree_id for r in records if prefix in (r.worktree_id, r.name)]
        if exact:
            return exact[0]
        matches = [r.worktree_id for r in records if r.worktree_id.startswith(prefix)]
        if not matches:
            raise WorktreeNotFoundError(prefix)
        if len(matches) > 1:
            raise StoreError(f"Ambiguous worktree ID prefix '{prefix}'", {"matches": matches})
        return matches[0]

    # Async API

    async def get(self, worktree_id: str) -> WorktreeRecord:
        return await asyncio.to_thread(self.get_sync, worktree_id)

    async def patch(self, worktree_id: str, changes: dict[str, Any]) -> WorktreeRecord:
        return await asyncio.to_thread(self._patch_sync, worktree_id, changes)

    async def list_all(self) -> list[WorktreeRecord]:
        return await asyncio.to_thread(self.list_sync)
