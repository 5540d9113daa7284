"""Periodic health-tick driver for active environments."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable

from wtenv.config import EnvironmentSettings
from wtenv.constants import ACTIVE_STATUSES
from wtenv.environment import EnvironmentManager
from wtenv.exceptions import WorktreeNotFoundError
from wtenv.logging import get_logger
from wtenv.types import WorktreeRecord

logger = get_logger("monitor")


class HealthMonitor:
    """Calls EnvironmentManager.check_health for every active worktree.

    Each watched worktree gets one asyncio task that waits out the startup
    grace period, then ticks every interval until the environment leaves
    `starting`/`running`, the worktree disappears, or the monitor shuts down.
    """

    def __init__(
        self,
        manager: EnvironmentManager,
        interval_seconds: float,
        grace_seconds: float = 0.0,
    ) -> None:
        self.manager = manager
        self.interval_seconds = interval_seconds
        self.grace_seconds = grace_seconds
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @classmethod
    def from_settings(cls, manager: EnvironmentManager, settings: EnvironmentSettings) -> HealthMonitor:
        return cls(
            manager,
            interval_seconds=settings.health_check_interval_seconds,
            grace_seconds=settings.startup_grace_seconds,
        )

    @property
    def watched(self) -> set[str]:
        return {wt_id for wt_id, task in self._tasks.items() if not task.done()}

    def watch(self, worktree_id: str) -> bool:
        """Start ticking a worktree.

        Returns:
            False if the worktree was already being watched
        """
        existing = self._tasks.get(worktree_id)
        if existing is not None and not existing.done():
            return False
        self._tasks[worktree_id] = asyncio.create_task(
            self._watch_loop(worktree_id), name=f"health-{worktree_id}"
        )
        logger.debug(f"Watching worktree {worktree_id}")
        return True

    def unwatch(self, worktree_id: str) -> bool:
        """Stop ticking a worktree. Returns False if it was not watched."""
        task = self._tasks.pop(worktree_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug(f"Stopped watching worktree {worktree_id}")
        return True

    def sync(self, records: Iterable[WorktreeRecord]) -> None:
        """Align watches with a batch of record snapshots."""
        for record in records:
            if record.status in ACTIVE_STATUSES:
                self.watch(record.worktree_id)
            else:
                self.unwatch(record.worktree_id)

    async def shutdown(self) -> None:
        """Cancel every watch and wait for the tasks to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def run(
        self,
        list_records: Callable[[], Awaitable[list[WorktreeRecord]]],
        poll_seconds: float,
        stop: asyncio.Event | None = None,
    ) -> None:
        """Re-sync watches from the store until stop is set.

        Args:
            list_records: Coroutine function returning all worktree records
            poll_seconds: Seconds between re-syncs
            stop: Event that ends the loop. Runs until cancelled when None
        """
        stop = stop or asyncio.Event()
        try:
            while not stop.is_set():
                self.sync(await list_records())
                try:
                    await asyncio.wait_for(stop.wait(), timeout=poll_seconds)
                except TimeoutError:
                    continue
        finally:
            await self.shutdown()

    async def _watch_loop(self, worktree_id: str) -> None:
        try:
            if self.grace_seconds:
                await asyncio.sleep(self.grace_seconds)
            while True:
                try:
                    instance = await self.manager.check_health(worktree_id)
                except WorktreeNotFoundError:
                    logger.info(f"Worktree {worktree_id} no longer exists, stopping health checks")
                    return
                except Exception as e:  # noqa: BLE001 — intentional: one failed tick must not end monitoring
                    logger.warning(f"Health tick failed for {worktree_id}: {e}")
                else:
                    if instance.status not in ACTIVE_STATUSES:
                        logger.debug(f"Worktree {worktree_id} is {instance.status.value}, stopping health checks")
                        return
                await asyncio.sleep(self.interval_seconds)
        finally:
            current = self._tasks.get(worktree_id)
            if current is asyncio.current_task():
                del self._tasks[worktree_id]
