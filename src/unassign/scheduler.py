"""Sweep scheduler — periodic mark-and-sweep of every repository.

One background task per repository. Each task waits a random initial delay
(so a large installation does not hit GitHub all at once), then sweeps every
``checking-interval`` minutes. A per-repository lock guarantees that two
sweeps of the same repository never overlap, whether triggered by the timer
or by a manual ``sweep_repository`` call.

Without a configured repository list the scheduler follows the installation:
the list is re-read every interval and on ``installation_repositories``
webhooks, starting loops for new repositories and stopping removed ones.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import TYPE_CHECKING

import httpx

from unassign.config import RepositoryContext

if TYPE_CHECKING:
    from unassign.config import UnassignConfig
    from unassign.engine import LifecycleEngine, SweepResult
    from unassign.github_client import GitHubClient
    from unassign.models import GitHubEvent

logger = logging.getLogger(__name__)


class SweepScheduler:
    """Periodic background sweeps, one serialized loop per repository."""

    def __init__(
        self,
        config: UnassignConfig,
        github: GitHubClient,
        engine: LifecycleEngine,
    ):
        self.config = config
        self.github = github
        self.engine = engine

        self.interval = config.schedule.checking_interval * 60  # seconds
        self.repositories: list[str] = []
        self.last_results: dict[str, SweepResult] = {}

        self._locks: dict[str, asyncio.Lock] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._watcher: asyncio.Task | None = None
        self._running = False

    @property
    def follows_installation(self) -> bool:
        return not self.config.schedule.repositories

    async def start(self) -> None:
        self._running = True
        await self.refresh()
        if self.follows_installation:
            self._watcher = asyncio.create_task(self._watch_installation(), name="sweep:installation")
        logger.info(
            "Sweep scheduler started (%d repositories, interval=%.0fs)",
            len(self.repositories),
            self.interval,
        )

    async def stop(self) -> None:
        self._running = False
        tasks = list(self._tasks.values())
        if self._watcher:
            tasks.append(self._watcher)
        await _cancel(tasks)
        self._tasks.clear()
        self._watcher = None
        logger.info("Sweep scheduler stopped")

    async def resolve_repositories(self) -> list[str]:
        """Configured repositories, or every repository of the installation."""
        if self.config.schedule.repositories:
            return list(self.config.schedule.repositories)
        repos = await self.github.list_installation_repositories()
        return [r["full_name"] for r in repos if not r.get("archived", False)]

    async def refresh(self) -> list[str]:
        """Re-resolve the repository set and start or stop loops to match.

        A failed listing keeps the current set; the next refresh retries.
        """
        try:
            wanted = await self.resolve_repositories()
        except httpx.HTTPError:
            logger.exception("Listing installation repositories failed, keeping %d", len(self._tasks))
            return self.repositories

        removed = [name for name in self._tasks if name not in wanted]
        await _cancel([self._tasks.pop(name) for name in removed])

        added = [name for name in wanted if name not in self._tasks]
        for full_name in added:
            self._tasks[full_name] = asyncio.create_task(
                self._loop(full_name), name=f"sweep:{full_name}"
            )

        if added or removed:
            logger.info("Repositories changed: +%s -%s", added, removed)
        self.repositories = wanted
        return wanted

    async def on_installation_change(self, event: GitHubEvent) -> None:
        """Event router handler for ``installation_repositories`` webhooks."""
        if not self.follows_installation:
            logger.debug("Repository list is configured, ignoring %s", event.full_type)
            return
        await self.refresh()

    def initial_delay(self) -> float:
        if self.config.schedule.disable_delay:
            return 0.0
        return random.uniform(0, self.interval)

    async def _watch_installation(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            await self.refresh()

    async def _loop(self, full_name: str) -> None:
        """Per-repository loop: stagger, then sweep every interval."""
        delay = self.initial_delay()
        if delay:
            logger.debug("First sweep of %s in %.0fs", full_name, delay)
        await asyncio.sleep(delay)
        while self._running:
            try:
                await self.sweep_repository(full_name)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Sweep of %s failed", full_name)
            await asyncio.sleep(self.interval)

    async def sweep_repository(self, full_name: str) -> SweepResult | None:
        """Sweep one repository now, unless a sweep of it is already running.

        Returns the SweepResult, or None if skipped.
        """
        lock = self._locks.setdefault(full_name, asyncio.Lock())
        if lock.locked():
            logger.info("Sweep of %s still running, skipping this tick", full_name)
            return None

        async with lock:
            ctx = RepositoryContext.for_repository(full_name, self.config.sweep)
            result = await self.engine.sweep(ctx)
            self.last_results[full_name] = result
            return result


async def _cancel(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    for task in tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass
