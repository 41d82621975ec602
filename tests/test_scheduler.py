"""Tests for SweepScheduler."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from unassign.config import UnassignConfig
from unassign.engine import SweepResult
from unassign.models import GitHubEvent
from unassign.scheduler import SweepScheduler


def _config(**schedule) -> UnassignConfig:
    return UnassignConfig.model_validate(
        {"sweep": {"days-until-no-response": 7}, "schedule": schedule}
    )


def _engine() -> MagicMock:
    engine = MagicMock()

    async def sweep(ctx):
        return SweepResult(repository=ctx.full_name, dry_run=ctx.settings.dry_run)

    engine.sweep = AsyncMock(side_effect=sweep)
    return engine


class TestResolveRepositories:
    async def test_configured_list_wins(self):
        github = AsyncMock()
        scheduler = SweepScheduler(_config(repositories=["acme/widgets"]), github, _engine())

        assert await scheduler.resolve_repositories() == ["acme/widgets"]
        github.list_installation_repositories.assert_not_called()

    async def test_installation_repositories_skip_archived(self):
        github = AsyncMock()
        github.list_installation_repositories = AsyncMock(
            return_value=[
                {"full_name": "acme/widgets", "archived": False},
                {"full_name": "acme/legacy", "archived": True},
                {"full_name": "acme/gadgets"},
            ]
        )
        scheduler = SweepScheduler(_config(), github, _engine())

        assert await scheduler.resolve_repositories() == ["acme/widgets", "acme/gadgets"]


class TestInitialDelay:
    def test_disabled(self):
        scheduler = SweepScheduler(_config(**{"disable-delay": True}), AsyncMock(), _engine())
        assert scheduler.initial_delay() == 0

    def test_within_interval(self):
        scheduler = SweepScheduler(_config(**{"checking-interval": 2}), AsyncMock(), _engine())

        assert scheduler.interval == 120
        for _ in range(20):
            assert 0 <= scheduler.initial_delay() <= 120


class TestSweepRepository:
    async def test_records_last_result(self):
        engine = _engine()
        scheduler = SweepScheduler(_config(), AsyncMock(), engine)

        result = await scheduler.sweep_repository("acme/widgets")

        assert result.repository == "acme/widgets"
        assert scheduler.last_results["acme/widgets"] is result
        ctx = engine.sweep.call_args[0][0]
        assert ctx.full_name == "acme/widgets"
        assert ctx.settings.days_until_no_response == 7

    async def test_overlapping_sweep_is_skipped(self):
        release = asyncio.Event()
        engine = MagicMock()

        async def slow_sweep(ctx):
            if ctx.full_name == "acme/widgets":
                await release.wait()
            return SweepResult(repository=ctx.full_name, dry_run=True)

        engine.sweep = AsyncMock(side_effect=slow_sweep)
        scheduler = SweepScheduler(_config(), AsyncMock(), engine)

        first = asyncio.create_task(scheduler.sweep_repository("acme/widgets"))
        await asyncio.sleep(0)

        assert await scheduler.sweep_repository("acme/widgets") is None
        # Other repositories have their own lock
        assert (await scheduler.sweep_repository("acme/gadgets")).repository == "acme/gadgets"

        release.set()
        assert (await first).repository == "acme/widgets"
        assert engine.sweep.await_count == 2

    async def test_errors_propagate(self):
        engine = MagicMock()
        engine.sweep = AsyncMock(side_effect=RuntimeError("boom"))
        scheduler = SweepScheduler(_config(), AsyncMock(), engine)

        with pytest.raises(RuntimeError):
            await scheduler.sweep_repository("acme/widgets")
        assert "acme/widgets" not in scheduler.last_results


class TestLifecycle:
    async def test_start_sweeps_each_repository(self):
        engine = _engine()
        config = _config(repositories=["acme/a", "acme/b"], **{"disable-delay": True})
        scheduler = SweepScheduler(config, AsyncMock(), engine)

        await scheduler.start()
        try:
            for _ in range(10):
                if len(scheduler.last_results) == 2:
                    break
                await asyncio.sleep(0.01)
        finally:
            await scheduler.stop()

        assert set(scheduler.last_results) == {"acme/a", "acme/b"}
        assert scheduler.repositories == ["acme/a", "acme/b"]

    async def test_failed_sweep_keeps_loop_alive(self, caplog):
        engine = MagicMock()
        engine.sweep = AsyncMock(side_effect=RuntimeError("boom"))
        config = _config(repositories=["acme/a"], **{"disable-delay": True})
        scheduler = SweepScheduler(config, AsyncMock(), engine)

        await scheduler.start()
        for _ in range(10):
            if engine.sweep.await_count:
                break
            await asyncio.sleep(0.01)
        task = scheduler._tasks["acme/a"]
        assert not task.done()
        await scheduler.stop()

        assert "Sweep of acme/a failed" in caplog.text


class TestInstallationRefresh:
    @staticmethod
    def _github(*listings):
        github = AsyncMock()
        github.list_installation_repositories = AsyncMock(side_effect=list(listings))
        return github

    async def test_new_repository_gets_a_loop(self):
        github = self._github(
            [{"full_name": "acme/a"}],
            [{"full_name": "acme/a"}, {"full_name": "acme/new"}],
        )
        scheduler = SweepScheduler(_config(), github, _engine())

        await scheduler.start()
        try:
            first_task = scheduler._tasks["acme/a"]
            await scheduler.on_installation_change(
                GitHubEvent(delivery_id="i1", event_type="installation_repositories", action="added")
            )

            assert scheduler.repositories == ["acme/a", "acme/new"]
            assert set(scheduler._tasks) == {"acme/a", "acme/new"}
            assert scheduler._tasks["acme/a"] is first_task
        finally:
            await scheduler.stop()

    async def test_removed_repository_loop_is_cancelled(self):
        github = self._github(
            [{"full_name": "acme/a"}, {"full_name": "acme/gone"}],
            [{"full_name": "acme/a"}],
        )
        scheduler = SweepScheduler(_config(), github, _engine())

        await scheduler.start()
        try:
            gone = scheduler._tasks["acme/gone"]
            await scheduler.refresh()

            assert gone.done()
            assert set(scheduler._tasks) == {"acme/a"}
        finally:
            await scheduler.stop()

    async def test_listing_failure_at_start_is_retried(self, caplog):
        github = self._github(httpx.ConnectError("offline"), [{"full_name": "acme/a"}])
        scheduler = SweepScheduler(_config(), github, _engine())

        await scheduler.start()
        try:
            assert scheduler.repositories == []
            assert "Listing installation repositories failed" in caplog.text

            assert await scheduler.refresh() == ["acme/a"]
            assert set(scheduler._tasks) == {"acme/a"}
        finally:
            await scheduler.stop()

    async def test_listing_failure_keeps_current_loops(self):
        github = self._github([{"full_name": "acme/a"}], httpx.ConnectError("offline"))
        scheduler = SweepScheduler(_config(), github, _engine())

        await scheduler.start()
        try:
            assert await scheduler.refresh() == ["acme/a"]
            assert not scheduler._tasks["acme/a"].done()
        finally:
            await scheduler.stop()

    async def test_configured_list_ignores_installation_events(self):
        github = AsyncMock()
        scheduler = SweepScheduler(_config(repositories=["acme/a"]), github, _engine())

        await scheduler.on_installation_change(
            GitHubEvent(delivery_id="i2", event_type="installation_repositories", action="added")
        )

        github.list_installation_repositories.assert_not_called()
        assert scheduler._watcher is None
