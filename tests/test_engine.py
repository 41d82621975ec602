"""Tests for LifecycleEngine — full sweeps against a mocked GitHub client."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

from unassign.config import ConfigurationError, RepositoryContext, SweepSettings
from unassign.engine import LifecycleEngine
from unassign.scanner import InactivityScanner

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
LABEL = "issue assignee: no-response"


# ── Helpers ──────────────────────────────────────────────────────────────────


def _item(number, *, assignee="bob", labels=(), days_ago=10, locked=False):
    return {
        "number": number,
        "state": "open",
        "locked": locked,
        "assignee": {"login": assignee} if assignee else None,
        "assignees": [{"login": assignee}] if assignee else [],
        "labels": [{"name": name} for name in labels],
        "updated_at": (NOW - timedelta(days=days_ago)).strftime("%Y-%m-%dT%H:%M:%SZ"),
    }


def _error(status: int = 500) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.github.com/search/issues")
    return httpx.HTTPStatusError("boom", request=request, response=httpx.Response(status, request=request))


def _make_github(mark_items=(), unassign_items=(), **overrides) -> AsyncMock:
    """Mock client whose search answers by query type."""

    async def search(query, **kwargs):
        if "-label:" in query:
            return list(mark_items)
        return list(unassign_items)

    github = AsyncMock()
    github.get_label = AsyncMock(return_value={"name": LABEL})
    github.search_issues = AsyncMock(side_effect=search)
    github.remove_label = AsyncMock(return_value=True)
    for k, v in overrides.items():
        setattr(github, k, v)
    return github


def _ctx(**overrides) -> RepositoryContext:
    settings = dict(days_until_no_response=7, perform=True)
    settings.update(overrides)
    return RepositoryContext.for_repository("acme/widgets", SweepSettings(**settings))


def _engine(github) -> LifecycleEngine:
    return LifecycleEngine(github, scanner=InactivityScanner(github, clock=lambda: NOW))


def _mutations(github: AsyncMock) -> list[str]:
    mutating = {"comment_on_issue", "add_labels", "remove_label", "edit_assignees", "create_label"}
    return [c[0] for c in github.mock_calls if c[0] in mutating]


# ── Full sweeps ───────────────────────────────────────────────────────────────


class TestFullSweep:
    async def test_stale_assigned_issue_is_marked(self):
        github = _make_github(mark_items=[_item(42, assignee="bob", days_ago=10)])

        result = await _engine(github).sweep(_ctx())

        assert result.marked == [42]
        assert _mutations(github) == ["comment_on_issue", "add_labels"]
        body = github.comment_on_issue.call_args[0][3]
        assert "@bob" in body
        github.add_labels.assert_awaited_once_with("acme", "widgets", 42, [LABEL])

    async def test_flagged_issue_is_unassigned(self):
        github = _make_github(unassign_items=[_item(42, labels=[LABEL], days_ago=20)])

        result = await _engine(github).sweep(_ctx(days_until_unassign=14))

        assert result.unassigned == [42]
        assert _mutations(github) == ["remove_label", "edit_assignees"]
        github.edit_assignees.assert_awaited_once_with("acme", "widgets", 42, [])

    async def test_budget_caps_marks_at_thirty_oldest_first(self):
        items = [_item(n, days_ago=10 + n) for n in range(1, 32)]  # #31 is the oldest
        github = _make_github(mark_items=items)

        result = await _engine(github).sweep(_ctx())

        assert len(result.marked) == 30
        assert result.marked == list(range(31, 1, -1))
        assert result.deferred == [1]
        assert result.remaining_budget == 0
        assert github.add_labels.await_count == 30

    async def test_unassign_phase_disabled_without_threshold(self):
        github = _make_github(unassign_items=[_item(42, labels=[LABEL], days_ago=400)])

        result = await _engine(github).sweep(_ctx())

        assert result.unassigned == []
        assert github.search_issues.await_count == 1
        assert "-label:" in github.search_issues.call_args[0][0]
        assert _mutations(github) == []

    async def test_dry_run_makes_no_mutations(self):
        github = _make_github(
            mark_items=[_item(1), _item(2)],
            unassign_items=[_item(3, labels=[LABEL], days_ago=30)],
        )

        result = await _engine(github).sweep(_ctx(perform=False, days_until_unassign=14))

        assert result.dry_run
        assert result.marked == [1, 2]
        assert result.unassigned == [3]
        assert _mutations(github) == []


# ── Budget & Idempotence ─────────────────────────────────────────────────────


class TestSharedBudget:
    async def test_phases_share_one_budget(self):
        github = _make_github(
            mark_items=[_item(n, days_ago=10) for n in range(1, 21)],
            unassign_items=[_item(n, labels=[LABEL], days_ago=30) for n in range(101, 121)],
        )

        result = await _engine(github).sweep(_ctx(days_until_unassign=14))

        assert len(result.marked) == 20
        assert result.unassigned == list(range(101, 111))
        assert result.deferred == list(range(111, 121))
        assert len(result.marked) + len(result.unassigned) == 30

    async def test_each_sweep_gets_a_fresh_budget(self):
        github = _make_github(mark_items=[_item(n, days_ago=10) for n in range(1, 41)])
        engine = _engine(github)

        first = await engine.sweep(_ctx())
        second = await engine.sweep(_ctx())

        assert len(first.marked) == 30
        assert len(second.marked) == 30

    async def test_failed_attempt_still_consumes_budget(self):
        github = _make_github(
            mark_items=[_item(n, days_ago=10) for n in range(1, 32)],
            comment_on_issue=AsyncMock(side_effect=_error()),
        )

        result = await _engine(github).sweep(_ctx())

        assert len(result.failed) == 30
        assert result.deferred == [31]
        assert result.remaining_budget == 0

    async def test_already_labeled_issue_never_remarked(self):
        github = _make_github(mark_items=[_item(42, labels=[LABEL], days_ago=10)])

        result = await _engine(github).sweep(_ctx())

        assert result.marked == []
        assert _mutations(github) == []
        assert result.remaining_budget == 30

    async def test_ineligible_candidates_do_not_consume_budget(self):
        github = _make_github(mark_items=[_item(1, locked=True), _item(2, assignee=None), _item(3)])

        result = await _engine(github).sweep(_ctx())

        assert result.marked == [3]
        assert result.remaining_budget == 29


# ── Failure Isolation ────────────────────────────────────────────────────────


class TestFailureIsolation:
    async def test_one_issue_failure_does_not_stop_sweep(self):
        async def comment(owner, repo, number, body):
            if number == 1:
                raise _error()
            return {"id": number}

        github = _make_github(
            mark_items=[_item(1, days_ago=20), _item(2, days_ago=10)],
            comment_on_issue=AsyncMock(side_effect=comment),
        )

        result = await _engine(github).sweep(_ctx())

        assert result.failed == [1]
        assert result.marked == [2]
        github.add_labels.assert_awaited_once_with("acme", "widgets", 2, [LABEL])

    async def test_mark_listing_failure_still_runs_unassign(self):
        async def search(query, **kwargs):
            if "-label:" in query:
                raise _error(503)
            return [_item(7, labels=[LABEL], days_ago=30)]

        github = _make_github(search_issues=AsyncMock(side_effect=search))

        result = await _engine(github).sweep(_ctx(days_until_unassign=14))

        assert "mark" in result.phase_errors
        assert result.unassigned == [7]

    async def test_unassign_listing_failure_keeps_marks(self):
        async def search(query, **kwargs):
            if "-label:" in query:
                return [_item(1)]
            raise httpx.ConnectError("offline")

        github = _make_github(search_issues=AsyncMock(side_effect=search))

        result = await _engine(github).sweep(_ctx(days_until_unassign=14))

        assert result.marked == [1]
        assert "unassign" in result.phase_errors

    async def test_label_fetch_error_is_fatal(self):
        github = _make_github(get_label=AsyncMock(side_effect=_error()))

        with pytest.raises(httpx.HTTPStatusError):
            await _engine(github).sweep(_ctx())

        github.search_issues.assert_not_called()

    async def test_missing_label_is_created_first(self):
        github = _make_github(mark_items=[_item(1)], get_label=AsyncMock(return_value=None))

        result = await _engine(github).sweep(_ctx())

        assert result.label_created
        assert _mutations(github) == ["create_label", "comment_on_issue", "add_labels"]


# ── Configuration & Kind ─────────────────────────────────────────────────────


class TestSweepPreconditions:
    async def test_missing_mark_threshold_is_fatal_before_any_call(self):
        github = _make_github()

        with pytest.raises(ConfigurationError):
            await _engine(github).sweep(_ctx(days_until_no_response=None))

        assert github.mock_calls == []

    async def test_unknown_kind_raises(self):
        github = _make_github()

        with pytest.raises(ValueError, match="Unknown type"):
            await _engine(github).sweep(_ctx(), kind="discussions")

        assert github.mock_calls == []

    async def test_pull_requests_are_not_swept(self):
        github = _make_github()

        with pytest.raises(ValueError):
            await _engine(github).sweep(_ctx(), kind="pulls")

    async def test_string_kind_accepted(self):
        github = _make_github(mark_items=[_item(1)])

        result = await _engine(github).sweep(_ctx(), kind="issues")

        assert result.marked == [1]
