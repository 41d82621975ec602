"""Inactivity scanner — finds assigned issues that have gone quiet.

Two queries per sweep, both served by the GitHub search API and both
re-checked client-side since search results lag behind edits:

- mark candidates: open, unlocked, assigned issues without the sentinel label
- unassign candidates: open, unlocked issues that still carry it
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from unassign.budget import MAX_ACTIONS_PER_RUN
from unassign.models import Issue, IssueKind

if TYPE_CHECKING:
    from unassign.config import RepositoryContext
    from unassign.github_client import GitHubClient

logger = logging.getLogger(__name__)

# GitHub rejects search timestamps before the Unix epoch
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

StaleCandidateSet = tuple[Issue, ...]


def since(days: float, now: datetime | None = None) -> datetime:
    """Cutoff timestamp ``days`` before ``now``, clamped to the epoch."""
    now = now or datetime.now(timezone.utc)
    try:
        cutoff = now - timedelta(days=days)
    except OverflowError:
        return EPOCH
    return max(cutoff, EPOCH)


def format_timestamp(value: datetime) -> str:
    """Search qualifier format, second precision, no zone suffix."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


def _activity_key(issue: Issue) -> tuple[datetime, int]:
    return (issue.updated_at or EPOCH, issue.number)


class InactivityScanner:
    """Queries and filters issues by staleness."""

    def __init__(self, github: GitHubClient, *, page_size: int = MAX_ACTIONS_PER_RUN, clock=None):
        self.github = github
        self.page_size = page_size
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def find_mark_candidates(self, ctx: RepositoryContext) -> StaleCandidateSet:
        """Assigned, unlabeled issues inactive for ``days_until_no_response``."""
        days = ctx.settings.require_days_until_no_response()
        cutoff = since(days, self._clock())
        query = (
            f"repo:{ctx.full_name} is:open is:unlocked {IssueKind.ISSUE.search_qualifier} "
            f"updated:<{format_timestamp(cutoff)} -label:\"{ctx.label_name}\" assignee:*"
        )
        items = await self._search(ctx, query)
        return self._select(
            items,
            lambda issue: (
                issue.is_open
                and not issue.locked
                and not issue.is_pull_request
                and issue.assignee is not None
                and not issue.has_label(ctx.label_name)
                and self._is_stale(issue, cutoff)
            ),
        )

    async def find_unassign_candidates(self, ctx: RepositoryContext) -> StaleCandidateSet:
        """Labeled issues inactive for ``days_until_unassign``; empty when unset."""
        days = ctx.settings.days_until_unassign
        if days is None:
            ctx.logger.debug("%s: unassign threshold not configured", ctx.full_name)
            return ()
        cutoff = since(days, self._clock())
        query = (
            f"repo:{ctx.full_name} is:open is:unlocked {IssueKind.ISSUE.search_qualifier} "
            f"updated:<{format_timestamp(cutoff)} label:\"{ctx.label_name}\""
        )
        items = await self._search(ctx, query)
        return self._select(
            items,
            lambda issue: (
                issue.is_open
                and not issue.locked
                and issue.has_label(ctx.label_name)
                and self._is_stale(issue, cutoff)
            ),
        )

    async def _search(self, ctx: RepositoryContext, query: str) -> list[dict]:
        ctx.logger.info("Searching %s: %s", ctx.full_name, query)
        return await self.github.search_issues(
            query, sort="updated", order="asc", per_page=self.page_size
        )

    @staticmethod
    def _is_stale(issue: Issue, cutoff: datetime) -> bool:
        return issue.updated_at is not None and issue.updated_at < cutoff

    @staticmethod
    def _select(items: list[dict], predicate) -> StaleCandidateSet:
        issues = [Issue.from_github(item) for item in items]
        return tuple(sorted((i for i in issues if predicate(i)), key=_activity_key))
