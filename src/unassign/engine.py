"""Lifecycle engine — one mark-and-sweep pass over a repository.

Sweep order:
1. Ensure the sentinel label exists (errors are fatal for the sweep)
2. Open a fresh RunBudget
3. Mark phase: stale assigned issues get a comment and the label
4. Unassign phase (only if days-until-unassign is set): stale labeled
   issues lose the label and their assignees

Both phases draw from the same budget and run one after the other, so the
per-sweep ceiling is exact. A listing failure aborts only its own phase; an
API failure on one issue is logged and the next candidate is tried.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Awaitable, Callable

import httpx
from pydantic import BaseModel, Field

from unassign.actions import ActionExecutor
from unassign.budget import MAX_ACTIONS_PER_RUN, RunBudget
from unassign.labels import SentinelLabelAdmin
from unassign.models import IssueKind
from unassign.scanner import InactivityScanner

if TYPE_CHECKING:
    from unassign.config import RepositoryContext
    from unassign.github_client import GitHubClient
    from unassign.models import Issue
    from unassign.scanner import StaleCandidateSet

logger = logging.getLogger(__name__)


class SweepResult(BaseModel):
    """Outcome of one sweep, for logs and the /health endpoint."""

    repository: str
    dry_run: bool
    label_created: bool = False
    marked: list[int] = Field(default_factory=list)
    unassigned: list[int] = Field(default_factory=list)
    failed: list[int] = Field(default_factory=list)
    deferred: list[int] = Field(default_factory=list, description="Left for the next tick")
    phase_errors: dict[str, str] = Field(default_factory=dict)
    remaining_budget: int = MAX_ACTIONS_PER_RUN
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None


class LifecycleEngine:
    """Orchestrates scan → filter → act under one budget per sweep."""

    def __init__(
        self,
        github: GitHubClient,
        *,
        scanner: InactivityScanner | None = None,
        labels: SentinelLabelAdmin | None = None,
        executor: ActionExecutor | None = None,
        budget_limit: int = MAX_ACTIONS_PER_RUN,
    ):
        self.github = github
        self.scanner = scanner or InactivityScanner(github)
        self.labels = labels or SentinelLabelAdmin(github)
        self.executor = executor or ActionExecutor(github)
        self.budget_limit = budget_limit

    async def sweep(
        self, ctx: RepositoryContext, kind: IssueKind | str = IssueKind.ISSUE
    ) -> SweepResult:
        """Run one full mark-then-unassign pass over ``ctx``'s repository."""
        kind = IssueKind.parse(kind)
        if kind is not IssueKind.ISSUE:
            raise ValueError(f"Only issues are swept, got {kind.value!r}")
        ctx.settings.require_days_until_no_response()

        ctx.logger.info(
            "Starting mark and sweep of %s in %s%s",
            kind.value,
            ctx.full_name,
            " (dry-run)" if ctx.settings.dry_run else "",
        )
        result = SweepResult(repository=ctx.full_name, dry_run=ctx.settings.dry_run)
        result.label_created = await self.labels.ensure_exists(ctx)

        budget = RunBudget(self.budget_limit)

        await self._run_phase(
            ctx,
            "mark",
            self.scanner.find_mark_candidates,
            self.executor.can_mark,
            self.executor.mark,
            budget,
            result.marked,
            result,
        )

        if ctx.settings.unassign_enabled:
            ctx.logger.debug("%s: configured to unassign no-response issues", ctx.full_name)
            await self._run_phase(
                ctx,
                "unassign",
                self.scanner.find_unassign_candidates,
                self.executor.can_unassign,
                self.executor.unassign,
                budget,
                result.unassigned,
                result,
            )
        else:
            ctx.logger.debug("%s: configured to leave no-response issues assigned", ctx.full_name)

        result.remaining_budget = budget.remaining
        result.finished_at = datetime.now(timezone.utc)
        ctx.logger.info(
            "Sweep of %s complete: marked=%d unassigned=%d failed=%d deferred=%d budget_left=%d",
            ctx.full_name,
            len(result.marked),
            len(result.unassigned),
            len(result.failed),
            len(result.deferred),
            budget.remaining,
        )
        return result

    async def _run_phase(
        self,
        ctx: RepositoryContext,
        phase: str,
        find: Callable[[RepositoryContext], Awaitable[StaleCandidateSet]],
        eligible: Callable[[RepositoryContext, Issue], bool],
        act: Callable[[RepositoryContext, Issue], Awaitable[bool]],
        budget: RunBudget,
        done: list[int],
        result: SweepResult,
    ) -> None:
        try:
            candidates = await find(ctx)
        except httpx.HTTPError as e:
            ctx.logger.exception("%s: %s phase aborted, listing failed", ctx.full_name, phase)
            result.phase_errors[phase] = str(e) or type(e).__name__
            return

        ctx.logger.info("%s: %d %s candidate(s)", ctx.full_name, len(candidates), phase)

        for index, issue in enumerate(candidates):
            if not eligible(ctx, issue):
                ctx.logger.debug("%s skipped (%s preconditions)", ctx.ref(issue.number), phase)
                continue
            if not budget.reserve():
                deferred = [i.number for i in candidates[index:] if eligible(ctx, i)]
                result.deferred.extend(deferred)
                ctx.logger.info(
                    "%s: action budget exhausted, %d %s candidate(s) deferred",
                    ctx.full_name,
                    len(deferred),
                    phase,
                )
                return
            try:
                if await act(ctx, issue):
                    done.append(issue.number)
            except httpx.HTTPError:
                ctx.logger.exception("%s: %s failed", ctx.ref(issue.number), phase)
                result.failed.append(issue.number)
