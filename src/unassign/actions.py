"""Action executor — the three mutating lifecycle transitions.

    Active ──mark──▶ Flagged ──unassign──▶ Unassigned
       ▲                │
       └─────unmark─────┘

In dry-run mode every action logs what it would do and makes no API call.
Budget reservation is the caller's job; the executor only checks the
issue-level preconditions and performs the calls in order.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from unassign.config import RepositoryContext
    from unassign.github_client import GitHubClient
    from unassign.models import Issue


class ActionExecutor:
    """Performs (or, in dry-run, logs) mark, unassign and unmark."""

    def __init__(self, github: GitHubClient):
        self.github = github

    # ── Preconditions ────────────────────────────────────────────────────

    @staticmethod
    def can_mark(ctx: RepositoryContext, issue: Issue) -> bool:
        return (
            not issue.is_pull_request
            and issue.assignee is not None
            and not issue.has_label(ctx.label_name)
            and not issue.locked
            and issue.is_open
        )

    @staticmethod
    def can_unassign(ctx: RepositoryContext, issue: Issue) -> bool:
        return issue.is_open and not issue.locked and issue.has_label(ctx.label_name)

    @staticmethod
    def can_unmark(ctx: RepositoryContext, issue: Issue) -> bool:
        return not issue.locked and issue.has_label(ctx.label_name)

    # ── Actions ──────────────────────────────────────────────────────────

    async def mark(self, ctx: RepositoryContext, issue: Issue) -> bool:
        """Notify the assignee, then apply the sentinel label.

        If the comment fails the label is not added: the label means
        "assignee was notified".
        """
        if not self.can_mark(ctx, issue):
            ctx.logger.debug("%s not eligible for marking", ctx.ref(issue.number))
            return False

        if ctx.settings.dry_run:
            ctx.logger.info("%s would have been marked (dry-run)", ctx.ref(issue.number))
            return True

        ctx.logger.info("%s is being marked", ctx.ref(issue.number))
        body = ctx.settings.render_mark_comment(issue.assignee)
        await self.github.comment_on_issue(ctx.owner, ctx.repo, issue.number, body)
        await self.github.add_labels(ctx.owner, ctx.repo, issue.number, [ctx.label_name])
        return True

    async def unassign(self, ctx: RepositoryContext, issue: Issue) -> bool:
        """Remove the sentinel label and clear the assignees."""
        if not self.can_unassign(ctx, issue):
            ctx.logger.debug("%s not eligible for unassigning", ctx.ref(issue.number))
            return False

        if ctx.settings.dry_run:
            ctx.logger.info("%s would have been unassigned (dry-run)", ctx.ref(issue.number))
            return True

        ctx.logger.info("%s is being unassigned", ctx.ref(issue.number))
        if ctx.settings.unassign_comment:
            await self.github.comment_on_issue(
                ctx.owner, ctx.repo, issue.number, ctx.settings.unassign_comment
            )
        await self._remove_sentinel(ctx, issue)
        await self.github.edit_assignees(ctx.owner, ctx.repo, issue.number, [])
        return True

    async def unmark(self, ctx: RepositoryContext, issue: Issue) -> bool:
        """Remove the sentinel label after renewed activity. Not budgeted."""
        if not self.can_unmark(ctx, issue):
            ctx.logger.debug("%s not eligible for unmarking", ctx.ref(issue.number))
            return False

        if ctx.settings.dry_run:
            ctx.logger.info("%s would have been unmarked (dry-run)", ctx.ref(issue.number))
            return True

        ctx.logger.info("%s is being unmarked", ctx.ref(issue.number))
        if ctx.settings.unmark_comment:
            await self.github.comment_on_issue(
                ctx.owner, ctx.repo, issue.number, ctx.settings.unmark_comment
            )
        await self._remove_sentinel(ctx, issue)
        return True

    async def _remove_sentinel(self, ctx: RepositoryContext, issue: Issue) -> None:
        removed = await self.github.remove_label(ctx.owner, ctx.repo, issue.number, ctx.label_name)
        if not removed:
            ctx.logger.debug("%s: label already removed", ctx.ref(issue.number))
