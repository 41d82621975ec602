"""Event reactor — clears the no-response flag when people show up again.

Fed by the event router with ``issues.*`` and ``issue_comment.*`` events.
Each qualifying event triggers at most one unmark; unmarks are not counted
against any sweep budget.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from unassign.config import RepositoryContext
from unassign.models import Issue

if TYPE_CHECKING:
    from unassign.actions import ActionExecutor
    from unassign.config import SweepSettings
    from unassign.github_client import GitHubClient
    from unassign.models import GitHubEvent

logger = logging.getLogger(__name__)


class EventReactor:
    """Unmarks flagged issues on renewed activity."""

    def __init__(
        self,
        github: GitHubClient,
        executor: ActionExecutor,
        settings: SweepSettings,
        bot_username: str = "unassign[bot]",
    ):
        self.github = github
        self.executor = executor
        self.settings = settings
        self.bot_username = bot_username

    def is_own_event(self, event: GitHubEvent) -> bool:
        return event.is_bot or (event.sender or "").lower() == self.bot_username.lower()

    def was_just_labeled_by_same_event(self, event: GitHubEvent) -> bool:
        """True when this event is the sentinel label being applied."""
        return event.action == "labeled" and event.label_name == self.settings.label.name

    async def on_activity(self, event: GitHubEvent) -> bool:
        """Handle one inbound event. Returns True if the issue was unmarked."""
        if self.is_own_event(event):
            logger.debug("Ignoring bot event %s from %s", event.full_type, event.sender)
            return False

        raw = event.issue
        if raw is None or not event.repo_full_name:
            logger.debug("Event %s carries no issue, ignoring", event.full_type)
            return False

        ctx = RepositoryContext.for_repository(event.repo_full_name, self.settings)
        issue = Issue.from_github(raw)

        # Some payloads don't include labels
        if issue.labels is None:
            try:
                fresh = await self.github.get_issue(ctx.owner, ctx.repo, issue.number)
            except httpx.HTTPError:
                logger.warning("Issue %s not found, ignoring %s", ctx.ref(issue.number), event.full_type)
                return False
            issue = Issue.from_github(fresh)

        if self.was_just_labeled_by_same_event(event):
            logger.debug("%s was just marked by this event, not unmarking", ctx.ref(issue.number))
            return False

        if not issue.is_open or not issue.has_label(ctx.label_name):
            return False

        logger.info(
            "Activity on %s by %s (%s), unmarking", ctx.ref(issue.number), event.sender, event.full_type
        )
        return await self.executor.unmark(ctx, issue)
