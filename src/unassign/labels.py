"""Sentinel label administration."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from unassign.config import RepositoryContext
    from unassign.github_client import GitHubClient


class SentinelLabelAdmin:
    """Makes sure the no-response label exists before anything is marked."""

    def __init__(self, github: GitHubClient):
        self.github = github

    async def ensure_exists(self, ctx: RepositoryContext) -> bool:
        """Create the sentinel label if missing.

        Returns True if it had to be created. Errors other than "not found"
        propagate: without knowing whether the label exists the sweep cannot
        mark safely.
        """
        label = ctx.settings.label
        if await self.github.get_label(ctx.owner, ctx.repo, label.name) is not None:
            return False

        ctx.logger.info("Creating label %r in %s", label.name, ctx.full_name)
        await self.github.create_label(ctx.owner, ctx.repo, label.name, label.color)
        return True
