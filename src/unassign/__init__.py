"""Unassign — no-response lifecycle for GitHub issue assignees.

An assigned issue that goes quiet is flagged with a sentinel label and its
assignee is pinged; after further quiet the assignee is cleared. Any new
activity on a flagged issue removes the flag.

Key exports:
    LifecycleEngine — One mark-and-sweep pass per repository
    EventReactor — Unmarks flagged issues on new activity
    RepositoryContext — Immutable per-sweep repository + policy
    RunBudget — Per-sweep action ceiling
"""

from unassign.budget import MAX_ACTIONS_PER_RUN, RunBudget
from unassign.config import ConfigurationError, RepositoryContext, SweepSettings, load_config
from unassign.engine import LifecycleEngine, SweepResult
from unassign.models import GitHubEvent, Issue, IssueKind
from unassign.reactor import EventReactor

__all__ = [
    "MAX_ACTIONS_PER_RUN",
    "ConfigurationError",
    "EventReactor",
    "GitHubEvent",
    "Issue",
    "IssueKind",
    "LifecycleEngine",
    "RepositoryContext",
    "RunBudget",
    "SweepResult",
    "SweepSettings",
    "load_config",
]
