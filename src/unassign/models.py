"""Core data models for Unassign."""

from __future__ import annotations

import enum
from datetime import datetime

from pydantic import BaseModel, Field


# ── Issue Kind ───────────────────────────────────────────────────────────────


class IssueKind(str, enum.Enum):
    """The two item kinds GitHub serves from the issues API."""

    ISSUE = "issues"
    PULL_REQUEST = "pulls"

    @classmethod
    def parse(cls, value: IssueKind | str) -> IssueKind:
        """Resolve a kind tag, raising on anything unrecognized."""
        if isinstance(value, IssueKind):
            return value
        tag = str(value).strip().lower()
        if tag in ("issues", "issue"):
            return cls.ISSUE
        if tag in ("pulls", "pull", "pull_request"):
            return cls.PULL_REQUEST
        raise ValueError(f"Unknown type: {value!r}. Valid types are 'pulls' and 'issues'")

    @property
    def search_qualifier(self) -> str:
        return "is:pr" if self is IssueKind.PULL_REQUEST else "is:issue"


# ── Issue ────────────────────────────────────────────────────────────────────


class Issue(BaseModel):
    """Read-only snapshot of a GitHub issue or pull request."""

    number: int
    state: str = "open"
    locked: bool = False
    assignee: str | None = Field(default=None, description="Login of the primary assignee")
    assignees: list[str] = Field(default_factory=list)
    labels: list[str] | None = Field(
        default=None, description="Label names; None when the payload omitted them"
    )
    updated_at: datetime | None = Field(default=None, description="Last activity timestamp")
    kind: IssueKind = IssueKind.ISSUE

    @classmethod
    def from_github(cls, data: dict) -> Issue:
        """Build from a REST/search/webhook issue or pull request object."""
        assignee = (data.get("assignee") or {}).get("login")
        assignees = [a.get("login", "") for a in data.get("assignees") or [] if a]
        if assignee is None and assignees:
            assignee = assignees[0]

        raw_labels = data.get("labels")
        labels = None
        if raw_labels is not None:
            labels = [lbl["name"] if isinstance(lbl, dict) else str(lbl) for lbl in raw_labels]

        # Search results and issue_comment payloads mark pull requests this way
        is_pr = "pull_request" in data

        return cls(
            number=data["number"],
            state=data.get("state", "open"),
            locked=bool(data.get("locked", False)),
            assignee=assignee,
            assignees=assignees,
            labels=labels,
            updated_at=data.get("updated_at"),
            kind=IssueKind.PULL_REQUEST if is_pr else IssueKind.ISSUE,
        )

    @property
    def is_open(self) -> bool:
        return self.state == "open"

    @property
    def is_pull_request(self) -> bool:
        return self.kind is IssueKind.PULL_REQUEST

    def has_label(self, name: str) -> bool:
        return name in (self.labels or [])


# ── GitHub Events ────────────────────────────────────────────────────────────


class GitHubEvent(BaseModel):
    """Raw GitHub webhook event."""

    delivery_id: str = Field(description="X-GitHub-Delivery UUID")
    event_type: str = Field(description="X-GitHub-Event header value")
    action: str | None = Field(default=None, description="Event action (e.g. 'labeled', 'created')")
    payload: dict = Field(default_factory=dict, description="Full webhook payload")

    @property
    def full_type(self) -> str:
        """e.g. 'issues.labeled', 'issue_comment.created'."""
        if self.action:
            return f"{self.event_type}.{self.action}"
        return self.event_type

    @property
    def sender(self) -> str | None:
        """GitHub username of the event sender."""
        sender = self.payload.get("sender") or {}
        return sender.get("login")

    @property
    def is_bot(self) -> bool:
        """Whether the event was triggered by a bot."""
        sender = self.payload.get("sender") or {}
        return sender.get("type") == "Bot"

    @property
    def repo_full_name(self) -> str | None:
        """owner/repo from the event payload."""
        repo = self.payload.get("repository") or {}
        return repo.get("full_name")

    @property
    def issue(self) -> dict | None:
        return self.payload.get("issue")

    @property
    def label_name(self) -> str | None:
        """Name of the label for labeled/unlabeled actions."""
        label = self.payload.get("label") or {}
        return label.get("name")
