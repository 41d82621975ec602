"""Webhook intake — FastAPI endpoint that feeds the event router.

A delivery is checked (rate limit, signature, installation), then triaged:
only issue activity from people and installation repository changes are
queued. Everything else, including the comments and labels this app writes
itself, is acknowledged with 200 and dropped here so it never occupies the
queue. GitHub gives up after 10 seconds, so nothing here waits on the
lifecycle.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Callable

from fastapi import APIRouter, Header, Request, Response

from unassign.event_router import ACTIVITY_EVENTS, INSTALLATION_EVENTS
from unassign.models import GitHubEvent

if TYPE_CHECKING:
    import asyncio

    from unassign.github_client import GitHubClient

logger = logging.getLogger(__name__)

router = APIRouter()

OwnEventCheck = Callable[[GitHubEvent], bool]


class _Intake:
    """State wired in by ``configure()`` at server startup."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue[GitHubEvent] | None = None
        self.github: GitHubClient | None = None
        self.installation_id: str | None = None
        self.queued_events: frozenset[str] = ACTIVITY_EVENTS | INSTALLATION_EVENTS
        self.is_own_event: OwnEventCheck = lambda event: event.is_bot
        self.max_per_window = 60
        self.window = 60.0
        self.recent: list[float] = []

    def allow_delivery(self) -> bool:
        """Sliding-window rate limit; False once the window is full."""
        if self.max_per_window <= 0:
            return True
        now = time.monotonic()
        self.recent = [t for t in self.recent if t > now - self.window]
        if len(self.recent) >= self.max_per_window:
            return False
        self.recent.append(now)
        return True

    def drop_reason(self, event: GitHubEvent) -> str | None:
        """Why an authenticated delivery will not be queued, or None."""
        if event.event_type not in self.queued_events:
            return "event type not handled"
        if event.event_type in ACTIVITY_EVENTS and self.is_own_event(event):
            return "own activity"
        return None


_intake = _Intake()


def configure(
    event_queue: asyncio.Queue[GitHubEvent],
    github_client: GitHubClient,
    *,
    expected_installation_id: str | None = None,
    rate_limit_max: int = 60,
    is_own_event: OwnEventCheck | None = None,
) -> None:
    """Wire the endpoint to the queue and the GitHub client.

    Args:
        event_queue: Queue consumed by the EventRouter.
        github_client: Used for signature verification.
        expected_installation_id: If set, reject webhooks from other installations.
        rate_limit_max: Max deliveries per minute (0 = unlimited).
        is_own_event: Predicate for activity the app caused itself; defaults
            to "sender is a bot". The server passes ``EventReactor.is_own_event``.
    """
    global _intake
    _intake = _Intake()
    _intake.queue = event_queue
    _intake.github = github_client
    _intake.installation_id = expected_installation_id
    _intake.max_per_window = rate_limit_max
    if is_own_event is not None:
        _intake.is_own_event = is_own_event


@router.post("/webhook")
async def handle_webhook(
    request: Request,
    x_github_event: str = Header(...),
    x_github_delivery: str = Header(...),
    x_hub_signature_256: str = Header(default=""),
) -> Response:
    """Authenticate a delivery and queue it if the lifecycle cares about it.

    Status codes: 429 rate limited, 401 bad signature, 403 foreign
    installation, 200 otherwise (queued or deliberately dropped).
    """
    if not _intake.allow_delivery():
        logger.warning("Webhook rate limit exceeded (delivery=%s)", x_github_delivery)
        return Response(status_code=429, content="Rate limit exceeded")

    body = await request.body()
    if _intake.github and not _intake.github.verify_webhook_signature(body, x_hub_signature_256):
        logger.warning("Invalid webhook signature for delivery %s", x_github_delivery)
        return Response(status_code=401, content="Invalid signature")

    payload = await request.json()

    if _intake.installation_id:
        installation = str((payload.get("installation") or {}).get("id", ""))
        if installation != _intake.installation_id:
            logger.warning(
                "Delivery %s from installation %r, expected %s",
                x_github_delivery,
                installation,
                _intake.installation_id,
            )
            return Response(status_code=403, content="Unknown installation")

    event = GitHubEvent(
        delivery_id=x_github_delivery,
        event_type=x_github_event,
        action=payload.get("action"),
        payload=payload,
    )

    reason = _intake.drop_reason(event)
    if reason:
        logger.debug("Dropping %s from %s (%s)", event.full_type, event.sender, reason)
        return Response(status_code=200, content="ignored")

    if _intake.queue is None:
        logger.error("Event queue not configured, dropping event %s", x_github_delivery)
        return Response(status_code=200, content="ok")

    logger.info("Queued %s on %s (delivery=%s)", event.full_type, event.repo_full_name, x_github_delivery)
    await _intake.queue.put(event)
    return Response(status_code=200, content="ok")
