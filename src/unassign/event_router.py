"""Event Router — consumes raw GitHub events and dispatches them.

Runs as an async consumer loop. Handles:
- Webhook deduplication (X-GitHub-Delivery UUID)
- Event type → handler dispatch

Issue activity goes to the event reactor, installation changes to the
sweep scheduler. Anything without a handler is dropped at debug level.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Awaitable, Callable

from unassign.models import GitHubEvent

logger = logging.getLogger(__name__)

# GitHub event types that count as activity on an issue
ACTIVITY_EVENTS: frozenset[str] = frozenset({"issues", "issue_comment"})

# Repositories added to or removed from the installation
INSTALLATION_EVENTS: frozenset[str] = frozenset({"installation_repositories"})

Handler = Callable[[GitHubEvent], Awaitable[object]]


class EventRouter:
    """Async consumer loop that routes GitHub events to registered handlers."""

    def __init__(self, event_queue: asyncio.Queue[GitHubEvent], *, dedup_size: int = 10_000):
        self.event_queue = event_queue
        self._handlers: dict[str, list[Handler]] = {}

        # Recently seen delivery IDs, oldest first
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._dedup_size = dedup_size

        self.last_event_time: str | None = None
        self._running = False
        self._task: asyncio.Task | None = None

    def on(self, event_type: str, handler: Handler) -> None:
        """Register a handler for a GitHub event type (e.g. ``"issues"``)."""
        self._handlers.setdefault(event_type, []).append(handler)

    async def start(self) -> None:
        """Start the event consumer loop."""
        self._running = True
        self._task = asyncio.create_task(self._consumer_loop(), name="event-router")
        logger.info("Event router started")

    async def stop(self) -> None:
        """Stop the event consumer loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Event router stopped")

    async def _consumer_loop(self) -> None:
        """Main consumer loop — dequeue and route events."""
        while self._running:
            try:
                event = await asyncio.wait_for(self.event_queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

            try:
                await self._route_event(event)
            except Exception:
                logger.exception("Error routing event %s", event.delivery_id)

    def _mark_seen(self, delivery_id: str) -> bool:
        """Record a delivery; return False if it was already seen."""
        if delivery_id in self._seen:
            return False
        self._seen[delivery_id] = None
        while len(self._seen) > self._dedup_size:
            self._seen.popitem(last=False)
        return True

    async def _route_event(self, event: GitHubEvent) -> None:
        """Route a single GitHub event."""
        self.last_event_time = datetime.now(timezone.utc).isoformat()

        if not self._mark_seen(event.delivery_id):
            logger.debug("Duplicate event filtered: %s", event.delivery_id)
            return

        handlers = self._handlers.get(event.event_type, [])
        if not handlers:
            logger.debug("Unhandled event type: %s", event.full_type)
            return

        logger.debug("Dispatching %s (delivery=%s)", event.full_type, event.delivery_id)
        for handler in handlers:
            try:
                await handler(event)
            except Exception:
                logger.exception("Handler error for %s", event.full_type)
