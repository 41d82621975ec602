"""Unassign Server — FastAPI application that ties all components together.

Startup sequence:
1. Load config (fatal if days-until-no-response is missing)
2. Start GitHub client
3. Build lifecycle engine + event reactor
4. Start Event Router (reactor + installation handlers)
5. Wire the webhook endpoint with the reactor's own-event filter
6. Start the sweep scheduler

Shutdown runs the same steps in reverse.
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from unassign.actions import ActionExecutor
from unassign.config import UnassignConfig, load_config
from unassign.engine import LifecycleEngine
from unassign.event_router import ACTIVITY_EVENTS, INSTALLATION_EVENTS, EventRouter
from unassign.github_client import GitHubClient
from unassign.models import GitHubEvent
from unassign.reactor import EventReactor
from unassign.scheduler import SweepScheduler
from unassign.webhook import configure as configure_webhook
from unassign.webhook import router as webhook_router

logger = logging.getLogger(__name__)


class UnassignServer:
    """Encapsulates all server components and lifecycle."""

    def __init__(self, config_dir: Path | None = None):
        env_dir = os.environ.get("UNASSIGN_CONFIG_DIR", "").strip()
        self.config_dir = config_dir or (Path(env_dir) if env_dir else Path.cwd())

        # Components (initialized in start())
        self.config: UnassignConfig | None = None
        self.github: GitHubClient | None = None
        self.engine: LifecycleEngine | None = None
        self.reactor: EventReactor | None = None
        self.event_queue: asyncio.Queue[GitHubEvent] | None = None
        self.router: EventRouter | None = None
        self.scheduler: SweepScheduler | None = None

    async def start(self) -> None:
        """Initialize all components and start background loops."""
        logger.info("Unassign server starting (config=%s)", self.config_dir)

        self.config = load_config(self.config_dir)
        self.config.sweep.require_days_until_no_response()

        self.github = GitHubClient(
            app_id=os.environ.get("GITHUB_APP_ID"),
            private_key=os.environ.get("GITHUB_PRIVATE_KEY"),
            webhook_secret=os.environ.get("GITHUB_WEBHOOK_SECRET"),
            installation_id=os.environ.get("GITHUB_INSTALLATION_ID"),
        )
        await self.github.start()

        executor = ActionExecutor(self.github)
        self.engine = LifecycleEngine(self.github, executor=executor)
        self.reactor = EventReactor(
            self.github,
            executor,
            self.config.sweep,
            bot_username=self.config.app.bot_username,
        )

        self.scheduler = SweepScheduler(self.config, self.github, self.engine)

        self.event_queue = asyncio.Queue(maxsize=1000)
        self.router = EventRouter(self.event_queue)
        for event_type in sorted(ACTIVITY_EVENTS):
            self.router.on(event_type, self.reactor.on_activity)
        for event_type in sorted(INSTALLATION_EVENTS):
            self.router.on(event_type, self.scheduler.on_installation_change)
        await self.router.start()

        configure_webhook(
            self.event_queue,
            self.github,
            expected_installation_id=os.environ.get("GITHUB_INSTALLATION_ID"),
            rate_limit_max=self.config.app.webhook_rate_limit,
            is_own_event=self.reactor.is_own_event,
        )

        await self.scheduler.start()

        logger.info(
            "Unassign server started (%s)",
            "performing actions" if self.config.sweep.perform else "dry-run",
        )

    async def stop(self) -> None:
        """Graceful shutdown — stop all components."""
        logger.info("Unassign server shutting down")

        if self.scheduler:
            await self.scheduler.stop()
        if self.router:
            await self.router.stop()
        if self.github:
            await self.github.close()

        logger.info("Unassign server stopped")


# ── FastAPI App ──────────────────────────────────────────────────────────────

_server = UnassignServer()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan — startup and shutdown."""
    await _server.start()
    yield
    await _server.stop()


def create_app(config_dir: Path | None = None) -> FastAPI:
    """Create the FastAPI application."""
    global _server
    _server = UnassignServer(config_dir)

    app = FastAPI(
        title="Unassign",
        version="0.1.0",
        description="Flags and unassigns GitHub issues whose assignee went quiet",
        lifespan=lifespan,
    )

    app.include_router(webhook_router)

    @app.get("/health")
    async def health():
        """Health check endpoint with the latest sweep per repository."""
        sweeps = {}
        if _server.scheduler:
            sweeps = {
                name: result.model_dump(mode="json")
                for name, result in _server.scheduler.last_results.items()
            }
        return {
            "status": "ok",
            "dry_run": _server.config.sweep.dry_run if _server.config else None,
            "repositories": _server.scheduler.repositories if _server.scheduler else [],
            "queue_depth": _server.event_queue.qsize() if _server.event_queue else 0,
            "last_event_time": _server.router.last_event_time if _server.router else None,
            "sweeps": sweeps,
        }

    return app
