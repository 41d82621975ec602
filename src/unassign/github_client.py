"""GitHub API client for Unassign.

Handles GitHub App authentication (JWT → installation token),
rate limit tracking, and the async issue/label operations the
lifecycle engine needs, via httpx.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import time
from datetime import datetime, timezone
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"


class GitHubClient:
    """Async GitHub API client with App authentication."""

    def __init__(
        self,
        *,
        app_id: str | None = None,
        private_key: str | None = None,
        webhook_secret: str | None = None,
        installation_id: str | None = None,
    ):
        self.app_id = app_id
        self.private_key = private_key
        self.webhook_secret = webhook_secret
        self.installation_id = installation_id

        # Installation access token (cached, 1-hour TTL)
        self._token: str | None = None
        self._token_expires_at: float = 0

        # Rate limit tracking
        self._rate_limit_remaining: int = 5000
        self._rate_limit_reset: float = 0
        self._rate_limit_reserve: int = 50
        self._rate_limit_lock: asyncio.Lock | None = None

        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Initialize HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=GITHUB_API,
            headers={
                "Accept": "application/vnd.github.v3+json",
                "User-Agent": "Unassign/0.1.0",
            },
            timeout=30.0,
        )
        self._rate_limit_lock = asyncio.Lock()
        logger.info("GitHub client started")

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("GitHub client not started")
        return self._client

    # ── Authentication ───────────────────────────────────────────────────

    async def _ensure_token(self) -> str:
        """Get a valid installation access token, refreshing if expired.

        GitHub App auth flow:
        1. Generate JWT from App ID + private key
        2. Exchange JWT for installation access token
        3. Token valid for 1 hour (5000 req/hr)

        Retries on failure with exponential backoff, GitHub may throttle
        rapid JWT exchanges.
        """
        if self._token and time.time() < self._token_expires_at - 60:
            return self._token

        if not self.app_id or not self.private_key or not self.installation_id:
            raise RuntimeError(
                "GitHub App credentials not configured. "
                "Set GITHUB_APP_ID, GITHUB_PRIVATE_KEY, GITHUB_INSTALLATION_ID"
            )

        last_error: httpx.Response | None = None
        max_retries = 5
        for attempt in range(max_retries):
            jwt = self._generate_jwt()
            resp = await self.client.post(
                f"/app/installations/{self.installation_id}/access_tokens",
                headers={"Authorization": f"Bearer {jwt}"},
            )
            if resp.status_code == 201:
                data = resp.json()
                self._token = data["token"]
                self._token_expires_at = time.time() + 3500  # ~58 min (conservative)
                logger.info("Refreshed GitHub installation token (expires in ~58m)")
                return self._token

            last_error = resp
            wait = min(2**attempt, 16)  # 1s, 2s, 4s, 8s, 16s
            logger.warning(
                "Token exchange attempt %d/%d failed (%d): %s, retrying in %ds",
                attempt + 1,
                max_retries,
                resp.status_code,
                resp.text[:100],
                wait,
            )
            await asyncio.sleep(wait)

        # All retries failed
        last_error.raise_for_status()
        raise RuntimeError("GitHub token exchange failed")

    def _generate_jwt(self) -> str:
        """Generate JWT for GitHub App authentication (RS256)."""
        import jwt as pyjwt

        now = int(time.time())
        payload = {
            "iat": now - 10,  # Issued 10 seconds in the past for clock skew
            "exp": now + 540,  # Expires in 9 minutes (keep under 10-min GitHub limit)
            "iss": self.app_id,
        }
        return pyjwt.encode(payload, self.private_key, algorithm="RS256")

    async def _auth_headers(self) -> dict[str, str]:
        """Get authorization headers with current token."""
        token = await self._ensure_token()
        return {"Authorization": f"token {token}"}

    # ── Webhook Verification ─────────────────────────────────────────────

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        """Verify HMAC-SHA256 webhook signature.

        Args:
            payload: Raw request body bytes.
            signature: X-Hub-Signature-256 header value.
        """
        if not self.webhook_secret:
            logger.warning("No webhook secret configured, skipping signature verification")
            return True

        expected = (
            "sha256="
            + hmac.new(
                self.webhook_secret.encode(),
                payload,
                hashlib.sha256,
            ).hexdigest()
        )

        return hmac.compare_digest(expected, signature)

    # ── Rate Limit Tracking ──────────────────────────────────────────────

    def _update_rate_limit(self, response: httpx.Response) -> None:
        """Track rate limits from response headers."""
        remaining = response.headers.get("X-RateLimit-Remaining")
        reset = response.headers.get("X-RateLimit-Reset")
        if remaining:
            self._rate_limit_remaining = int(remaining)
        if reset:
            self._rate_limit_reset = float(reset)

        if self._rate_limit_remaining < 100:
            logger.warning(
                "GitHub API rate limit low: %d remaining (resets at %s)",
                self._rate_limit_remaining,
                datetime.fromtimestamp(self._rate_limit_reset, tz=timezone.utc).isoformat(),
            )

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Make an authenticated API request with rate limit throttling.

        When remaining quota drops below the reserve threshold, requests
        are serialized through a lock. If quota is fully exhausted, we
        sleep until the reset window.
        """
        if self._rate_limit_lock and self._rate_limit_remaining <= self._rate_limit_reserve:
            async with self._rate_limit_lock:
                await self._wait_for_rate_limit_reset()
                return await self._do_request(method, path, **kwargs)
        return await self._do_request(method, path, **kwargs)

    async def _do_request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Execute an authenticated request and track rate limits."""
        headers = await self._auth_headers()
        headers.update(kwargs.pop("headers", {}))
        resp = await self.client.request(method, path, headers=headers, **kwargs)
        self._update_rate_limit(resp)
        resp.raise_for_status()
        return resp

    async def _wait_for_rate_limit_reset(self) -> None:
        """Sleep until the rate limit reset window if quota is exhausted."""
        if self._rate_limit_remaining > 0:
            return
        wait = max(0, self._rate_limit_reset - time.time()) + 1  # +1s buffer
        logger.warning("Rate limit exhausted, sleeping %.1fs until reset", wait)
        await asyncio.sleep(wait)
        self._rate_limit_remaining = 100  # optimistic reset

    # ── Search ───────────────────────────────────────────────────────────

    async def search_issues(
        self,
        query: str,
        *,
        sort: str = "updated",
        order: str = "asc",
        per_page: int = 30,
    ) -> list[dict]:
        """Run an issue search and return the first page of items.

        Args:
            query: GitHub search syntax, e.g. ``"repo:o/r is:open label:bug"``.
            sort: ``"updated"``, ``"created"`` or ``"comments"``.
            order: ``"asc"`` or ``"desc"``.
        """
        resp = await self._request(
            "GET",
            "/search/issues",
            params={"q": query, "sort": sort, "order": order, "per_page": per_page},
        )
        return resp.json().get("items", [])

    # ── Issue Operations ─────────────────────────────────────────────────

    async def get_issue(self, owner: str, repo: str, issue_number: int) -> dict:
        resp = await self._request("GET", f"/repos/{owner}/{repo}/issues/{issue_number}")
        return resp.json()

    async def comment_on_issue(self, owner: str, repo: str, issue_number: int, body: str) -> dict:
        resp = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{issue_number}/comments",
            json={"body": body},
        )
        return resp.json()

    async def edit_assignees(
        self, owner: str, repo: str, issue_number: int, assignees: list[str]
    ) -> dict:
        """Replace the issue's assignee list (``[]`` clears it)."""
        resp = await self._request(
            "PATCH",
            f"/repos/{owner}/{repo}/issues/{issue_number}",
            json={"assignees": assignees},
        )
        return resp.json()

    # ── Label Operations ─────────────────────────────────────────────────

    async def get_label(self, owner: str, repo: str, name: str) -> dict | None:
        """Fetch a repository label.

        Returns:
            The label dict, or None if the label does not exist.
        """
        try:
            resp = await self._request("GET", f"/repos/{owner}/{repo}/labels/{quote(name, safe='')}")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            raise
        return resp.json()

    async def create_label(self, owner: str, repo: str, name: str, color: str) -> dict:
        """Create a repository label (idempotent)."""
        try:
            resp = await self._request(
                "POST",
                f"/repos/{owner}/{repo}/labels",
                json={"name": name, "color": color},
            )
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 422:  # Already exists
                logger.debug("Label %r already exists in %s/%s", name, owner, repo)
                return {"name": name, "color": color}
            raise
        return resp.json()

    async def add_labels(self, owner: str, repo: str, issue_number: int, labels: list[str]) -> None:
        await self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{issue_number}/labels",
            json={"labels": labels},
        )

    async def remove_label(self, owner: str, repo: str, issue_number: int, name: str) -> bool:
        """Remove a label from an issue.

        Returns:
            True if removed, False if the label was not on the issue.
        """
        try:
            await self._request(
                "DELETE",
                f"/repos/{owner}/{repo}/issues/{issue_number}/labels/{quote(name, safe='')}",
            )
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                logger.debug(
                    "Label %r not on %s/%s#%d (already removed?)", name, owner, repo, issue_number
                )
                return False
            raise
        return True

    # ── Installation ─────────────────────────────────────────────────────

    async def list_installation_repositories(self, *, per_page: int = 100) -> list[dict]:
        """List every repository the installation can access (all pages)."""
        repositories: list[dict] = []
        page = 1
        while True:
            resp = await self._request(
                "GET",
                "/installation/repositories",
                params={"per_page": per_page, "page": page},
            )
            batch = resp.json().get("repositories", [])
            repositories.extend(batch)
            if len(batch) < per_page:
                return repositories
            page += 1
