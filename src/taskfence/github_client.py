"""GitHub API access for the prepare step.

Every call goes through one ``httpx.AsyncClient``. The credential is either the
token handed to the action or, for App setups, an installation token minted
from a short-lived RS256 JWT. Quota headers from each response feed a small
throttle so a busy repository does not push the step into secondary limits.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx
import jwt as pyjwt

from taskfence.config import GITHUB_API, GitHubSettings
from taskfence.errors import GraphQLQueryError, MalformedResponseError
from taskfence.models import TokenOwner
from taskfence.queries import VIEWER_QUERY

logger = logging.getLogger(__name__)

# Identity behind the default GITHUB_TOKEN of a workflow run.
GITHUB_ACTIONS_BOT = TokenOwner(login="github-actions[bot]", id=41898282, type="Bot")

INSTALLATION_TOKEN_TTL = 3500
JWT_TTL = 540
JWT_BACKDATE = 10


@dataclass
class QuotaState:
    """Last known REST/GraphQL quota, read from ``X-RateLimit-*`` headers."""

    remaining: int = 5000
    resets_at: float = 0.0
    reserve: int = 50
    warn_below: int = 100

    def observe(self, headers: httpx.Headers) -> None:
        if left := headers.get("X-RateLimit-Remaining"):
            self.remaining = int(left)
        if reset := headers.get("X-RateLimit-Reset"):
            self.resets_at = float(reset)

    @property
    def tight(self) -> bool:
        return self.remaining <= self.reserve

    @property
    def low(self) -> bool:
        return self.remaining < self.warn_below

    def seconds_until_reset(self) -> float:
        return max(0.0, self.resets_at - time.time()) + 1


class GitHubClient:
    """Async GitHub API client."""

    def __init__(
        self,
        *,
        token: str | None = None,
        api_url: str = GITHUB_API,
        app_id: str | None = None,
        private_key: str | None = None,
        installation_id: str | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.app_id = app_id
        self.private_key = private_key
        self.installation_id = installation_id

        self._token: str | None = token or None
        self._token_valid_until: float = float("inf") if token else 0
        self.quota = QuotaState()
        self._throttle: asyncio.Lock | None = None
        self._http: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: GitHubSettings) -> GitHubClient:
        return cls(
            token=settings.token,
            api_url=settings.api_url,
            app_id=settings.app_id,
            private_key=settings.private_key,
            installation_id=settings.installation_id,
        )

    async def start(self) -> None:
        self._http = httpx.AsyncClient(
            base_url=self.api_url,
            headers={
                "Accept": "application/vnd.github+json",
                "User-Agent": "taskfence/0.1.0",
            },
            timeout=30.0,
        )
        self._throttle = asyncio.Lock()
        logger.info("GitHub client started (%s)", self.api_url)

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._http is None:
            raise RuntimeError("GitHub client not started")
        return self._http

    # ── Credentials ──────────────────────────────────────────────────────

    def _has_app_credentials(self) -> bool:
        return bool(self.app_id and self.private_key and self.installation_id)

    def _generate_jwt(self) -> str:
        issued = int(time.time()) - JWT_BACKDATE
        claims = {"iss": self.app_id, "iat": issued, "exp": issued + JWT_BACKDATE + JWT_TTL}
        return pyjwt.encode(claims, self.private_key, algorithm="RS256")

    async def _exchange_installation_token(self) -> str:
        url = f"/app/installations/{self.installation_id}/access_tokens"
        resp = await self.client.post(url, headers={"Authorization": f"Bearer {self._generate_jwt()}"})
        resp.raise_for_status()
        self._token_valid_until = time.time() + INSTALLATION_TOKEN_TTL
        logger.info("Minted installation token for installation %s", self.installation_id)
        return resp.json()["token"]

    async def _access_token(self) -> str:
        # Refresh a minute before expiry
        if self._token is not None and time.time() < self._token_valid_until - 60:
            return self._token
        if not self._has_app_credentials():
            raise RuntimeError(
                "GitHub credentials not configured. Set GITHUB_TOKEN, or "
                "GITHUB_APP_ID, GITHUB_PRIVATE_KEY and GITHUB_INSTALLATION_ID"
            )
        self._token = await self._exchange_installation_token()
        return self._token

    # ── Transport ────────────────────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send an authenticated request, queueing behind the throttle when quota is tight."""
        if self._throttle is None or not self.quota.tight:
            return await self._send(method, path, **kwargs)
        async with self._throttle:
            if self.quota.remaining <= 0:
                delay = self.quota.seconds_until_reset()
                logger.warning("GitHub quota spent, pausing %.1fs", delay)
                await asyncio.sleep(delay)
                self.quota.remaining = self.quota.warn_below
            return await self._send(method, path, **kwargs)

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        extra = kwargs.pop("headers", None) or {}
        headers = {"Authorization": f"token {await self._access_token()}", **extra}
        resp = await self.client.request(method, path, headers=headers, **kwargs)
        self.quota.observe(resp.headers)
        if self.quota.low:
            logger.warning(
                "GitHub quota at %d (reset %s)",
                self.quota.remaining,
                datetime.fromtimestamp(self.quota.resets_at, tz=timezone.utc).isoformat(),
            )
        resp.raise_for_status()
        return resp

    # ── GraphQL ──────────────────────────────────────────────────────────

    async def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict:
        """Run a GraphQL document and return its ``data`` object.

        Raises:
            httpx.HTTPStatusError: Non-2xx response.
            GraphQLQueryError: The response carried an ``errors`` array.
            MalformedResponseError: The body was not a JSON object.
        """
        resp = await self._request(
            "POST", "/graphql", json={"query": query, "variables": variables or {}}
        )
        try:
            body = resp.json()
        except ValueError as e:
            raise MalformedResponseError(str(resp.request.url), type(e).__name__) from e
        if not isinstance(body, dict):
            raise MalformedResponseError(
                str(resp.request.url), f"expected an object, got {type(body).__name__}"
            )
        if body.get("errors"):
            raise GraphQLQueryError(body["errors"])
        return body.get("data") or {}

    async def get_viewer(self) -> TokenOwner:
        viewer = (await self.graphql(VIEWER_QUERY))["viewer"]
        login = viewer["login"]
        kind = "Bot" if login.endswith("[bot]") else "User"
        return TokenOwner(login=login, id=viewer["databaseId"], type=kind)

    # ── Identity ─────────────────────────────────────────────────────────

    async def get_authenticated_user(self) -> TokenOwner:
        user = (await self._request("GET", "/user")).json()
        return TokenOwner(login=user["login"], id=user["id"], type=user.get("type", "User"))

    async def resolve_token_owner(self, is_default_token: bool) -> TokenOwner:
        """Identify who the configured token acts as.

        The default workflow token cannot call ``/user``; it always acts as
        ``github-actions[bot]``. App installation tokens get a 403 from
        ``/user`` and are resolved through the GraphQL viewer instead.
        """
        if is_default_token:
            return GITHUB_ACTIONS_BOT
        try:
            return await self.get_authenticated_user()
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code != 403:
                raise
            logger.info("GET /user forbidden for this token, falling back to GraphQL viewer")
            return await self.get_viewer()

    # ── Pull requests ────────────────────────────────────────────────────

    async def get_pull_request(self, owner: str, repo: str, number: int) -> dict:
        return (await self._request("GET", f"/repos/{owner}/{repo}/pulls/{number}")).json()

    async def list_pull_requests(
        self, owner: str, repo: str, *, state: str = "open", base: str | None = None
    ) -> list[dict]:
        params: dict[str, Any] = {"state": state, "per_page": 100}
        if base:
            params["base"] = base
        return (await self._request("GET", f"/repos/{owner}/{repo}/pulls", params=params)).json()

    # ── Actions ──────────────────────────────────────────────────────────

    async def create_workflow_dispatch(
        self,
        owner: str,
        repo: str,
        workflow_file: str,
        ref: str,
        inputs: dict[str, str] | None = None,
    ) -> None:
        """Trigger ``workflow_dispatch`` for a workflow file on ``ref``."""
        await self._request(
            "POST",
            f"/repos/{owner}/{repo}/actions/workflows/{workflow_file}/dispatches",
            json={"ref": ref, "inputs": inputs or {}},
        )
        logger.info("Dispatched workflow %s on %s/%s@%s", workflow_file, owner, repo, ref)
