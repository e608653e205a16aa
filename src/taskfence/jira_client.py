"""Jira Cloud client used for tracker-dispatched runs.

Constructed explicitly from :class:`~taskfence.config.JiraSettings` and
passed to whatever needs it. Status transitions and comments are
best-effort: failures are logged and reported as ``False`` so a Jira outage
never fails the run. Attachment downloads raise, and the caller decides.
"""

from __future__ import annotations

import logging

import httpx

from taskfence.config import JiraSettings

logger = logging.getLogger(__name__)


class JiraClient:
    def __init__(self, settings: JiraSettings):
        self.settings = settings
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self.settings.base_url.rstrip("/"),
            auth=httpx.BasicAuth(self.settings.email, self.settings.api_token),
            headers={"Accept": "application/json"},
            timeout=30.0,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Jira client not started")
        return self._client

    async def transition_issue(self, issue_key: str, transition_id: str) -> bool:
        logger.info("Transitioning Jira issue %s with transition %s", issue_key, transition_id)
        try:
            resp = await self.client.post(
                f"/rest/api/3/issue/{issue_key}/transitions",
                json={"transition": {"id": transition_id}},
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Error transitioning Jira issue %s: %s", issue_key, e)
            return False
        return True

    async def add_comment(self, issue_key: str, comment: str) -> bool:
        logger.info("Adding comment to Jira issue %s", issue_key)
        try:
            resp = await self.client.post(
                f"/rest/api/2/issue/{issue_key}/comment", json={"body": comment}
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Error adding comment to Jira issue %s: %s", issue_key, e)
            return False
        return True

    async def start_issue(self, issue_key: str) -> bool:
        """Move the issue to "In Progress"."""
        return await self.transition_issue(issue_key, self.settings.transition_in_progress)

    async def move_issue_to_review(self, issue_key: str) -> bool:
        """Move the issue to "In Review"."""
        return await self.transition_issue(issue_key, self.settings.transition_in_review)

    async def download_attachment(self, url: str) -> bytes:
        """Fetch attachment bytes from an absolute content URL.

        Raises:
            httpx.HTTPStatusError: Non-2xx response.
        """
        logger.info("Downloading Jira attachment from %s", url)
        resp = await self.client.get(url, follow_redirects=True)
        resp.raise_for_status()
        return resp.content
