"""Contract tests for JiraClient."""

from __future__ import annotations

import base64
import json

import httpx
import pytest
import pytest_asyncio
import respx

from taskfence.config import JiraSettings
from taskfence.jira_client import JiraClient

BASE = "https://acme.atlassian.net"


@pytest_asyncio.fixture
async def jira():
    client = JiraClient(JiraSettings(base_url=f"{BASE}/", email="bot@acme.io", api_token="secret"))
    await client.start()
    yield client
    await client.close()


class TestTransitions:
    @respx.mock
    async def test_start_issue(self, jira):
        route = respx.post(f"{BASE}/rest/api/3/issue/PROJ-1/transitions").mock(
            return_value=httpx.Response(204)
        )

        assert await jira.start_issue("PROJ-1") is True

        request = route.calls[0].request
        assert json.loads(request.content) == {"transition": {"id": "21"}}
        expected = base64.b64encode(b"bot@acme.io:secret").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"

    @respx.mock
    async def test_move_to_review(self, jira):
        route = respx.post(f"{BASE}/rest/api/3/issue/PROJ-1/transitions").mock(
            return_value=httpx.Response(204)
        )

        await jira.move_issue_to_review("PROJ-1")

        assert json.loads(route.calls[0].request.content) == {"transition": {"id": "31"}}

    @respx.mock
    async def test_failed_transition_returns_false(self, jira):
        respx.post(f"{BASE}/rest/api/3/issue/PROJ-1/transitions").mock(
            return_value=httpx.Response(400)
        )

        assert await jira.start_issue("PROJ-1") is False


class TestComments:
    @respx.mock
    async def test_add_comment(self, jira):
        route = respx.post(f"{BASE}/rest/api/2/issue/PROJ-1/comment").mock(
            return_value=httpx.Response(201, json={"id": "1"})
        )

        assert await jira.add_comment("PROJ-1", "Done") is True
        assert json.loads(route.calls[0].request.content) == {"body": "Done"}

    @respx.mock
    async def test_network_error_returns_false(self, jira):
        respx.post(f"{BASE}/rest/api/2/issue/PROJ-1/comment").mock(
            side_effect=httpx.ConnectError("down")
        )

        assert await jira.add_comment("PROJ-1", "Done") is False


class TestAttachments:
    @respx.mock
    async def test_download(self, jira):
        respx.get(f"{BASE}/secure/attachment/1/a.png").mock(
            return_value=httpx.Response(200, content=b"img")
        )

        assert await jira.download_attachment(f"{BASE}/secure/attachment/1/a.png") == b"img"

    @respx.mock
    async def test_download_failure_raises(self, jira):
        respx.get(f"{BASE}/secure/attachment/1/a.png").mock(return_value=httpx.Response(404))

        with pytest.raises(httpx.HTTPStatusError):
            await jira.download_attachment(f"{BASE}/secure/attachment/1/a.png")

    async def test_unstarted_client_raises(self):
        with pytest.raises(RuntimeError):
            JiraClient(JiraSettings(base_url=BASE, email="e", api_token="t")).client
