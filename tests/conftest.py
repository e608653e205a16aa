"""Shared fixtures for taskfence tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from taskfence.config import ActionInputs
from taskfence.models import Repository, TokenOwner

TRIGGER_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
BOT = TokenOwner(login="github-actions[bot]", id=41898282, type="Bot")
REPO = Repository(owner="acme", name="widgets", default_branch="main")


def iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


@pytest.fixture
def trigger_time():
    return TRIGGER_TIME


@pytest.fixture
def make_context():
    """Build any context variant with sensible common fields."""

    def _make(cls, *, inputs: ActionInputs | None = None, **kwargs):
        kwargs.setdefault("token_owner", BOT)
        kwargs.setdefault("repository", REPO)
        kwargs.setdefault("actor", "octocat")
        kwargs.setdefault("run_id", "1")
        kwargs.setdefault("workflow", "taskfence")
        return cls(inputs=inputs or ActionInputs(), **kwargs)

    return _make


@pytest.fixture
def issue_node():
    """GraphQL ``issue`` node as returned by ISSUE_QUERY, keyed by trigger time."""

    def _make(
        *,
        number: int = 7,
        body: str = "Please fix the parser",
        last_edited_at: datetime | None = None,
        timeline: list[dict] | None = None,
    ) -> dict:
        return {
            "number": number,
            "title": "Parser crashes",
            "body": body,
            "bodyHTML": f"<p>{body}</p>",
            "state": "OPEN",
            "url": f"https://github.com/acme/widgets/issues/{number}",
            "author": {"login": "alice"},
            "createdAt": iso(TRIGGER_TIME - timedelta(days=1)),
            "updatedAt": iso(last_edited_at or TRIGGER_TIME - timedelta(hours=1)),
            "lastEditedAt": iso(last_edited_at) if last_edited_at else None,
            "timelineItems": {"nodes": timeline or []},
        }

    return _make


@pytest.fixture
def comment_node():
    def _make(
        body: str,
        *,
        created_at: datetime,
        last_edited_at: datetime | None = None,
        login: str = "bob",
        node_id: str = "IC_1",
    ) -> dict:
        return {
            "__typename": "IssueComment",
            "id": node_id,
            "databaseId": 100,
            "body": body,
            "bodyHTML": f"<p>{body}</p>",
            "author": {"login": login},
            "createdAt": iso(created_at),
            "lastEditedAt": iso(last_edited_at) if last_edited_at else None,
            "url": "",
        }

    return _make
