"""Tests for taskfence data models."""

import json

import pytest
from pydantic import TypeAdapter, ValidationError

from taskfence.models import (
    CrossReferencedEvent,
    ExecutionContext,
    IssueComment,
    IssueData,
    MergeTask,
    ReferencedEvent,
    TaskPayload,
    TrackerAttachment,
)


class TestTaskPayload:
    def test_task(self):
        assert json.loads(TaskPayload(task="do it").to_json()) == {"task": "do it"}

    def test_merge_task_uses_camel_case(self):
        payload = TaskPayload(merge_task=MergeTask(branch="main"))
        assert json.loads(payload.to_json()) == {"mergeTask": {"branch": "main"}}


class TestGraphQLProjections:
    def test_timeline_discriminates_on_typename(self):
        issue = IssueData.model_validate(
            {
                "number": 1,
                "createdAt": "2024-01-01T00:00:00Z",
                "updatedAt": "2024-01-01T00:00:00Z",
                "timelineItems": {
                    "nodes": [
                        {"__typename": "IssueComment", "id": "IC_1", "createdAt": "2024-01-01T00:00:00Z"},
                        {
                            "__typename": "CrossReferencedEvent",
                            "createdAt": "2024-01-01T00:00:00Z",
                            "source": {"__typename": "PullRequest", "number": 3},
                        },
                        {
                            "__typename": "ReferencedEvent",
                            "createdAt": "2024-01-01T00:00:00Z",
                            "commit": {"oid": "abc"},
                        },
                    ]
                },
            }
        )

        kinds = [type(n) for n in issue.timeline_items.nodes]
        assert kinds == [IssueComment, CrossReferencedEvent, ReferencedEvent]
        assert issue.timeline_items.nodes[1].source.typename == "PullRequest"

    def test_null_author_is_allowed(self):
        comment = IssueComment.model_validate(
            {"id": "IC_1", "author": None, "createdAt": "2024-01-01T00:00:00Z"}
        )
        assert comment.author is None


class TestTrackerAttachment:
    @pytest.mark.parametrize("key", ["content", "contentUrl", "content_url"])
    def test_content_url_aliases(self, key):
        attachment = TrackerAttachment.model_validate({"filename": "a.png", key: "https://jira/a"})
        assert attachment.content_url == "https://jira/a"


class TestExecutionContext:
    def test_discriminated_on_event_name(self):
        adapter = TypeAdapter(ExecutionContext)
        ctx = adapter.validate_python(
            {
                "event_name": "push",
                "token_owner": {"login": "x", "id": 1},
                "repository": {"owner": "acme", "name": "widgets"},
                "ref": "refs/heads/main",
            }
        )
        assert ctx.ref == "refs/heads/main"

    def test_unknown_event_rejected(self):
        with pytest.raises(ValidationError):
            TypeAdapter(ExecutionContext).validate_python(
                {
                    "event_name": "deployment",
                    "token_owner": {"login": "x", "id": 1},
                    "repository": {"owner": "acme", "name": "widgets"},
                }
            )
