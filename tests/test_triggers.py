"""Tests for trigger detection and secondary intents."""

from __future__ import annotations

import pytest

from taskfence.config import ActionInputs
from taskfence.models import (
    CommentPayload,
    IssueCommentContext,
    IssuePayload,
    IssuesContext,
    PullRequestContext,
    PullRequestPayload,
    PullRequestReviewContext,
    ReviewPayload,
    UserRef,
)
from taskfence.triggers import (
    extract_minor_fix_request,
    has_code_review_request,
    has_fix_ci_request,
    has_minor_fix_request,
    has_resolve_conflicts_request,
    phrase_matches,
    should_run,
)


class TestPhraseMatches:
    @pytest.mark.parametrize(
        "text",
        [
            "@taskfence-agent, please help",
            "@taskfence-agent please help",
            "hey @taskfence-agent",
            "@taskfence-agent",
            "@taskfence-agent.",
            "@taskfence-agent!",
            "@taskfence-agent?",
            "@taskfence-agent;",
            "@taskfence-agent:",
            "line one\n@taskfence-agent\nline three",
            "@TASKFENCE-AGENT please",
        ],
    )
    def test_whole_token_matches(self, text):
        assert phrase_matches("@taskfence-agent", text)

    @pytest.mark.parametrize(
        "text",
        [
            "email@taskfence-agent.io",
            "@taskfence-agents",
            "x@taskfence-agent",
            "@taskfence-agent-bot",
            "(@taskfence-agent)",
            "",
        ],
    )
    def test_partial_tokens_do_not_match(self, text):
        assert not phrase_matches("@taskfence-agent", text)

    def test_empty_phrase_never_matches(self):
        assert not phrase_matches("", "anything")

    def test_none_text(self):
        assert not phrase_matches("@bot", None)

    def test_regex_metacharacters_are_escaped(self):
        assert phrase_matches("@bot.v2", "ping @bot.v2 now")
        assert not phrase_matches("@bot.v2", "ping @botXv2 now")


class TestShouldRun:
    def test_custom_prompt_forces_run(self, make_context):
        ctx = make_context(
            IssuesContext,
            event_action="opened",
            issue=IssuePayload(number=1, title="t", body="nothing here"),
            inputs=ActionInputs(prompt="do the thing"),
        )
        assert should_run(ctx)

    def test_assignee_trigger_strips_at(self, make_context):
        ctx = make_context(
            IssuesContext,
            event_action="assigned",
            issue=IssuePayload(number=1),
            assignee=UserRef(login="taskbot"),
            inputs=ActionInputs(assignee_trigger="@taskbot"),
        )
        assert should_run(ctx)

    def test_assignee_mismatch(self, make_context):
        ctx = make_context(
            IssuesContext,
            event_action="assigned",
            issue=IssuePayload(number=1),
            assignee=UserRef(login="someone"),
            inputs=ActionInputs(assignee_trigger="taskbot"),
        )
        assert not should_run(ctx)

    def test_label_trigger_exact(self, make_context):
        ctx = make_context(
            IssuesContext,
            event_action="labeled",
            issue=IssuePayload(number=1),
            label="agent",
            inputs=ActionInputs(label_trigger="agent"),
        )
        assert should_run(ctx)

        other = ctx.model_copy(update={"label": "Agent"})
        assert not should_run(other)

    def test_opened_issue_body(self, make_context):
        ctx = make_context(
            IssuesContext,
            event_action="opened",
            issue=IssuePayload(number=1, title="Bug", body="@taskfence-agent, please help"),
            inputs=ActionInputs(trigger_phrase="@taskfence-agent"),
        )
        assert should_run(ctx)

    def test_opened_issue_email_is_not_trigger(self, make_context):
        ctx = make_context(
            IssuesContext,
            event_action="opened",
            issue=IssuePayload(number=1, title="Bug", body="email@taskfence-agent.io"),
            inputs=ActionInputs(trigger_phrase="@taskfence-agent"),
        )
        assert not should_run(ctx)

    def test_edited_issue_body_is_not_a_trigger(self, make_context):
        ctx = make_context(
            IssuesContext,
            event_action="edited",
            issue=IssuePayload(number=1, body="@taskfence go"),
        )
        assert not should_run(ctx)

    def test_pull_request_title(self, make_context):
        ctx = make_context(
            PullRequestContext,
            event_action="opened",
            pull_request=PullRequestPayload(number=3, title="@taskfence tidy up", body=""),
        )
        assert should_run(ctx)

    def test_issue_comment(self, make_context):
        ctx = make_context(
            IssueCommentContext,
            event_action="created",
            issue=IssuePayload(number=1),
            comment=CommentPayload(id=5, body="@taskfence: can you look?"),
        )
        assert should_run(ctx)

    def test_review_only_when_submitted_or_edited(self, make_context):
        review = ReviewPayload(id=9, body="@taskfence fix these")
        pr = PullRequestPayload(number=3)
        submitted = make_context(
            PullRequestReviewContext, event_action="submitted", pull_request=pr, review=review
        )
        dismissed = make_context(
            PullRequestReviewContext, event_action="dismissed", pull_request=pr, review=review
        )
        assert should_run(submitted)
        assert not should_run(dismissed)


class TestSecondaryIntents:
    def _comment(self, make_context, body):
        return make_context(
            IssueCommentContext,
            event_action="created",
            issue=IssuePayload(number=1, is_pull_request=True),
            comment=CommentPayload(id=5, body=body),
            is_pr=True,
            entity_number=1,
        )

    def test_each_intent(self, make_context):
        assert has_resolve_conflicts_request(self._comment(make_context, "@taskfence resolve conflicts"))
        assert has_fix_ci_request(self._comment(make_context, "@taskfence fix-ci"))
        assert has_code_review_request(self._comment(make_context, "@taskfence code-review please"))
        assert has_minor_fix_request(self._comment(make_context, "@taskfence minor-fix"))

    def test_intents_ignore_issue_bodies(self, make_context):
        ctx = make_context(
            IssuesContext,
            event_action="opened",
            issue=IssuePayload(number=1, body="@taskfence fix-ci"),
        )
        assert not has_fix_ci_request(ctx)

    def test_partial_token_is_not_an_intent(self, make_context):
        assert not has_fix_ci_request(self._comment(make_context, "see fix-cicd docs"))

    def test_minor_fix_request_text(self, make_context):
        ctx = self._comment(make_context, "@taskfence minor-fix: rename foo to bar")
        assert extract_minor_fix_request(ctx) == "rename foo to bar"

    def test_minor_fix_without_text(self, make_context):
        ctx = self._comment(make_context, "@taskfence minor-fix")
        assert extract_minor_fix_request(ctx) is None
