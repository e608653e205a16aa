"""Decides whether an event should start the agent.

All phrase checks use the same whole-token rule: the phrase must start the
text or follow whitespace, and must end the text or be followed by whitespace
or one of ``. , ! ? ; :``. ``user@phrase.com`` therefore never matches
``@phrase``.
"""

from __future__ import annotations

import logging
import re

from taskfence.models import (
    IssueCommentContext,
    IssuesContext,
    PullRequestContext,
    PullRequestReviewCommentContext,
    PullRequestReviewContext,
)

logger = logging.getLogger(__name__)

RESOLVE_CONFLICTS_PHRASE = "resolve conflicts"
FIX_CI_PHRASE = "fix-ci"
CODE_REVIEW_PHRASE = "code-review"
MINOR_FIX_PHRASE = "minor-fix"


def phrase_pattern(phrase: str) -> re.Pattern:
    """Compile the whole-token, case-insensitive pattern for ``phrase``."""
    return re.compile(rf"(?<!\S){re.escape(phrase)}(?=[\s.,!?;:]|$)", re.IGNORECASE)


def phrase_matches(phrase: str, text: str | None) -> bool:
    if not phrase or not text:
        return False
    return phrase_pattern(phrase).search(text) is not None


def _interaction_body(context) -> str | None:
    """Body of the comment or review that produced the event, if any."""
    if isinstance(context, PullRequestReviewContext):
        if context.event_action in ("submitted", "edited"):
            return context.review.body
        return None
    if isinstance(context, (IssueCommentContext, PullRequestReviewCommentContext)):
        return context.comment.body
    return None


def should_run(context) -> bool:
    """First matching rule wins."""
    inputs = context.inputs

    if inputs.prompt:
        logger.info("Custom prompt supplied, running")
        return True

    if isinstance(context, IssuesContext):
        if context.event_action == "assigned":
            trigger_user = inputs.assignee_trigger.removeprefix("@")
            assignee = context.assignee.login if context.assignee else ""
            if trigger_user and assignee == trigger_user:
                logger.info("Issue assigned to trigger user '%s'", trigger_user)
                return True

        if context.event_action == "labeled":
            if inputs.label_trigger and context.label == inputs.label_trigger:
                logger.info("Issue labeled with trigger label '%s'", inputs.label_trigger)
                return True

        if context.event_action == "opened":
            if phrase_matches(inputs.trigger_phrase, context.issue.body):
                logger.info("Issue body contains trigger phrase '%s'", inputs.trigger_phrase)
                return True
            if phrase_matches(inputs.trigger_phrase, context.issue.title):
                logger.info("Issue title contains trigger phrase '%s'", inputs.trigger_phrase)
                return True

    if isinstance(context, PullRequestContext):
        pr = context.pull_request
        if phrase_matches(inputs.trigger_phrase, pr.body):
            logger.info("Pull request body contains trigger phrase '%s'", inputs.trigger_phrase)
            return True
        if phrase_matches(inputs.trigger_phrase, pr.title):
            logger.info("Pull request title contains trigger phrase '%s'", inputs.trigger_phrase)
            return True

    if phrase_matches(inputs.trigger_phrase, _interaction_body(context)):
        logger.info("Comment or review contains trigger phrase '%s'", inputs.trigger_phrase)
        return True

    logger.info("No trigger was met for '%s'", inputs.trigger_phrase)
    return False


# ── Secondary intents ────────────────────────────────────────────────────────


def has_resolve_conflicts_request(context) -> bool:
    return phrase_matches(RESOLVE_CONFLICTS_PHRASE, _interaction_body(context))


def has_fix_ci_request(context) -> bool:
    return phrase_matches(FIX_CI_PHRASE, _interaction_body(context))


def has_code_review_request(context) -> bool:
    return phrase_matches(CODE_REVIEW_PHRASE, _interaction_body(context))


def has_minor_fix_request(context) -> bool:
    return phrase_matches(MINOR_FIX_PHRASE, _interaction_body(context))


def extract_minor_fix_request(context) -> str | None:
    """Free text after the ``minor-fix`` phrase, e.g. ``"rename foo to bar"``."""
    body = _interaction_body(context)
    if not body:
        return None
    match = phrase_pattern(MINOR_FIX_PHRASE).search(body)
    if match is None:
        return None
    request = body[match.end() :].lstrip(" \t.,!?;:").strip()
    return request or None
