"""Event Context Resolver: raw GitHub Actions event → ``ExecutionContext``.

This is the only module that reads raw webhook payload field names. Every
other component works on the typed, frozen context it returns.

Each event kind has one resolver in ``RESOLVERS``; the table is checked
against ``EventKind`` at import time so a new kind cannot be added without a
resolver.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from taskfence.config import ActionInputs, RunSettings
from taskfence.errors import ConfigurationError, UnsupportedEventError
from taskfence.models import (
    CheckSuiteContext,
    CheckSuitePayload,
    CodeReviewDispatch,
    CommentPayload,
    EventKind,
    IssueCommentContext,
    IssuePayload,
    IssuesContext,
    PlainDispatch,
    PullRequestContext,
    PullRequestPayload,
    PullRequestReviewCommentContext,
    PullRequestReviewContext,
    PushContext,
    Repository,
    RepositoryDispatchContext,
    ResolveConflictsDispatch,
    ReviewCommentPayload,
    ReviewPayload,
    ScheduleContext,
    TokenOwner,
    TrackerAttachment,
    TrackerComment,
    TrackerIssueDispatch,
    UserRef,
    WorkflowDispatchContext,
    WorkflowRunContext,
    WorkflowRunPayload,
)

logger = logging.getLogger(__name__)

# workflow_dispatch ``inputs.action`` values
RESOLVE_CONFLICTS_ACTION = "resolve-conflicts"
CODE_REVIEW_ACTION = "code-review"
TRACKER_EVENT_ACTION = "jira_event"

USER_TRIGGERED_EVENTS = frozenset(
    kind.value
    for kind in (
        EventKind.PUSH,
        EventKind.ISSUES,
        EventKind.ISSUE_COMMENT,
        EventKind.PULL_REQUEST,
        EventKind.PULL_REQUEST_REVIEW,
        EventKind.PULL_REQUEST_REVIEW_COMMENT,
    )
)

# Event names GitHub uses that map onto a kind we already handle
_EVENT_ALIASES = {"pull_request_target": EventKind.PULL_REQUEST}


# ── Payload helpers ──────────────────────────────────────────────────────────


def load_event_payload(path: str | Path) -> dict[str, Any]:
    """Read the webhook payload GitHub Actions writes to ``GITHUB_EVENT_PATH``."""
    try:
        with open(path) as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Could not read event payload {path}: {e}") from e


def _user(raw: dict | None) -> UserRef | None:
    if not raw or not raw.get("login"):
        return None
    return UserRef(login=raw["login"], id=raw.get("id"), type=raw.get("type"))


def _issue(raw: dict) -> IssuePayload:
    return IssuePayload(
        number=raw["number"],
        title=raw.get("title") or "",
        body=raw.get("body"),
        created_at=raw.get("created_at"),
        updated_at=raw.get("updated_at"),
        is_pull_request=bool(raw.get("pull_request")),
    )


def _pull_request(raw: dict) -> PullRequestPayload:
    return PullRequestPayload(
        number=raw["number"],
        title=raw.get("title") or "",
        body=raw.get("body"),
        state=raw.get("state") or "open",
        created_at=raw.get("created_at"),
        updated_at=raw.get("updated_at"),
        head_ref=(raw.get("head") or {}).get("ref", ""),
        base_ref=(raw.get("base") or {}).get("ref", ""),
        mergeable_state=raw.get("mergeable_state"),
    )


def _pr_numbers(raw: dict) -> tuple[int, ...]:
    return tuple(pr["number"] for pr in raw.get("pull_requests") or [] if "number" in pr)


def _repository(payload: dict, run: RunSettings) -> Repository:
    raw = payload.get("repository")
    if raw:
        owner = (raw.get("owner") or {}).get("login") or raw.get("full_name", "/").split("/")[0]
        return Repository(
            owner=owner,
            name=raw["name"],
            default_branch=raw.get("default_branch") or "main",
        )
    if "/" in run.repository:
        owner, name = run.repository.split("/", 1)
        return Repository(owner=owner, name=name)
    raise ConfigurationError("Event payload has no repository and GITHUB_REPOSITORY is not set")


def _actor_email(payload: dict, actor: str) -> str:
    sender_id = (payload.get("sender") or {}).get("id")
    return f"{sender_id}+{actor}@users.noreply.github.com"


def parse_tracker_json(raw: str | None, field: str) -> list:
    """Parse a JSON array passed as a workflow input.

    Tracker automation often emits raw newlines inside strings, so control
    characters are accepted. An absent input is an empty list.
    """
    if raw is None:
        return []
    try:
        value = json.loads(raw, strict=False)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid Jira JSON in workflow input '{field}': {e}") from e
    if not isinstance(value, list):
        raise ConfigurationError(f"Jira workflow input '{field}' must be a JSON array")
    return value


# ── Resolvers ────────────────────────────────────────────────────────────────


def _resolve_issues(payload: dict, common: dict):
    issue = _issue(payload["issue"])
    return IssuesContext(
        **common,
        issue=issue,
        assignee=_user(payload.get("assignee")),
        label=(payload.get("label") or {}).get("name"),
        entity_number=issue.number,
        is_pr=False,
    )


def _resolve_issue_comment(payload: dict, common: dict):
    issue = _issue(payload["issue"])
    raw = payload["comment"]
    return IssueCommentContext(
        **common,
        issue=issue,
        comment=CommentPayload(
            id=raw["id"],
            body=raw.get("body"),
            created_at=raw.get("created_at"),
            user=_user(raw.get("user")),
        ),
        entity_number=issue.number,
        is_pr=issue.is_pull_request,
    )


def _resolve_pull_request(payload: dict, common: dict):
    pr = _pull_request(payload["pull_request"])
    return PullRequestContext(**common, pull_request=pr, entity_number=pr.number, is_pr=True)


def _resolve_pull_request_review(payload: dict, common: dict):
    pr = _pull_request(payload["pull_request"])
    raw = payload["review"]
    return PullRequestReviewContext(
        **common,
        pull_request=pr,
        review=ReviewPayload(
            id=raw["id"],
            body=raw.get("body"),
            state=raw.get("state") or "",
            submitted_at=raw.get("submitted_at"),
            user=_user(raw.get("user")),
        ),
        entity_number=pr.number,
        is_pr=True,
    )


def _resolve_pull_request_review_comment(payload: dict, common: dict):
    pr = _pull_request(payload["pull_request"])
    raw = payload["comment"]
    return PullRequestReviewCommentContext(
        **common,
        pull_request=pr,
        comment=ReviewCommentPayload(
            id=raw["id"],
            body=raw.get("body"),
            path=raw.get("path") or "",
            created_at=raw.get("created_at"),
            in_reply_to_id=raw.get("in_reply_to_id"),
            user=_user(raw.get("user")),
        ),
        entity_number=pr.number,
        is_pr=True,
    )


def _resolve_push(payload: dict, common: dict):
    return PushContext(**common, ref=payload.get("ref") or "")


def _resolve_check_suite(payload: dict, common: dict):
    raw = payload["check_suite"]
    numbers = _pr_numbers(raw)
    return CheckSuiteContext(
        **common,
        check_suite=CheckSuitePayload(
            id=raw["id"],
            conclusion=raw.get("conclusion"),
            head_branch=raw.get("head_branch"),
            pull_request_numbers=numbers,
        ),
        entity_number=numbers[0] if numbers else None,
        is_pr=bool(numbers),
    )


def _resolve_workflow_run(payload: dict, common: dict):
    raw = payload["workflow_run"]
    numbers = _pr_numbers(raw)
    return WorkflowRunContext(
        **common,
        workflow_run=WorkflowRunPayload(
            id=raw["id"],
            name=raw.get("name") or "",
            conclusion=raw.get("conclusion"),
            head_branch=raw.get("head_branch"),
            html_url=raw.get("html_url") or "",
            pull_request_numbers=numbers,
        ),
        entity_number=numbers[0] if numbers else None,
        is_pr=bool(numbers),
    )


def _resolve_tracker_dispatch(inputs: dict) -> TrackerIssueDispatch:
    issue_key = inputs.get("issue_key")
    summary = inputs.get("issue_summary")
    if not issue_key or not summary:
        raise ConfigurationError(
            "Missing Jira issue data in workflow payload: issue_key and issue_summary are required"
        )
    comments = parse_tracker_json(inputs.get("issue_comments") or None, "issue_comments")
    attachments = parse_tracker_json(inputs.get("issue_attachments") or None, "issue_attachments")
    try:
        dispatch = TrackerIssueDispatch(
            issue_key=issue_key,
            summary=summary,
            description=inputs.get("issue_description") or "",
            comments=tuple(TrackerComment.model_validate(c) for c in comments),
            attachments=tuple(TrackerAttachment.model_validate(a) for a in attachments),
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid Jira issue data in workflow payload: {e}") from e
    if dispatch.comments:
        logger.info("Parsed %d comment(s) from Jira issue", len(dispatch.comments))
    if dispatch.attachments:
        logger.info("Parsed %d attachment(s) from Jira issue", len(dispatch.attachments))
    logger.info("Jira issue detected: %s - %s", dispatch.issue_key, dispatch.summary)
    return dispatch


def _pr_number_input(inputs: dict) -> int | None:
    raw = inputs.get("prNumber")
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid prNumber in workflow inputs: {raw!r}") from e


def _resolve_workflow_dispatch(payload: dict, common: dict):
    inputs = payload.get("inputs") or {}
    action = inputs.get("action")

    if action == RESOLVE_CONFLICTS_ACTION:
        number = _pr_number_input(inputs)
        if number is None:
            raise ConfigurationError("resolve-conflicts dispatch requires a prNumber input")
        return WorkflowDispatchContext(
            **common,
            dispatch=ResolveConflictsDispatch(pr_number=number),
            entity_number=number,
            is_pr=True,
        )

    if action == CODE_REVIEW_ACTION:
        number = _pr_number_input(inputs)
        return WorkflowDispatchContext(
            **common,
            dispatch=CodeReviewDispatch(pr_number=number),
            entity_number=number,
            is_pr=True,
        )

    if action == TRACKER_EVENT_ACTION:
        return WorkflowDispatchContext(**common, dispatch=_resolve_tracker_dispatch(inputs))

    return WorkflowDispatchContext(**common, dispatch=PlainDispatch())


def _resolve_schedule(payload: dict, common: dict):
    return ScheduleContext(**common, schedule=payload.get("schedule") or "")


def _resolve_repository_dispatch(payload: dict, common: dict):
    return RepositoryDispatchContext(**common, client_payload=payload.get("client_payload") or {})


RESOLVERS: dict[EventKind, Callable[[dict, dict], Any]] = {
    EventKind.ISSUES: _resolve_issues,
    EventKind.ISSUE_COMMENT: _resolve_issue_comment,
    EventKind.PULL_REQUEST: _resolve_pull_request,
    EventKind.PULL_REQUEST_REVIEW: _resolve_pull_request_review,
    EventKind.PULL_REQUEST_REVIEW_COMMENT: _resolve_pull_request_review_comment,
    EventKind.PUSH: _resolve_push,
    EventKind.WORKFLOW_DISPATCH: _resolve_workflow_dispatch,
    EventKind.CHECK_SUITE: _resolve_check_suite,
    EventKind.WORKFLOW_RUN: _resolve_workflow_run,
    EventKind.SCHEDULE: _resolve_schedule,
    EventKind.REPOSITORY_DISPATCH: _resolve_repository_dispatch,
}

_unhandled = set(EventKind) - set(RESOLVERS)
if _unhandled:
    raise RuntimeError(f"No context resolver for event kinds: {sorted(k.value for k in _unhandled)}")


# ── Entry point ──────────────────────────────────────────────────────────────


def parse_event_kind(event_name: str) -> EventKind:
    if event_name in _EVENT_ALIASES:
        return _EVENT_ALIASES[event_name]
    try:
        return EventKind(event_name)
    except ValueError:
        raise UnsupportedEventError(event_name) from None


def resolve_context(
    event_name: str,
    payload: dict[str, Any],
    *,
    token_owner: TokenOwner,
    inputs: ActionInputs | None = None,
    run: RunSettings | None = None,
):
    """Build the typed execution context for one inbound event.

    Raises:
        UnsupportedEventError: ``event_name`` is not a known event kind.
        ConfigurationError: The payload is missing data the variant needs.
    """
    kind = parse_event_kind(event_name)
    run = run or RunSettings()
    actor = run.actor or (payload.get("sender") or {}).get("login", "")
    common = {
        "run_id": run.run_id,
        "workflow": run.workflow,
        "event_action": payload.get("action"),
        "actor": actor,
        "actor_email": _actor_email(payload, actor),
        "token_owner": token_owner,
        "repository": _repository(payload, run),
        "inputs": inputs or ActionInputs(),
    }
    try:
        context = RESOLVERS[kind](payload, common)
    except KeyError as e:
        raise ConfigurationError(f"{kind.value} payload is missing field {e}") from e
    logger.info(
        "Resolved %s context (entity=%s, is_pr=%s)",
        kind.value,
        context.entity_number,
        context.is_pr,
    )
    return context


# ── Predicates ───────────────────────────────────────────────────────────────


def is_triggered_by_user_interaction(context) -> bool:
    return context.event_name in USER_TRIGGERED_EVENTS


def is_workflow_run_failure(context) -> bool:
    return isinstance(context, WorkflowRunContext) and context.workflow_run.conclusion == "failure"


def is_tracker_dispatch(context) -> bool:
    return isinstance(context, WorkflowDispatchContext) and isinstance(
        context.dispatch, TrackerIssueDispatch
    )


def is_resolve_conflicts_dispatch(context) -> bool:
    return isinstance(context, WorkflowDispatchContext) and isinstance(
        context.dispatch, ResolveConflictsDispatch
    )


def is_code_review_dispatch(context) -> bool:
    return isinstance(context, WorkflowDispatchContext) and isinstance(
        context.dispatch, CodeReviewDispatch
    )
