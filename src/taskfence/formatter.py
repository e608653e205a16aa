"""Renders the final task text from the fenced, localized entity.

Sections appear in a fixed order and are omitted when empty. The assembled
prompt is sanitized once at the end; instructions are also sanitized before
``agent-args:`` extraction so arguments hidden in HTML comments or invisible
characters are never picked up.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

from taskfence.attachments import TrackerAttachmentResolver
from taskfence.context import is_triggered_by_user_interaction, is_workflow_run_failure
from taskfence.models import (
    CodeReviewDispatch,
    CrossReferencedEvent,
    FetchedData,
    IssueComment,
    IssueCommentContext,
    IssueData,
    IssuesContext,
    PullRequestContext,
    PullRequestData,
    PullRequestReviewCommentContext,
    PullRequestReviewContext,
    PushContext,
    ReferencedEvent,
    Review,
    ReviewComment,
    TrackerIssueDispatch,
    WorkflowDispatchContext,
)
from taskfence.prompts import (
    GIT_OPERATIONS_NOTE,
    code_review_prompt,
    fix_ci_prompt,
    minor_fix_prompt,
)
from taskfence.sanitizer import sanitize_content
from taskfence.triggers import (
    CODE_REVIEW_PHRASE,
    FIX_CI_PHRASE,
    extract_minor_fix_request,
    has_code_review_request,
    has_fix_ci_request,
    has_minor_fix_request,
    phrase_pattern,
)

logger = logging.getLogger(__name__)

_AGENT_ARGS_BLOCK = re.compile(r"agent-args:\s*([\s\S]*?)(?=\n(?!\s*--)|$)", re.IGNORECASE)
_AGENT_ARG = re.compile(r"--[\w-]+=(?:\"[^\"]*\"|'[^']*'|[^\s]+)")


@dataclass
class ParsedAgentArgs:
    cleaned_text: str
    args: list[str] = field(default_factory=list)


@dataclass
class GeneratedPrompt:
    prompt: str
    agent_args: list[str] = field(default_factory=list)


def extract_agent_args(text: str | None) -> ParsedAgentArgs:
    """Pull ``agent-args: --key=value ...`` blocks out of ``text``.

    A block runs to the end of its line; following lines that start with
    ``--`` continue it.
    """
    if not text:
        return ParsedAgentArgs(cleaned_text="")
    args: list[str] = []
    for match in _AGENT_ARGS_BLOCK.finditer(text):
        args.extend(_AGENT_ARG.findall(match.group(1).strip()))
    cleaned = _AGENT_ARGS_BLOCK.sub("", text)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned).strip()
    return ParsedAgentArgs(cleaned_text=cleaned, args=args)


def dedupe_agent_args(args: list[str]) -> list[str]:
    """Keep only the last value given for each ``--key``."""
    by_key: dict[str, str] = {}
    for arg in args:
        key = arg.split("=", 1)[0]
        by_key.pop(key, None)
        by_key[key] = arg
    return list(by_key.values())


def _ts(value: datetime | None) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _login(author) -> str:
    return author.login if author is not None else "ghost"


class PromptFormatter:
    def __init__(self, tracker_resolver: TrackerAttachmentResolver | None = None):
        self.tracker_resolver = tracker_resolver

    async def generate_prompt(
        self,
        context,
        fetched: FetchedData,
        user_prompt: str | None = None,
        attach_context: bool = True,
    ) -> GeneratedPrompt:
        agent_args: list[str] = []

        custom = None
        if user_prompt:
            parsed = extract_agent_args(sanitize_content(user_prompt))
            agent_args.extend(parsed.args)
            custom = self._expand_keywords(context, parsed.cleaned_text)

        if custom and not attach_context:
            return GeneratedPrompt(
                prompt=sanitize_content(custom + GIT_OPERATIONS_NOTE),
                agent_args=dedupe_agent_args(agent_args),
            )

        if isinstance(context, WorkflowDispatchContext) and isinstance(
            context.dispatch, TrackerIssueDispatch
        ):
            parsed = extract_agent_args(sanitize_content(await self._tracker_prompt(context.dispatch)))
            return GeneratedPrompt(
                prompt=sanitize_content(parsed.cleaned_text),
                agent_args=dedupe_agent_args(agent_args + parsed.args),
            )

        instruction = custom
        if not instruction:
            parsed = extract_agent_args(sanitize_content(self._event_instruction(context, fetched)))
            agent_args.extend(parsed.args)
            instruction = self._with_intent_templates(context, parsed.cleaned_text)

        sections = [
            f"<user_instruction>\n{instruction}\n</user_instruction>" if instruction else "",
            self._repository_info(context),
            self._entity_info(context, fetched),
            self._commits_info(fetched),
            self._timeline_info(fetched),
            self._reviews_info(fetched),
            self._changed_files_info(fetched),
            self._actor_info(context),
        ]
        header = (
            f"You were triggered as a GitHub AI Assistant by {context.event_name} action. "
            "Your task is to:"
        )
        prompt = "\n\n".join([header, *(s for s in sections if s)]) + GIT_OPERATIONS_NOTE + "\n"
        return GeneratedPrompt(
            prompt=sanitize_content(prompt), agent_args=dedupe_agent_args(agent_args)
        )

    # ── Instructions ─────────────────────────────────────────────────────

    @staticmethod
    def _diff_point(context) -> str:
        if context.is_pr and context.entity_number:
            return str(context.entity_number)
        return context.inputs.base_branch or context.repository.default_branch

    def _expand_keywords(self, context, prompt: str) -> str:
        """Swap a bare ``code-review`` / ``fix-ci`` keyword for its full template."""
        diff_point = self._diff_point(context)
        for phrase, template in (
            (CODE_REVIEW_PHRASE, code_review_prompt),
            (FIX_CI_PHRASE, fix_ci_prompt),
        ):
            pattern = phrase_pattern(phrase)
            if pattern.search(prompt):
                return pattern.sub(lambda _m: template(diff_point).strip(), prompt, count=1)
        return prompt

    def _with_intent_templates(self, context, instruction: str | None) -> str:
        """Append the template for a secondary intent found in the triggering comment."""
        diff_point = self._diff_point(context)
        template = None
        if has_code_review_request(context) or (
            isinstance(context, WorkflowDispatchContext)
            and isinstance(context.dispatch, CodeReviewDispatch)
            and not context.inputs.prompt
        ):
            template = code_review_prompt(diff_point)
        elif has_fix_ci_request(context) or (
            is_workflow_run_failure(context) and not context.inputs.prompt
        ):
            template = fix_ci_prompt(diff_point)
        elif has_minor_fix_request(context):
            template = minor_fix_prompt(diff_point, extract_minor_fix_request(context))
        if template is None:
            return instruction or ""
        return f"{instruction}\n{template}" if instruction else template.strip()

    def _event_instruction(self, context, fetched: FetchedData) -> str | None:
        if isinstance(context, PullRequestContext):
            return context.pull_request.body
        if isinstance(context, PullRequestReviewContext):
            return context.review.body
        if isinstance(context, PullRequestReviewCommentContext):
            thread_id = self._find_thread_id(context, fetched)
            if thread_id is not None:
                return f"Review thread #{thread_id}:\n{context.comment.body or ''}"
            return context.comment.body
        if isinstance(context, IssuesContext):
            return context.issue.body
        if isinstance(context, IssueCommentContext):
            return context.comment.body
        return None

    @staticmethod
    def _find_thread_id(context: PullRequestReviewCommentContext, fetched: FetchedData) -> int | None:
        """Database id of the root comment of the thread the event comment belongs to."""
        pr = fetched.pull_request
        if pr is None:
            return None
        comments = [c for review in pr.reviews.nodes for c in review.comments.nodes]
        by_id = {c.id: c for c in comments}
        current = next((c for c in comments if c.database_id == context.comment.id), None)
        if current is None:
            return None
        seen = {current.id}
        while current.reply_to is not None and current.reply_to.id in by_id:
            current = by_id[current.reply_to.id]
            if current.id in seen:
                break
            seen.add(current.id)
        return current.database_id

    async def _tracker_prompt(self, dispatch: TrackerIssueDispatch) -> str:
        comments = ""
        if dispatch.comments:
            comments = "\n\nComments:\n" + "\n\n".join(
                f"[{_tracker_date(c.created)}] {c.author}:\n{c.body}" for c in dispatch.comments
            )
        text = (
            "You were triggered as a GitHub AI Assistant by a Jira issue. Your task is to "
            "implement the requested feature or fix based on the Jira issue details below.\n\n"
            "<jira_issue>\n"
            f"Issue Key: {dispatch.issue_key}\n"
            f"Summary: {dispatch.summary}\n\n"
            f"Description: {dispatch.description}{comments}\n"
            "</jira_issue>\n"
            f"{GIT_OPERATIONS_NOTE}\n"
        )
        if self.tracker_resolver is not None:
            text = await self.tracker_resolver.resolve(text, dispatch.attachments)
        return text

    # ── Sections ─────────────────────────────────────────────────────────

    @staticmethod
    def _repository_info(context) -> str:
        repo = context.repository
        return f"<repository>\nRepository: {repo.full_name}\nOwner: {repo.owner}\n</repository>"

    @staticmethod
    def _actor_info(context) -> str:
        action = f" ({context.event_action})" if context.event_action else ""
        return f"<actor>\nTriggered by: @{context.actor}\nEvent: {context.event_name}{action}\n</actor>"

    def _entity_info(self, context, fetched: FetchedData) -> str:
        # The entity body is the instruction itself for these events
        body_is_instruction = isinstance(context, (IssuesContext, PullRequestContext))

        if context.is_pr:
            pr = fetched.pull_request
            if pr is None:
                return ""
            lines = [
                f"PR Number: #{pr.number}",
                f"Title: {pr.title}",
                f"Author: @{_login(pr.author)}",
                f"State: {pr.state}",
                f"Branch: {pr.head_ref_name} -> {pr.base_ref_name}",
                f"Base Commit: {pr.base_ref_oid}",
                f"Head Commit: {pr.head_ref_oid}",
                f"Stats: +{pr.additions}/-{pr.deletions} "
                f"({pr.changed_files} files, {pr.commits.total_count} commits)",
            ]
            if pr.body and not body_is_instruction:
                lines.append(f"Description:\n{pr.body}")
            return "<pull_request_info>\n" + "\n".join(lines) + "\n</pull_request_info>"

        if is_triggered_by_user_interaction(context) and not isinstance(context, PushContext):
            issue = fetched.issue
            if issue is None:
                return ""
            lines = [
                f"Issue Number: #{issue.number}",
                f"Title: {issue.title}",
                f"Author: @{_login(issue.author)}",
                f"State: {issue.state}",
            ]
            if issue.body and not body_is_instruction:
                lines.append(f"Description:\n{issue.body}")
            return "<issue_info>\n" + "\n".join(lines) + "\n</issue_info>"
        return ""

    @staticmethod
    def _commits_info(fetched: FetchedData) -> str:
        pr = fetched.pull_request
        if pr is None or not pr.commits.nodes:
            return ""
        lines = []
        for node in pr.commits.nodes:
            commit = node.commit
            message = commit.message_headline or commit.message or "No message"
            lines.append(f"[{_ts(commit.committed_date)}] {commit.oid[:7]} - {message}")
        return "<commits>\n" + "\n".join(lines) + "\n</commits>"

    @staticmethod
    def _timeline_info(fetched: FetchedData) -> str:
        entity: IssueData | None = fetched.entity
        if entity is None:
            return ""
        events = []
        for item in entity.timeline_items.nodes:
            if isinstance(item, IssueComment):
                events.append(
                    f"[{_ts(item.created_at)}] Comment by @{_login(item.author)}:\n{item.body}"
                )
            elif isinstance(item, ReferencedEvent) and item.commit is not None:
                message = f": {item.commit.message}" if item.commit.message else ""
                events.append(
                    f"[{_ts(item.created_at)}] Referenced commit {item.commit.oid[:7]}{message}"
                )
            elif isinstance(item, CrossReferencedEvent) and item.source is not None:
                kind = "PR" if item.source.typename == "PullRequest" else "Issue"
                events.append(
                    f"[{_ts(item.created_at)}] Cross-referenced from {kind} "
                    f"#{item.source.number}: {item.source.title}"
                )
        if not events:
            return ""
        return "<timeline>\n" + "\n\n".join(events) + "\n</timeline>"

    def _reviews_info(self, fetched: FetchedData) -> str:
        pr: PullRequestData | None = fetched.pull_request
        if pr is None or not pr.reviews.nodes:
            return ""
        texts = [self._format_review(review) for review in pr.reviews.nodes]
        return "<reviews>\n" + "\n\n---\n\n".join(texts) + "\n</reviews>"

    def _format_review(self, review: Review) -> str:
        text = f"[{_ts(review.submitted_at)}] Review by @{_login(review.author)} ({review.state})"
        if review.body:
            text += f"\n{review.body}"
        if review.comments.nodes:
            text += "\n\nReview Comments:" + format_review_threads(review.comments.nodes)
        return text

    @staticmethod
    def _changed_files_info(fetched: FetchedData) -> str:
        pr = fetched.pull_request
        if pr is None or not pr.files.nodes:
            return ""
        lines = [
            f"{f.path} ({f.change_type.lower()}) +{f.additions}/-{f.deletions}" for f in pr.files.nodes
        ]
        return "<changed_files>\n" + "\n".join(lines) + "\n</changed_files>"


# ── Review threads ───────────────────────────────────────────────────────────


def group_review_threads(
    comments: list[ReviewComment],
) -> list[tuple[ReviewComment, dict[str, list[ReviewComment]]]]:
    """Split a review's comments into threads.

    A comment joins the thread of the comment it replies to. A reply whose
    parent is not part of this review joins the root at the same
    (path, position), or starts its own thread when there is none. Roots and
    replies are ordered by ``created_at``.
    """
    ids = {c.id for c in comments}
    roots: list[ReviewComment] = []
    orphans: list[ReviewComment] = []
    children: dict[str, list[ReviewComment]] = {}
    for comment in comments:
        if comment.reply_to is None:
            roots.append(comment)
        elif comment.reply_to.id in ids:
            children.setdefault(comment.reply_to.id, []).append(comment)
        else:
            orphans.append(comment)

    by_location = {}
    for root in sorted(roots, key=lambda c: c.created_at):
        by_location.setdefault((root.path, root.position), root)
    for orphan in orphans:
        root = by_location.get((orphan.path, orphan.position))
        if root is not None:
            children.setdefault(root.id, []).append(orphan)
        else:
            roots.append(orphan)
            by_location[(orphan.path, orphan.position)] = orphan

    for replies in children.values():
        replies.sort(key=lambda c: c.created_at)
    return [(root, children) for root in sorted(roots, key=lambda c: c.created_at)]


def _format_thread(
    comment: ReviewComment, children: dict[str, list[ReviewComment]], depth: int, seen: set[str]
) -> str:
    seen.add(comment.id)
    text = ""
    if depth == 0:
        text += f"\n\n  Thread #{comment.database_id} - {comment.path}"
        if comment.position is not None:
            text += f" (position: {comment.position})"
        text += ":"
    text += f"\n  {'  ' * depth}@{_login(comment.author)}: {comment.body}"
    for reply in children.get(comment.id, []):
        if reply.id not in seen:
            text += _format_thread(reply, children, depth + 1, seen)
    return text


def format_review_threads(comments: list[ReviewComment]) -> str:
    seen: set[str] = set()
    return "".join(
        _format_thread(root, children, 0, seen) for root, children in group_review_threads(comments)
    )


def _tracker_date(value: str) -> str:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return value
    return parsed.strftime("%b %d, %Y %H:%M")
