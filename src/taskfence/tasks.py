"""Assembles the task payload handed to the coding agent."""

from __future__ import annotations

import logging
from datetime import datetime

from taskfence.attachments import AttachmentResolver
from taskfence.errors import InputTooLargeError, NoTaskError
from taskfence.fetcher import GraphQLDataFetcher
from taskfence.formatter import GeneratedPrompt, PromptFormatter
from taskfence.github_client import GitHubClient
from taskfence.models import (
    FetchedData,
    IssueCommentContext,
    IssuesContext,
    MergeTask,
    PullRequestContext,
    PullRequestReviewCommentContext,
    PullRequestReviewContext,
    TaskPayload,
)
from taskfence.triggers import CODE_REVIEW_PHRASE, has_resolve_conflicts_request, phrase_matches

logger = logging.getLogger(__name__)


def get_trigger_time(context) -> datetime | None:
    """The instant the triggering content was authored; ``None`` disables the fence."""
    if isinstance(context, IssueCommentContext):
        return context.comment.created_at
    if isinstance(context, IssuesContext):
        return context.issue.updated_at
    if isinstance(context, PullRequestReviewContext):
        return context.review.submitted_at
    if isinstance(context, PullRequestReviewCommentContext):
        return context.comment.created_at
    if isinstance(context, PullRequestContext):
        return context.pull_request.updated_at
    return None


def validate_input_size(text: str, task_type: str, limit: int) -> None:
    """Raise :class:`InputTooLargeError` when ``text`` exceeds ``limit`` characters."""
    if len(text) > limit:
        raise InputTooLargeError(task_type, len(text), limit)


async def resolve_merge_branch(context, github: GitHubClient) -> str:
    """Branch to merge into the PR branch when resolving conflicts."""
    pull_request = getattr(context, "pull_request", None)
    if pull_request is not None and pull_request.base_ref:
        return pull_request.base_ref
    if context.is_pr and context.entity_number:
        repo = context.repository
        pr = await github.get_pull_request(repo.owner, repo.name, context.entity_number)
        return pr["base"]["ref"]
    return context.inputs.base_branch or context.repository.default_branch


async def fetch_entity(context, fetcher: GraphQLDataFetcher) -> FetchedData:
    if not context.entity_number:
        return FetchedData()
    repo = context.repository
    trigger_time = get_trigger_time(context)
    if context.is_pr:
        pr = await fetcher.fetch_pull_request(repo.owner, repo.name, context.entity_number, trigger_time)
        return FetchedData(pull_request=pr)
    issue = await fetcher.fetch_issue(repo.owner, repo.name, context.entity_number, trigger_time)
    return FetchedData(issue=issue)


async def localize_entity(fetched: FetchedData, resolver: AttachmentResolver) -> FetchedData:
    if fetched.pull_request is not None:
        return FetchedData(pull_request=await resolver.localize(fetched.pull_request))
    if fetched.issue is not None:
        return FetchedData(issue=await resolver.localize(fetched.issue))
    return fetched


async def prepare_task(
    context,
    *,
    github: GitHubClient,
    fetcher: GraphQLDataFetcher,
    resolver: AttachmentResolver,
    formatter: PromptFormatter,
    max_task_size: int,
) -> tuple[TaskPayload, GeneratedPrompt | None]:
    """Build either a merge task or a prompt task for ``context``.

    Raises:
        NoTaskError: Nothing for the agent to do.
        InputTooLargeError: The prompt exceeds ``max_task_size``.
    """
    inputs = context.inputs

    if inputs.resolve_conflicts or has_resolve_conflicts_request(context):
        branch = await resolve_merge_branch(context, github)
        logger.info("Preparing merge task against %s", branch)
        return TaskPayload(merge_task=MergeTask(branch=branch)), None

    custom_prompt = inputs.prompt or None
    fetched = await fetch_entity(context, fetcher)
    fetched = await localize_entity(fetched, resolver)

    attach_context = inputs.attach_github_context_to_custom_prompt
    if fetched.entity is not None and phrase_matches(CODE_REVIEW_PHRASE, custom_prompt):
        # the review template reads the diff, so it always needs the PR context
        attach_context = True

    generated = await formatter.generate_prompt(context, fetched, custom_prompt, attach_context)
    if not generated.prompt.strip():
        raise NoTaskError("No task was created. Please check your inputs.")
    validate_input_size(generated.prompt, "task", max_task_size)
    logger.info("Prepared task of %d characters", len(generated.prompt))
    return TaskPayload(task=generated.prompt), generated
