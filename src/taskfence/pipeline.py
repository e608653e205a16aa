"""Top-level orchestration: event in, task payload out.

``prepare`` resolves the context, decides whether the agent runs at all,
and when it does, fetches, fences, localizes, formats and validates the task.
It returns ``SKIPPED`` when there is nothing to do; every error propagates to
the CLI, which reports it.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from taskfence.attachments import AttachmentResolver, TrackerAttachmentResolver
from taskfence.config import Settings
from taskfence.conflicts import ConflictWatcher, workflow_file_from_ref
from taskfence.context import (
    is_resolve_conflicts_dispatch,
    is_tracker_dispatch,
    is_triggered_by_user_interaction,
    is_workflow_run_failure,
    load_event_payload,
    resolve_context,
)
from taskfence.fetcher import GraphQLDataFetcher
from taskfence.formatter import PromptFormatter
from taskfence.github_client import GitHubClient
from taskfence.jira_client import JiraClient
from taskfence.models import PushContext, TaskPayload
from taskfence.outputs import (
    ACTOR_EMAIL,
    ACTOR_NAME,
    AGENT_ARGS,
    SHOULD_SKIP,
    TASK_JSON,
    OutputWriter,
)
from taskfence.retry import RetryPolicy
from taskfence.tasks import prepare_task
from taskfence.triggers import should_run

logger = logging.getLogger(__name__)


class PipelineOutcome(str, enum.Enum):
    SKIPPED = "skipped"
    READY = "ready"


@dataclass
class PipelineResult:
    outcome: PipelineOutcome
    context: Any = None
    payload: TaskPayload | None = None
    agent_args: list[str] = field(default_factory=list)


# ── Decision ─────────────────────────────────────────────────────────────────


async def _watch_conflicts(context, github: GitHubClient, settings: Settings) -> bool:
    """Handle ``resolve_conflicts`` mode; True only for a resolve-conflicts dispatch.

    For a PR event, or a push to a branch that open PRs target, the PRs are
    watched and conflict resolution is dispatched separately, so this run
    itself has nothing to do.
    """
    logger.info("Checking for conflicts...")
    if is_resolve_conflicts_dispatch(context):
        return True

    repo = context.repository
    prs: list[dict] = []
    if context.is_pr and context.entity_number:
        prs.append(await github.get_pull_request(repo.owner, repo.name, context.entity_number))
    elif isinstance(context, PushContext):
        branch = context.ref.removeprefix("refs/heads/")
        listed = await github.list_pull_requests(repo.owner, repo.name, base=branch)
        logger.info("Found %d open pull request(s) targeting %s", len(listed), branch)
        for pr in listed:
            prs.append(await github.get_pull_request(repo.owner, repo.name, pr["number"]))
    else:
        return False

    if prs:
        watcher = ConflictWatcher(
            github,
            repo,
            workflow_file_from_ref(settings.run.workflow_ref),
            max_attempts=settings.fetch.mergeable_poll_attempts,
            delay=settings.fetch.mergeable_poll_delay,
        )
        await watcher.watch_all(prs)
    return False


async def should_handle(context, github: GitHubClient, settings: Settings) -> bool:
    inputs = context.inputs
    if inputs.prompt:
        return True
    if inputs.resolve_conflicts:
        return await _watch_conflicts(context, github, settings)
    if is_tracker_dispatch(context):
        return True
    if is_workflow_run_failure(context):
        return True
    return is_triggered_by_user_interaction(context) and should_run(context)


# ── Entry point ──────────────────────────────────────────────────────────────


async def _start_tracker_issue(jira: JiraClient, issue_key: str) -> None:
    if not await jira.start_issue(issue_key):
        logger.warning("Failed to start Jira issue %s", issue_key)


async def prepare(
    settings: Settings,
    *,
    payload: dict[str, Any] | None = None,
    github: GitHubClient | None = None,
    http: httpx.AsyncClient | None = None,
    outputs: OutputWriter | None = None,
) -> PipelineResult:
    """Run the pipeline for the event described by ``settings.run``.

    ``github`` and ``http`` are started and closed here unless supplied.
    """
    outputs = outputs or OutputWriter(settings.run.output_file)
    if payload is None:
        payload = load_event_payload(settings.run.event_path)

    owns_github = github is None
    owns_http = http is None
    if github is None:
        github = GitHubClient.from_settings(settings.github)
        await github.start()
    if http is None:
        http = httpx.AsyncClient(timeout=60.0)
    jira: JiraClient | None = None

    try:
        token_owner = await github.resolve_token_owner(settings.github.is_default_token)
        context = resolve_context(
            settings.run.event_name,
            payload,
            token_owner=token_owner,
            inputs=settings.inputs,
            run=settings.run,
        )
        outputs.set(ACTOR_NAME, context.actor)
        outputs.set(ACTOR_EMAIL, context.actor_email)

        if not await should_handle(context, github, settings):
            logger.info("No need to run the agent")
            outputs.set(SHOULD_SKIP, "true")
            return PipelineResult(PipelineOutcome.SKIPPED, context=context)
        outputs.set(SHOULD_SKIP, "false")

        tracker_resolver = None
        if is_tracker_dispatch(context) and settings.jira is not None:
            jira = JiraClient(settings.jira)
            await jira.start()
            await _start_tracker_issue(jira, context.dispatch.issue_key)
            tracker_resolver = TrackerAttachmentResolver(
                jira, Path(settings.fetch.tracker_attachment_dir)
            )

        task, generated = await prepare_task(
            context,
            github=github,
            fetcher=GraphQLDataFetcher(
                github, retry_policy=RetryPolicy.from_settings(settings.fetch)
            ),
            resolver=AttachmentResolver(
                http,
                Path(settings.fetch.attachment_dir),
                max_concurrent=settings.fetch.max_concurrent_downloads,
            ),
            formatter=PromptFormatter(tracker_resolver),
            max_task_size=settings.fetch.max_task_size,
        )
        agent_args = generated.agent_args if generated else []
        outputs.set(TASK_JSON, task.to_json())
        outputs.set(AGENT_ARGS, " ".join(agent_args))
        return PipelineResult(
            PipelineOutcome.READY, context=context, payload=task, agent_args=agent_args
        )
    finally:
        if jira is not None:
            await jira.close()
        if owns_http:
            await http.aclose()
        if owns_github:
            await github.close()
