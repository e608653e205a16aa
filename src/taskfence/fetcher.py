"""Fetches the conversation behind an issue or pull request.

Each entity is loaded with exactly one GraphQL request, retried per
:mod:`taskfence.retry`, validated into the models in :mod:`taskfence.models`
and passed through the time fence before anything else sees it.
"""

from __future__ import annotations

import logging
from datetime import datetime

from taskfence.errors import GraphQLQueryError
from taskfence.github_client import GitHubClient
from taskfence.models import IssueData, PullRequestData
from taskfence.queries import ISSUE_QUERY, PULL_REQUEST_QUERY
from taskfence.retry import RetryPolicy, execute_with_retry
from taskfence.time_fence import apply_time_fence

logger = logging.getLogger(__name__)


class GraphQLDataFetcher:
    def __init__(self, github: GitHubClient, *, retry_policy: RetryPolicy | None = None):
        self.github = github
        self.retry_policy = retry_policy or RetryPolicy()

    async def _query_entity(
        self, query: str, field: str, owner: str, repo: str, number: int
    ) -> dict:
        variables = {"owner": owner, "repo": repo, "number": number}
        data = await execute_with_retry(
            lambda: self.github.graphql(query, variables),
            policy=self.retry_policy,
            description=f"Fetching {field} {owner}/{repo}#{number}",
        )
        node = (data.get("repository") or {}).get(field)
        if node is None:
            raise GraphQLQueryError(
                [{"type": "NOT_FOUND", "message": f"{field} {owner}/{repo}#{number} not found"}]
            )
        return node

    async def fetch_pull_request(
        self, owner: str, repo: str, number: int, trigger_time: datetime | None = None
    ) -> PullRequestData:
        node = await self._query_entity(PULL_REQUEST_QUERY, "pullRequest", owner, repo, number)
        pr = PullRequestData.model_validate(node)
        logger.info(
            "Fetched PR #%d: %d commit(s), %d file(s), %d timeline item(s), %d review(s)",
            pr.number,
            pr.commits.total_count,
            len(pr.files.nodes),
            len(pr.timeline_items.nodes),
            len(pr.reviews.nodes),
        )
        return apply_time_fence(pr, trigger_time)

    async def fetch_issue(
        self, owner: str, repo: str, number: int, trigger_time: datetime | None = None
    ) -> IssueData:
        node = await self._query_entity(ISSUE_QUERY, "issue", owner, repo, number)
        issue = IssueData.model_validate(node)
        logger.info(
            "Fetched issue #%d: %d timeline item(s)", issue.number, len(issue.timeline_items.nodes)
        )
        return apply_time_fence(issue, trigger_time)
