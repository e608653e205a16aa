"""Waits for GitHub to compute a PR's mergeable state, then dispatches conflict resolution.

GitHub computes ``mergeable_state`` lazily, so a freshly pushed PR often
reports ``unknown``. The watcher is a small state machine:

    UNKNOWN --(poll, at most max_attempts)--> UNKNOWN | CLEAN | DIRTY
    DIRTY   --(dispatch resolve-conflicts)--> RESOLVING   => DISPATCHED
    CLEAN                                                 => CLEAN
    UNKNOWN after max_attempts                            => GAVE_UP

Giving up is silent: nothing is dispatched and the run carries on.
"""

from __future__ import annotations

import asyncio
import enum
import logging

from taskfence.context import RESOLVE_CONFLICTS_ACTION
from taskfence.errors import ConfigurationError
from taskfence.github_client import GitHubClient
from taskfence.models import Repository

logger = logging.getLogger(__name__)


class MergeableState(str, enum.Enum):
    UNKNOWN = "unknown"
    RESOLVING = "resolving"
    CLEAN = "clean"
    DIRTY = "dirty"

    @classmethod
    def from_github(cls, raw: str | None) -> MergeableState:
        """Collapse GitHub's ``mergeable_state`` onto the watcher's states.

        Anything settled that is not ``dirty`` (clean, blocked, behind,
        unstable, draft, ...) needs no conflict resolution.
        """
        if not raw or raw == "unknown":
            return cls.UNKNOWN
        if raw == "dirty":
            return cls.DIRTY
        return cls.CLEAN


class Outcome(str, enum.Enum):
    DISPATCHED = "dispatched"
    CLEAN = "clean"
    GAVE_UP = "gave_up"


def workflow_file_from_ref(workflow_ref: str) -> str:
    """``owner/repo/.github/workflows/agent.yml@refs/heads/main`` → ``agent.yml``."""
    name = workflow_ref.split("@", 1)[0].rsplit("/", 1)[-1]
    if not name:
        raise ConfigurationError("GITHUB_WORKFLOW_REF is required to dispatch conflict resolution")
    return name


class ConflictWatcher:
    def __init__(
        self,
        github: GitHubClient,
        repository: Repository,
        workflow_file: str,
        *,
        max_attempts: int = 10,
        delay: float = 6.0,
    ):
        self.github = github
        self.repository = repository
        self.workflow_file = workflow_file
        self.max_attempts = max_attempts
        self.delay = delay
        # last known state per PR number
        self.states: dict[int, MergeableState] = {}

    async def _dispatch(self, pr: dict) -> None:
        logger.info(
            "Running resolve conflicts workflow for %s@%s (PR #%d)",
            self.repository.full_name,
            pr["head"]["ref"],
            pr["number"],
        )
        await self.github.create_workflow_dispatch(
            self.repository.owner,
            self.repository.name,
            self.workflow_file,
            pr["head"]["ref"],
            {"action": RESOLVE_CONFLICTS_ACTION, "prNumber": str(pr["number"])},
        )

    async def watch(self, pr: dict) -> Outcome:
        state = MergeableState.from_github(pr.get("mergeable_state"))
        attempts = 0
        while True:
            self.states[pr["number"]] = state
            if state is MergeableState.DIRTY:
                await self._dispatch(pr)
                self.states[pr["number"]] = MergeableState.RESOLVING
                return Outcome.DISPATCHED
            if state is MergeableState.CLEAN:
                logger.info("PR #%d has no conflicts", pr["number"])
                return Outcome.CLEAN
            if attempts >= self.max_attempts:
                logger.info(
                    "Mergeable state of PR #%d still unknown after %d attempts, giving up",
                    pr["number"],
                    attempts,
                )
                return Outcome.GAVE_UP
            attempts += 1
            await asyncio.sleep(self.delay)
            pr = await self.github.get_pull_request(
                self.repository.owner, self.repository.name, pr["number"]
            )
            state = MergeableState.from_github(pr.get("mergeable_state"))

    async def watch_all(self, prs: list[dict]) -> list[Outcome]:
        return list(await asyncio.gather(*(self.watch(pr) for pr in prs)))
