"""Core data models for taskfence.

Three groups of models live here:

- the resolved ``ExecutionContext`` (one frozen variant per event kind,
  discriminated on ``event_name``),
- the projections returned by the GraphQL queries in :mod:`taskfence.queries`
  (camelCase aliases match the wire format),
- the task payload emitted for the coding agent.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, Field
from pydantic.alias_generators import to_camel

from taskfence.config import ActionInputs


# ── Event kinds ──────────────────────────────────────────────────────────────


class EventKind(str, enum.Enum):
    """Inbound GitHub Actions event names the pipeline understands."""

    ISSUES = "issues"
    ISSUE_COMMENT = "issue_comment"
    PULL_REQUEST = "pull_request"
    PULL_REQUEST_REVIEW = "pull_request_review"
    PULL_REQUEST_REVIEW_COMMENT = "pull_request_review_comment"
    PUSH = "push"
    WORKFLOW_DISPATCH = "workflow_dispatch"
    CHECK_SUITE = "check_suite"
    WORKFLOW_RUN = "workflow_run"
    SCHEDULE = "schedule"
    REPOSITORY_DISPATCH = "repository_dispatch"


class TokenOwner(BaseModel):
    """Identity of the credential the run acts as."""

    login: str
    id: int
    type: Literal["User", "Bot"] = "User"

    model_config = {"frozen": True}


class Repository(BaseModel):
    owner: str
    name: str
    default_branch: str = "main"

    model_config = {"frozen": True}

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


# ── Event payload shapes ─────────────────────────────────────────────────────


class _Frozen(BaseModel):
    model_config = {"frozen": True}


class UserRef(_Frozen):
    login: str
    id: int | None = None
    type: str | None = None


class IssuePayload(_Frozen):
    number: int
    title: str = ""
    body: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    is_pull_request: bool = False


class PullRequestPayload(_Frozen):
    number: int
    title: str = ""
    body: str | None = None
    state: str = "open"
    created_at: datetime | None = None
    updated_at: datetime | None = None
    head_ref: str = ""
    base_ref: str = ""
    mergeable_state: str | None = None


class CommentPayload(_Frozen):
    id: int
    body: str | None = None
    created_at: datetime | None = None
    user: UserRef | None = None


class ReviewPayload(_Frozen):
    id: int
    body: str | None = None
    state: str = ""
    submitted_at: datetime | None = None
    user: UserRef | None = None


class ReviewCommentPayload(_Frozen):
    id: int
    body: str | None = None
    path: str = ""
    created_at: datetime | None = None
    in_reply_to_id: int | None = None
    user: UserRef | None = None


class WorkflowRunPayload(_Frozen):
    id: int
    name: str = ""
    conclusion: str | None = None
    head_branch: str | None = None
    html_url: str = ""
    pull_request_numbers: tuple[int, ...] = ()


class CheckSuitePayload(_Frozen):
    id: int
    conclusion: str | None = None
    head_branch: str | None = None
    pull_request_numbers: tuple[int, ...] = ()


# ── workflow_dispatch sub-payloads ───────────────────────────────────────────


class ResolveConflictsDispatch(_Frozen):
    kind: Literal["resolve_conflicts"] = "resolve_conflicts"
    pr_number: int


class CodeReviewDispatch(_Frozen):
    kind: Literal["code_review"] = "code_review"
    pr_number: int | None = None


class TrackerComment(_Frozen):
    author: str
    body: str
    created: str = ""


class TrackerAttachment(_Frozen):
    filename: str
    mime_type: str = Field(default="", alias="mimeType")
    size: int = 0
    content_url: str = Field(validation_alias=AliasChoices("contentUrl", "content", "content_url"))

    model_config = {"frozen": True, "populate_by_name": True}


class TrackerIssueDispatch(_Frozen):
    kind: Literal["tracker_issue"] = "tracker_issue"
    issue_key: str
    summary: str
    description: str = ""
    comments: tuple[TrackerComment, ...] = ()
    attachments: tuple[TrackerAttachment, ...] = ()


class PlainDispatch(_Frozen):
    kind: Literal["plain"] = "plain"


DispatchPayload = Annotated[
    Union[ResolveConflictsDispatch, CodeReviewDispatch, TrackerIssueDispatch, PlainDispatch],
    Field(discriminator="kind"),
]


# ── Execution context ────────────────────────────────────────────────────────


class BaseContext(_Frozen):
    """Fields shared by every context variant.

    ``entity_number`` and ``is_pr`` are derived once by the resolver.
    """

    run_id: str = ""
    workflow: str = ""
    event_action: str | None = None
    actor: str = ""
    actor_email: str = ""
    token_owner: TokenOwner
    repository: Repository
    inputs: ActionInputs = Field(default_factory=ActionInputs)
    entity_number: int | None = None
    is_pr: bool = False


class IssuesContext(BaseContext):
    event_name: Literal["issues"] = "issues"
    issue: IssuePayload
    assignee: UserRef | None = None
    label: str | None = None


class IssueCommentContext(BaseContext):
    event_name: Literal["issue_comment"] = "issue_comment"
    issue: IssuePayload
    comment: CommentPayload


class PullRequestContext(BaseContext):
    event_name: Literal["pull_request"] = "pull_request"
    pull_request: PullRequestPayload


class PullRequestReviewContext(BaseContext):
    event_name: Literal["pull_request_review"] = "pull_request_review"
    pull_request: PullRequestPayload
    review: ReviewPayload


class PullRequestReviewCommentContext(BaseContext):
    event_name: Literal["pull_request_review_comment"] = "pull_request_review_comment"
    pull_request: PullRequestPayload
    comment: ReviewCommentPayload


class PushContext(BaseContext):
    event_name: Literal["push"] = "push"
    ref: str = ""


class WorkflowDispatchContext(BaseContext):
    event_name: Literal["workflow_dispatch"] = "workflow_dispatch"
    dispatch: DispatchPayload = Field(default_factory=PlainDispatch)


class CheckSuiteContext(BaseContext):
    event_name: Literal["check_suite"] = "check_suite"
    check_suite: CheckSuitePayload


class WorkflowRunContext(BaseContext):
    event_name: Literal["workflow_run"] = "workflow_run"
    workflow_run: WorkflowRunPayload


class ScheduleContext(BaseContext):
    event_name: Literal["schedule"] = "schedule"
    schedule: str = ""


class RepositoryDispatchContext(BaseContext):
    event_name: Literal["repository_dispatch"] = "repository_dispatch"
    client_payload: dict[str, Any] = Field(default_factory=dict)


ExecutionContext = Annotated[
    Union[
        IssuesContext,
        IssueCommentContext,
        PullRequestContext,
        PullRequestReviewContext,
        PullRequestReviewCommentContext,
        PushContext,
        WorkflowDispatchContext,
        CheckSuiteContext,
        WorkflowRunContext,
        ScheduleContext,
        RepositoryDispatchContext,
    ],
    Field(discriminator="event_name"),
]


# ── GraphQL projections ──────────────────────────────────────────────────────


class _GraphQLModel(BaseModel):
    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class Author(_GraphQLModel):
    login: str = "ghost"


class ReplyTo(_GraphQLModel):
    id: str


class Commit(_GraphQLModel):
    oid: str
    message_headline: str = ""
    message: str = ""
    committed_date: datetime | None = None


class CommitNode(_GraphQLModel):
    commit: Commit


class CommitConnection(_GraphQLModel):
    total_count: int = 0
    nodes: list[CommitNode] = Field(default_factory=list)


class ChangedFile(_GraphQLModel):
    path: str
    additions: int = 0
    deletions: int = 0
    change_type: str = "MODIFIED"


class FileConnection(_GraphQLModel):
    nodes: list[ChangedFile] = Field(default_factory=list)


class IssueComment(_GraphQLModel):
    typename: Literal["IssueComment"] = Field(default="IssueComment", alias="__typename")
    id: str
    database_id: int | None = None
    body: str = ""
    body_html: str = Field(default="", alias="bodyHTML")
    author: Author | None = None
    created_at: datetime
    last_edited_at: datetime | None = None
    url: str = ""


class CrossReferenceSource(_GraphQLModel):
    typename: str = Field(default="Issue", alias="__typename")
    number: int | None = None
    title: str = ""
    url: str = ""


class CrossReferencedEvent(_GraphQLModel):
    typename: Literal["CrossReferencedEvent"] = Field(
        default="CrossReferencedEvent", alias="__typename"
    )
    source: CrossReferenceSource | None = None
    created_at: datetime


class ReferencedCommit(_GraphQLModel):
    oid: str
    message: str = ""


class ReferencedEvent(_GraphQLModel):
    typename: Literal["ReferencedEvent"] = Field(default="ReferencedEvent", alias="__typename")
    commit: ReferencedCommit | None = None
    created_at: datetime


TimelineItem = Annotated[
    Union[IssueComment, CrossReferencedEvent, ReferencedEvent],
    Field(discriminator="typename"),
]


class TimelineConnection(_GraphQLModel):
    nodes: list[TimelineItem] = Field(default_factory=list)


class ReviewComment(_GraphQLModel):
    id: str
    database_id: int | None = None
    body: str = ""
    body_html: str = Field(default="", alias="bodyHTML")
    path: str = ""
    position: int | None = None
    diff_hunk: str = ""
    author: Author | None = None
    created_at: datetime
    last_edited_at: datetime | None = None
    url: str = ""
    reply_to: ReplyTo | None = None


class ReviewCommentConnection(_GraphQLModel):
    nodes: list[ReviewComment] = Field(default_factory=list)


class Review(_GraphQLModel):
    id: str
    database_id: int | None = None
    author: Author | None = None
    body: str = ""
    body_html: str = Field(default="", alias="bodyHTML")
    state: str = "COMMENTED"
    submitted_at: datetime | None = None
    last_edited_at: datetime | None = None
    url: str = ""
    comments: ReviewCommentConnection = Field(default_factory=ReviewCommentConnection)


class ReviewConnection(_GraphQLModel):
    nodes: list[Review] = Field(default_factory=list)


class IssueData(_GraphQLModel):
    """Issue projection returned by ``ISSUE_QUERY``."""

    number: int
    title: str = ""
    body: str = ""
    body_html: str = Field(default="", alias="bodyHTML")
    state: str = "OPEN"
    url: str = ""
    author: Author | None = None
    created_at: datetime
    updated_at: datetime
    last_edited_at: datetime | None = None
    timeline_items: TimelineConnection = Field(default_factory=TimelineConnection)


class PullRequestData(IssueData):
    """Pull request projection returned by ``PULL_REQUEST_QUERY``."""

    base_ref_name: str = ""
    head_ref_name: str = ""
    base_ref_oid: str = ""
    head_ref_oid: str = ""
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0
    commits: CommitConnection = Field(default_factory=CommitConnection)
    files: FileConnection = Field(default_factory=FileConnection)
    reviews: ReviewConnection = Field(default_factory=ReviewConnection)


class FetchedData(BaseModel):
    """The one entity fetched for a run, if any."""

    issue: IssueData | None = None
    pull_request: PullRequestData | None = None

    @property
    def entity(self) -> IssueData | None:
        return self.pull_request or self.issue


# ── Task payload ─────────────────────────────────────────────────────────────


class MergeTask(BaseModel):
    branch: str


class TaskPayload(BaseModel):
    """The object handed to the coding agent: a task or a merge task."""

    task: str | None = None
    merge_task: MergeTask | None = Field(default=None, alias="mergeTask")

    model_config = {"populate_by_name": True}

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)
