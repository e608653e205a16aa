"""Exception taxonomy for taskfence.

Configuration problems abort the run before any network call is made.
Upstream HTTP failures are left as ``httpx.HTTPStatusError`` so callers can
inspect the response; GraphQL-level failures (HTTP 200 with an ``errors``
array) are raised as :class:`GraphQLQueryError` carrying an equivalent status
so the retry classifier treats both the same way.
"""

from __future__ import annotations

# GraphQL error ``type`` values that correspond to permanent HTTP statuses.
_GRAPHQL_TYPE_STATUS: dict[str, int] = {
    "NOT_FOUND": 404,
    "FORBIDDEN": 403,
    "UNAUTHORIZED": 401,
    "UNPROCESSABLE": 422,
}


class TaskfenceError(Exception):
    """Base class for all taskfence errors."""


class ConfigurationError(TaskfenceError):
    """Missing credential, missing tracker field, or otherwise unusable input."""


class UnsupportedEventError(ConfigurationError):
    """The inbound event kind is not one the pipeline knows how to resolve."""

    def __init__(self, event_name: str):
        super().__init__(f"Unsupported event type: {event_name}")
        self.event_name = event_name


class GraphQLQueryError(TaskfenceError):
    """The GraphQL endpoint answered with an ``errors`` array."""

    def __init__(self, errors: list[dict]):
        messages = "; ".join(str(e.get("message", e)) for e in errors) or "unknown error"
        super().__init__(f"GraphQL query failed: {messages}")
        self.errors = errors
        self.status: int | None = None
        for error in errors:
            status = _GRAPHQL_TYPE_STATUS.get(str(error.get("type", "")).upper())
            if status is not None:
                self.status = status
                break


class NoTaskError(TaskfenceError):
    """Neither a task nor a merge task could be produced from the inputs."""


class InputTooLargeError(TaskfenceError):
    """The assembled task text exceeds the configured size limit."""

    def __init__(self, task_type: str, size: int, limit: int):
        super().__init__(
            f"Input for {task_type} is too large: {size} characters (limit {limit}). "
            "Shorten the issue/PR description or the custom prompt."
        )
        self.task_type = task_type
        self.size = size
        self.limit = limit


class MalformedResponseError(TaskfenceError):
    """An upstream answered 2xx with a body that is not the expected JSON."""

    def __init__(self, url: str, detail: str):
        super().__init__(f"Malformed response from {url}: {detail}")
        self.url = url
