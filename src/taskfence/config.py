"""Configuration loading for taskfence.

Settings come from the GitHub Actions environment (the action's inputs are
exported as environment variables) and can optionally be layered over a
YAML file for local runs. Pydantic models validate the result; the models are
read once at start-up and never mutated afterwards.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from taskfence.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_TRIGGER_PHRASE = "@taskfence"
GITHUB_API = "https://api.github.com"
GITHUB_SERVER = "https://github.com"


# ── Config Models ────────────────────────────────────────────────────────────


class ActionInputs(BaseModel):
    """User-supplied configuration for a single run (the action's inputs)."""

    model_config = {"frozen": True}

    prompt: str = ""
    trigger_phrase: str = DEFAULT_TRIGGER_PHRASE
    assignee_trigger: str = ""
    label_trigger: str = ""
    resolve_conflicts: bool = False
    create_new_branch_for_pr: bool = False
    silent_mode: bool = False
    use_single_comment: bool = False
    attach_github_context_to_custom_prompt: bool = True
    working_dir: str = ""
    base_branch: str | None = None
    target_branch: str | None = None
    allowed_mcp_servers: tuple[str, ...] = ()

    @field_validator("allowed_mcp_servers", mode="before")
    @classmethod
    def _split_servers(cls, v: Any) -> Any:
        if isinstance(v, str):
            return tuple(s.strip() for s in v.split(",") if s.strip())
        return v


class GitHubSettings(BaseModel):
    """Credentials and endpoints for the GitHub API.

    Either ``token`` is set, or the three GitHub App fields are, in which case
    the client exchanges a JWT for an installation token.
    """

    model_config = {"frozen": True}

    token: str = ""
    is_default_token: bool = True
    api_url: str = GITHUB_API
    server_url: str = GITHUB_SERVER
    app_id: str | None = None
    private_key: str | None = None
    installation_id: str | None = None

    @property
    def has_app_credentials(self) -> bool:
        return bool(self.app_id and self.private_key and self.installation_id)


class JiraSettings(BaseModel):
    model_config = {"frozen": True}

    base_url: str
    email: str
    api_token: str
    transition_in_progress: str = "21"
    transition_in_review: str = "31"


class FetchSettings(BaseModel):
    """Knobs for the query fetcher, retry policy and attachment downloads."""

    model_config = {"frozen": True}

    max_attempts: int = Field(default=3, ge=1)
    retry_floor: float = Field(default=1.0, ge=0)
    retry_ceiling: float = Field(default=5.0, ge=0)
    retry_factor: float = Field(default=2.0, ge=1)
    max_concurrent_downloads: int = Field(default=4, ge=1)
    attachment_dir: str = "/tmp/github-attachments"
    tracker_attachment_dir: str = "/tmp/jira-attachments"
    max_task_size: int = 500_000  # characters; keeps the payload well under ARG_MAX
    mergeable_poll_attempts: int = 10
    mergeable_poll_delay: float = 6.0  # seconds


class RunSettings(BaseModel):
    """Facts about the current workflow run."""

    model_config = {"frozen": True}

    run_id: str = ""
    workflow: str = "taskfence"
    workflow_ref: str = ""
    repository: str = ""  # owner/name
    event_name: str = ""
    event_path: str = ""
    actor: str = ""
    output_file: str | None = None


class Settings(BaseModel):
    """Top-level taskfence configuration."""

    model_config = {"frozen": True}

    github: GitHubSettings = Field(default_factory=GitHubSettings)
    inputs: ActionInputs = Field(default_factory=ActionInputs)
    jira: JiraSettings | None = None
    fetch: FetchSettings = Field(default_factory=FetchSettings)
    run: RunSettings = Field(default_factory=RunSettings)


# ── Environment mapping ──────────────────────────────────────────────────────

# env var → ActionInputs field
_INPUT_ENV: dict[str, str] = {
    "PROMPT": "prompt",
    "TRIGGER_PHRASE": "trigger_phrase",
    "ASSIGNEE_TRIGGER": "assignee_trigger",
    "LABEL_TRIGGER": "label_trigger",
    "RESOLVE_CONFLICTS": "resolve_conflicts",
    "CREATE_NEW_BRANCH_FOR_PR": "create_new_branch_for_pr",
    "SILENT_MODE": "silent_mode",
    "USE_SINGLE_COMMENT": "use_single_comment",
    "ATTACH_GITHUB_CONTEXT_TO_CUSTOM_PROMPT": "attach_github_context_to_custom_prompt",
    "WORKING_DIR": "working_dir",
    "BASE_BRANCH": "base_branch",
    "TARGET_BRANCH": "target_branch",
    "ALLOWED_MCP_SERVERS": "allowed_mcp_servers",
}

_BOOL_INPUTS = {
    "resolve_conflicts",
    "create_new_branch_for_pr",
    "silent_mode",
    "use_single_comment",
    "attach_github_context_to_custom_prompt",
}

_RUN_ENV: dict[str, str] = {
    "GITHUB_RUN_ID": "run_id",
    "GITHUB_WORKFLOW": "workflow",
    "GITHUB_WORKFLOW_REF": "workflow_ref",
    "GITHUB_REPOSITORY": "repository",
    "GITHUB_EVENT_NAME": "event_name",
    "GITHUB_EVENT_PATH": "event_path",
    "GITHUB_ACTOR": "actor",
    "GITHUB_OUTPUT": "output_file",
}


def _parse_bool(field: str, value: str) -> bool:
    # ATTACH_GITHUB_CONTEXT_TO_CUSTOM_PROMPT defaults to on: only an explicit "false" disables it
    if field == "attach_github_context_to_custom_prompt":
        return value.strip().lower() != "false"
    return value.strip().lower() == "true"


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _from_environ(environ: Mapping[str, str]) -> dict[str, Any]:
    raw: dict[str, Any] = {}

    inputs: dict[str, Any] = {}
    for env_name, field in _INPUT_ENV.items():
        value = environ.get(env_name)
        if value is None:
            continue
        inputs[field] = _parse_bool(field, value) if field in _BOOL_INPUTS else value
    if inputs:
        raw["inputs"] = inputs

    github: dict[str, Any] = {}
    override = environ.get("OVERRIDE_GITHUB_TOKEN")
    default = environ.get("DEFAULT_WORKFLOW_TOKEN") or environ.get("GITHUB_TOKEN")
    if override:
        github["token"] = override
        github["is_default_token"] = override == default
    elif default:
        github["token"] = default
        github["is_default_token"] = True
    for env_name, field in (
        ("GITHUB_API_URL", "api_url"),
        ("GITHUB_SERVER_URL", "server_url"),
        ("GITHUB_APP_ID", "app_id"),
        ("GITHUB_PRIVATE_KEY", "private_key"),
        ("GITHUB_INSTALLATION_ID", "installation_id"),
    ):
        if environ.get(env_name):
            github[field] = environ[env_name]
    if github:
        raw["github"] = github

    jira_url = environ.get("JIRA_BASE_URL")
    if jira_url:
        raw["jira"] = {
            "base_url": jira_url,
            "email": environ.get("JIRA_EMAIL", ""),
            "api_token": environ.get("JIRA_API_TOKEN", ""),
        }
        if environ.get("JIRA_TRANSITION_IN_PROGRESS"):
            raw["jira"]["transition_in_progress"] = environ["JIRA_TRANSITION_IN_PROGRESS"]
        if environ.get("JIRA_TRANSITION_IN_REVIEW"):
            raw["jira"]["transition_in_review"] = environ["JIRA_TRANSITION_IN_REVIEW"]

    run = {field: environ[name] for name, field in _RUN_ENV.items() if environ.get(name)}
    if run:
        raw["run"] = run

    return raw


# ── Loader ───────────────────────────────────────────────────────────────────


def load_settings(
    environ: Mapping[str, str] | None = None,
    config_file: Path | None = None,
) -> Settings:
    """Build validated settings from an optional YAML file plus the environment.

    Environment variables win over values from the file.

    Raises:
        ConfigurationError: If no GitHub credential is available, the Jira
            section is incomplete, or validation fails.
    """
    environ = os.environ if environ is None else environ

    raw: dict[str, Any] = {}
    if config_file is not None:
        if not config_file.exists():
            raise ConfigurationError(f"taskfence config not found: {config_file}")
        with open(config_file) as f:
            raw = yaml.safe_load(f) or {}
        logger.info("Loaded taskfence config file: %s", config_file)

    raw = _merge(raw, _from_environ(environ))

    try:
        settings = Settings(**raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid taskfence configuration: {e}") from e

    if not settings.github.token and not settings.github.has_app_credentials:
        raise ConfigurationError(
            "GitHub token not configured. Set OVERRIDE_GITHUB_TOKEN or GITHUB_TOKEN, "
            "or GITHUB_APP_ID, GITHUB_PRIVATE_KEY and GITHUB_INSTALLATION_ID"
        )

    if settings.jira is not None and not (settings.jira.email and settings.jira.api_token):
        raise ConfigurationError(
            "Jira credentials not found. Set JIRA_EMAIL, JIRA_API_TOKEN, and JIRA_BASE_URL "
            "to enable Jira integration."
        )

    return settings
