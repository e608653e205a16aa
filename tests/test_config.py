"""Tests for taskfence config loading."""

from pathlib import Path

import pytest
import yaml

from taskfence.config import DEFAULT_TRIGGER_PHRASE, load_settings
from taskfence.errors import ConfigurationError

BASE_ENV = {"GITHUB_TOKEN": "ghs_default"}


class TestEnvironment:
    def test_defaults(self):
        settings = load_settings(BASE_ENV)

        assert settings.github.token == "ghs_default"
        assert settings.github.is_default_token is True
        assert settings.inputs.trigger_phrase == DEFAULT_TRIGGER_PHRASE
        assert settings.inputs.attach_github_context_to_custom_prompt is True
        assert settings.jira is None
        assert settings.fetch.max_attempts == 3

    def test_inputs_from_env(self):
        settings = load_settings(
            {
                **BASE_ENV,
                "PROMPT": "do it",
                "TRIGGER_PHRASE": "@bot",
                "RESOLVE_CONFLICTS": "true",
                "SILENT_MODE": "yes",
                "ATTACH_GITHUB_CONTEXT_TO_CUSTOM_PROMPT": "false",
                "ALLOWED_MCP_SERVERS": "github, jira ,",
            }
        )

        inputs = settings.inputs
        assert inputs.prompt == "do it"
        assert inputs.trigger_phrase == "@bot"
        assert inputs.resolve_conflicts is True
        assert inputs.silent_mode is False
        assert inputs.attach_github_context_to_custom_prompt is False
        assert inputs.allowed_mcp_servers == ("github", "jira")

    def test_attach_context_only_disabled_by_false(self):
        settings = load_settings({**BASE_ENV, "ATTACH_GITHUB_CONTEXT_TO_CUSTOM_PROMPT": ""})
        assert settings.inputs.attach_github_context_to_custom_prompt is True

    def test_override_token(self):
        settings = load_settings({**BASE_ENV, "OVERRIDE_GITHUB_TOKEN": "ghp_personal"})
        assert settings.github.token == "ghp_personal"
        assert settings.github.is_default_token is False

    def test_override_equal_to_default(self):
        settings = load_settings({**BASE_ENV, "OVERRIDE_GITHUB_TOKEN": "ghs_default"})
        assert settings.github.is_default_token is True

    def test_run_settings(self):
        settings = load_settings(
            {
                **BASE_ENV,
                "GITHUB_RUN_ID": "42",
                "GITHUB_REPOSITORY": "acme/widgets",
                "GITHUB_EVENT_NAME": "issue_comment",
                "GITHUB_OUTPUT": "/tmp/out",
            }
        )
        assert settings.run.run_id == "42"
        assert settings.run.repository == "acme/widgets"
        assert settings.run.event_name == "issue_comment"
        assert settings.run.output_file == "/tmp/out"

    def test_missing_token(self):
        with pytest.raises(ConfigurationError, match="GitHub token not configured"):
            load_settings({})

    def test_app_credentials_suffice(self):
        settings = load_settings(
            {"GITHUB_APP_ID": "1", "GITHUB_PRIVATE_KEY": "pem", "GITHUB_INSTALLATION_ID": "2"}
        )
        assert settings.github.has_app_credentials


class TestJira:
    def test_complete(self):
        settings = load_settings(
            {
                **BASE_ENV,
                "JIRA_BASE_URL": "https://acme.atlassian.net",
                "JIRA_EMAIL": "bot@acme.io",
                "JIRA_API_TOKEN": "secret",
                "JIRA_TRANSITION_IN_PROGRESS": "11",
            }
        )
        assert settings.jira.base_url == "https://acme.atlassian.net"
        assert settings.jira.transition_in_progress == "11"
        assert settings.jira.transition_in_review == "31"

    def test_incomplete(self):
        with pytest.raises(ConfigurationError, match="Jira credentials not found"):
            load_settings({**BASE_ENV, "JIRA_BASE_URL": "https://acme.atlassian.net"})


class TestConfigFile:
    def test_file_then_env(self, tmp_path: Path):
        path = tmp_path / "taskfence.yaml"
        path.write_text(
            yaml.dump(
                {
                    "inputs": {"trigger_phrase": "@file-bot", "label_trigger": "agent"},
                    "fetch": {"max_attempts": 5},
                }
            )
        )

        settings = load_settings({**BASE_ENV, "TRIGGER_PHRASE": "@env-bot"}, config_file=path)

        assert settings.inputs.trigger_phrase == "@env-bot"
        assert settings.inputs.label_trigger == "agent"
        assert settings.fetch.max_attempts == 5

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_settings(BASE_ENV, config_file=tmp_path / "nope.yaml")

    def test_invalid_value(self, tmp_path: Path):
        path = tmp_path / "taskfence.yaml"
        path.write_text(yaml.dump({"fetch": {"max_attempts": 0}}))

        with pytest.raises(ConfigurationError, match="Invalid taskfence configuration"):
            load_settings(BASE_ENV, config_file=path)
