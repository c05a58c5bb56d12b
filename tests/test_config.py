"""Tests for environment-driven settings."""

from __future__ import annotations

from pathlib import Path

from monitor_agent.config import DEFAULT_DATABASE_URL, Settings


def _complete_env(tmp_path: Path, **extra: str) -> dict[str, str]:
    env = {
        "ANTHROPIC_API_KEY": "sk-ant",
        "GITHUB_TOKEN": "ghp",
        "GITHUB_OWNER": "acme",
        "GITHUB_REPO": "app",
        "GIT_REPO_PATH": str(tmp_path),
    }
    env.update(extra)
    return env


def test_defaults(tmp_path: Path):
    settings = Settings.from_env({"GIT_REPO_PATH": str(tmp_path)})
    assert settings.database_url == DEFAULT_DATABASE_URL
    assert settings.poll_interval_seconds == 300
    assert settings.max_concurrent_jobs == 1
    assert settings.github_base_branch == "main"
    assert settings.enable_bot_review is False
    assert settings.ai_provider == "anthropic"


def test_parses_lists_flags_and_numbers(tmp_path: Path):
    settings = Settings.from_env(_complete_env(
        tmp_path,
        NOTIFICATION_EMAILS=" ops@example.com, ,dev@example.com ",
        DRY_RUN="yes",
        ENABLE_BOT_REVIEW="true",
        MAX_CONCURRENT_JOBS="0",
        POLL_INTERVAL_SECONDS="not-a-number",
        SMTP_PORT="465",
        SMTP_SECURE="1",
        GITHUB_API_URL="https://ghe.example.test/api/v3/",
    ))
    assert settings.notification_emails == ("ops@example.com", "dev@example.com")
    assert settings.dry_run is True
    assert settings.enable_bot_review is True
    assert settings.max_concurrent_jobs == 1
    assert settings.poll_interval_seconds == 300
    assert settings.smtp.port == 465
    assert settings.smtp.secure is True
    assert settings.github_api_url == "https://ghe.example.test/api/v3"


def test_complete_settings_validate(tmp_path: Path):
    assert Settings.from_env(_complete_env(tmp_path)).validate() == []


def test_missing_credentials_reported(tmp_path: Path):
    problems = Settings.from_env({"GIT_REPO_PATH": str(tmp_path)}).validate()
    assert "ANTHROPIC_API_KEY is required" in problems
    assert "GITHUB_TOKEN is required" in problems
    assert "GITHUB_OWNER and GITHUB_REPO are required" in problems


def test_openai_model_needs_openai_key(tmp_path: Path):
    settings = Settings.from_env(_complete_env(tmp_path, AI_MODEL="gpt-4o"))
    assert settings.ai_provider == "openai"
    assert settings.validate() == ["OPENAI_API_KEY is required for model gpt-4o"]


def test_scheduler_validation_skips_pipeline_checks(tmp_path: Path):
    env = _complete_env(tmp_path, GIT_REPO_PATH=str(tmp_path / "missing"))
    del env["ANTHROPIC_API_KEY"]
    settings = Settings.from_env(env)
    assert settings.validate(require_pipeline=False) == []
    assert len(settings.validate()) == 2


def test_enabled_channels_need_their_settings(tmp_path: Path):
    settings = Settings.from_env(_complete_env(
        tmp_path, ENABLE_EMAIL_NOTIFICATIONS="1", ENABLE_SLACK_NOTIFICATIONS="1"
    ))
    assert settings.validate() == [
        "SMTP_HOST is required when ENABLE_EMAIL_NOTIFICATIONS is on",
        "SLACK_WEBHOOK_URL is required when ENABLE_SLACK_NOTIFICATIONS is on",
    ]
