"""Runtime settings resolved from environment variables."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from monitor_agent.ai_client import provider_from_model

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_DATABASE_URL = "sqlite:///monitor_agent.db"
DEFAULT_GITHUB_API_URL = "https://api.github.com"


def _env_str(env: Mapping[str, str], key: str, default: str = "") -> str:
    return str(env.get(key, default) or default).strip()


def _env_bool(env: Mapping[str, str], key: str, default: bool = False) -> bool:
    raw = str(env.get(key, "") or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = str(env.get(key, "") or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r; using %s", key, raw, default)
        return default


@dataclass(frozen=True)
class SmtpSettings:
    host: str = ""
    port: int = 587
    secure: bool = False
    user: str = ""
    password: str = ""
    sender: str = ""


@dataclass(frozen=True)
class Settings:
    """Everything the agent reads from its environment.

    Build with :meth:`from_env`; call :meth:`validate` before starting a
    long-running loop.
    """

    database_url: str = DEFAULT_DATABASE_URL

    # AI service
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    ai_model: str = DEFAULT_MODEL
    ai_max_tokens: int = 4096
    ai_max_attempts: int = 3
    ai_request_timeout_s: int = 600

    # Repository host
    github_token: str = ""
    github_owner: str = ""
    github_repo: str = ""
    github_base_branch: str = "main"
    github_api_url: str = DEFAULT_GITHUB_API_URL

    # Working copy
    git_repo_path: Path = field(default_factory=Path.cwd)
    git_remote: str = "origin"
    git_author_name: str = "Monitor Agent"
    git_author_email: str = "monitor-agent@localhost"

    # Notifications
    smtp: SmtpSettings = field(default_factory=SmtpSettings)
    slack_webhook_url: str = ""
    notification_emails: tuple[str, ...] = ()
    enable_email_notifications: bool = False
    enable_slack_notifications: bool = False

    # Loop behaviour
    poll_interval_seconds: int = 300
    max_concurrent_jobs: int = 1
    stale_job_minutes: int = 0
    dry_run: bool = False
    strict_plan_order: bool = False

    # Review bot
    enable_bot_review: bool = False
    bot_reviewer: str = "copilot"
    bot_review_max_attempts: int = 10
    bot_review_interval_seconds: int = 30

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        """Build settings from *env* (defaults to ``os.environ``)."""
        env = os.environ if env is None else env
        repo_raw = _env_str(env, "GIT_REPO_PATH")
        smtp = SmtpSettings(
            host=_env_str(env, "SMTP_HOST"),
            port=_env_int(env, "SMTP_PORT", 587),
            secure=_env_bool(env, "SMTP_SECURE"),
            user=_env_str(env, "SMTP_USER"),
            password=_env_str(env, "SMTP_PASSWORD"),
            sender=_env_str(env, "SMTP_FROM") or _env_str(env, "SMTP_USER"),
        )
        return cls(
            database_url=_env_str(env, "DATABASE_URL", DEFAULT_DATABASE_URL),
            anthropic_api_key=_env_str(env, "ANTHROPIC_API_KEY"),
            openai_api_key=_env_str(env, "OPENAI_API_KEY"),
            ai_model=_env_str(env, "AI_MODEL", DEFAULT_MODEL),
            ai_max_tokens=_env_int(env, "AI_MAX_TOKENS", 4096),
            ai_max_attempts=max(1, _env_int(env, "AI_MAX_ATTEMPTS", 3)),
            ai_request_timeout_s=_env_int(env, "AI_REQUEST_TIMEOUT_S", 600),
            github_token=_env_str(env, "GITHUB_TOKEN"),
            github_owner=_env_str(env, "GITHUB_OWNER"),
            github_repo=_env_str(env, "GITHUB_REPO"),
            github_base_branch=_env_str(env, "GITHUB_BASE_BRANCH", "main"),
            github_api_url=_env_str(env, "GITHUB_API_URL", DEFAULT_GITHUB_API_URL).rstrip("/"),
            git_repo_path=Path(repo_raw).expanduser() if repo_raw else Path.cwd(),
            git_remote=_env_str(env, "GIT_REMOTE", "origin"),
            git_author_name=_env_str(env, "GIT_AUTHOR_NAME", "Monitor Agent"),
            git_author_email=_env_str(env, "GIT_AUTHOR_EMAIL", "monitor-agent@localhost"),
            smtp=smtp,
            slack_webhook_url=_env_str(env, "SLACK_WEBHOOK_URL"),
            notification_emails=tuple(
                addr.strip()
                for addr in _env_str(env, "NOTIFICATION_EMAILS").split(",")
                if addr.strip()
            ),
            enable_email_notifications=_env_bool(env, "ENABLE_EMAIL_NOTIFICATIONS"),
            enable_slack_notifications=_env_bool(env, "ENABLE_SLACK_NOTIFICATIONS"),
            poll_interval_seconds=max(1, _env_int(env, "POLL_INTERVAL_SECONDS", 300)),
            max_concurrent_jobs=max(1, _env_int(env, "MAX_CONCURRENT_JOBS", 1)),
            stale_job_minutes=max(0, _env_int(env, "STALE_JOB_MINUTES", 0)),
            dry_run=_env_bool(env, "DRY_RUN"),
            strict_plan_order=_env_bool(env, "STRICT_PLAN_ORDER"),
            enable_bot_review=_env_bool(env, "ENABLE_BOT_REVIEW"),
            bot_reviewer=_env_str(env, "BOT_REVIEWER", "copilot"),
            bot_review_max_attempts=max(1, _env_int(env, "BOT_REVIEW_MAX_ATTEMPTS", 10)),
            bot_review_interval_seconds=max(0, _env_int(env, "BOT_REVIEW_INTERVAL_SECONDS", 30)),
        )

    @property
    def ai_provider(self) -> str:
        return provider_from_model(self.ai_model)

    def validate(self, *, require_pipeline: bool = True) -> list[str]:
        """Return a list of human-readable problems; empty means usable.

        ``require_pipeline=False`` skips checks that only the enhancement
        loop needs (AI key, working copy), which is what the deployment
        scheduler uses.
        """
        problems: list[str] = []
        if require_pipeline:
            if self.ai_provider == "openai" and not self.openai_api_key:
                problems.append(f"OPENAI_API_KEY is required for model {self.ai_model}")
            elif self.ai_provider == "anthropic" and not self.anthropic_api_key:
                problems.append("ANTHROPIC_API_KEY is required")
            elif self.ai_provider == "unknown":
                problems.append(f"AI_MODEL {self.ai_model!r} is not a Claude or GPT model")
            if not self.git_repo_path.is_dir():
                problems.append(f"GIT_REPO_PATH does not exist: {self.git_repo_path}")
        if not self.github_token:
            problems.append("GITHUB_TOKEN is required")
        if not self.github_owner or not self.github_repo:
            problems.append("GITHUB_OWNER and GITHUB_REPO are required")
        if self.enable_email_notifications and not self.smtp.host:
            problems.append("SMTP_HOST is required when ENABLE_EMAIL_NOTIFICATIONS is on")
        if self.enable_slack_notifications and not self.slack_webhook_url:
            problems.append("SLACK_WEBHOOK_URL is required when ENABLE_SLACK_NOTIFICATIONS is on")
        return problems
