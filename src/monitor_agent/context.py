"""Wire every component once from :class:`Settings`."""

from __future__ import annotations

from dataclasses import dataclass

from monitor_agent.ai_client import AIClient
from monitor_agent.codegen import CodeGenerator
from monitor_agent.config import Settings
from monitor_agent.github_client import GitHubClient
from monitor_agent.notifications import Notifier
from monitor_agent.orchestrator import Orchestrator
from monitor_agent.planner import Planner
from monitor_agent.pr_text import PRWriter
from monitor_agent.prompts import PromptCatalog
from monitor_agent.review import ReviewOrchestrator
from monitor_agent.scheduler import DeploymentScheduler
from monitor_agent.store import Database, DeploymentStore, EnhancementStore
from monitor_agent.workspace import WorkspaceManager


@dataclass
class AppContext:
    settings: Settings
    database: Database
    enhancements: EnhancementStore
    deployments: DeploymentStore
    github: GitHubClient
    notifier: Notifier

    def close(self) -> None:
        self.database.dispose()


def build_context(settings: Settings) -> AppContext:
    """Create the database, stores, host client and notifier."""
    database = Database(settings.database_url)
    database.create_all()
    return AppContext(
        settings=settings,
        database=database,
        enhancements=EnhancementStore(database),
        deployments=DeploymentStore(database),
        github=GitHubClient(
            settings.github_token,
            settings.github_owner,
            settings.github_repo,
            api_url=settings.github_api_url,
        ),
        notifier=Notifier(
            smtp=settings.smtp,
            slack_webhook_url=settings.slack_webhook_url,
            email_enabled=settings.enable_email_notifications,
            slack_enabled=settings.enable_slack_notifications,
            recipients=settings.notification_emails,
        ),
    )


def build_orchestrator(ctx: AppContext, catalog: PromptCatalog | None = None) -> Orchestrator:
    s = ctx.settings
    catalog = catalog or PromptCatalog()
    ai = AIClient(
        s.ai_model,
        anthropic_api_key=s.anthropic_api_key,
        openai_api_key=s.openai_api_key,
        max_tokens=s.ai_max_tokens,
        max_attempts=s.ai_max_attempts,
        timeout_s=s.ai_request_timeout_s,
    )
    workspace = WorkspaceManager(
        s.git_repo_path,
        base_branch=s.github_base_branch,
        remote=s.git_remote,
        author_name=s.git_author_name,
        author_email=s.git_author_email,
    )
    reviewer = ReviewOrchestrator(
        ai,
        catalog,
        ctx.github,
        enable_bot_review=s.enable_bot_review,
        reviewer=s.bot_reviewer,
        max_attempts=s.bot_review_max_attempts,
        interval_seconds=s.bot_review_interval_seconds,
    )
    return Orchestrator(
        store=ctx.enhancements,
        planner=Planner(ai, catalog),
        codegen=CodeGenerator(ai, catalog),
        workspace=workspace,
        reviewer=reviewer,
        github=ctx.github,
        writer=PRWriter(ai, catalog),
        notifier=ctx.notifier,
        dry_run=s.dry_run,
        max_concurrent_jobs=s.max_concurrent_jobs,
        poll_interval_seconds=s.poll_interval_seconds,
        stale_job_minutes=s.stale_job_minutes,
        strict_plan_order=s.strict_plan_order,
    )


def build_scheduler(ctx: AppContext) -> DeploymentScheduler:
    return DeploymentScheduler(
        deployments=ctx.deployments,
        enhancements=ctx.enhancements,
        github=ctx.github,
        notifier=ctx.notifier,
    )
