"""Poll loop and per-enhancement pipeline driver.

One enhancement is claimed at a time and walked through planning,
implementation, review and pull request creation.  Any exception in any
phase is caught once in :meth:`Orchestrator.process_enhancement`, recorded
as ``failed`` and followed by workspace cleanup and a failure notification.
"""

from __future__ import annotations

import logging
import signal
import threading
from typing import Any

from monitor_agent.codegen import CodeGenerator, apply_results, read_existing
from monitor_agent.errors import PlanOrderError
from monitor_agent.github_client import GitHubAPIError, GitHubClient
from monitor_agent.notifications import Notifier
from monitor_agent.planner import Planner, plan_order_issues
from monitor_agent.pr_text import PRWriter, plan_comment
from monitor_agent.review import ReviewOrchestrator
from monitor_agent.schemas import (
    CodeGenResult,
    EnhancementRecord,
    EnhancementStatus,
)
from monitor_agent.store import EnhancementStore
from monitor_agent.workspace import WorkspaceManager

logger = logging.getLogger(__name__)

S = EnhancementStatus

PR_LABELS = ("ai-generated", "enhancement")
DRY_RUN_NOTE = "Dry run completed - plan generated but not implemented"
NO_CHANGES_NOTE = "No changes generated"


class Orchestrator:
    def __init__(
        self,
        *,
        store: EnhancementStore,
        planner: Planner,
        codegen: CodeGenerator,
        workspace: WorkspaceManager,
        reviewer: ReviewOrchestrator,
        github: GitHubClient,
        writer: PRWriter,
        notifier: Notifier,
        dry_run: bool = False,
        max_concurrent_jobs: int = 1,
        poll_interval_seconds: float = 300,
        stale_job_minutes: int = 0,
        strict_plan_order: bool = False,
    ) -> None:
        if max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be >= 1")
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")
        self.store = store
        self.planner = planner
        self.codegen = codegen
        self.workspace = workspace
        self.reviewer = reviewer
        self.github = github
        self.writer = writer
        self.notifier = notifier
        self.dry_run = dry_run
        self.max_concurrent_jobs = max_concurrent_jobs
        self.poll_interval_seconds = poll_interval_seconds
        self.stale_job_minutes = stale_job_minutes
        self.strict_plan_order = strict_plan_order
        self._stop = threading.Event()

    # ------------------------------------------------------------------
    # Poll loop
    # ------------------------------------------------------------------

    def stop(self, *_: Any) -> None:
        if not self._stop.is_set():
            logger.info("Stop requested; finishing current work")
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def poll_once(self) -> EnhancementRecord | None:
        """Claim and process at most one pending enhancement."""
        if self.stale_job_minutes > 0:
            self.store.fail_stale(self.stale_job_minutes)

        active = self.store.active_count()
        if active >= self.max_concurrent_jobs:
            logger.info("At capacity (%d/%d active); waiting", active, self.max_concurrent_jobs)
            return None

        pending = self.store.get_pending()
        if not pending:
            logger.debug("No pending enhancements")
            return None
        logger.info("Found %d pending enhancement(s)", len(pending))

        for candidate in pending:
            if not self.store.claim(candidate.id):
                continue
            claimed = self.store.get(candidate.id)
            if claimed is None:
                continue
            return self.process_enhancement(claimed)
        return None

    def run_forever(self) -> None:
        """Poll until SIGINT/SIGTERM or :meth:`stop`."""
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, self.stop)
            signal.signal(signal.SIGTERM, self.stop)
        logger.info(
            "Monitor agent polling every %ss (dry_run=%s, max_jobs=%d)",
            self.poll_interval_seconds, self.dry_run, self.max_concurrent_jobs,
        )
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Exception:
                logger.exception("Poll iteration failed")
            self._stop.wait(self.poll_interval_seconds)
        logger.info("Monitor agent stopped")

    # ------------------------------------------------------------------
    # Per-enhancement pipeline
    # ------------------------------------------------------------------

    def process_enhancement(self, enhancement: EnhancementRecord) -> EnhancementRecord:
        """Drive a claimed (``processing``) enhancement to a terminal or PR state."""
        with self.workspace.session():
            try:
                return self._run_pipeline(enhancement)
            except Exception as exc:
                error = f"{type(exc).__name__}: {exc}"
                logger.exception("[#%s] Enhancement failed", enhancement.id)
                self.workspace.cleanup()
                record = enhancement
                try:
                    self.store.mark_failed(enhancement.id, error)
                    record = self.store.get(enhancement.id) or enhancement
                finally:
                    self.notifier.enhancement_failed(record, error)
                return record

    def _run_pipeline(self, enhancement: EnhancementRecord) -> EnhancementRecord:
        eid = enhancement.id
        logger.info("[#%s] Processing: %s", eid, enhancement.title)
        self.notifier.enhancement_started(enhancement)

        # -- planning ------------------------------------------------------
        record = self.store.transition(eid, S.PROCESSING, S.PLANNING)
        context = self.workspace.codebase_context()
        plan = self.planner.generate_plan(record.title, record.description, context)
        notes = None
        issues = plan_order_issues(plan)
        if issues:
            logger.warning("[#%s] Plan order issues: %s", eid, "; ".join(issues))
            if self.strict_plan_order:
                raise PlanOrderError("Plan order issues: " + "; ".join(issues))
            notes = "Plan order issues: " + "; ".join(issues)
        record = self.store.update_fields(eid, S.PLANNING, plan_json=plan.to_json(), notes=notes)

        if self.dry_run:
            record = self.store.transition(eid, S.PLANNING, S.COMPLETED, notes=DRY_RUN_NOTE)
            logger.info("[#%s] %s", eid, DRY_RUN_NOTE)
            self.notifier.enhancement_completed(record)
            return record

        # -- implementing --------------------------------------------------
        record = self.store.transition(eid, S.PLANNING, S.IMPLEMENTING)
        self.workspace.ensure_clean()
        branch = self.workspace.start_branch(eid, record.title)
        record = self.store.update_fields(eid, S.IMPLEMENTING, branch_name=branch)

        generated: list[CodeGenResult] = []
        for index, task in enumerate(plan.tasks, start=1):
            logger.info("[#%s] Task %d/%d: %s", eid, index, len(plan.tasks), task.title)
            existing = read_existing(self.workspace.repo_path, task)
            results = self.codegen.generate(task, existing, context)
            apply_results(self.workspace.repo_path, results)
            generated.extend(results)

        # -- reviewing -----------------------------------------------------
        record = self.store.transition(eid, S.IMPLEMENTING, S.REVIEWING)
        review = self.reviewer.internal_review(record, generated)

        changed = self.workspace.changed_files()
        if not changed:
            record = self.store.transition(eid, S.REVIEWING, S.COMPLETED, notes=NO_CHANGES_NOTE)
            logger.info("[#%s] %s", eid, NO_CHANGES_NOTE)
            self.workspace.return_to_base()
            self.notifier.enhancement_completed(record)
            return record

        message = self.writer.commit_message(record, changed)
        self.workspace.commit_and_push(branch, message, changed)

        content = self.writer.pr_content(record, plan, changed)
        pr = self.github.create_pull_request(
            branch, content.title, content.body, self.workspace.base_branch
        )
        try:
            self.github.add_labels(pr.number, PR_LABELS)
            self.github.post_comment(pr.number, plan_comment(plan))
        except GitHubAPIError as exc:
            logger.warning("[#%s] Could not decorate PR #%s: %s", eid, pr.number, exc)

        # -- external review -----------------------------------------------
        self.store.transition(eid, S.REVIEWING, S.COPILOT_REVIEWING)
        outcome = self.reviewer.review_pull_request(pr.number, review)
        review_note = (
            "Review bot approved" if outcome.bot.responded and outcome.bot.approved
            else "Review bot requested changes" if outcome.bot.responded
            else "Internal review posted as fallback"
        )

        record = self.store.transition(
            eid,
            S.COPILOT_REVIEWING,
            S.PR_CREATED,
            pr_number=pr.number,
            pr_url=pr.html_url or pr.url,
            notes="; ".join(n for n in (notes, review_note) if n),
        )
        logger.info("[#%s] PR #%s ready: %s", eid, pr.number, record.pr_url)
        self.notifier.pr_created(record)
        self.workspace.return_to_base()
        return record
