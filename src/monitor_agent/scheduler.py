"""One-shot pass over due deployments: gate on live PR state, then merge.

Deployments are processed sequentially.  Each is moved ``pending ->
in-progress`` with a compare-and-set first, so two overlapping scheduler
runs never handle the same deployment.
"""

from __future__ import annotations

import datetime as dt
import logging

from monitor_agent.errors import ConcurrentUpdateError, MonitorAgentError
from monitor_agent.github_client import GitHubClient
from monitor_agent.notifications import Notifier
from monitor_agent.schemas import (
    DeploymentResult,
    DeploymentStatus,
    DueDeployment,
    EnhancementStatus,
    PRStatus,
    SchedulerSummary,
)
from monitor_agent.store import DeploymentStore, EnhancementStore

logger = logging.getLogger(__name__)


class DeploymentError(MonitorAgentError):
    """Raised when a deployment cannot proceed; the message is the recorded reason."""


def merge_blocker(status: PRStatus) -> str | None:
    """Return why *status* may not be merged, or None when the gate passes.

    Closed or merged PRs are not blockers; the caller treats them as
    already deployed.
    """
    if status.mergeable is None:
        return f"PR #{status.number} mergeability unknown"
    if status.mergeable is False:
        return f"PR #{status.number} has merge conflicts"
    failed = status.failed_checks
    if failed:
        return "PR has failed checks: " + ", ".join(c.name for c in failed)
    return None


class DeploymentScheduler:
    def __init__(
        self,
        *,
        deployments: DeploymentStore,
        enhancements: EnhancementStore,
        github: GitHubClient,
        notifier: Notifier,
        merge_method: str = "squash",
    ) -> None:
        self.deployments = deployments
        self.enhancements = enhancements
        self.github = github
        self.notifier = notifier
        self.merge_method = merge_method

    def run(self, now: dt.datetime | None = None) -> SchedulerSummary:
        """Process every due deployment once and summarize the outcome."""
        due = self.deployments.due(now)
        logger.info("Found %d deployment(s) due", len(due))
        summary = SchedulerSummary()
        for deployment in due:
            result = self.process_deployment(deployment)
            if result is None:
                continue
            summary.processed += 1
            if result.status is DeploymentStatus.DEPLOYED:
                summary.succeeded += 1
            else:
                summary.failed += 1
            summary.results.append(result)
        logger.info(
            "Scheduler finished: processed=%d succeeded=%d failed=%d",
            summary.processed, summary.succeeded, summary.failed,
        )
        return summary

    def process_deployment(self, deployment: DueDeployment) -> DeploymentResult | None:
        """Gate and merge one deployment; None when another run already took it."""
        if not self.deployments.start(deployment.id):
            logger.info("Deployment %s already taken; skipping", deployment.id)
            return None
        logger.info(
            "Deployment %s: enhancement #%s (PR #%s)",
            deployment.id, deployment.enhancement_id, deployment.pr_number,
        )
        try:
            status, note = self._deploy(deployment)
        except Exception as exc:
            reason = str(exc) if isinstance(exc, MonitorAgentError) else f"{type(exc).__name__}: {exc}"
            logger.error("Deployment %s failed: %s", deployment.id, reason)
            self.deployments.finish(deployment.id, DeploymentStatus.FAILED, reason)
            self.notifier.deployment(
                enhancement_id=deployment.enhancement_id,
                description=deployment.description or deployment.title,
                requested_by=deployment.requested_by,
                status=DeploymentStatus.FAILED,
                pr_number=deployment.pr_number,
                error=reason,
            )
            return DeploymentResult(
                deployment_id=deployment.id,
                enhancement_id=deployment.enhancement_id,
                status=DeploymentStatus.FAILED,
                message=reason,
            )

        self.deployments.finish(deployment.id, status, note)
        self._complete_enhancement(deployment.enhancement_id, note)
        self.notifier.deployment(
            enhancement_id=deployment.enhancement_id,
            description=deployment.description or deployment.title,
            requested_by=deployment.requested_by,
            status=status,
            pr_number=deployment.pr_number,
        )
        return DeploymentResult(
            deployment_id=deployment.id,
            enhancement_id=deployment.enhancement_id,
            status=status,
            message=note,
        )

    def _deploy(self, deployment: DueDeployment) -> tuple[DeploymentStatus, str]:
        if not deployment.pr_number:
            raise DeploymentError(f"Enhancement #{deployment.enhancement_id} has no PR number")
        pr_status = self.github.get_pr_status(deployment.pr_number)

        if pr_status.merged:
            return DeploymentStatus.DEPLOYED, "PR was already merged"
        if pr_status.state == "closed":
            return DeploymentStatus.DEPLOYED, "PR was already closed"

        blocker = merge_blocker(pr_status)
        if blocker:
            raise DeploymentError(blocker)

        sha = self.github.merge_pull_request(
            deployment.pr_number,
            method=self.merge_method,
            commit_title=f"{deployment.title} (#{deployment.pr_number})" if deployment.title else None,
        )
        note = f"Merged PR #{deployment.pr_number}"
        if sha:
            note += f" ({sha[:12]})"
        return DeploymentStatus.DEPLOYED, note

    def _complete_enhancement(self, enhancement_id: int, note: str) -> None:
        """Move the merged enhancement to completed; never fails the scheduler run."""
        try:
            record = self.enhancements.get(enhancement_id)
            if record is None or record.status is not EnhancementStatus.PR_CREATED:
                return
            notes = "; ".join(n for n in (record.notes, note) if n)
            record = self.enhancements.transition(
                enhancement_id, EnhancementStatus.PR_CREATED, EnhancementStatus.COMPLETED, notes=notes
            )
        except ConcurrentUpdateError:
            logger.info("Enhancement #%s changed before completion; leaving it", enhancement_id)
            return
        except Exception:
            logger.exception("Could not complete enhancement #%s after deployment", enhancement_id)
            return
        self.notifier.enhancement_completed(record)
