"""Commit messages, pull request text and plan comments for an enhancement."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from monitor_agent.ai_client import AIClient
from monitor_agent.errors import AIServiceError
from monitor_agent.prompts import PromptCatalog
from monitor_agent.schemas import EnhancementPlan, EnhancementRecord, PRContent

logger = logging.getLogger(__name__)

_COMMIT_MAX_TOKENS = 200


def fallback_commit_message(title: str) -> str:
    return f"feat: {title}"


def _clean_commit_message(text: str) -> str:
    return text.strip().strip("`").strip().strip('"').strip("'").strip()


class PRWriter:
    """AI-written commit and PR text with deterministic fallbacks.

    A failed or unusable answer here never fails the enhancement; the
    fallbacks carry the request's own title and description instead.
    """

    def __init__(self, ai: AIClient, catalog: PromptCatalog) -> None:
        self.ai = ai
        self.catalog = catalog

    def commit_message(self, enhancement: EnhancementRecord, files: Sequence[str]) -> str:
        prompt = self.catalog.render(
            "commit_message",
            title=enhancement.title,
            description=enhancement.description,
            files=", ".join(files),
        )
        try:
            text = self.ai.complete(
                self.catalog.system("commit_message"), prompt, operation="commit message"
            )
        except AIServiceError as exc:
            logger.warning("[#%s] Commit message generation failed: %s", enhancement.id, exc)
            return fallback_commit_message(enhancement.title)
        return _clean_commit_message(text) or fallback_commit_message(enhancement.title)

    def pr_content(
        self,
        enhancement: EnhancementRecord,
        plan: EnhancementPlan,
        files: Sequence[str],
    ) -> PRContent:
        prompt = self.catalog.render(
            "pr_description",
            title=enhancement.title,
            description=enhancement.description,
            summary=plan.summary,
            effort=plan.estimated_effort,
            task_count=len(plan.tasks),
            files=", ".join(files),
            risks="; ".join(r.description for r in plan.risks) or "none identified",
        )
        try:
            return self.ai.complete_json(
                self.catalog.system("pr_description"), prompt, PRContent, operation="PR description"
            )
        except AIServiceError as exc:
            logger.warning("[#%s] PR description generation failed: %s", enhancement.id, exc)
            return PRContent(title=enhancement.title, body=enhancement.description)


def plan_comment(plan: EnhancementPlan) -> str:
    """Markdown comment describing the plan that produced a pull request."""
    lines = ["## Implementation Plan", "", f"**Summary:** {plan.summary or 'n/a'}", ""]
    lines.append("### Tasks Completed")
    for task in plan.tasks:
        lines.append(f"- [x] {task.title} ({task.type.value})")
    lines.extend(["", f"**Estimated Effort:** {plan.estimated_effort or 'n/a'}", ""])
    if plan.risks:
        lines.append("### Risks")
        for risk in plan.risks:
            entry = f"- **{risk.severity.value.upper()}**: {risk.description}"
            if risk.mitigation:
                entry += f" (mitigation: {risk.mitigation})"
            lines.append(entry)
        lines.append("")
    lines.append("---")
    lines.append("*This PR was generated automatically by Monitor Agent.*")
    return "\n".join(lines)
