"""Two-layer review: internal AI review plus an optional external review bot.

The bot is asked for a review through a PR comment and its reply is
polled for a bounded number of attempts.  When the bot is disabled, times
out or errors, the internal review verdict is posted instead.  The phase
never blocks delivery; the merge gate in the scheduler is authoritative.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Iterable, Sequence

from monitor_agent.ai_client import AIClient
from monitor_agent.github_client import GitHubAPIError, GitHubClient
from monitor_agent.prompts import PromptCatalog
from monitor_agent.schemas import (
    BotReviewResult,
    CodeGenResult,
    CodeReview,
    EnhancementRecord,
    FileOperation,
    IssueComment,
    ReviewOutcome,
)

logger = logging.getLogger(__name__)

APPROVAL_PHRASES: tuple[str, ...] = (
    "looks good",
    "lgtm",
    "approved",
    "no issues found",
    "no issues",
    "no concerns",
    "well-written",
    "good to merge",
)
ISSUE_PHRASES: tuple[str, ...] = (
    "issue",
    "bug",
    "vulnerability",
    "concern",
    "suggest",
    "recommend",
    "should",
    "could improve",
    "consider",
    "warning",
    "error",
    "problem",
)

_LIST_ITEM = re.compile(r"^\s*(?:[-*]|\d+[.)])\s+(\S.*)$")


def classify_bot_reply(body: str) -> BotReviewResult:
    """Classify a review-bot reply as approval or change request.

    Approval phrases are checked first; issue phrases only count when no
    approval phrase matched.  Suggestions are the reply's bullet or
    numbered lines; a non-approving reply without such lines becomes one
    suggestion.
    """
    text = body or ""
    lowered = text.lower()
    has_approval = any(p in lowered for p in APPROVAL_PHRASES)
    has_issues = not has_approval and any(p in lowered for p in ISSUE_PHRASES)
    approved = has_approval and not has_issues

    suggestions: list[str] = []
    for line in text.splitlines():
        match = _LIST_ITEM.match(line)
        if match and len(line.strip()) > 3:
            suggestions.append(match.group(1).strip())
    if not approved and not suggestions and has_issues and text.strip():
        suggestions = [text.strip()]

    return BotReviewResult(
        responded=True,
        approved=approved,
        suggestions=suggestions,
        raw_response=text,
    )


def format_internal_review(review: CodeReview, *, fallback: bool) -> str:
    heading = "## AI Code Review (Fallback)" if fallback else "## AI Code Review"
    verdict = "Approved" if review.approved else "Changes suggested"
    lines = [heading, "", f"**Verdict:** {verdict}", "", review.summary or "No summary provided.", ""]
    if review.issues:
        lines.append("### Issues")
        for issue in review.issues:
            where = issue.file + (f":{issue.line}" if issue.line is not None else "")
            lines.append(f"- **{issue.severity.value}** `{where}`: {issue.message}")
        lines.append("")
    if review.suggestions:
        lines.append("### Suggestions")
        lines.extend(f"- {s}" for s in review.suggestions)
        lines.append("")
    if fallback:
        lines.append("*The review bot did not respond; this review was generated internally.*")
    return "\n".join(lines).rstrip() + "\n"


def format_bot_verdict(result: BotReviewResult, reviewer: str) -> str:
    verdict = "Approved" if result.approved else "Changes suggested"
    lines = [f"## {reviewer.title()} Review", "", f"**Verdict:** {verdict}", ""]
    if result.suggestions:
        lines.append("### Suggestions")
        lines.extend(f"- {s}" for s in result.suggestions)
    return "\n".join(lines).rstrip() + "\n"


class ReviewOrchestrator:
    def __init__(
        self,
        ai: AIClient,
        catalog: PromptCatalog,
        github: GitHubClient,
        *,
        enable_bot_review: bool = False,
        reviewer: str = "copilot",
        reviewer_aliases: Iterable[str] = ("github-copilot",),
        max_attempts: int = 10,
        interval_seconds: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.ai = ai
        self.catalog = catalog
        self.github = github
        self.enable_bot_review = enable_bot_review
        self.reviewer = reviewer.strip().lower() or "copilot"
        self.reviewer_logins = {self.reviewer, *(a.strip().lower() for a in reviewer_aliases)}
        self.max_attempts = max(1, int(max_attempts))
        self.interval_seconds = max(0.0, float(interval_seconds))
        self._sleep = sleep

    # -- internal review ---------------------------------------------------

    def internal_review(
        self,
        enhancement: EnhancementRecord,
        results: Sequence[CodeGenResult],
    ) -> CodeReview:
        """Review every non-delete file produced for *enhancement*."""
        latest: dict[str, str] = {}
        for result in results:
            if result.operation is FileOperation.DELETE:
                latest.pop(result.file_path, None)
            else:
                latest[result.file_path] = result.content
        if not latest:
            return CodeReview(approved=True, summary="No files to review.")
        files = "\n\n".join(f"**{path}:**\n```\n{content}\n```" for path, content in latest.items())
        prompt = self.catalog.render(
            "review", title=enhancement.title, description=enhancement.description, files=files
        )
        review = self.ai.complete_json(
            self.catalog.system("review"), prompt, CodeReview, operation="review"
        )
        logger.info(
            "[#%s] Internal review: %s, %d issue(s)",
            enhancement.id, "approved" if review.approved else "changes suggested", len(review.issues),
        )
        return review

    # -- review bot --------------------------------------------------------

    def _is_reviewer_comment(self, comment: IssueComment) -> bool:
        login = comment.user_login.lower()
        return login in self.reviewer_logins or (comment.is_bot and self.reviewer in login)

    def request_bot_review(self, pr_number: int) -> int:
        body = (
            f"@{self.reviewer} Please review this PR for security vulnerabilities, "
            "code quality issues, performance concerns and best practices."
        )
        comment_id = self.github.post_comment(pr_number, body)
        logger.info("Requested %s review on PR #%s (comment %s)", self.reviewer, pr_number, comment_id)
        return comment_id

    def poll_for_bot_response(
        self,
        pr_number: int,
        request_comment_id: int,
        *,
        max_attempts: int | None = None,
        interval_seconds: float | None = None,
    ) -> BotReviewResult:
        """Wait for a reviewer comment newer than the request; time out quietly."""
        attempts = self.max_attempts if max_attempts is None else max(1, int(max_attempts))
        interval = self.interval_seconds if interval_seconds is None else float(interval_seconds)
        for attempt in range(1, attempts + 1):
            for comment in self.github.list_comments(pr_number):
                if comment.id > request_comment_id and self._is_reviewer_comment(comment):
                    logger.info(
                        "%s replied on PR #%s after %d attempt(s)", comment.user_login, pr_number, attempt
                    )
                    return classify_bot_reply(comment.body)
            if attempt < attempts:
                self._sleep(interval)
        logger.info("No %s reply on PR #%s after %d attempt(s)", self.reviewer, pr_number, attempts)
        return BotReviewResult(responded=False, approved=False, suggestions=[], raw_response=None)

    def review_pull_request(self, pr_number: int, internal: CodeReview) -> ReviewOutcome:
        """Run the bot round-trip (when enabled) and post the resulting verdict."""
        bot = BotReviewResult()
        if self.enable_bot_review:
            try:
                request_id = self.request_bot_review(pr_number)
                bot = self.poll_for_bot_response(pr_number, request_id)
            except GitHubAPIError as exc:
                logger.warning("Review bot round-trip failed on PR #%s: %s", pr_number, exc)
                bot = BotReviewResult()

        if bot.responded:
            self._post(pr_number, format_bot_verdict(bot, self.reviewer))
            return ReviewOutcome(internal=internal, bot=bot, used_fallback=False)

        self._post(pr_number, format_internal_review(internal, fallback=True))
        return ReviewOutcome(internal=internal, bot=bot, used_fallback=True)

    def _post(self, pr_number: int, body: str) -> None:
        try:
            self.github.post_comment(pr_number, body)
        except GitHubAPIError as exc:
            logger.warning("Could not post review comment on PR #%s: %s", pr_number, exc)
