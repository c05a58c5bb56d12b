"""Tests for review-bot reply classification, polling and verdict posting."""

from __future__ import annotations

from pathlib import Path

import pytest

from monitor_agent.github_client import GitHubAPIError
from monitor_agent.prompts import PromptCatalog
from monitor_agent.review import (
    ReviewOrchestrator,
    classify_bot_reply,
    format_internal_review,
)
from monitor_agent.schemas import (
    CodeGenResult,
    CodeReview,
    EnhancementRecord,
    IssueComment,
    ReviewIssue,
)


class FakeGitHub:
    def __init__(self, replies: list[list[IssueComment]] | None = None) -> None:
        self.replies = replies or []
        self.posted: list[tuple[int, str]] = []
        self.list_calls = 0
        self.fail_post = False

    def post_comment(self, number: int, body: str) -> int:
        if self.fail_post:
            raise GitHubAPIError("boom", 500)
        self.posted.append((number, body))
        return 100 + len(self.posted)

    def list_comments(self, number: int) -> list[IssueComment]:
        index = min(self.list_calls, len(self.replies) - 1) if self.replies else -1
        self.list_calls += 1
        return self.replies[index] if index >= 0 else []


class FakeAI:
    def __init__(self, review: CodeReview) -> None:
        self.review = review
        self.calls = 0

    def complete_json(self, system, prompt, target, *, operation=""):
        self.calls += 1
        return self.review


def _orchestrator(github: FakeGitHub, tmp_path: Path, *, enabled: bool = True, ai=None, **kw):
    sleeps: list[float] = []
    orch = ReviewOrchestrator(
        ai or FakeAI(CodeReview(approved=True, summary="fine")),
        PromptCatalog(user_override=tmp_path / "none.yaml"),
        github,
        enable_bot_review=enabled,
        sleep=sleeps.append,
        **kw,
    )
    return orch, sleeps


def _comment(cid: int, login: str, body: str, user_type: str = "Bot") -> IssueComment:
    return IssueComment(id=cid, body=body, user_login=login, user_type=user_type)


class TestClassifyBotReply:
    @pytest.mark.parametrize(
        "body",
        ["LGTM! The code looks good.", "Approved, no issues found.", "This is well-written."],
    )
    def test_approvals(self, body: str):
        result = classify_bot_reply(body)
        assert result.responded is True
        assert result.approved is True

    def test_single_sentence_suggestion_is_not_approval(self):
        result = classify_bot_reply("I suggest adding error handling here.")
        assert result.approved is False
        assert result.suggestions == ["I suggest adding error handling here."]

    def test_list_lines_become_suggestions(self):
        body = "Some concerns:\n- Validate the input\n* Add a timeout\n1. Log failures\n"
        result = classify_bot_reply(body)
        assert result.approved is False
        assert result.suggestions == ["Validate the input", "Add a timeout", "Log failures"]

    def test_decimals_and_bold_lines_are_not_list_items(self):
        body = "1.5s timeout is too short\n**Warning** about retries\n2) Raise the timeout\n"
        result = classify_bot_reply(body)
        assert result.suggestions == ["Raise the timeout"]

    def test_approval_wins_over_issue_words(self):
        assert classify_bot_reply("Looks good, though you could consider a docstring.").approved

    def test_neutral_reply_is_not_approval(self):
        result = classify_bot_reply("Thanks for the PR.")
        assert result.approved is False
        assert result.suggestions == []
        assert result.raw_response == "Thanks for the PR."


class TestPolling:
    def test_reply_after_request_is_classified(self, tmp_path: Path):
        github = FakeGitHub([
            [],
            [_comment(5, "copilot", "old LGTM"), _comment(200, "copilot[bot]", "LGTM")],
        ])
        orch, sleeps = _orchestrator(github, tmp_path, max_attempts=3, interval_seconds=7)

        result = orch.poll_for_bot_response(42, 101)

        assert result.responded and result.approved
        assert sleeps == [7.0]

    def test_timeout_returns_not_responded_without_trailing_sleep(self, tmp_path: Path):
        orch, sleeps = _orchestrator(FakeGitHub(), tmp_path, max_attempts=1, interval_seconds=0)

        result = orch.poll_for_bot_response(42, 101)

        assert result.responded is False
        assert result.approved is False
        assert result.suggestions == []
        assert result.raw_response is None
        assert sleeps == []

    def test_human_comment_is_ignored(self, tmp_path: Path):
        github = FakeGitHub([[_comment(300, "alice", "LGTM", user_type="User")]])
        orch, sleeps = _orchestrator(github, tmp_path, max_attempts=2, interval_seconds=1)

        assert orch.poll_for_bot_response(42, 101).responded is False
        assert sleeps == [1.0]

    def test_exact_alias_login_matches_without_bot_type(self, tmp_path: Path):
        github = FakeGitHub([[_comment(300, "github-copilot", "LGTM", user_type="User")]])
        orch, _ = _orchestrator(github, tmp_path, max_attempts=1)

        assert orch.poll_for_bot_response(42, 101).responded is True


class TestReviewPullRequest:
    def test_disabled_bot_posts_internal_fallback(self, tmp_path: Path):
        github = FakeGitHub()
        orch, _ = _orchestrator(github, tmp_path, enabled=False)
        internal = CodeReview(approved=False, summary="needs work", suggestions=["split module"])

        outcome = orch.review_pull_request(42, internal)

        assert outcome.used_fallback is True
        assert outcome.review_passed is True
        assert len(github.posted) == 1
        number, body = github.posted[0]
        assert number == 42
        assert body.startswith("## AI Code Review (Fallback)")
        assert "split module" in body

    def test_bot_reply_posts_bot_verdict(self, tmp_path: Path):
        github = FakeGitHub([[_comment(500, "copilot", "- rename foo")]])
        orch, _ = _orchestrator(github, tmp_path, max_attempts=1)

        outcome = orch.review_pull_request(42, CodeReview(approved=True))

        assert outcome.used_fallback is False
        assert outcome.bot.suggestions == ["rename foo"]
        request_body = github.posted[0][1]
        assert request_body.startswith("@copilot Please review this PR")
        assert github.posted[1][1].startswith("## Copilot Review")

    def test_host_errors_never_raise(self, tmp_path: Path):
        github = FakeGitHub()
        github.fail_post = True
        orch, _ = _orchestrator(github, tmp_path)

        outcome = orch.review_pull_request(42, CodeReview(approved=True))

        assert outcome.used_fallback is True
        assert outcome.bot.responded is False


class TestInternalReview:
    def test_no_files_skips_ai(self, tmp_path: Path):
        ai = FakeAI(CodeReview(approved=False))
        orch, _ = _orchestrator(FakeGitHub(), tmp_path, ai=ai)
        record = EnhancementRecord(id=1, title="t")
        deleted = CodeGenResult.model_validate({"filePath": "a.py", "operation": "delete"})

        review = orch.internal_review(record, [deleted])

        assert review.approved is True
        assert review.summary == "No files to review."
        assert ai.calls == 0

    def test_files_are_sent_to_ai(self, tmp_path: Path):
        ai = FakeAI(CodeReview(approved=True, summary="ok"))
        orch, _ = _orchestrator(FakeGitHub(), tmp_path, ai=ai)
        created = CodeGenResult.model_validate(
            {"filePath": "a.py", "operation": "create", "content": "x = 1\n"}
        )

        assert orch.internal_review(EnhancementRecord(id=1, title="t"), [created]).summary == "ok"
        assert ai.calls == 1


def test_format_internal_review_lists_issues():
    review = CodeReview(
        approved=False,
        summary="s",
        issues=[ReviewIssue(severity="error", file="a.py", line=3, message="bad")],
    )
    text = format_internal_review(review, fallback=False)
    assert text.startswith("## AI Code Review\n")
    assert "- **error** `a.py:3`: bad" in text
