"""GitHub REST client for pull requests, comments, labels, checks and merges."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from contextlib import suppress
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from monitor_agent.errors import MonitorAgentError
from monitor_agent.schemas import CheckRun, IssueComment, PRStatus, PullRequestRef

logger = logging.getLogger(__name__)

_GITHUB_API_TIMEOUT_SECONDS = 20
_PAGE_SIZE = 100
_MAX_PAGES = 20


class GitHubAPIError(MonitorAgentError):
    """Raised when GitHub rejects a request or cannot be reached."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def _github_api_error_message(exc: HTTPError) -> str:
    detail = ""
    with suppress(Exception):
        body = exc.read().decode("utf-8", errors="replace")
        parsed = json.loads(body) if body else {}
        if isinstance(parsed, dict):
            detail = str(parsed.get("message") or "").strip()
    message = f"GitHub API returned HTTP {exc.code}."
    if detail:
        message += f" {detail[:220]}"
    return message


class GitHubClient:
    """Minimal typed wrapper over the endpoints the pipeline needs."""

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        *,
        api_url: str = "https://api.github.com",
        timeout: int = _GITHUB_API_TIMEOUT_SECONDS,
    ) -> None:
        self.token = str(token or "").strip()
        self.owner = owner
        self.repo = repo
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    @property
    def _repo_path(self) -> str:
        return f"/repos/{quote(self.owner, safe='')}/{quote(self.repo, safe='')}"

    def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self.api_url}{path}"
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "monitor-agent",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        data: bytes | None = None
        if payload is not None:
            headers["Content-Type"] = "application/json"
            data = json.dumps(payload).encode("utf-8")

        logger.debug("GitHub %s %s", method.upper(), path)
        request_obj = Request(url, headers=headers, data=data, method=method.upper())
        try:
            with urlopen(request_obj, timeout=self.timeout) as response:
                body_text = response.read().decode("utf-8", errors="replace")
        except HTTPError as exc:
            raise GitHubAPIError(
                f"{method.upper()} {path}: {_github_api_error_message(exc)}", exc.code
            ) from exc
        except URLError as exc:
            reason = str(getattr(exc, "reason", exc) or "").strip()
            raise GitHubAPIError(f"Could not reach GitHub API: {reason or exc}") from exc

        if not body_text.strip():
            return {}
        try:
            return json.loads(body_text)
        except json.JSONDecodeError as exc:
            snippet = re.sub(r"\s+", " ", body_text)[:200]
            raise GitHubAPIError(f"GitHub API returned non-JSON body: {snippet}") from exc

    # -- pull requests -------------------------------------------------------

    def create_pull_request(self, head: str, title: str, body: str, base: str) -> PullRequestRef:
        data = self._request(
            "POST",
            f"{self._repo_path}/pulls",
            {"title": title, "head": head, "base": base, "body": body},
        )
        pr = PullRequestRef(
            number=int(data["number"]),
            url=str(data.get("url") or ""),
            html_url=str(data.get("html_url") or ""),
        )
        logger.info("Opened PR #%s: %s", pr.number, pr.html_url)
        return pr

    def get_pull_request(self, number: int) -> dict[str, Any]:
        return self._request("GET", f"{self._repo_path}/pulls/{int(number)}")

    def list_check_runs(self, sha: str) -> list[CheckRun]:
        data = self._request(
            "GET", f"{self._repo_path}/commits/{quote(sha, safe='')}/check-runs?per_page={_PAGE_SIZE}"
        )
        runs = data.get("check_runs") if isinstance(data, dict) else None
        return [
            CheckRun(
                name=str(run.get("name") or ""),
                status=str(run.get("status") or ""),
                conclusion=run.get("conclusion"),
            )
            for run in (runs or [])
            if isinstance(run, dict)
        ]

    def get_pr_status(self, number: int) -> PRStatus:
        """Live PR state plus check runs for its head commit."""
        data = self.get_pull_request(number)
        head_sha = str((data.get("head") or {}).get("sha") or "")
        return PRStatus(
            number=int(number),
            state=str(data.get("state") or "open"),
            merged=bool(data.get("merged")),
            mergeable=data.get("mergeable"),
            head_sha=head_sha,
            checks=self.list_check_runs(head_sha) if head_sha else [],
        )

    def merge_pull_request(
        self,
        number: int,
        *,
        method: str = "squash",
        commit_title: str | None = None,
    ) -> str:
        """Merge the PR and return the merge commit SHA."""
        payload: dict[str, Any] = {"merge_method": method}
        if commit_title:
            payload["commit_title"] = commit_title
        data = self._request("PUT", f"{self._repo_path}/pulls/{int(number)}/merge", payload)
        if isinstance(data, dict) and data.get("merged") is False:
            raise GitHubAPIError(f"PR #{number} was not merged: {data.get('message') or 'unknown'}")
        sha = str((data or {}).get("sha") or "")
        logger.info("Merged PR #%s (%s)", number, sha[:8] or "no sha")
        return sha

    # -- issue comments / labels --------------------------------------------

    def post_comment(self, number: int, body: str) -> int:
        data = self._request(
            "POST", f"{self._repo_path}/issues/{int(number)}/comments", {"body": body}
        )
        return int(data["id"])

    def list_comments(self, number: int) -> list[IssueComment]:
        comments: list[IssueComment] = []
        for page in range(1, _MAX_PAGES + 1):
            data = self._request(
                "GET",
                f"{self._repo_path}/issues/{int(number)}/comments"
                f"?per_page={_PAGE_SIZE}&page={page}",
            )
            batch = data if isinstance(data, list) else []
            for item in batch:
                user = item.get("user") or {}
                comments.append(
                    IssueComment(
                        id=int(item["id"]),
                        body=str(item.get("body") or ""),
                        user_login=str(user.get("login") or ""),
                        user_type=str(user.get("type") or ""),
                        created_at=str(item.get("created_at") or ""),
                    )
                )
            if len(batch) < _PAGE_SIZE:
                break
        return comments

    def add_labels(self, number: int, labels: Sequence[str]) -> None:
        self._request(
            "POST", f"{self._repo_path}/issues/{int(number)}/labels", {"labels": list(labels)}
        )
