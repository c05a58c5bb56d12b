"""Git helper utilities for branch management, commits, pushes, and resets."""

from __future__ import annotations

import logging
import os
import re
import subprocess
from collections.abc import Sequence
from pathlib import Path

from monitor_agent.errors import MonitorAgentError

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "feature/enhancement"
_SLUG_MAX_LEN = 50


def _git_subprocess_isolation_kwargs() -> dict[str, object]:
    """Return kwargs that prevent child console events from reaching the parent on Windows."""
    if os.name != "nt":
        return {}
    new_pg = int(getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0))
    no_win = int(getattr(subprocess, "CREATE_NO_WINDOW", 0))
    flags = new_pg | no_win
    return {"creationflags": flags} if flags else {}


class GitError(MonitorAgentError):
    """Raised when a git command fails unexpectedly."""


def _run_git(
    *args: str,
    cwd: Path,
    check: bool = True,
    timeout: int = 120,
) -> subprocess.CompletedProcess[str]:
    """Run a git command and return the CompletedProcess."""
    cmd = ["git", *args]
    logger.debug("git %s (cwd=%s)", " ".join(args), cwd)
    result = subprocess.run(
        cmd,
        cwd=cwd,
        capture_output=True,
        text=True,
        timeout=timeout,
        **_git_subprocess_isolation_kwargs(),
    )
    if check and result.returncode != 0:
        raise GitError(
            f"`git {' '.join(args)}` failed (rc={result.returncode}): {result.stderr.strip()}"
        )
    return result


def slugify(text: str, max_len: int = _SLUG_MAX_LEN) -> str:
    """Lower-case *text*, collapse non-alphanumerics to ``-`` and cap the length."""
    slug = re.sub(r"[^a-z0-9]+", "-", str(text or "").lower()).strip("-")
    return slug[:max_len]


def generate_branch_name(enhancement_id: int, title: str) -> str:
    """Deterministic branch name: ``feature/enhancement-<id>-<slug>``."""
    return f"{BRANCH_PREFIX}-{enhancement_id}-{slugify(title)}"


# ---------------------------------------------------------------------------
# Query helpers
# ---------------------------------------------------------------------------


def status_porcelain(repo: str | Path) -> str:
    """Return ``git status --porcelain`` output."""
    return _run_git("status", "--porcelain", cwd=Path(repo)).stdout.strip()


def current_branch(repo: str | Path) -> str:
    """Return the name of the current branch."""
    return _run_git("rev-parse", "--abbrev-ref", "HEAD", cwd=Path(repo)).stdout.strip()


def head_sha(repo: str | Path) -> str:
    """Return the full SHA of HEAD."""
    return _run_git("rev-parse", "HEAD", cwd=Path(repo)).stdout.strip()


def git_dir(repo: str | Path) -> Path:
    """Return the absolute git directory, which is not `.git` in worktrees and submodules."""
    out = _run_git("rev-parse", "--absolute-git-dir", cwd=Path(repo)).stdout.strip()
    return Path(out)


def is_clean(repo: str | Path) -> bool:
    """Return True when the working tree is clean."""
    return status_porcelain(repo) == ""


def tracked_files(repo: str | Path) -> list[str]:
    """Return every path git tracks in *repo*."""
    raw = _run_git("ls-files", "-z", cwd=Path(repo)).stdout
    return [p for p in raw.split("\x00") if p]


def changed_files(repo: str | Path) -> list[str]:
    """Return paths that were added, modified, renamed or deleted in the working tree.

    Untracked directories are expanded to their files; renames report the
    new path.
    """
    raw = _run_git(
        "status", "--porcelain", "-z", "--untracked-files=all", cwd=Path(repo)
    ).stdout
    parts = [p for p in raw.split("\x00") if p]
    paths: list[str] = []
    skip_next = False
    for entry in parts:
        if skip_next:
            skip_next = False
            continue
        code, path = entry[:2], entry[3:]
        if "R" in code or "C" in code:
            # With -z the original path follows as its own field.
            skip_next = True
        if path and path not in paths:
            paths.append(path)
    return paths


# ---------------------------------------------------------------------------
# Mutation helpers
# ---------------------------------------------------------------------------


def configure_identity(repo: str | Path, name: str, email: str) -> None:
    """Set the repo-local author identity used for agent commits."""
    cwd = Path(repo)
    _run_git("config", "user.name", name, cwd=cwd)
    _run_git("config", "user.email", email, cwd=cwd)


def checkout(repo: str | Path, ref: str) -> None:
    _run_git("checkout", ref, cwd=Path(repo))


def pull(repo: str | Path, remote: str, branch: str) -> None:
    _run_git("pull", remote, branch, cwd=Path(repo), timeout=300)


def checkout_base_branch(repo: str | Path, base: str, remote: str = "origin") -> None:
    """Switch to *base* and fast-forward it from *remote*."""
    checkout(repo, base)
    pull(repo, remote, base)
    logger.info("Checked out %s at %s", base, head_sha(repo)[:8])


def create_branch_from_base(
    repo: str | Path,
    branch_name: str,
    base: str,
    remote: str = "origin",
) -> str:
    """Create and check out *branch_name* from the freshly pulled *base*."""
    checkout_base_branch(repo, base, remote)
    _run_git("checkout", "-b", branch_name, cwd=Path(repo))
    logger.info("Created branch %s from %s", branch_name, base)
    return branch_name


def commit_files(repo: str | Path, message: str, files: Sequence[str] | None = None) -> str:
    """Stage *files* (everything when empty) and commit.  Return the new commit SHA."""
    cwd = Path(repo)
    if files:
        _run_git("add", "-A", "--", *files, cwd=cwd)
    else:
        _run_git("add", "-A", cwd=cwd)
    _run_git("commit", "-m", message, cwd=cwd)
    sha = head_sha(cwd)
    logger.info("Committed %s: %s", sha[:8], message.splitlines()[0] if message else "")
    return sha


def push_branch(repo: str | Path, branch: str, remote: str = "origin") -> None:
    _run_git("push", "--set-upstream", remote, branch, cwd=Path(repo), timeout=300)
    logger.info("Pushed %s to %s", branch, remote)


def reset_hard(repo: str | Path) -> None:
    """Discard local modifications and untracked files."""
    cwd = Path(repo)
    _run_git("reset", "--hard", "HEAD", cwd=cwd)
    _run_git("clean", "-fd", cwd=cwd)
    logger.info("Reset working tree to HEAD in %s", cwd)
