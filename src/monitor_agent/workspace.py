"""Single shared working copy that every enhancement job runs in."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

from monitor_agent import git_tools

logger = logging.getLogger(__name__)

_LOCK_FILE_NAME = "monitor-agent.lock"

try:
    import fcntl
except ImportError:  # Windows: in-process lock only
    fcntl = None  # type: ignore[assignment]


class WorkspaceManager:
    """Owns the working tree: clean checks, branches, commits, pushes, recovery.

    Every mutation happens inside :meth:`session`, which serializes jobs
    in-process with a lock and across processes with ``flock`` on a file
    inside ``.git``.
    """

    def __init__(
        self,
        repo_path: str | Path,
        *,
        base_branch: str = "main",
        remote: str = "origin",
        author_name: str = "Monitor Agent",
        author_email: str = "monitor-agent@localhost",
    ) -> None:
        self.repo_path = Path(repo_path).resolve()
        self.base_branch = base_branch
        self.remote = remote
        self.author_name = author_name
        self.author_email = author_email
        self._lock = threading.Lock()

    @property
    def _lock_path(self) -> Path:
        try:
            lock_dir = git_tools.git_dir(self.repo_path)
        except git_tools.GitError:
            # not a repository yet; nothing to keep the lock out of
            lock_dir = self.repo_path
        return lock_dir / _LOCK_FILE_NAME

    @contextmanager
    def session(self) -> Iterator[WorkspaceManager]:
        """Hold exclusive use of the working tree for the duration of a job."""
        with self._lock:
            if fcntl is None:
                yield self
                return
            with self._lock_path.open("a+", encoding="utf-8") as handle:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
                try:
                    handle.seek(0)
                    handle.truncate()
                    handle.write(str(os.getpid()))
                    handle.flush()
                    yield self
                finally:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def ensure_clean(self) -> bool:
        """Hard-reset a dirty tree.  Return True when a reset was needed."""
        if git_tools.is_clean(self.repo_path):
            return False
        logger.warning("Working tree %s is dirty; resetting", self.repo_path)
        git_tools.reset_hard(self.repo_path)
        return True

    def start_branch(self, enhancement_id: int, title: str) -> str:
        name = git_tools.generate_branch_name(enhancement_id, title)
        return git_tools.create_branch_from_base(
            self.repo_path, name, self.base_branch, self.remote
        )

    def changed_files(self) -> list[str]:
        return git_tools.changed_files(self.repo_path)

    def commit_and_push(self, branch: str, message: str, files: Sequence[str]) -> str:
        git_tools.configure_identity(self.repo_path, self.author_name, self.author_email)
        sha = git_tools.commit_files(self.repo_path, message, files)
        git_tools.push_branch(self.repo_path, branch, self.remote)
        return sha

    def return_to_base(self) -> None:
        git_tools.checkout(self.repo_path, self.base_branch)

    def cleanup(self) -> None:
        """Best-effort recovery after a failed job: hard reset, then base branch."""
        try:
            git_tools.reset_hard(self.repo_path)
            git_tools.checkout(self.repo_path, self.base_branch)
        except git_tools.GitError as exc:
            logger.error("Workspace cleanup failed in %s: %s", self.repo_path, exc)

    def codebase_context(self, max_files: int = 400) -> str:
        """Short listing of tracked files handed to the planner and code generator."""
        files = git_tools.tracked_files(self.repo_path)
        listing = "\n".join(files[:max_files])
        if len(files) > max_files:
            listing += f"\n... ({len(files) - max_files} more files)"
        return f"Repository files:\n{listing}" if files else ""
