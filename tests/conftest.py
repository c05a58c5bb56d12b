"""Shared pytest configuration, marker registration and repository fixtures."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from monitor_agent.store import Database, DeploymentStore, EnhancementStore


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: fast isolated unit tests")
    config.addinivalue_line("markers", "integration: filesystem/subprocess integration tests")
    config.addinivalue_line("markers", "slow: expensive tests that may call external APIs")


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Run fast unit tests first, integration tests second, slow tests last."""

    def sort_key(item: pytest.Item) -> tuple[int, str]:
        if item.get_closest_marker("slow"):
            return (2, item.nodeid)
        if item.get_closest_marker("integration"):
            return (1, item.nodeid)
        return (0, item.nodeid)

    items.sort(key=sort_key)


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args], cwd=repo, check=True, capture_output=True, text=True
    )
    return result.stdout.strip()


def init_git_repo(repo: Path) -> None:
    """Create a repo on branch ``main`` with one commit."""
    repo.mkdir(parents=True, exist_ok=True)
    git(repo, "init")
    git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    git(repo, "config", "user.name", "Test User")
    git(repo, "config", "user.email", "test@example.com")
    (repo / "README.md").write_text("init\n", encoding="utf-8")
    git(repo, "add", "-A")
    git(repo, "commit", "-m", "init")


def attach_bare_origin(repo: Path, remote: Path) -> Path:
    subprocess.run(
        ["git", "init", "--bare", str(remote)], check=True, capture_output=True, text=True
    )
    git(repo, "remote", "add", "origin", str(remote))
    git(repo, "push", "--set-upstream", "origin", "main")
    return remote


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A working copy on ``main`` tracking a bare ``origin``."""
    repo = tmp_path / "repo"
    init_git_repo(repo)
    attach_bare_origin(repo, tmp_path / "remote.git")
    return repo


@pytest.fixture
def database(tmp_path: Path):
    db = Database(f"sqlite:///{tmp_path / 'agent.db'}")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def enhancements(database: Database) -> EnhancementStore:
    return EnhancementStore(database)


@pytest.fixture
def deployments(database: Database) -> DeploymentStore:
    return DeploymentStore(database)
