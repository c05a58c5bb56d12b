"""Generate file changes for plan tasks and apply them to the working tree."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from monitor_agent.ai_client import AIClient
from monitor_agent.errors import UnsafePathError
from monitor_agent.prompts import PromptCatalog
from monitor_agent.schemas import CodeGenResult, FileOperation, PlanTask, TaskType

logger = logging.getLogger(__name__)

_RESULTS = list[CodeGenResult]
_MAX_EXISTING_CHARS = 200_000


class CodeGenerator:
    def __init__(self, ai: AIClient, catalog: PromptCatalog) -> None:
        self.ai = ai
        self.catalog = catalog

    def generate(
        self,
        task: PlanTask,
        existing_content: str | None = None,
        context: str = "",
    ) -> list[CodeGenResult]:
        """Return the ordered file operations that implement *task*."""
        existing = ""
        if existing_content:
            existing = f"**Existing Code:**\n```\n{existing_content}\n```"
        prompt = self.catalog.render(
            "codegen",
            task_title=task.title,
            task_description=task.description,
            task_type=task.type.value,
            task_files=", ".join(task.files) or "(none listed)",
            existing=existing,
            context=f"**Codebase Context:**\n{context}" if context else "",
        )
        results = self.ai.complete_json(
            self.catalog.system("codegen"), prompt, _RESULTS, operation=f"codegen task {task.id}"
        )
        logger.info("Task %s produced %d file operation(s)", task.id, len(results))
        return results


def resolve_in_repo(repo: str | Path, rel_path: str) -> Path:
    """Return the absolute path for *rel_path*, refusing anything outside *repo*."""
    root = Path(repo).resolve()
    candidate = Path(rel_path)
    if candidate.is_absolute() or not rel_path.strip():
        raise UnsafePathError(f"Refusing path {rel_path!r}: must be relative to the repository")
    target = (root / candidate).resolve()
    if target != root and root not in target.parents:
        raise UnsafePathError(f"Refusing path {rel_path!r}: escapes the repository")
    if ".git" in target.relative_to(root).parts:
        raise UnsafePathError(f"Refusing path {rel_path!r}: inside .git")
    return target


def read_existing(repo: str | Path, task: PlanTask) -> str | None:
    """Existing content of the task's first file, for ``modify`` tasks only."""
    if task.type is not TaskType.MODIFY or not task.files:
        return None
    path = resolve_in_repo(repo, task.files[0])
    if not path.is_file():
        return None
    return path.read_text(encoding="utf-8", errors="replace")[:_MAX_EXISTING_CHARS]


def apply_results(repo: str | Path, results: Sequence[CodeGenResult]) -> list[CodeGenResult]:
    """Apply *results* in order; return the operations that touched disk.

    Deleting a file that does not exist is a no-op and is left out of the
    returned list.
    """
    applied: list[CodeGenResult] = []
    for result in results:
        target = resolve_in_repo(repo, result.file_path)
        if result.operation is FileOperation.DELETE:
            if target.is_file():
                target.unlink()
                logger.info("Deleted %s", result.file_path)
                applied.append(result)
            else:
                logger.debug("Delete skipped, %s does not exist", result.file_path)
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(result.content, encoding="utf-8")
        logger.info(
            "%s %s", "Created" if result.operation is FileOperation.CREATE else "Modified",
            result.file_path,
        )
        applied.append(result)
    return applied
