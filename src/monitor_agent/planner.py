"""Turn an enhancement request into an ordered implementation plan."""

from __future__ import annotations

import logging

from monitor_agent.ai_client import AIClient
from monitor_agent.prompts import PromptCatalog
from monitor_agent.schemas import EnhancementPlan

logger = logging.getLogger(__name__)


class Planner:
    def __init__(self, ai: AIClient, catalog: PromptCatalog) -> None:
        self.ai = ai
        self.catalog = catalog

    def generate_plan(self, title: str, description: str, context: str = "") -> EnhancementPlan:
        """Ask the AI service for a plan.

        A response that is not valid JSON or does not match
        :class:`EnhancementPlan` raises :class:`AIResponseError`; it is not retried.
        """
        prompt = self.catalog.render(
            "plan",
            title=title,
            description=description,
            context=f"**Codebase Context:**\n{context}" if context else "",
        )
        plan = self.ai.complete_json(
            self.catalog.system("plan"), prompt, EnhancementPlan, operation="plan"
        )
        logger.info(
            "Plan for %r: %d task(s), %d risk(s), effort %s",
            title, len(plan.tasks), len(plan.risks), plan.estimated_effort or "n/a",
        )
        return plan


def plan_order_issues(plan: EnhancementPlan) -> list[str]:
    """Describe dependency problems in *plan* without reordering it.

    Tasks run in list order, so a dependency on a later task, an unknown
    task id, or a cycle means a prerequisite will not have run yet.
    """
    issues: list[str] = []
    position = {task.id: idx for idx, task in enumerate(plan.tasks)}
    for idx, task in enumerate(plan.tasks):
        for dep in task.dependencies:
            if dep not in position:
                issues.append(f"task {task.id} depends on unknown task {dep}")
            elif dep == task.id:
                issues.append(f"task {task.id} depends on itself")
            elif position[dep] > idx:
                issues.append(f"task {task.id} depends on later task {dep}")

    graph = {task.id: [d for d in task.dependencies if d in position] for task in plan.tasks}
    state: dict[str, int] = {}  # 1 = visiting, 2 = done

    def _visit(node: str, trail: list[str]) -> list[str] | None:
        state[node] = 1
        for dep in graph[node]:
            if state.get(dep) == 1:
                return [*trail, node, dep]
            if state.get(dep) is None:
                cycle = _visit(dep, [*trail, node])
                if cycle:
                    return cycle
        state[node] = 2
        return None

    for task in plan.tasks:
        if state.get(task.id) is None:
            cycle = _visit(task.id, [])
            if cycle and len(cycle) > 2:
                start = cycle.index(cycle[-1])
                issues.append("dependency cycle: " + " -> ".join(cycle[start:]))
    return issues
