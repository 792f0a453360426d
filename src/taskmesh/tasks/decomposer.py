"""Breaks a task into dependent subtasks with the manager agent's language model."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List

import structlog

from ..errors import DecompositionError
from ..tools.base import ActionRequest, ToolContext
from ..tools.invoker import ToolInvoker
from .base import Subtask, Task, TaskStatus, new_id, utcnow
from .parsing import ResponseFormatError, decode_subtasks
from .prompts import build_analysis_prompt

if TYPE_CHECKING:  # pragma: no cover
    from ..agents.base import Agent


@dataclass
class ResourceEstimate:
    """Scheduling hints derived from complexity; not a promise of runtime."""

    estimated_minutes: float
    total_complexity: int
    parallelizable_tasks: int
    sequential_tasks: int
    critical_path: Dict[str, int] = field(default_factory=dict)

    @property
    def critical_path_length(self) -> int:
        return max(self.critical_path.values(), default=0)


@dataclass
class Decomposition:
    subtasks: List[Subtask]
    estimate: ResourceEstimate

    @property
    def required_capabilities(self) -> List[str]:
        return required_capabilities(self.subtasks)


def required_capabilities(subtasks: List[Subtask]) -> List[str]:
    """De-duplicated union of the capability tags, in first-seen order."""
    seen: Dict[str, None] = {}
    for subtask in subtasks:
        for capability in subtask.required_capabilities:
            seen.setdefault(capability, None)
    return list(seen)


def resolve_dependencies(subtasks: List[Subtask]) -> None:
    """Rewrite declared dependency strings into sibling ids.

    A string matches a sibling by id, then by title (case-insensitive), then by
    1-based position. Unmatched strings are kept so the scheduler can report them.
    """
    by_id = {subtask.id: subtask for subtask in subtasks}
    by_title: Dict[str, str] = {}
    for subtask in subtasks:
        by_title.setdefault(subtask.title.strip().casefold(), subtask.id)
    for subtask in subtasks:
        resolved: List[str] = []
        for raw in subtask.dependencies:
            target = _match(raw, by_id, by_title, subtasks)
            if target not in resolved:
                resolved.append(target)
        subtask.dependencies = resolved


def _match(raw: str, by_id: Dict[str, Subtask], by_title: Dict[str, str], subtasks: List[Subtask]) -> str:
    if raw in by_id:
        return raw
    key = raw.strip().casefold()
    if key in by_title:
        return by_title[key]
    position = key.removeprefix("subtask").strip().lstrip("#")
    if position.isdigit() and 1 <= int(position) <= len(subtasks):
        return subtasks[int(position) - 1].id
    return raw


def estimate_resources(subtasks: List[Subtask], minutes_per_unit: float = 5.0) -> ResourceEstimate:
    """Longest complexity-weighted path through the dependency graph.

    Unknown ids and cycles contribute nothing; the scheduler reports those.
    """
    by_id = {subtask.id: subtask for subtask in subtasks}
    memo: Dict[str, int] = {}
    visiting: set[str] = set()

    def length(subtask_id: str) -> int:
        if subtask_id in memo:
            return memo[subtask_id]
        subtask = by_id.get(subtask_id)
        if subtask is None or subtask_id in visiting:
            return 0
        visiting.add(subtask_id)
        longest = max((length(dep) for dep in subtask.dependencies), default=0)
        visiting.discard(subtask_id)
        memo[subtask_id] = subtask.complexity + longest
        return memo[subtask_id]

    critical = {subtask.id: length(subtask.id) for subtask in subtasks}
    longest_path = max(critical.values(), default=0)
    return ResourceEstimate(
        estimated_minutes=longest_path * minutes_per_unit,
        total_complexity=sum(subtask.complexity for subtask in subtasks),
        parallelizable_tasks=sum(1 for subtask in subtasks if not subtask.dependencies),
        sequential_tasks=sum(1 for subtask in subtasks if subtask.dependencies),
        critical_path=critical,
    )


class TaskDecomposer:
    """Asks the manager agent for a subtask plan and validates it atomically."""

    def __init__(self, invoker: ToolInvoker, *, minutes_per_complexity_unit: float = 5.0) -> None:
        self.invoker = invoker
        self.minutes_per_complexity_unit = minutes_per_complexity_unit
        self.logger = structlog.get_logger().bind(component="decomposer")

    async def analyze(self, task: Task, manager: "Agent") -> Decomposition:
        subtasks = await self.decompose(task, manager)
        estimate = estimate_resources(subtasks, self.minutes_per_complexity_unit)
        self.logger.info(
            "decomposition.estimated",
            task_id=task.id,
            subtasks=len(subtasks),
            estimated_minutes=estimate.estimated_minutes,
        )
        return Decomposition(subtasks=subtasks, estimate=estimate)

    async def decompose(self, task: Task, manager: "Agent") -> List[Subtask]:
        task.transition(TaskStatus.ANALYZING)
        tool = manager.text_generation_tool()
        if tool is None:
            raise DecompositionError(f"Manager agent {manager.name} does not have text generation capability")

        request = ActionRequest(
            tool_id=tool.id,
            parameters={"prompt": build_analysis_prompt(task)},
            context=ToolContext(agent_name=manager.name, task_id=task.id),
            name="Task Analysis",
            description="Breaking down task into subtasks",
        )
        self.logger.info("decomposition.started", task_id=task.id, manager=manager.id)
        try:
            response = await self.invoker.invoke(manager, request)
        except Exception as exc:
            raise DecompositionError(f"Task breakdown failed: {exc}", details={"task_id": task.id}) from exc
        if not response.success:
            raise DecompositionError(f"Task breakdown failed: {response.content}", details={"task_id": task.id})

        try:
            descriptors = decode_subtasks(response.content)
        except ResponseFormatError as exc:
            raise DecompositionError(
                f"Failed to parse subtasks from LLM response: {exc}",
                details={"task_id": task.id, "response": response.content},
            ) from exc

        now = utcnow()
        subtasks = [
            Subtask(
                id=new_id(),
                title=item.title,
                description=item.description,
                priority=task.priority,
                created_at=now,
                updated_at=now,
                parent_task_id=task.id,
                dependencies=list(item.dependencies),
                required_capabilities=list(item.required_capabilities),
                complexity=item.complexity,
                expected_output=item.expected_output,
                order_index=index,
            )
            for index, item in enumerate(descriptors)
        ]
        resolve_dependencies(subtasks)
        self.logger.info("decomposition.finished", task_id=task.id, subtasks=len(subtasks))
        return subtasks

