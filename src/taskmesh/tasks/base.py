"""Task dataclasses used by the orchestrator."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TaskStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    ASSIGNED = "assigned"
    EXECUTING = "executing"
    REVIEWING = "reviewing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


@dataclass
class ResourceUsage:
    cpu: float = 0.0
    memory: float = 0.0

    def __add__(self, other: "ResourceUsage") -> "ResourceUsage":
        return ResourceUsage(cpu=self.cpu + other.cpu, memory=self.memory + other.memory)


@dataclass
class ExecutionMetrics:
    """Timing and resource figures; ``duration`` is in milliseconds."""

    start_time: datetime = field(default_factory=utcnow)
    end_time: datetime = field(default_factory=utcnow)
    duration: float = 0.0
    resource_usage: ResourceUsage = field(default_factory=ResourceUsage)


@dataclass
class TaskError:
    code: str
    message: str
    details: Any = None


@dataclass
class TaskResult:
    """Result of executing a subtask, or the rollup for a whole task."""

    success: bool
    output: Any
    metrics: ExecutionMetrics = field(default_factory=ExecutionMetrics)
    error: Optional[TaskError] = None
    task_id: Optional[str] = None

    @classmethod
    def failure(
        cls,
        code: str,
        message: str,
        *,
        details: Any = None,
        task_id: Optional[str] = None,
        output: Any = None,
        metrics: Optional[ExecutionMetrics] = None,
    ) -> "TaskResult":
        return cls(
            success=False,
            output=output,
            metrics=metrics or ExecutionMetrics(),
            error=TaskError(code=code, message=message, details=details),
            task_id=task_id,
        )


@dataclass
class Task:
    """Top-level unit of work submitted by a user."""

    id: str
    title: str
    description: str
    priority: Priority = Priority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    deadline: Optional[datetime] = None
    parent_task_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        title: str,
        description: str,
        priority: Priority | str = Priority.MEDIUM,
        **kwargs: Any,
    ) -> "Task":
        return cls(id=new_id(), title=title, description=description, priority=Priority(priority), **kwargs)

    def transition(self, status: TaskStatus) -> None:
        self.status = status
        self.updated_at = utcnow()


@dataclass
class Subtask(Task):
    """A decomposed unit of a task.

    ``dependencies`` holds sibling subtask ids once resolved; until then it
    carries the strings the manager declared.
    """

    assigned_agent_id: Optional[str] = None
    assigned_tool_id: Optional[str] = None
    dependencies: List[str] = field(default_factory=list)
    progress: float = 0.0
    result: Optional[TaskResult] = None
    required_capabilities: List[str] = field(default_factory=list)
    complexity: int = 1
    expected_output: str = ""
    order_index: int = 0

    def __post_init__(self) -> None:
        if not self.parent_task_id:
            raise ValueError(f"Subtask {self.id} requires a parent task id")

    def set_progress(self, value: float) -> None:
        self.progress = min(1.0, max(0.0, value))
        self.updated_at = utcnow()
