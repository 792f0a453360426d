"""Task primitives."""

from .base import (
    ExecutionMetrics,
    Priority,
    ResourceUsage,
    Subtask,
    Task,
    TaskError,
    TaskResult,
    TaskStatus,
)
from .decomposer import Decomposition, ResourceEstimate, TaskDecomposer

__all__ = [
    "ExecutionMetrics",
    "Priority",
    "ResourceUsage",
    "Subtask",
    "Task",
    "TaskError",
    "TaskResult",
    "TaskStatus",
    "Decomposition",
    "ResourceEstimate",
    "TaskDecomposer",
]
