"""Hand-authored workflows: sequential, parallel and hierarchical step lists."""

from .base import (
    RetryStrategy,
    StepExecution,
    ValidationRule,
    Workflow,
    WorkflowExecution,
    WorkflowStep,
    WorkflowType,
)
from .engine import WorkflowEngine

__all__ = [
    "RetryStrategy",
    "StepExecution",
    "ValidationRule",
    "Workflow",
    "WorkflowExecution",
    "WorkflowStep",
    "WorkflowType",
    "WorkflowEngine",
]
