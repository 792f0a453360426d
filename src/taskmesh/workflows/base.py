"""Workflow definitions: fixed, hand-authored step lists run without decomposition."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from ..errors import WorkflowError
from ..tasks.base import TaskError, new_id, utcnow

if TYPE_CHECKING:  # pragma: no cover
    from ..execution.aggregator import RunMetrics


class WorkflowType(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    HIERARCHICAL = "hierarchical"


@dataclass
class RetryStrategy:
    max_attempts: int = 1
    delay_seconds: float = 0.0

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "RetryStrategy":
        if not data:
            return cls()
        strategy = cls(
            max_attempts=int(data.get("max_attempts", 1)),
            delay_seconds=float(data.get("delay_seconds", 0.0)),
        )
        if strategy.max_attempts < 1:
            raise WorkflowError("'retry.max_attempts' must be at least 1")
        return strategy


@dataclass
class ValidationRule:
    """Check applied to every parameter value of a step before it runs.

    ``regex`` requires string values matching ``value``; ``range`` requires
    numbers no greater than ``value``.
    """

    type: str
    value: Any
    message: str = ""

    def check(self, parameters: Mapping[str, Any]) -> Optional[str]:
        """Return an error message, or ``None`` when the parameters pass."""
        values = list(parameters.values())
        if self.type == "regex":
            try:
                pattern = re.compile(str(self.value))
            except re.error:
                return f"Invalid regex pattern '{self.value}'"
            passed = all(isinstance(item, str) and pattern.search(item) for item in values)
            return None if passed else self.message or "Input does not match required pattern"
        if self.type == "range":
            passed = all(
                isinstance(item, (int, float)) and not isinstance(item, bool) and item <= float(self.value)
                for item in values
            )
            return None if passed else self.message or f"Input exceeds maximum value {self.value}"
        return f"Unknown validation rule type '{self.type}'"


def _rule(step_id: str, data: Mapping[str, Any]) -> ValidationRule:
    kind = str(data.get("type", ""))
    if kind not in {"regex", "range"}:
        raise WorkflowError(f"Step '{step_id}' has a validation rule of unknown type '{kind}'")
    if data.get("value") is None:
        raise WorkflowError(f"Step '{step_id}' has a {kind} rule without a value")
    return ValidationRule(type=kind, value=data["value"], message=str(data.get("message", "")))


@dataclass
class WorkflowStep:
    id: str
    name: str
    agent_id: str
    tool_id: str
    description: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict)
    retry: RetryStrategy = field(default_factory=RetryStrategy)
    fallback_step_id: Optional[str] = None
    validation_rules: List[ValidationRule] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], index: int) -> "WorkflowStep":
        for key in ("agent", "tool"):
            if not data.get(key):
                raise WorkflowError(f"Workflow step {index + 1} requires '{key}'")
        step_id = str(data.get("id") or f"step-{index + 1}")
        return cls(
            id=step_id,
            name=str(data.get("name", step_id)),
            agent_id=str(data["agent"]),
            tool_id=str(data["tool"]),
            description=str(data.get("description", "")),
            parameters=dict(data.get("parameters") or {}),
            retry=RetryStrategy.from_mapping(data.get("retry")),
            fallback_step_id=data.get("fallback"),
            validation_rules=[_rule(step_id, rule) for rule in data.get("validation") or []],
        )


@dataclass
class Workflow:
    """A named list of steps and how to run them.

    ``sequential`` runs steps in order and stops at the first failure that no
    fallback recovers; ``parallel`` runs them all, at most
    ``max_concurrent_steps`` at a time; ``hierarchical`` runs the manager step
    first and hands its output to the remaining steps, which then run in
    parallel. Steps named as another step's fallback run only as fallbacks.
    """

    id: str
    name: str
    type: WorkflowType
    steps: List[WorkflowStep]
    description: str = ""
    manager_id: Optional[str] = None
    max_concurrent_steps: Optional[int] = None

    @classmethod
    def from_mapping(cls, workflow_id: str, data: Mapping[str, Any]) -> "Workflow":
        try:
            kind = WorkflowType(str(data.get("type", "sequential")).lower())
        except ValueError as exc:
            allowed = [item.value for item in WorkflowType]
            raise WorkflowError(f"Workflow '{workflow_id}' type must be one of {allowed}") from exc
        max_concurrent = data.get("max_concurrent_steps")
        workflow = cls(
            id=workflow_id,
            name=str(data.get("name", workflow_id)),
            type=kind,
            steps=[WorkflowStep.from_mapping(step, index) for index, step in enumerate(data.get("steps") or [])],
            description=str(data.get("description", "")),
            manager_id=data.get("manager"),
            max_concurrent_steps=int(max_concurrent) if max_concurrent is not None else None,
        )
        workflow.check()
        return workflow

    def check(self) -> None:
        """Raise :class:`WorkflowError` when the step list is inconsistent."""
        if not self.steps:
            raise WorkflowError(f"Workflow '{self.id}' has no steps")
        seen = set()
        for step in self.steps:
            if step.id in seen:
                raise WorkflowError(f"Workflow '{self.id}' repeats step id '{step.id}'")
            seen.add(step.id)
        for step in self.steps:
            if step.fallback_step_id is None:
                continue
            if step.fallback_step_id not in seen:
                raise WorkflowError(f"Step '{step.id}' falls back to unknown step '{step.fallback_step_id}'")
            if step.fallback_step_id == step.id:
                raise WorkflowError(f"Step '{step.id}' cannot be its own fallback")
        if not self.main_steps():
            raise WorkflowError(f"Workflow '{self.id}' only has fallback steps")
        if self.max_concurrent_steps is not None and self.max_concurrent_steps < 1:
            raise WorkflowError("'max_concurrent_steps' must be at least 1")
        if self.manager_id is not None and self.manager_id not in {step.agent_id for step in self.steps}:
            raise WorkflowError(f"Workflow '{self.id}' manager '{self.manager_id}' runs none of its steps")

    def get_step(self, step_id: str) -> WorkflowStep:
        for step in self.steps:
            if step.id == step_id:
                return step
        raise WorkflowError(f"Workflow '{self.id}' has no step '{step_id}'")

    def main_steps(self) -> List[WorkflowStep]:
        fallbacks = {step.fallback_step_id for step in self.steps if step.fallback_step_id}
        return [step for step in self.steps if step.id not in fallbacks]

    def manager_step(self) -> WorkflowStep:
        steps = self.main_steps()
        if self.manager_id is not None:
            for step in steps:
                if step.agent_id == self.manager_id:
                    return step
        return steps[0]


@dataclass
class StepExecution:
    step_id: str
    status: str = "running"
    input: Dict[str, Any] = field(default_factory=dict)
    output: Any = None
    error: Optional[str] = None
    attempts: int = 0
    duration: float = 0.0
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


@dataclass
class WorkflowExecution:
    workflow_id: str
    id: str = field(default_factory=new_id)
    status: str = "running"
    current_step_id: str = ""
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    steps: List[StepExecution] = field(default_factory=list)
    metrics: Optional["RunMetrics"] = None
    error: Optional[TaskError] = None

    def step(self, step_id: str) -> Optional[StepExecution]:
        """Latest execution of ``step_id``."""
        for execution in reversed(self.steps):
            if execution.step_id == step_id:
                return execution
        return None
