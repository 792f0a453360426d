"""Error types raised while orchestrating a task."""

from __future__ import annotations

from typing import Any, Iterable, List


class OrchestrationError(RuntimeError):
    """Base error carrying a stable code alongside the message."""

    code = "ORCHESTRATION_ERROR"

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class DecompositionError(OrchestrationError):
    """The manager agent could not produce a usable subtask plan."""

    code = "DECOMPOSITION_ERROR"


class AllocationExhausted(OrchestrationError):
    """No agent/tool combination can currently serve a subtask."""

    code = "ALLOCATION_EXHAUSTED"

    def __init__(self, subtask_id: str, message: str | None = None) -> None:
        super().__init__(message or f"No suitable agent available for subtask {subtask_id}")
        self.subtask_id = subtask_id


class DeadlockError(OrchestrationError):
    """Remaining subtasks can never become ready."""

    code = "DEADLOCK"

    def __init__(self, message: str, remaining: Iterable[str] = ()) -> None:
        self.remaining: List[str] = list(remaining)
        super().__init__(message, details={"remaining": self.remaining})


class SubtaskExecutionError(OrchestrationError):
    """The capability invoked for a subtask failed."""

    code = "SUBTASK_ERROR"

    def __init__(self, subtask_id: str, message: str, *, details: Any = None) -> None:
        super().__init__(f"Subtask {subtask_id} failed: {message}", details=details)
        self.subtask_id = subtask_id


class SubtaskTimeout(SubtaskExecutionError):
    code = "SUBTASK_TIMEOUT"


class ValidationParseError(OrchestrationError):
    """The manager's verdict could not be decoded."""

    code = "VALIDATION_PARSE_ERROR"


class WorkflowError(OrchestrationError):
    """A workflow definition is inconsistent or names agents that do not exist."""

    code = "INVALID_WORKFLOW"


class ToolInvocationError(RuntimeError):
    """Raised when an agent cannot perform the requested action."""
