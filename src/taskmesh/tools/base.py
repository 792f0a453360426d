"""Base classes for tools."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, Optional, Tuple

if TYPE_CHECKING:  # pragma: no cover
    from ..agents.base import Agent


@dataclass(frozen=True)
class ToolDescriptor:
    """A tool granted to an agent; the description drives capability matching."""

    id: str
    name: str
    description: str
    capabilities: FrozenSet[str] = frozenset()
    parameters: Tuple[Dict[str, Any], ...] = ()


@dataclass
class ToolContext:
    """Metadata passed to tool invocations."""

    agent_name: str
    task_id: str
    attempt: int = 1
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class ActionRequest:
    """One call of an agent action: which tool, with which parameters."""

    tool_id: str
    parameters: Dict[str, Any]
    context: ToolContext
    name: str = ""
    description: str = ""


@dataclass
class ToolResult:
    """Result returned by a tool."""

    content: str
    success: bool = True
    requires_delegation: bool = False
    delegation_details: Optional[Dict[str, str]] = None
    metadata: Dict[str, str] = field(default_factory=dict)


class Tool:
    """Base tool handler; executes a tool descriptor on behalf of an agent."""

    name: str
    description: str

    def __init__(self, name: str, description: str | None = None, **kwargs: object) -> None:
        self.name = name
        self.description = description or self.__class__.__doc__ or ""
        self.config = kwargs

    async def run(
        self, *, agent: "Agent", tool: ToolDescriptor, parameters: Dict[str, Any], context: ToolContext
    ) -> ToolResult:  # pragma: no cover - abstract
        raise NotImplementedError
