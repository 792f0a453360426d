"""Agent action invocation: the single seam between orchestration and tools."""

from __future__ import annotations

import asyncio
import inspect
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Protocol, Tuple, Union

import structlog

from ..errors import ToolInvocationError
from .base import ActionRequest, ToolResult
from .registry import ToolRegistry

if TYPE_CHECKING:  # pragma: no cover
    from ..agents.base import Agent

logger = structlog.get_logger()


class ToolInvoker(Protocol):
    """Runs one action for an agent and returns the tool's result, or raises."""

    async def invoke(self, agent: "Agent", request: ActionRequest) -> ToolResult:  # pragma: no cover
        ...


class AgentActionInvoker:
    """Dispatches requests to registered tool handlers after checking agent permissions."""

    def __init__(self, registry: ToolRegistry, *, delegation_delay: float = 0.5) -> None:
        self.registry = registry
        self.delegation_delay = delegation_delay

    async def invoke(self, agent: "Agent", request: ActionRequest) -> ToolResult:
        tool = agent.find_tool(request.tool_id)
        if tool is None:
            raise ToolInvocationError(f"Agent {agent.name} does not have access to tool {request.tool_id}")
        if request.parameters.get("requires_delegation") and not agent.capabilities.can_delegate_work:
            raise ToolInvocationError(f"Agent {agent.name} cannot delegate work")

        handler = self.registry.get(tool.name)
        logger.debug("tool.invoke", agent=agent.id, tool=tool.name, task_id=request.context.task_id)
        result = await handler.run(
            agent=agent, tool=tool, parameters=request.parameters, context=request.context
        )
        if agent.capabilities.can_delegate_work and result.requires_delegation and result.delegation_details:
            return await self._delegate(agent, result)
        return result

    async def _delegate(self, agent: "Agent", result: ToolResult) -> ToolResult:
        """Simulated hand-off: the target agent never runs, the tool output is kept as is."""
        details = result.delegation_details or {}
        target = details.get("target_agent", "")
        await asyncio.sleep(self.delegation_delay)
        logger.info("tool.delegated", agent=agent.id, target=target, reason=details.get("reason"))
        return ToolResult(
            content=result.content or f"Delegated work from agent {agent.name}",
            success=result.success,
            metadata={**result.metadata, "delegated_to": target, "delegation": "simulated"},
        )


Responder = Callable[["Agent", ActionRequest], Union[str, ToolResult, Awaitable[Union[str, ToolResult]]]]


class ScriptedInvoker:
    """Invoker driven by a plain function instead of real tools (tests and dry runs)."""

    def __init__(self, responder: Responder) -> None:
        self._responder = responder
        self.calls: List[Tuple[str, ActionRequest]] = []

    async def invoke(self, agent: "Agent", request: ActionRequest) -> ToolResult:
        self.calls.append((agent.id, request))
        outcome: Any = self._responder(agent, request)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        if isinstance(outcome, ToolResult):
            return outcome
        return ToolResult(content=str(outcome))
