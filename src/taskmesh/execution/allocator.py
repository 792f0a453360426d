"""Exclusive agent allocation for subtask execution."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import structlog

from ..agents.base import Agent, AgentDirectory
from ..agents.registry import CapabilityRegistry
from ..tasks.base import ResourceUsage, Subtask, utcnow
from ..tools.base import ToolDescriptor


@dataclass
class ResourceAllocation:
    """Binding of one subtask to one agent and the tools it may use."""

    subtask_id: str
    agent: Agent
    tools: List[ToolDescriptor]
    started_at: datetime = field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    usage: ResourceUsage = field(default_factory=ResourceUsage)

    @property
    def agent_id(self) -> str:
        return self.agent.id


class ResourceAllocator:
    """Tracks which agents are free and hands each one to at most one subtask.

    ``allocate`` and ``release`` never await, so on a single event loop the
    availability check and the commit cannot interleave with another subtask.
    """

    def __init__(self, directory: AgentDirectory, registry: CapabilityRegistry | None = None) -> None:
        self.directory = directory
        self.registry = registry or CapabilityRegistry(directory)
        self._available: Dict[str, bool] = {agent.id: True for agent in directory}
        self._allocations: Dict[str, ResourceAllocation] = {}
        self._released: Optional[asyncio.Event] = None
        self.logger = structlog.get_logger().bind(component="allocator")

    def available_agents(self) -> List[Agent]:
        return [agent for agent in self.directory if self._available.get(agent.id, False)]

    def allocated_agents(self) -> List[str]:
        return list(self._allocations)

    def allocation_for(self, agent_id: str) -> Optional[ResourceAllocation]:
        return self._allocations.get(agent_id)

    def _candidate(self, agents: List[Agent], subtask: Subtask) -> Optional[ResourceAllocation]:
        for agent in agents:
            if not agent.is_worker:
                continue
            if not self.registry.satisfies(agent, subtask.required_capabilities):
                continue
            tools = self.registry.matching_tools(agent, subtask.required_capabilities)
            if not tools:
                continue
            return ResourceAllocation(subtask_id=subtask.id, agent=agent, tools=tools)
        return None

    def allocate(self, subtask: Subtask) -> Optional[ResourceAllocation]:
        """Grant a free worker able to serve ``subtask``, or ``None`` if none is free right now."""
        allocation = self._candidate(self.available_agents(), subtask)
        if allocation is None:
            self.logger.debug("allocation.deferred", subtask_id=subtask.id)
            return None
        self._available[allocation.agent_id] = False
        self._allocations[allocation.agent_id] = allocation
        self.logger.debug("allocation.granted", subtask_id=subtask.id, agent=allocation.agent_id)
        return allocation

    def can_ever_allocate(self, subtask: Subtask) -> bool:
        """Whether some worker in the pool could serve ``subtask`` once free."""
        return self._candidate(list(self.directory), subtask) is not None

    def release(self, agent_id: str) -> None:
        allocation = self._allocations.pop(agent_id, None)
        if allocation is not None:
            allocation.ended_at = utcnow()
        self._available[agent_id] = True
        self.logger.debug("allocation.released", agent=agent_id)
        if self._released is not None:
            self._released.set()

    async def wait_for_release(self) -> None:
        """Suspend until the next ``release`` call."""
        if self._released is None:
            self._released = asyncio.Event()
        self._released.clear()
        await self._released.wait()
