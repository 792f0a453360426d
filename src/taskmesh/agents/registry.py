"""Read-only lookup of which agent can perform which capability."""

from __future__ import annotations

from typing import Iterable, List

from ..tools.base import ToolDescriptor
from .base import Agent, AgentDirectory


class CapabilityRegistry:
    """Matches capability tags against the tools agents carry.

    ``substring`` mode looks for the tag inside the tool description, ignoring
    case. ``tags`` mode compares against the tool's explicit capability tags.
    """

    def __init__(self, directory: AgentDirectory, *, matching: str = "substring") -> None:
        if matching not in {"substring", "tags"}:
            raise ValueError(f"Unknown capability matching mode '{matching}'")
        self.directory = directory
        self.matching = matching

    def tool_provides(self, tool: ToolDescriptor, capability: str) -> bool:
        needle = capability.strip().casefold()
        if not needle:
            return False
        if self.matching == "tags":
            return needle in {tag.casefold() for tag in tool.capabilities}
        return needle in tool.description.casefold()

    def tools_for(self, agent: Agent, capability: str) -> List[ToolDescriptor]:
        return [tool for tool in agent.tools if self.tool_provides(tool, capability)]

    def satisfies(self, agent: Agent, capabilities: Iterable[str]) -> bool:
        return all(self.tools_for(agent, capability) for capability in capabilities)

    def matching_tools(self, agent: Agent, capabilities: Iterable[str]) -> List[ToolDescriptor]:
        """Tools of ``agent`` covering at least one capability, in the agent's tool order.

        With no capabilities requested every tool qualifies.
        """
        wanted = [cap for cap in capabilities if cap.strip()]
        if not wanted:
            return list(agent.tools)
        return [tool for tool in agent.tools if any(self.tool_provides(tool, cap) for cap in wanted)]

    def agents_for(self, capability: str) -> List[Agent]:
        return [agent for agent in self.directory if self.tools_for(agent, capability)]

    def uncovered(self, capabilities: Iterable[str]) -> List[str]:
        """Capabilities no worker agent in the directory can provide."""
        workers = self.directory.workers()
        return [
            capability
            for capability in capabilities
            if not any(self.tools_for(agent, capability) for agent in workers)
        ]
