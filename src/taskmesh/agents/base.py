"""Agent records consumed by the orchestration core."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional

from ..config import TEXT_GENERATION
from ..llm.provider import LLMProvider
from ..tools.base import ToolDescriptor


class AgentRole(str, Enum):
    WORKER = "worker"
    COORDINATOR = "coordinator"
    MANAGER = "manager"


@dataclass(frozen=True)
class AgentCapabilities:
    can_delegate_work: bool = False
    can_create_sub_agents: bool = False
    can_access_other_agents: bool = False
    can_use_memory: bool = False


@dataclass
class Agent:
    """An agent definition. Treated as read-only during an orchestration run.

    Relationships to other agents are kept as ids (``parent_id``, ``sub_agents``)
    and resolved through an :class:`AgentDirectory`.
    """

    id: str
    name: str
    role: AgentRole = AgentRole.WORKER
    tools: List[ToolDescriptor] = field(default_factory=list)
    description: str = ""
    capabilities: AgentCapabilities = field(default_factory=AgentCapabilities)
    model: str = "gpt-4"
    system_prompt: str = ""
    context: str = ""
    temperature: float = 0.7
    max_tokens: int = 2048
    llm_provider: Optional[LLMProvider] = None
    parent_id: Optional[str] = None
    sub_agents: List[str] = field(default_factory=list)

    def find_tool(self, tool_id: str) -> Optional[ToolDescriptor]:
        for tool in self.tools:
            if tool.id == tool_id:
                return tool
        return None

    def text_generation_tool(self) -> Optional[ToolDescriptor]:
        for tool in self.tools:
            if tool.name == TEXT_GENERATION:
                return tool
        return None

    @property
    def is_worker(self) -> bool:
        return self.role is AgentRole.WORKER


class AgentDirectory:
    """Flat id -> Agent index; agents refer to each other only by id."""

    def __init__(self, agents: Iterable[Agent] = ()) -> None:
        self._agents: Dict[str, Agent] = {}
        for agent in agents:
            self.add(agent)

    def add(self, agent: Agent) -> None:
        if agent.id in self._agents:
            raise ValueError(f"Agent {agent.id} already registered")
        self._agents[agent.id] = agent

    def get(self, agent_id: str) -> Agent:
        try:
            return self._agents[agent_id]
        except KeyError as exc:
            raise KeyError(f"Unknown agent '{agent_id}'") from exc

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def __iter__(self) -> Iterator[Agent]:
        return iter(self._agents.values())

    def __len__(self) -> int:
        return len(self._agents)

    def workers(self) -> List[Agent]:
        return [agent for agent in self._agents.values() if agent.is_worker]

    def managers(self) -> List[Agent]:
        return [agent for agent in self._agents.values() if agent.role is AgentRole.MANAGER]

    def sub_agents_of(self, agent_id: str) -> List[Agent]:
        return [self._agents[sub_id] for sub_id in self.get(agent_id).sub_agents if sub_id in self._agents]
