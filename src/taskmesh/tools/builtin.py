"""Built-in tool handlers."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any, Dict

from ..config import TEXT_GENERATION
from ..errors import ToolInvocationError
from ..llm.provider import PromptContext
from .base import Tool, ToolContext, ToolDescriptor, ToolResult
from .registry import ToolRegistry

if TYPE_CHECKING:  # pragma: no cover
    from ..agents.base import Agent


class TextGenerationTool(Tool):
    """Generates text with the agent's language model."""

    async def run(
        self, *, agent: "Agent", tool: ToolDescriptor, parameters: Dict[str, Any], context: ToolContext
    ) -> ToolResult:
        if agent.llm_provider is None:
            raise ToolInvocationError(f"Agent {agent.name} has no language model configured")
        prompt = parameters.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            raise ToolInvocationError(f"Tool {tool.name} requires a non-empty 'prompt' parameter")
        system_prompt = agent.system_prompt
        if agent.context:
            system_prompt = f"{system_prompt}\n\nContext: {agent.context}".strip()
        prompt_context = PromptContext(
            agent_name=agent.name,
            task_id=context.task_id,
            attempt=context.attempt,
            system_prompt=system_prompt,
            model=agent.model,
            temperature=agent.temperature,
            max_tokens=agent.max_tokens,
        )
        # providers are synchronous; keep the event loop free for sibling subtasks
        text = await asyncio.to_thread(agent.llm_provider.generate, prompt, prompt_context)
        return ToolResult(content=text, metadata={"model": agent.model})


class SimulatedTool(Tool):
    """Stand-in for tool kinds without a real integration: waits, then echoes its input."""

    def __init__(self, name: str = "simulated", delay: float = 1.0, **kwargs: Any) -> None:
        super().__init__(name, **kwargs)
        self.delay = delay

    async def run(
        self, *, agent: "Agent", tool: ToolDescriptor, parameters: Dict[str, Any], context: ToolContext
    ) -> ToolResult:
        if self.delay > 0:
            await asyncio.sleep(self.delay)
        return ToolResult(
            content=f"Executed {tool.name} with parameters: {json.dumps(parameters, default=str)}",
            metadata={"simulated": "true"},
        )


def register_builtin_tools(registry: ToolRegistry, *, simulated_delay: float = 1.0) -> None:
    registry.register_instance(TextGenerationTool(TEXT_GENERATION), overwrite=True)
    registry.set_fallback(SimulatedTool(delay=simulated_delay))
