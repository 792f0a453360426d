"""Tool abstractions, handlers and invokers."""

from .base import ActionRequest, Tool, ToolContext, ToolDescriptor, ToolResult
from .builtin import SimulatedTool, TextGenerationTool, register_builtin_tools
from .invoker import AgentActionInvoker, ScriptedInvoker, ToolInvoker
from .registry import ToolRegistry

__all__ = [
    "ActionRequest",
    "Tool",
    "ToolContext",
    "ToolDescriptor",
    "ToolResult",
    "ToolRegistry",
    "TextGenerationTool",
    "SimulatedTool",
    "register_builtin_tools",
    "ToolInvoker",
    "AgentActionInvoker",
    "ScriptedInvoker",
]
