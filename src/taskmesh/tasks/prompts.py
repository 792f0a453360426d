"""Prompt builders for the manager and worker agents."""

from __future__ import annotations

import json
import textwrap
from typing import Any, Iterable, Sequence

from ..tools.base import ToolDescriptor
from .base import Subtask, Task

SUBTASK_FORMAT = """[
  {
    "title": "Subtask title",
    "description": "Detailed description",
    "requiredCapabilities": ["capability1", "capability2"],
    "dependencies": [],
    "complexity": 2,
    "expectedOutput": "Expected output format"
  }
]"""

VERDICT_FORMAT = """{
  "isValid": true,
  "feedback": "Short assessment",
  "suggestedImprovements": ["improvement 1"]
}"""


def _render_output(output: Any) -> str:
    if isinstance(output, str):
        return output
    return json.dumps(output, indent=2, default=str)


def build_analysis_prompt(task: Task) -> str:
    header = textwrap.dedent(
        f"""
        Analyze the following task and break it down into subtasks:
        Title: {task.title}
        Description: {task.description}
        Priority: {task.priority.value}

        For each subtask, provide:
        1. A clear title and description
        2. Required capabilities/skills
        3. Dependencies on other subtasks (use the titles of earlier subtasks)
        4. Estimated complexity (1-5)
        5. Expected output format

        Respond with a JSON array of subtasks in this exact format:
        """
    ).strip()
    return f"{header}\n{SUBTASK_FORMAT}"


def build_execution_prompt(
    subtask: Subtask, tools: Sequence[ToolDescriptor] = (), dependency_outputs: Iterable[str] = ()
) -> str:
    tools_desc = "\n".join(f"- {tool.name}: {tool.description}" for tool in tools)
    upstream = "\n\n".join(dependency_outputs)
    prompt = textwrap.dedent(
        f"""
        You are working on the subtask "{subtask.title}".
        {subtask.description}

        Expected output: {subtask.expected_output or 'a concise, complete answer'}
        """
    ).strip()
    if tools_desc:
        prompt += f"\n\nTools allocated to you:\n{tools_desc}"
    if upstream:
        prompt += f"\n\nResults of the subtasks this one depends on:\n{upstream}"
    return prompt


def build_validation_prompt(subtask: Subtask, output: Any) -> str:
    header = textwrap.dedent(
        f"""
        Review the result of the subtask "{subtask.title}".
        Subtask description: {subtask.description}
        Expected output: {subtask.expected_output or 'not specified'}

        Result:
        """
    ).strip()
    instructions = textwrap.dedent(
        """
        Decide whether the result satisfies the expected output.
        Respond with a JSON object in this exact format:
        """
    ).strip()
    return f"{header}\n{_render_output(output)}\n\n{instructions}\n{VERDICT_FORMAT}"


def build_retry_prompt(
    subtask: Subtask,
    base_prompt: str,
    previous_output: Any,
    feedback: str,
    improvements: Sequence[str] = (),
) -> str:
    listed = "\n".join(f"- {item}" for item in improvements) or "- address the feedback above"
    previous = _render_output(previous_output) if previous_output is not None else "(no output was produced)"
    return (
        f"{base_prompt}\n\n"
        f"Your previous attempt at \"{subtask.title}\" was rejected.\n"
        f"Previous output:\n{previous}\n\n"
        f"Reviewer feedback: {feedback}\n"
        f"Address every one of these improvements:\n{listed}"
    )
