import json

import pytest

from taskmesh.agents.base import Agent, AgentRole
from taskmesh.errors import DecompositionError
from taskmesh.tasks.base import Priority, Task, TaskStatus
from taskmesh.tasks.decomposer import TaskDecomposer, estimate_resources, resolve_dependencies
from taskmesh.tools.invoker import ScriptedInvoker

PLAN = json.dumps(
    [
        {
            "title": "Research topic",
            "description": "Collect facts about the topic",
            "requiredCapabilities": ["research"],
            "dependencies": [],
            "complexity": 2,
            "expectedOutput": "bullet notes",
        },
        {
            "title": "Outline",
            "description": "Structure the post",
            "requiredCapabilities": ["research", "outline"],
            "dependencies": [],
            "complexity": 1,
        },
        {
            "title": "Write draft",
            "description": "Write the blog post",
            "requiredCapabilities": ["writing"],
            "dependencies": ["research topic", "2"],
            "complexity": 3,
        },
    ]
)


def _task():
    return Task.create("Write blog post", "A post about asyncio", Priority.HIGH)


@pytest.mark.asyncio
async def test_analyze_builds_subtasks_and_estimate(manager):
    invoker = ScriptedInvoker(lambda agent, request: f"Sure, here it is:\n{PLAN}")
    task = _task()

    decomposition = await TaskDecomposer(invoker).analyze(task, manager)

    research, outline, draft = decomposition.subtasks
    assert task.status is TaskStatus.ANALYZING
    assert [s.title for s in decomposition.subtasks] == ["Research topic", "Outline", "Write draft"]
    assert all(s.parent_task_id == task.id for s in decomposition.subtasks)
    assert all(s.priority is Priority.HIGH for s in decomposition.subtasks)
    assert [s.order_index for s in decomposition.subtasks] == [0, 1, 2]
    assert draft.dependencies == [research.id, outline.id]
    assert decomposition.required_capabilities == ["research", "outline", "writing"]

    estimate = decomposition.estimate
    assert estimate.critical_path[draft.id] == 5
    assert estimate.critical_path_length == 5
    assert estimate.estimated_minutes == 25
    assert estimate.total_complexity == 6
    assert estimate.parallelizable_tasks == 2
    assert estimate.sequential_tasks == 1

    agent_id, request = invoker.calls[0]
    assert agent_id == "manager"
    assert "Write blog post" in request.parameters["prompt"]


@pytest.mark.asyncio
async def test_manager_without_text_generation_is_rejected():
    mute = Agent(id="mute", name="Mute", role=AgentRole.MANAGER)
    invoker = ScriptedInvoker(lambda agent, request: PLAN)
    with pytest.raises(DecompositionError, match="text generation"):
        await TaskDecomposer(invoker).decompose(_task(), mute)
    assert invoker.calls == []


@pytest.mark.asyncio
async def test_llm_failure_becomes_decomposition_error(manager):
    def responder(agent, request):
        raise RuntimeError("connection reset")

    with pytest.raises(DecompositionError, match="Task breakdown failed: connection reset") as info:
        await TaskDecomposer(ScriptedInvoker(responder)).decompose(_task(), manager)
    assert info.value.code == "DECOMPOSITION_ERROR"


@pytest.mark.asyncio
async def test_response_without_array_is_rejected(manager):
    invoker = ScriptedInvoker(lambda agent, request: "I would start by researching the topic.")
    with pytest.raises(DecompositionError, match="Failed to parse subtasks"):
        await TaskDecomposer(invoker).decompose(_task(), manager)


@pytest.mark.asyncio
async def test_empty_plan_is_rejected(manager):
    invoker = ScriptedInvoker(lambda agent, request: "[]")
    with pytest.raises(DecompositionError):
        await TaskDecomposer(invoker).decompose(_task(), manager)


def test_resolve_dependencies_keeps_unknown_references(make_subtask):
    first = make_subtask("Gather")
    second = make_subtask("Summarize", dependencies=["Gather", "subtask 1", "#1", "Ghost"])
    resolve_dependencies([first, second])
    assert second.dependencies == [first.id, "Ghost"]


def test_estimate_ignores_cycles(make_subtask):
    a = make_subtask("A", dependencies=["B"], complexity=2)
    b = make_subtask("B", dependencies=["A"], complexity=3)
    estimate = estimate_resources([a, b], minutes_per_unit=1.0)
    assert estimate.total_complexity == 5
    assert estimate.sequential_tasks == 2
    assert estimate.critical_path_length <= 5
