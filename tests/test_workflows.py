import asyncio

import pytest

from taskmesh.config import ConfigError, ProjectConfig
from taskmesh.errors import WorkflowError
from taskmesh.tools.base import ToolResult
from taskmesh.tools.invoker import ScriptedInvoker
from taskmesh.workflows import RetryStrategy, ValidationRule, Workflow, WorkflowEngine, WorkflowStep, WorkflowType


def _step(step_id, agent="writer", **kwargs):
    kwargs.setdefault("parameters", {"prompt": f"Do {step_id}"})
    return WorkflowStep(id=step_id, name=step_id.title(), agent_id=agent, tool_id="text-generation", **kwargs)


def _workflow(kind, steps, **kwargs):
    return Workflow(id="wf", name="Workflow", type=kind, steps=steps, **kwargs)


def _echo(agent, request):
    return f"{agent.id}: {request.name}"


@pytest.mark.asyncio
async def test_sequential_runs_steps_in_order(directory):
    invoker = ScriptedInvoker(_echo)
    workflow = _workflow(WorkflowType.SEQUENTIAL, [_step("draft"), _step("review", agent="manager")])

    execution = await WorkflowEngine(directory, invoker).execute(workflow)

    assert execution.status == "completed"
    assert [request.name for _, request in invoker.calls] == ["Draft", "Review"]
    assert execution.step("review").output == "manager: Review"
    assert execution.current_step_id == "review"
    assert execution.metrics.success_rate == 100.0
    assert execution.metrics.retry_count == 0
    assert set(execution.metrics.step_durations) == {"draft", "review"}


@pytest.mark.asyncio
async def test_sequential_stops_at_first_failure(directory):
    def respond(agent, request):
        if request.name == "Draft":
            raise ConnectionError("connection reset")
        return "ok"

    invoker = ScriptedInvoker(respond)
    workflow = _workflow(WorkflowType.SEQUENTIAL, [_step("draft"), _step("publish")])

    execution = await WorkflowEngine(directory, invoker).execute(workflow)

    assert execution.status == "failed"
    assert execution.error.code == "STEP_FAILED"
    assert execution.error.details == {"step_id": "draft"}
    assert "connection reset" in execution.error.message
    assert len(invoker.calls) == 1
    assert execution.metrics.success_rate == 0.0


@pytest.mark.asyncio
async def test_fallback_step_recovers(directory):
    def respond(agent, request):
        if agent.id == "writer":
            return ToolResult(content="model overloaded", success=False)
        return "fallback draft"

    steps = [_step("draft", fallback_step_id="backup"), _step("backup", agent="researcher"), _step("publish", agent="manager")]
    invoker = ScriptedInvoker(respond)

    execution = await WorkflowEngine(directory, invoker).execute(_workflow(WorkflowType.SEQUENTIAL, steps))

    assert execution.status == "completed"
    assert [record.step_id for record in execution.steps] == ["draft", "backup", "publish"]
    assert execution.step("draft").error == "model overloaded"
    assert execution.step("backup").output == "fallback draft"
    assert execution.metrics.success_rate == pytest.approx(200 / 3)


@pytest.mark.asyncio
async def test_failed_fallback_fails_the_workflow(directory):
    invoker = ScriptedInvoker(lambda agent, request: ToolResult(content="down", success=False))
    steps = [_step("draft", fallback_step_id="backup"), _step("backup")]

    execution = await WorkflowEngine(directory, invoker).execute(_workflow(WorkflowType.SEQUENTIAL, steps))

    assert execution.status == "failed"
    assert execution.error.details == {"step_id": "backup"}


@pytest.mark.asyncio
async def test_retry_strategy_counts_retries(directory):
    attempts = []

    def respond(agent, request):
        attempts.append(request.context.attempt)
        if len(attempts) < 3:
            raise TimeoutError("slow upstream")
        return "third time lucky"

    step = _step("draft", retry=RetryStrategy(max_attempts=3, delay_seconds=0))

    execution = await WorkflowEngine(directory, ScriptedInvoker(respond)).execute(
        _workflow(WorkflowType.SEQUENTIAL, [step])
    )

    assert execution.status == "completed"
    assert attempts == [1, 2, 3]
    assert execution.step("draft").attempts == 3
    assert execution.metrics.retry_count == 2


@pytest.mark.asyncio
async def test_parallel_respects_concurrency_cap(directory):
    running = {"now": 0, "peak": 0}

    async def respond(agent, request):
        running["now"] += 1
        running["peak"] = max(running["peak"], running["now"])
        await asyncio.sleep(0.01)
        running["now"] -= 1
        return request.name

    steps = [_step(name) for name in ("one", "two", "three", "four")]
    workflow = _workflow(WorkflowType.PARALLEL, steps, max_concurrent_steps=2)

    execution = await WorkflowEngine(directory, ScriptedInvoker(respond)).execute(workflow)

    assert execution.status == "completed"
    assert running["peak"] == 2
    assert len(execution.steps) == 4


@pytest.mark.asyncio
async def test_parallel_failure_still_runs_other_steps(directory):
    def respond(agent, request):
        if request.name == "Two":
            raise RuntimeError("broken tool")
        return request.name

    invoker = ScriptedInvoker(respond)
    steps = [_step(name) for name in ("one", "two", "three")]

    execution = await WorkflowEngine(directory, invoker).execute(_workflow(WorkflowType.PARALLEL, steps))

    assert execution.status == "failed"
    assert execution.error.details == {"step_id": "two"}
    assert len(invoker.calls) == 3


@pytest.mark.asyncio
async def test_hierarchical_hands_manager_output_to_workers(directory):
    def respond(agent, request):
        if agent.id == "manager":
            return "Cover the history first"
        return request.parameters["prompt"]

    invoker = ScriptedInvoker(respond)
    steps = [_step("write"), _step("plan", agent="manager"), _step("research", agent="researcher")]
    workflow = _workflow(WorkflowType.HIERARCHICAL, steps, manager_id="manager")

    execution = await WorkflowEngine(directory, invoker).execute(workflow)

    assert execution.status == "completed"
    assert execution.steps[0].step_id == "plan"
    assert "Instructions from Manager:\nCover the history first" in execution.step("write").output
    worker_request = next(request for agent_id, request in invoker.calls if agent_id == "researcher")
    assert worker_request.parameters["manager_output"] == "Cover the history first"


@pytest.mark.asyncio
async def test_hierarchical_stops_when_manager_fails(directory):
    invoker = ScriptedInvoker(lambda agent, request: ToolResult(content="no plan", success=False))
    steps = [_step("plan", agent="manager"), _step("write")]

    execution = await WorkflowEngine(directory, invoker).execute(_workflow(WorkflowType.HIERARCHICAL, steps))

    assert execution.status == "failed"
    assert len(invoker.calls) == 1


@pytest.mark.asyncio
async def test_validation_rule_blocks_step(directory):
    invoker = ScriptedInvoker(_echo)
    step = _step(
        "draft",
        parameters={"prompt": "hello"},
        validation_rules=[ValidationRule(type="regex", value="^[A-Z]", message="Prompt must be capitalised")],
    )

    execution = await WorkflowEngine(directory, invoker).execute(_workflow(WorkflowType.SEQUENTIAL, [step]))

    assert execution.status == "failed"
    assert execution.step("draft").error == "Validation failed: Prompt must be capitalised"
    assert invoker.calls == []


def test_range_rule():
    rule = ValidationRule(type="range", value=10)
    assert rule.check({"words": 5}) is None
    assert rule.check({"words": 50}) == "Input exceeds maximum value 10"
    assert rule.check({"words": "five"}) is not None


@pytest.mark.asyncio
async def test_unknown_agent_is_rejected_before_running(directory):
    invoker = ScriptedInvoker(_echo)
    workflow = _workflow(WorkflowType.SEQUENTIAL, [_step("draft", agent="ghost")])

    with pytest.raises(WorkflowError, match="ghost"):
        await WorkflowEngine(directory, invoker).execute(workflow)
    assert invoker.calls == []


def test_workflow_from_mapping():
    workflow = Workflow.from_mapping(
        "publish",
        {
            "type": "Parallel",
            "max_concurrent_steps": 2,
            "steps": [
                {"agent": "writer", "tool": "copywriting", "retry": {"max_attempts": 2, "delay_seconds": 0.5}},
                {"id": "check", "agent": "manager", "tool": "text-generation", "fallback": "step-1"},
            ],
        },
    )

    assert workflow.type is WorkflowType.PARALLEL
    assert workflow.max_concurrent_steps == 2
    assert workflow.steps[0].id == "step-1"
    assert workflow.steps[0].retry == RetryStrategy(max_attempts=2, delay_seconds=0.5)
    assert [step.id for step in workflow.main_steps()] == ["check"]


@pytest.mark.parametrize(
    "data, message",
    [
        ({"type": "circular", "steps": [{"agent": "a", "tool": "t"}]}, "type must be one of"),
        ({"steps": []}, "no steps"),
        ({"steps": [{"agent": "a"}]}, "requires 'tool'"),
        ({"steps": [{"agent": "a", "tool": "t", "fallback": "nope"}]}, "unknown step"),
        ({"steps": [{"agent": "a", "tool": "t", "retry": {"max_attempts": 0}}]}, "at least 1"),
        ({"steps": [{"agent": "a", "tool": "t", "validation": [{"type": "custom", "value": 1}]}]}, "unknown type"),
    ],
)
def test_invalid_workflows(data, message):
    with pytest.raises(WorkflowError, match=message):
        Workflow.from_mapping("wf", data)


def test_config_rejects_workflow_with_unknown_agent():
    with pytest.raises(ConfigError, match="unknown agent 'ghost'"):
        ProjectConfig.from_mapping(
            {
                "agents": {"writer": {"tools": ["text-generation"]}},
                "workflows": {"wf": {"steps": [{"agent": "ghost", "tool": "text-generation"}]}},
            }
        )
