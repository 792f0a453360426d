"""Runs hand-authored workflows step by step on named agents."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Optional, Sequence

import structlog

from ..agents.base import AgentDirectory
from ..errors import WorkflowError
from ..execution.aggregator import RunMetrics
from ..tasks.base import TaskError, utcnow
from ..tools.base import ActionRequest, ToolContext
from ..tools.invoker import ToolInvoker
from .base import StepExecution, Workflow, WorkflowExecution, WorkflowStep, WorkflowType


class StepFailed(Exception):
    def __init__(self, step_id: str, message: str) -> None:
        super().__init__(message)
        self.step_id = step_id


class WorkflowEngine:
    """Executes :class:`Workflow` definitions through the same tool invoker as subtasks.

    Steps address their agent directly; they do not take allocations from the
    scheduler's agent pool.
    """

    def __init__(self, directory: AgentDirectory, invoker: ToolInvoker) -> None:
        self.directory = directory
        self.invoker = invoker
        self.logger = structlog.get_logger().bind(component="workflow")

    def check(self, workflow: Workflow) -> None:
        workflow.check()
        unknown = sorted({step.agent_id for step in workflow.steps if step.agent_id not in self.directory})
        if unknown:
            raise WorkflowError(f"Workflow '{workflow.id}' uses unknown agents {unknown}")

    async def execute(self, workflow: Workflow) -> WorkflowExecution:
        self.check(workflow)
        execution = WorkflowExecution(workflow_id=workflow.id, current_step_id=workflow.steps[0].id)
        started = time.perf_counter()
        self.logger.info("workflow.started", workflow_id=workflow.id, type=workflow.type.value)
        try:
            if workflow.type is WorkflowType.SEQUENTIAL:
                await self._sequential(workflow, execution)
            elif workflow.type is WorkflowType.PARALLEL:
                await self._parallel(workflow, workflow.main_steps(), execution)
            else:
                await self._hierarchical(workflow, execution)
        except StepFailed as exc:
            execution.status = "failed"
            execution.error = TaskError(code="STEP_FAILED", message=str(exc), details={"step_id": exc.step_id})
            self.logger.warning("workflow.failed", workflow_id=workflow.id, step_id=exc.step_id, error=str(exc))
        else:
            execution.status = "completed"
            self.logger.info("workflow.completed", workflow_id=workflow.id)
        execution.completed_at = utcnow()
        execution.metrics = _metrics(execution.steps, (time.perf_counter() - started) * 1000)
        return execution

    async def _sequential(self, workflow: Workflow, execution: WorkflowExecution) -> None:
        for step in workflow.main_steps():
            await self._run_with_fallback(workflow, step, execution)

    async def _parallel(
        self,
        workflow: Workflow,
        steps: Sequence[WorkflowStep],
        execution: WorkflowExecution,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        semaphore = asyncio.Semaphore(workflow.max_concurrent_steps or len(steps) or 1)

        async def bounded(step: WorkflowStep) -> None:
            async with semaphore:
                await self._run_with_fallback(workflow, step, execution, extra)

        outcomes = await asyncio.gather(*(bounded(step) for step in steps), return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

    async def _hierarchical(self, workflow: Workflow, execution: WorkflowExecution) -> None:
        manager_step = workflow.manager_step()
        record = await self._run_with_fallback(workflow, manager_step, execution)
        manager = self.directory.get(workflow.get_step(record.step_id).agent_id)
        workers = [step for step in workflow.main_steps() if step.id != manager_step.id]
        if workers:
            extra = {"manager_output": record.output, "manager_name": manager.name}
            await self._parallel(workflow, workers, execution, extra)

    async def _run_with_fallback(
        self,
        workflow: Workflow,
        step: WorkflowStep,
        execution: WorkflowExecution,
        extra: Optional[Dict[str, Any]] = None,
    ) -> StepExecution:
        record = await self.run_step(workflow, step, execution, extra)
        if record.status == "completed":
            return record
        if step.fallback_step_id is None:
            raise StepFailed(step.id, f"Step {step.id} failed: {record.error}")
        fallback = workflow.get_step(step.fallback_step_id)
        self.logger.info("workflow.fallback", step_id=step.id, fallback=fallback.id)
        recovered = await self.run_step(workflow, fallback, execution, extra)
        if recovered.status != "completed":
            raise StepFailed(
                fallback.id, f"Step {step.id} failed: {record.error}; fallback {fallback.id} failed: {recovered.error}"
            )
        return recovered

    async def run_step(
        self,
        workflow: Workflow,
        step: WorkflowStep,
        execution: WorkflowExecution,
        extra: Optional[Dict[str, Any]] = None,
    ) -> StepExecution:
        """Run one step with its retry strategy; failures are recorded, not raised."""
        agent = self.directory.get(step.agent_id)
        record = StepExecution(step_id=step.id, input=dict(step.parameters))
        execution.steps.append(record)
        execution.current_step_id = step.id
        started = time.perf_counter()

        problems = [problem for problem in (rule.check(step.parameters) for rule in step.validation_rules) if problem]
        if problems:
            _finish(record, started, error=f"Validation failed: {problems[0]}")
            self.logger.warning("workflow.step_invalid", step_id=step.id, error=record.error)
            return record

        parameters = _with_extra(step.parameters, extra)
        max_attempts = max(1, step.retry.max_attempts)
        error = ""
        for attempt in range(1, max_attempts + 1):
            record.attempts = attempt
            request = ActionRequest(
                tool_id=step.tool_id,
                parameters=parameters,
                context=ToolContext(
                    agent_name=agent.name,
                    task_id=execution.id,
                    attempt=attempt,
                    metadata={"workflow_id": workflow.id, "step_id": step.id},
                ),
                name=step.name,
                description=step.description,
            )
            try:
                response = await self.invoker.invoke(agent, request)
            except Exception as exc:
                error = str(exc)
            else:
                if response.success:
                    _finish(record, started, output=response.content)
                    self.logger.info("workflow.step_completed", step_id=step.id, attempts=attempt)
                    return record
                error = response.content
            self.logger.warning("workflow.step_attempt_failed", step_id=step.id, attempt=attempt, error=error)
            if attempt < max_attempts and step.retry.delay_seconds > 0:
                await asyncio.sleep(step.retry.delay_seconds)

        _finish(record, started, error=error)
        return record


def _with_extra(parameters: Dict[str, Any], extra: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    merged = dict(parameters)
    if not extra:
        return merged
    merged["manager_output"] = extra["manager_output"]
    prompt = merged.get("prompt")
    if isinstance(prompt, str):
        merged["prompt"] = f"{prompt}\n\nInstructions from {extra['manager_name']}:\n{extra['manager_output']}"
    return merged


def _finish(record: StepExecution, started: float, *, output: Any = None, error: Optional[str] = None) -> None:
    record.status = "failed" if error is not None else "completed"
    record.output = output
    record.error = error
    record.completed_at = utcnow()
    record.duration = (time.perf_counter() - started) * 1000


def _metrics(steps: List[StepExecution], total_duration: float) -> RunMetrics:
    completed = sum(1 for record in steps if record.status == "completed")
    durations: Dict[str, float] = {}
    for record in steps:
        durations[record.step_id] = durations.get(record.step_id, 0.0) + record.duration
    return RunMetrics(
        retry_count=sum(max(0, record.attempts - 1) for record in steps),
        step_durations=durations,
        success_rate=completed / len(steps) * 100 if steps else 0.0,
        total_duration=total_duration,
    )
