"""Result validation by the manager agent and the retry loop around it."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Optional

import structlog

from ..errors import SubtaskExecutionError, ValidationParseError
from ..tasks.base import Subtask, TaskResult, TaskStatus
from ..tasks.parsing import ResponseFormatError, Verdict, decode_verdict
from ..tasks.prompts import build_retry_prompt, build_validation_prompt
from ..tools.base import ActionRequest, ToolContext
from ..tools.invoker import ToolInvoker
from .allocator import ResourceAllocation
from .executor import SubtaskExecutor

if TYPE_CHECKING:  # pragma: no cover
    from ..agents.base import Agent


class ResultValidator:
    """Asks the manager whether a result meets the subtask's expected output.

    Anything short of an explicit, well-formed approval counts as rejection.
    """

    def __init__(self, invoker: ToolInvoker) -> None:
        self.invoker = invoker
        self.logger = structlog.get_logger().bind(component="validator")

    async def assess(self, subtask: Subtask, result: TaskResult, manager: "Agent") -> Verdict:
        tool = manager.text_generation_tool()
        if tool is None:
            return Verdict(is_valid=False, feedback=f"Manager agent {manager.name} cannot review results")
        request = ActionRequest(
            tool_id=tool.id,
            parameters={"prompt": build_validation_prompt(subtask, result.output)},
            context=ToolContext(agent_name=manager.name, task_id=subtask.id),
            name="Result Validation",
        )
        try:
            response = await self.invoker.invoke(manager, request)
        except Exception as exc:
            self.logger.warning("validation.unavailable", subtask_id=subtask.id, error=str(exc))
            return Verdict(is_valid=False, feedback=f"Validation could not be performed: {exc}")
        try:
            verdict = self.parse(response.content)
        except ValidationParseError as exc:
            self.logger.warning("validation.unparseable", subtask_id=subtask.id, error=exc.message)
            return Verdict(is_valid=False, feedback=exc.message)
        self.logger.info("validation.verdict", subtask_id=subtask.id, valid=verdict.is_valid)
        return verdict

    async def validate(self, subtask: Subtask, result: TaskResult, manager: "Agent") -> bool:
        verdict = await self.assess(subtask, result, manager)
        return verdict.is_valid

    @staticmethod
    def parse(text: str) -> Verdict:
        try:
            return decode_verdict(text)
        except ResponseFormatError as exc:
            raise ValidationParseError(f"Validation response could not be parsed: {exc}") from exc


@dataclass
class RetryOutcome:
    success: bool
    result: Optional[TaskResult] = None


class RetryController:
    """Executes a subtask, has it reviewed, and retries with the reviewer's feedback."""

    def __init__(
        self,
        executor: SubtaskExecutor,
        validator: ResultValidator,
        manager: "Agent",
        *,
        max_retries: int = 1,
        retry_delay: float = 0.0,
    ) -> None:
        self.executor = executor
        self.validator = validator
        self.manager = manager
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.logger = structlog.get_logger().bind(component="retry")

    async def retry(
        self,
        subtask: Subtask,
        previous: Optional[TaskResult],
        verdict: Verdict,
        allocation: ResourceAllocation,
        *,
        upstream: Iterable[Subtask] = (),
        attempt: int = 2,
    ) -> RetryOutcome:
        upstream = list(upstream)
        prompt = build_retry_prompt(
            subtask,
            self.executor.build_prompt(subtask, allocation, upstream),
            previous.output if previous is not None else None,
            verdict.feedback,
            verdict.suggested_improvements,
        )
        if self.retry_delay > 0:
            await asyncio.sleep(self.retry_delay)
        self.logger.info("subtask.retry", subtask_id=subtask.id, attempt=attempt, feedback=verdict.feedback)
        try:
            result = await self.executor.execute(subtask, allocation, prompt=prompt, attempt=attempt)
        except SubtaskExecutionError as exc:
            return RetryOutcome(success=False, result=_error_result(subtask, exc))
        return RetryOutcome(success=True, result=result)

    async def run(
        self, subtask: Subtask, allocation: ResourceAllocation, upstream: Iterable[Subtask] = ()
    ) -> TaskResult:
        """Full execute -> review -> retry cycle; always returns a result."""
        upstream = list(upstream)
        monitor = self.executor.monitor
        result: Optional[TaskResult] = None
        try:
            result = await self.executor.execute(subtask, allocation, upstream=upstream)
        except SubtaskExecutionError as exc:
            failure = _error_result(subtask, exc)
            verdict = Verdict(is_valid=False, feedback=exc.message)
        else:
            verdict = await self._review(subtask, result)

        attempt = 1
        while not verdict.is_valid:
            if attempt > self.max_retries:
                if result is None:
                    monitor.fail(subtask.id, failure.error.message)
                    return failure
                message = f"Result rejected after {attempt} attempt(s): {verdict.feedback}"
                monitor.fail(subtask.id, message)
                return TaskResult.failure(
                    "VALIDATION_FAILED",
                    message,
                    details={"suggested_improvements": verdict.suggested_improvements},
                    task_id=subtask.id,
                    output=result.output,
                    metrics=result.metrics,
                )
            attempt += 1
            subtask.transition(TaskStatus.EXECUTING)
            outcome = await self.retry(subtask, result, verdict, allocation, upstream=upstream, attempt=attempt)
            if not outcome.success:
                monitor.fail(subtask.id, outcome.result.error.message)
                return outcome.result
            result = outcome.result
            verdict = await self._review(subtask, result)

        monitor.complete(subtask.id, verdict.feedback)
        return result

    async def _review(self, subtask: Subtask, result: TaskResult) -> Verdict:
        subtask.transition(TaskStatus.REVIEWING)
        return await self.validator.assess(subtask, result, self.manager)


def _error_result(subtask: Subtask, exc: SubtaskExecutionError) -> TaskResult:
    return TaskResult.failure(exc.code, exc.message, details=exc.details, task_id=subtask.id)
