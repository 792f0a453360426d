"""Runs one subtask on its allocated agent and measures it."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Iterable, Optional

import structlog

from ..config import TEXT_GENERATION
from ..errors import AllocationExhausted, SubtaskExecutionError, SubtaskTimeout, ToolInvocationError
from ..tasks.base import ExecutionMetrics, Subtask, TaskResult, utcnow
from ..tasks.prompts import build_execution_prompt
from ..tools.base import ActionRequest, ToolContext, ToolDescriptor, ToolResult
from ..tools.invoker import ToolInvoker
from .allocator import ResourceAllocation, ResourceAllocator
from .monitor import ExecutionMonitor

if TYPE_CHECKING:  # pragma: no cover
    from ..agents.base import Agent


def select_tool(allocation: ResourceAllocation) -> ToolDescriptor:
    """Prefer text generation: an allocated one, then the agent's own, then the first allocated tool."""
    for tool in allocation.tools:
        if tool.name == TEXT_GENERATION:
            return tool
    return allocation.agent.text_generation_tool() or allocation.tools[0]


class SubtaskExecutor:
    def __init__(
        self,
        invoker: ToolInvoker,
        allocator: ResourceAllocator,
        *,
        monitor: ExecutionMonitor | None = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.invoker = invoker
        self.allocator = allocator
        self.monitor = monitor or ExecutionMonitor()
        self.timeout = timeout
        self.logger = structlog.get_logger().bind(component="executor")

    def build_prompt(self, subtask: Subtask, allocation: ResourceAllocation, upstream: Iterable[Subtask] = ()) -> str:
        outputs = [
            f"[{dep.title}]\n{dep.result.output}"
            for dep in upstream
            if dep.result is not None and dep.result.success
        ]
        return build_execution_prompt(subtask, allocation.tools, outputs)

    async def execute(
        self,
        subtask: Subtask,
        allocation: ResourceAllocation | None = None,
        *,
        prompt: str | None = None,
        upstream: Iterable[Subtask] = (),
        attempt: int = 1,
    ) -> TaskResult:
        """Invoke the allocated agent for ``subtask``.

        Without an ``allocation`` one is taken from the allocator and released
        before returning; a caller-supplied allocation is left for the caller
        to release. Failures raise :class:`SubtaskExecutionError`.
        """
        owned = allocation is None
        if allocation is None:
            allocation = self.allocator.allocate(subtask)
            if allocation is None:
                raise AllocationExhausted(subtask.id)
        try:
            return await self._run(subtask, allocation, prompt, list(upstream), attempt)
        finally:
            if owned:
                self.allocator.release(allocation.agent_id)

    async def _invoke(self, agent: "Agent", request: ActionRequest) -> ToolResult:
        # a timeout raised by the tool itself (e.g. a socket read) is a tool failure
        try:
            return await self.invoker.invoke(agent, request)
        except asyncio.TimeoutError as exc:
            raise ToolInvocationError(f"{request.tool_id} timed out: {str(exc) or type(exc).__name__}") from exc

    async def _run(
        self,
        subtask: Subtask,
        allocation: ResourceAllocation,
        prompt: str | None,
        upstream: list,
        attempt: int,
    ) -> TaskResult:
        tool = select_tool(allocation)
        subtask.assigned_agent_id = allocation.agent_id
        subtask.assigned_tool_id = tool.id
        request = ActionRequest(
            tool_id=tool.id,
            parameters={"prompt": prompt or self.build_prompt(subtask, allocation, upstream)},
            context=ToolContext(
                agent_name=allocation.agent.name,
                task_id=subtask.id,
                attempt=attempt,
                metadata={"parent_task_id": subtask.parent_task_id or ""},
            ),
            name=subtask.title,
            description=subtask.description,
        )
        self.monitor.start(subtask, allocation)
        started_at = utcnow()
        started = time.perf_counter()
        self.logger.info("subtask.started", subtask_id=subtask.id, agent=allocation.agent_id, attempt=attempt)
        try:
            if self.timeout is None:
                response = await self._invoke(allocation.agent, request)
            else:
                try:
                    response = await asyncio.wait_for(self._invoke(allocation.agent, request), self.timeout)
                except asyncio.TimeoutError as exc:
                    message = f"timed out after {self.timeout}s"
                    self.monitor.fail(subtask.id, message)
                    self.logger.warning("subtask.timeout", subtask_id=subtask.id, timeout=self.timeout)
                    raise SubtaskTimeout(subtask.id, message) from exc
        except SubtaskTimeout:
            raise
        except Exception as exc:
            self.monitor.fail(subtask.id, str(exc))
            self.logger.warning("subtask.error", subtask_id=subtask.id, error=str(exc))
            raise SubtaskExecutionError(
                subtask.id, str(exc), details={"agent_id": allocation.agent_id, "tool_id": tool.id}
            ) from exc

        duration = (time.perf_counter() - started) * 1000
        if not response.success:
            self.monitor.fail(subtask.id, response.content)
            raise SubtaskExecutionError(subtask.id, response.content, details={"agent_id": allocation.agent_id})

        usage = self.monitor.estimator.estimate(subtask)
        allocation.usage = usage
        subtask.set_progress(1.0)
        self.monitor.progress(subtask.id, 1.0, f"attempt {attempt} produced output")
        self.logger.info("subtask.executed", subtask_id=subtask.id, duration_ms=round(duration, 1))
        return TaskResult(
            success=True,
            output=response.content,
            metrics=ExecutionMetrics(
                start_time=started_at,
                end_time=utcnow(),
                duration=duration,
                resource_usage=usage,
            ),
            task_id=subtask.id,
        )
