"""Dependency graph over subtasks and the scheduler that drains it."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set

import structlog

from ..errors import DeadlockError
from ..tasks.base import Subtask, TaskResult, TaskStatus
from .allocator import ResourceAllocation, ResourceAllocator
from .monitor import ExecutionMonitor

SubtaskHandler = Callable[[Subtask, ResourceAllocation, List[Subtask]], Awaitable[TaskResult]]


@dataclass
class ExecutionNode:
    subtask: Subtask
    dependencies: Set[str] = field(default_factory=set)
    dependents: Set[str] = field(default_factory=set)
    status: str = "pending"

    @property
    def id(self) -> str:
        return self.subtask.id

    @property
    def ready(self) -> bool:
        return self.status == "pending" and not self.dependencies


class ExecutionGraph:
    """Nodes keyed by subtask id; a node's dependency set shrinks as its dependencies finish."""

    def __init__(self, subtasks: Sequence[Subtask]) -> None:
        self.subtasks = {subtask.id: subtask for subtask in subtasks}
        self.nodes: Dict[str, ExecutionNode] = {
            subtask.id: ExecutionNode(subtask=subtask, dependencies=set(subtask.dependencies))
            for subtask in subtasks
        }
        for node in self.nodes.values():
            for dep in node.dependencies:
                if dep in self.nodes:
                    self.nodes[dep].dependents.add(node.id)

    def validate(self) -> None:
        """Raise :class:`DeadlockError` for dangling references or cycles."""
        dangling = {
            node.id: sorted(dep for dep in node.dependencies if dep not in self.nodes)
            for node in self.nodes.values()
        }
        dangling = {node_id: deps for node_id, deps in dangling.items() if deps}
        if dangling:
            raise DeadlockError(
                f"Subtasks depend on unknown subtasks: {dangling}", remaining=list(dangling)
            )
        indegree = {node_id: len(node.dependencies) for node_id, node in self.nodes.items()}
        queue = [node_id for node_id, count in indegree.items() if count == 0]
        visited = 0
        while queue:
            current = queue.pop()
            visited += 1
            for dependent in self.nodes[current].dependents:
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    queue.append(dependent)
        if visited != len(self.nodes):
            cyclic = [node_id for node_id, count in indegree.items() if count > 0]
            raise DeadlockError(f"Dependency cycle among subtasks {cyclic}", remaining=cyclic)

    def ready(self) -> List[ExecutionNode]:
        """Ready nodes in creation order."""
        return sorted(
            (node for node in self.nodes.values() if node.ready),
            key=lambda node: node.subtask.order_index,
        )

    def pending(self) -> List[ExecutionNode]:
        return [node for node in self.nodes.values() if node.status == "pending"]

    def finish(self, node_id: str) -> ExecutionNode:
        node = self.nodes.pop(node_id)
        for dependent in node.dependents:
            if dependent in self.nodes:
                self.nodes[dependent].dependencies.discard(node_id)
        return node

    def dependents_closure(self, node_id: str) -> List[ExecutionNode]:
        """Every remaining node that transitively depends on ``node_id``."""
        seen: Set[str] = set()
        stack = [node_id]
        found: List[ExecutionNode] = []
        while stack:
            current = self.nodes.get(stack.pop())
            if current is None:
                continue
            for dependent in current.dependents:
                if dependent not in seen and dependent in self.nodes:
                    seen.add(dependent)
                    found.append(self.nodes[dependent])
                    stack.append(dependent)
        return found

    def __bool__(self) -> bool:
        return bool(self.nodes)


class Scheduler:
    """Launches every ready subtask concurrently, as far as agents are free.

    Results are returned in completion order. The agent pool provides the
    backpressure: a ready subtask that cannot be allocated waits for the next
    release instead of failing. ``max_concurrent`` caps how many subtasks run
    at once regardless of how many agents are free.
    """

    def __init__(
        self,
        allocator: ResourceAllocator,
        handler: SubtaskHandler,
        *,
        monitor: ExecutionMonitor | None = None,
        max_concurrent: Optional[int] = None,
    ) -> None:
        if max_concurrent is not None and max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.allocator = allocator
        self.handler = handler
        self.monitor = monitor
        self.max_concurrent = max_concurrent
        self.logger = structlog.get_logger().bind(component="scheduler")

    def _has_capacity(self, in_flight: Dict[asyncio.Task, ExecutionNode]) -> bool:
        return self.max_concurrent is None or len(in_flight) < self.max_concurrent

    async def run(self, subtasks: Sequence[Subtask]) -> List[TaskResult]:
        graph = ExecutionGraph(subtasks)
        graph.validate()
        results: List[TaskResult] = []
        in_flight: Dict[asyncio.Task, ExecutionNode] = {}
        try:
            while graph or in_flight:
                ready = graph.ready()
                launched: List[str] = []
                deferred: List[ExecutionNode] = []
                held: List[str] = []
                for node in ready:
                    if not self._has_capacity(in_flight):
                        held.append(node.id)
                        continue
                    allocation = self.allocator.allocate(node.subtask)
                    if allocation is None:
                        deferred.append(node)
                        continue
                    node.status = "executing"
                    node.subtask.transition(TaskStatus.EXECUTING)
                    upstream = [graph.subtasks[dep] for dep in node.subtask.dependencies if dep in graph.subtasks]
                    in_flight[asyncio.create_task(self._run_node(node, allocation, upstream))] = node
                    launched.append(node.id)
                if launched:
                    self.logger.info(
                        "scheduler.wave",
                        launched=launched,
                        deferred=[node.id for node in deferred],
                        held=held,
                    )

                if not in_flight:
                    if deferred:
                        await self._handle_starved(graph, deferred, results)
                        continue
                    remaining = [node.id for node in graph.pending()]
                    self.logger.error("scheduler.deadlock", remaining=remaining)
                    raise DeadlockError(
                        f"No subtask is ready and none is executing; unresolved: {remaining}",
                        remaining=remaining,
                    )

                done, _ = await asyncio.wait(set(in_flight), return_when=asyncio.FIRST_COMPLETED)
                for future in done:
                    node = in_flight.pop(future)
                    self._record(graph, node, future.result(), results)
        except asyncio.CancelledError:
            self._cancel_remaining(graph, results)
            raise
        finally:
            for future in in_flight:
                future.cancel()
            if in_flight:
                await asyncio.gather(*in_flight, return_exceptions=True)
        return results

    def _cancel_remaining(self, graph: ExecutionGraph, results: List[TaskResult]) -> None:
        """Fail every subtask that had not finished when the run was cancelled."""
        remaining = list(graph.nodes.values())
        for node in remaining:
            message = f"Subtask {node.id} was cancelled before it finished"
            result = TaskResult.failure("TASK_CANCELLED", message, task_id=node.id)
            node.status = "failed"
            node.subtask.result = result
            node.subtask.transition(TaskStatus.FAILED)
            if self.monitor is not None:
                self.monitor.fail(node.id, message)
            results.append(result)
            graph.finish(node.id)
        if remaining:
            self.logger.warning("scheduler.cancelled", subtasks=[node.id for node in remaining])

    async def _handle_starved(
        self, graph: ExecutionGraph, deferred: List[ExecutionNode], results: List[TaskResult]
    ) -> None:
        impossible = [node for node in deferred if not self.allocator.can_ever_allocate(node.subtask)]
        for node in impossible:
            result = TaskResult.failure(
                "ALLOCATION_EXHAUSTED",
                f"No worker agent can provide {node.subtask.required_capabilities} for subtask {node.id}",
                task_id=node.id,
            )
            self._record(graph, node, result, results)
        if not impossible:
            # agents are held outside this run; wait for one to come back
            await self.allocator.wait_for_release()

    async def _run_node(
        self, node: ExecutionNode, allocation: ResourceAllocation, upstream: List[Subtask]
    ) -> TaskResult:
        try:
            return await self.handler(node.subtask, allocation, upstream)
        except Exception as exc:
            self.logger.exception("scheduler.handler_failed", subtask_id=node.id)
            return TaskResult.failure("SUBTASK_ERROR", str(exc), task_id=node.id)
        finally:
            self.allocator.release(allocation.agent_id)

    def _record(
        self, graph: ExecutionGraph, node: ExecutionNode, result: TaskResult, results: List[TaskResult]
    ) -> None:
        subtask = node.subtask
        subtask.result = result
        node.status = "completed" if result.success else "failed"
        subtask.transition(TaskStatus.COMPLETED if result.success else TaskStatus.FAILED)
        results.append(result)
        self.logger.info("scheduler.subtask_finished", subtask_id=node.id, success=result.success)
        if not result.success:
            for dependent in graph.dependents_closure(node.id):
                self._skip(dependent, node.id, results)
                graph.finish(dependent.id)
        graph.finish(node.id)

    def _skip(self, node: ExecutionNode, failed_id: str, results: List[TaskResult]) -> None:
        result = TaskResult.failure(
            "DEPENDENCY_FAILED",
            f"Subtask {node.id} was not run because dependency {failed_id} failed",
            task_id=node.id,
        )
        node.status = "failed"
        node.subtask.result = result
        node.subtask.transition(TaskStatus.FAILED)
        results.append(result)

