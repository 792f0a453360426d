"""Rolls subtask results up into one task result."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Sequence

import structlog

from ..tasks.base import ExecutionMetrics, ResourceUsage, TaskResult, utcnow

logger = structlog.get_logger()


def aggregate(results: Sequence[TaskResult], *, duration_mode: str = "sum", task_id: str | None = None) -> TaskResult:
    """Combine subtask results in the order given.

    Success is the conjunction of every subtask's success. With
    ``duration_mode="sum"`` the duration adds up subtask durations, which
    overcounts when subtasks overlapped; ``"wall_clock"`` uses the span from the
    earliest start to the latest end instead.
    """
    if duration_mode not in {"sum", "wall_clock"}:
        raise ValueError(f"Unknown duration mode '{duration_mode}'")

    usage = ResourceUsage()
    for result in results:
        usage = usage + result.metrics.resource_usage

    if results:
        start = min(result.metrics.start_time for result in results)
        end = max(result.metrics.end_time for result in results)
    else:
        start = end = utcnow()
    if duration_mode == "wall_clock":
        duration = (end - start).total_seconds() * 1000
    else:
        duration = sum(result.metrics.duration for result in results)

    failed = [result for result in results if not result.success]
    success = not failed
    aggregated = TaskResult(
        success=success,
        output=[result.output for result in results],
        metrics=ExecutionMetrics(start_time=start, end_time=end, duration=duration, resource_usage=usage),
        task_id=task_id,
    )
    if failed:
        aggregated = TaskResult.failure(
            "SUBTASKS_FAILED",
            f"{len(failed)} of {len(results)} subtasks failed",
            details=[
                {"subtask_id": result.task_id, "code": result.error.code, "message": result.error.message}
                for result in failed
                if result.error is not None
            ],
            task_id=task_id,
            output=aggregated.output,
            metrics=aggregated.metrics,
        )
    logger.info("aggregate.finished", task_id=task_id, success=success, subtasks=len(results))
    return aggregated


@dataclass
class RunMetrics:
    """Figures for one run: durations in milliseconds, ``success_rate`` in percent."""

    retry_count: int = 0
    step_durations: Dict[str, float] = field(default_factory=dict)
    success_rate: float = 0.0
    total_duration: float = 0.0


def summarize(
    results: Sequence[TaskResult], attempts: Mapping[str, int], *, total_duration: float = 0.0
) -> RunMetrics:
    """Metrics for a finished run.

    ``attempts`` maps each subtask id to how many times it was executed; every
    attempt beyond the first counts as a retry. Subtasks that never ran (for
    example ``DEPENDENCY_FAILED``) still count against the success rate.
    """
    step_durations = {result.task_id: result.metrics.duration for result in results if result.task_id}
    succeeded = sum(1 for result in results if result.success)
    return RunMetrics(
        retry_count=sum(max(0, count - 1) for count in attempts.values()),
        step_durations=step_durations,
        success_rate=succeeded / len(results) * 100 if results else 0.0,
        total_duration=total_duration,
    )
