"""Allocation, scheduling, execution and review of subtasks."""

from .aggregator import aggregate
from .allocator import ResourceAllocation, ResourceAllocator
from .executor import SubtaskExecutor
from .monitor import ExecutionEvent, ExecutionMonitor, ExecutionRecord, ResourceEstimator
from .review import ResultValidator, RetryController, RetryOutcome
from .scheduler import ExecutionGraph, ExecutionNode, Scheduler

__all__ = [
    "aggregate",
    "ResourceAllocation",
    "ResourceAllocator",
    "SubtaskExecutor",
    "ExecutionEvent",
    "ExecutionMonitor",
    "ExecutionRecord",
    "ResourceEstimator",
    "ResultValidator",
    "RetryController",
    "RetryOutcome",
    "ExecutionGraph",
    "ExecutionNode",
    "Scheduler",
]
