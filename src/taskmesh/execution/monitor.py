"""Execution monitoring: per-subtask status records and progress events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

import structlog

from ..config import ResourceSpec
from ..tasks.base import ResourceUsage, Subtask, utcnow
from .allocator import ResourceAllocation

logger = structlog.get_logger()


@dataclass
class ExecutionRecord:
    subtask_id: str
    agent_id: str
    tool_ids: List[str]
    started_at: datetime = field(default_factory=utcnow)
    status: str = "running"
    progress: float = 0.0
    attempts: int = 0
    logs: List[str] = field(default_factory=list)


@dataclass
class ExecutionEvent:
    kind: str
    subtask_id: str
    status: str
    progress: float
    message: str = ""


Listener = Callable[[ExecutionEvent], None]


class ResourceEstimator:
    """Synthetic cpu/memory figures scaled by subtask complexity."""

    def __init__(self, spec: ResourceSpec | None = None) -> None:
        self.spec = spec or ResourceSpec()

    def estimate(self, subtask: Subtask) -> ResourceUsage:
        cpu = self.spec.base_cpu + self.spec.cpu_per_complexity * subtask.complexity
        memory = self.spec.base_memory_mb + self.spec.memory_per_complexity_mb * subtask.complexity
        return ResourceUsage(cpu=min(1.0, cpu), memory=memory)


class ExecutionMonitor:
    """Keeps the state of every execution and notifies listeners of changes."""

    def __init__(self, estimator: ResourceEstimator | None = None) -> None:
        self.estimator = estimator or ResourceEstimator()
        self._records: Dict[str, ExecutionRecord] = {}
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, kind: str, record: ExecutionRecord, message: str = "") -> None:
        event = ExecutionEvent(
            kind=kind,
            subtask_id=record.subtask_id,
            status=record.status,
            progress=record.progress,
            message=message,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("monitor.listener_failed", kind=kind, subtask_id=record.subtask_id)

    def start(self, subtask: Subtask, allocation: ResourceAllocation) -> ExecutionRecord:
        record = self._records.get(subtask.id)
        if record is None:
            record = ExecutionRecord(
                subtask_id=subtask.id,
                agent_id=allocation.agent_id,
                tool_ids=[tool.id for tool in allocation.tools],
            )
            self._records[subtask.id] = record
        record.status = "running"
        record.attempts += 1
        record.logs.append(f"attempt {record.attempts} started on agent {allocation.agent_id}")
        self._emit("started", record, subtask.title)
        return record

    def progress(self, subtask_id: str, value: float, message: str = "") -> None:
        record = self._records.get(subtask_id)
        if record is None:
            return
        record.progress = min(1.0, max(0.0, value))
        if message:
            record.logs.append(message)
        self._emit("progress", record, message)

    def complete(self, subtask_id: str, message: str = "") -> None:
        record = self._records.get(subtask_id)
        if record is None:
            return
        record.status = "completed"
        record.progress = 1.0
        record.logs.append(message or "completed")
        self._emit("completed", record, message)

    def fail(self, subtask_id: str, message: str) -> None:
        record = self._records.get(subtask_id)
        if record is None:
            return
        record.status = "failed"
        record.logs.append(message)
        self._emit("failed", record, message)

    def get_status(self, subtask_id: str) -> Optional[ExecutionRecord]:
        return self._records.get(subtask_id)

    def executions(self) -> List[ExecutionRecord]:
        return list(self._records.values())
