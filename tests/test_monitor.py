from taskmesh.agents.base import AgentDirectory
from taskmesh.config import ResourceSpec
from taskmesh.execution.allocator import ResourceAllocator
from taskmesh.execution.monitor import ExecutionMonitor, ResourceEstimator


def test_listeners_receive_lifecycle_events(writer, make_subtask):
    subtask = make_subtask("Draft")
    allocation = ResourceAllocator(AgentDirectory([writer])).allocate(subtask)
    monitor = ExecutionMonitor()
    events = []
    unsubscribe = monitor.subscribe(events.append)

    monitor.start(subtask, allocation)
    monitor.progress("Draft", 0.5, "halfway")
    monitor.complete("Draft")
    unsubscribe()
    monitor.fail("Draft", "ignored by the listener")

    assert [event.kind for event in events] == ["started", "progress", "completed"]
    assert events[1].progress == 0.5
    record = monitor.get_status("Draft")
    assert record.status == "failed"
    assert record.agent_id == "writer"
    assert record.attempts == 1
    assert "halfway" in record.logs


def test_broken_listener_does_not_stop_others(writer, make_subtask):
    subtask = make_subtask("Draft")
    allocation = ResourceAllocator(AgentDirectory([writer])).allocate(subtask)
    monitor = ExecutionMonitor()
    seen = []

    def broken(event):
        raise RuntimeError("listener bug")

    monitor.subscribe(broken)
    monitor.subscribe(seen.append)
    monitor.start(subtask, allocation)

    assert len(seen) == 1
    assert monitor.executions()[0].subtask_id == "Draft"


def test_unknown_subtask_updates_are_ignored():
    monitor = ExecutionMonitor()
    monitor.progress("ghost", 0.3)
    monitor.complete("ghost")
    assert monitor.get_status("ghost") is None


def test_resource_estimate_scales_with_complexity(make_subtask):
    estimator = ResourceEstimator(ResourceSpec(base_cpu=0.5, cpu_per_complexity=0.2, base_memory_mb=10))
    usage = estimator.estimate(make_subtask("Big", complexity=5))
    assert usage.cpu == 1.0
    assert usage.memory == 10 + 32 * 5
