"""High-level orchestration: decompose a task, run its subtasks, roll up the result."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Union

import structlog

from ..config import (
    DEFAULT_LLM_PROVIDER,
    TEXT_GENERATION,
    AgentSpec,
    OrchestrationSettings,
    ProjectConfig,
    ToolSpec,
    instantiate_from_path,
)
from ..errors import OrchestrationError, WorkflowError
from ..execution.aggregator import aggregate, summarize
from ..execution.allocator import ResourceAllocator
from ..execution.executor import SubtaskExecutor
from ..execution.monitor import ExecutionMonitor, ResourceEstimator
from ..execution.review import ResultValidator, RetryController
from ..execution.scheduler import Scheduler
from ..llm.provider import LLMProvider
from ..memory.store import InMemoryStore, KeyValueStore
from ..tasks.base import Task, TaskResult, TaskStatus, utcnow
from ..tasks.decomposer import Decomposition, TaskDecomposer
from ..tools.base import ToolDescriptor
from ..tools.builtin import register_builtin_tools
from ..tools.invoker import AgentActionInvoker, ToolInvoker
from ..tools.registry import ToolRegistry
from ..workflows.base import Workflow, WorkflowExecution
from ..workflows.engine import WorkflowEngine
from .base import Agent, AgentCapabilities, AgentDirectory, AgentRole
from .registry import CapabilityRegistry

TEXT_GENERATION_DESCRIPTION = "Generates text with the agent's language model"


class Orchestrator:
    """Entry point for the surrounding application: ``await process_task(task)``.

    Components are built once and shared for every task processed by this
    instance, so agents stay exclusive across concurrent tasks too.
    """

    def __init__(
        self,
        directory: AgentDirectory,
        manager: Agent,
        *,
        settings: OrchestrationSettings | None = None,
        invoker: ToolInvoker | None = None,
        store: KeyValueStore | None = None,
        monitor: ExecutionMonitor | None = None,
    ) -> None:
        self.settings = settings or OrchestrationSettings()
        self.directory = directory
        self.manager = manager
        if invoker is None:
            invoker = default_invoker(self.settings)
        self.invoker = invoker
        self.store: KeyValueStore = store if store is not None else InMemoryStore()
        self.capabilities = CapabilityRegistry(directory, matching=self.settings.capability_matching)
        self.allocator = ResourceAllocator(directory, self.capabilities)
        self.monitor = monitor or ExecutionMonitor(ResourceEstimator(self.settings.resources))
        self.decomposer = TaskDecomposer(
            invoker, minutes_per_complexity_unit=self.settings.minutes_per_complexity_unit
        )
        self.executor = SubtaskExecutor(
            invoker, self.allocator, monitor=self.monitor, timeout=self.settings.subtask_timeout_seconds
        )
        self.validator = ResultValidator(invoker)
        self.retry_controller = RetryController(
            self.executor,
            self.validator,
            manager,
            max_retries=self.settings.max_retries,
            retry_delay=self.settings.retry_delay_seconds,
        )
        self.scheduler = Scheduler(
            self.allocator,
            self.retry_controller.run,
            monitor=self.monitor,
            max_concurrent=self.settings.max_concurrent_subtasks,
        )
        self.workflows: Dict[str, Workflow] = {}
        self.workflow_engine = WorkflowEngine(directory, invoker)
        self.logger = structlog.get_logger().bind(component="orchestrator")

    @classmethod
    def from_config(
        cls,
        config: ProjectConfig,
        *,
        invoker: ToolInvoker | None = None,
        store: KeyValueStore | None = None,
        monitor: ExecutionMonitor | None = None,
    ) -> "Orchestrator":
        settings = config.orchestration
        if invoker is None:
            invoker = default_invoker(settings, config.tool_specs)
        directory = AgentDirectory(_materialize_agent(config, spec) for spec in config.agents.values())
        manager = directory.get(config.manager_id())
        orchestrator = cls(directory, manager, settings=settings, invoker=invoker, store=store, monitor=monitor)
        orchestrator.workflows.update(config.workflows)
        return orchestrator

    async def plan(self, task: Task) -> Decomposition:
        """Decompose ``task`` without executing anything."""
        return await self.decomposer.analyze(task, self.manager)

    async def process_task(self, task: Task) -> TaskResult:
        self._remember(task)
        try:
            timeout = self._timeout_for(task)
            if timeout is None:
                return await self._process(task)
            if timeout <= 0:
                raise asyncio.TimeoutError()
            return await asyncio.wait_for(self._process(task), timeout)
        except asyncio.TimeoutError:
            self.logger.warning("task.timeout", task_id=task.id)
            result = TaskResult.failure("TASK_TIMEOUT", f"Task {task.id} did not finish in time", task_id=task.id)
        except OrchestrationError as exc:
            self.logger.warning("task.failed", task_id=task.id, code=exc.code, error=exc.message)
            result = TaskResult.failure(exc.code, exc.message, details=exc.details, task_id=task.id)
        except Exception as exc:
            self.logger.exception("task.error", task_id=task.id)
            result = TaskResult.failure("WORKFLOW_ERROR", str(exc), details=repr(exc), task_id=task.id)
        task.transition(TaskStatus.FAILED)
        self._remember(task)
        return result

    async def _process(self, task: Task) -> TaskResult:
        decomposition = await self.decomposer.analyze(task, self.manager)
        subtasks = decomposition.subtasks
        task.metadata["subtask_ids"] = [subtask.id for subtask in subtasks]
        task.metadata["required_capabilities"] = decomposition.required_capabilities
        task.metadata["estimated_minutes"] = decomposition.estimate.estimated_minutes
        for subtask in subtasks:
            self.store.put("subtasks", subtask.id, subtask)

        uncovered = self.capabilities.uncovered(decomposition.required_capabilities)
        if uncovered:
            self.logger.warning("task.uncovered_capabilities", task_id=task.id, capabilities=uncovered)

        task.transition(TaskStatus.ASSIGNED)
        task.transition(TaskStatus.EXECUTING)
        self._remember(task)
        results = await self.scheduler.run(subtasks)

        task.transition(TaskStatus.REVIEWING)
        result = aggregate(results, duration_mode=self.settings.duration_mode, task_id=task.id)
        attempts = {}
        for subtask in subtasks:
            record = self.monitor.get_status(subtask.id)
            attempts[subtask.id] = record.attempts if record is not None else 0
        task.metadata["metrics"] = summarize(results, attempts, total_duration=result.metrics.duration)
        task.transition(TaskStatus.COMPLETED if result.success else TaskStatus.FAILED)
        self._remember(task)
        self.logger.info("task.finished", task_id=task.id, success=result.success)
        return result

    async def run_workflow(self, workflow: Union[str, Workflow]) -> WorkflowExecution:
        """Run a hand-authored workflow, by id or definition, and keep its execution in history."""
        if isinstance(workflow, str):
            if workflow not in self.workflows:
                raise WorkflowError(f"Unknown workflow '{workflow}'")
            workflow = self.workflows[workflow]
        execution = await self.workflow_engine.execute(workflow)
        self.store.put("workflow_executions", execution.id, execution)
        return execution

    def _timeout_for(self, task: Task) -> Optional[float]:
        timeout = self.settings.task_timeout_seconds
        if task.deadline is not None:
            remaining = (task.deadline - utcnow()).total_seconds()
            timeout = remaining if timeout is None else min(timeout, remaining)
        return timeout

    def _remember(self, task: Task) -> None:
        self.store.put("tasks", task.id, task)

    def history(self) -> list:
        return self.store.all("tasks")


def default_invoker(
    settings: OrchestrationSettings, tool_specs: Optional[Dict[str, ToolSpec]] = None
) -> AgentActionInvoker:
    """Builtin tools, plus handlers for any configured tool specs."""
    registry = ToolRegistry()
    register_builtin_tools(registry, simulated_delay=settings.simulated_tool_delay_seconds)
    if tool_specs:
        registry.configure_from_specs(tool_specs)
    return AgentActionInvoker(registry)


def _materialize_agent(config: ProjectConfig, spec: AgentSpec) -> Agent:
    tools = []
    for name in spec.tools:
        tool_spec = config.tool_specs.get(name)
        if tool_spec is None:
            tools.append(ToolDescriptor(id=name, name=name, description=TEXT_GENERATION_DESCRIPTION))
            continue
        tools.append(
            ToolDescriptor(
                id=name,
                name=name,
                description=tool_spec.description,
                capabilities=frozenset(tool_spec.capabilities),
                parameters=tuple(tool_spec.parameters),
            )
        )
    provider: LLMProvider | None = None
    if TEXT_GENERATION in spec.tools:
        provider_path = spec.llm_provider or config.defaults.llm_provider or DEFAULT_LLM_PROVIDER
        provider_params: Dict[str, Any] = dict(config.defaults.llm_params)
        provider_params.update(spec.llm_params)
        provider = instantiate_from_path(provider_path, **provider_params)
    flags = spec.capabilities
    return Agent(
        id=spec.id,
        name=spec.name,
        role=AgentRole(spec.role),
        tools=tools,
        description=spec.description or "General agent",
        capabilities=AgentCapabilities(
            can_delegate_work=flags.can_delegate_work,
            can_create_sub_agents=flags.can_create_sub_agents,
            can_access_other_agents=flags.can_access_other_agents,
            can_use_memory=flags.can_use_memory,
        ),
        model=spec.model,
        system_prompt=spec.system_prompt,
        context=spec.context,
        temperature=spec.temperature,
        max_tokens=spec.max_tokens,
        llm_provider=provider,
        sub_agents=list(spec.sub_agents),
    )
