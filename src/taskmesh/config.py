"""Configuration helpers for taskmesh projects."""

from __future__ import annotations

import importlib
import pathlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, MutableMapping, Optional

import yaml

from .errors import WorkflowError

if TYPE_CHECKING:  # pragma: no cover
    from .workflows.base import Workflow

DEFAULT_LLM_PROVIDER = "taskmesh.llm.provider:ChatCompletionProvider"
TEXT_GENERATION = "text-generation"

_ROLES = {"worker", "coordinator", "manager"}
_MATCHING_MODES = {"substring", "tags"}
_DURATION_MODES = {"sum", "wall_clock"}


class ConfigError(RuntimeError):
    """Raised when configuration files are invalid."""


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def _choice(value: Any, allowed: set[str], key: str) -> str:
    text = str(value).strip().lower()
    if text not in allowed:
        raise ConfigError(f"'{key}' must be one of {sorted(allowed)}, got '{value}'")
    return text


@dataclass
class ResourceSpec:
    """Synthetic resource-usage model applied to each subtask execution."""

    base_cpu: float = 0.2
    cpu_per_complexity: float = 0.1
    base_memory_mb: float = 64.0
    memory_per_complexity_mb: float = 32.0

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "ResourceSpec":
        if not data:
            return cls()
        defaults = cls()
        return cls(
            base_cpu=float(data.get("base_cpu", defaults.base_cpu)),
            cpu_per_complexity=float(data.get("cpu_per_complexity", defaults.cpu_per_complexity)),
            base_memory_mb=float(data.get("base_memory_mb", defaults.base_memory_mb)),
            memory_per_complexity_mb=float(
                data.get("memory_per_complexity_mb", defaults.memory_per_complexity_mb)
            ),
        )


@dataclass
class OrchestrationSettings:
    """Policy knobs for decomposition, scheduling and review."""

    manager: Optional[str] = None
    minutes_per_complexity_unit: float = 5.0
    max_retries: int = 1
    retry_delay_seconds: float = 0.0
    subtask_timeout_seconds: Optional[float] = None
    task_timeout_seconds: Optional[float] = None
    capability_matching: str = "substring"
    duration_mode: str = "sum"
    simulated_tool_delay_seconds: float = 1.0
    max_concurrent_subtasks: Optional[int] = None
    resources: ResourceSpec = field(default_factory=ResourceSpec)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "OrchestrationSettings":
        if not data:
            return cls()
        max_retries = int(data.get("max_retries", 1))
        if max_retries < 0:
            raise ConfigError("'max_retries' cannot be negative")
        max_concurrent = data.get("max_concurrent_subtasks")
        if max_concurrent is not None:
            max_concurrent = int(max_concurrent)
            if max_concurrent < 1:
                raise ConfigError("'max_concurrent_subtasks' must be at least 1")
        return cls(
            manager=data.get("manager"),
            minutes_per_complexity_unit=float(data.get("minutes_per_complexity_unit", 5.0)),
            max_retries=max_retries,
            retry_delay_seconds=float(data.get("retry_delay_seconds", 0.0)),
            subtask_timeout_seconds=_optional_float(data.get("subtask_timeout_seconds")),
            task_timeout_seconds=_optional_float(data.get("task_timeout_seconds")),
            capability_matching=_choice(
                data.get("capability_matching", "substring"), _MATCHING_MODES, "capability_matching"
            ),
            duration_mode=_choice(data.get("duration_mode", "sum"), _DURATION_MODES, "duration_mode"),
            simulated_tool_delay_seconds=float(data.get("simulated_tool_delay_seconds", 1.0)),
            max_concurrent_subtasks=max_concurrent,
            resources=ResourceSpec.from_mapping(data.get("resources")),
        )


@dataclass
class CapabilityFlags:
    can_delegate_work: bool = False
    can_create_sub_agents: bool = False
    can_access_other_agents: bool = False
    can_use_memory: bool = False

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "CapabilityFlags":
        if not data:
            return cls()
        return cls(
            can_delegate_work=bool(data.get("can_delegate_work", False)),
            can_create_sub_agents=bool(data.get("can_create_sub_agents", False)),
            can_access_other_agents=bool(data.get("can_access_other_agents", False)),
            can_use_memory=bool(data.get("can_use_memory", False)),
        )


@dataclass
class AgentSpec:
    """Definition of an agent from config."""

    id: str
    name: str
    role: str
    tools: List[str]
    description: Optional[str] = None
    model: str = "gpt-4"
    system_prompt: str = ""
    context: str = ""
    temperature: float = 0.7
    max_tokens: int = 2048
    capabilities: CapabilityFlags = field(default_factory=CapabilityFlags)
    sub_agents: List[str] = field(default_factory=list)
    llm_provider: Optional[str] = None
    llm_params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, agent_id: str, data: Mapping[str, Any]) -> "AgentSpec":
        if "tools" not in data:
            raise ConfigError(f"Agent '{agent_id}' requires a tools list")
        return cls(
            id=agent_id,
            name=str(data.get("name", agent_id)),
            role=_choice(data.get("role", "worker"), _ROLES, f"agents.{agent_id}.role"),
            tools=[str(item) for item in data.get("tools") or []],
            description=data.get("description"),
            model=str(data.get("model", "gpt-4")),
            system_prompt=str(data.get("system_prompt", "")),
            context=str(data.get("context", "")),
            temperature=float(data.get("temperature", 0.7)),
            max_tokens=int(data.get("max_tokens", 2048)),
            capabilities=CapabilityFlags.from_mapping(data.get("capabilities")),
            sub_agents=[str(item) for item in data.get("sub_agents") or []],
            llm_provider=data.get("llm_provider"),
            llm_params=dict(data.get("llm_params", {})),
        )


@dataclass
class ToolSpec:
    """Configuration for a tool an agent can be granted."""

    name: str
    description: str
    capabilities: List[str] = field(default_factory=list)
    type: Optional[str] = None
    args: Dict[str, Any] = field(default_factory=dict)
    parameters: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, name: str, data: Mapping[str, Any]) -> "ToolSpec":
        if "description" not in data:
            raise ConfigError(f"Tool '{name}' requires a description")
        return cls(
            name=name,
            description=str(data["description"]),
            capabilities=[str(item) for item in data.get("capabilities") or []],
            type=data.get("type"),
            args=dict(data.get("args", {})),
            parameters=list(data.get("parameters") or []),
        )


@dataclass
class DefaultsSpec:
    """Optional defaults applied to agents."""

    llm_provider: Optional[str] = None
    llm_params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "DefaultsSpec":
        if not data:
            return cls()
        return cls(
            llm_provider=data.get("llm_provider"),
            llm_params=dict(data.get("llm_params", {})),
        )


@dataclass
class ProjectConfig:
    """Representation of the YAML configuration."""

    name: str
    description: Optional[str]
    defaults: DefaultsSpec
    agents: Dict[str, AgentSpec]
    tool_specs: Dict[str, ToolSpec]
    orchestration: OrchestrationSettings
    workflows: Dict[str, "Workflow"] = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str | pathlib.Path) -> "ProjectConfig":
        path = pathlib.Path(path)
        return cls.from_yaml(path.read_text(), default_name=path.stem)

    @classmethod
    def from_yaml(cls, text: str, *, default_name: str = "taskmesh") -> "ProjectConfig":
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Configuration is not valid YAML: {exc}") from exc
        if not isinstance(data, MutableMapping):
            raise ConfigError("Configuration root must be a mapping")
        return cls.from_mapping(data, default_name=default_name)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, default_name: str = "taskmesh") -> "ProjectConfig":
        agents = {
            str(agent_id): AgentSpec.from_mapping(str(agent_id), info or {})
            for agent_id, info in (data.get("agents") or {}).items()
        }
        if not agents:
            raise ConfigError("At least one agent must be defined")
        tool_specs = {
            str(name): ToolSpec.from_mapping(str(name), info or {})
            for name, info in (data.get("tools") or {}).items()
        }
        config = cls(
            name=data.get("name", default_name),
            description=data.get("description"),
            defaults=DefaultsSpec.from_mapping(data.get("defaults")),
            agents=agents,
            tool_specs=tool_specs,
            orchestration=OrchestrationSettings.from_mapping(data.get("orchestration")),
            workflows=_load_workflows(data.get("workflows")),
        )
        config._check_references()
        return config

    def _check_references(self) -> None:
        for spec in self.agents.values():
            for tool_name in spec.tools:
                if tool_name != TEXT_GENERATION and tool_name not in self.tool_specs:
                    raise ConfigError(f"Agent '{spec.id}' references unknown tool '{tool_name}'")
            for sub_id in spec.sub_agents:
                if sub_id not in self.agents:
                    raise ConfigError(f"Agent '{spec.id}' references unknown sub-agent '{sub_id}'")
        for workflow in self.workflows.values():
            for step in workflow.steps:
                if step.agent_id not in self.agents:
                    raise ConfigError(f"Workflow '{workflow.id}' step '{step.id}' uses unknown agent '{step.agent_id}'")
        manager = self.orchestration.manager
        if manager is not None and manager not in self.agents:
            raise ConfigError(f"Unknown manager agent '{manager}'")

    def get_agent(self, agent_id: str) -> AgentSpec:
        try:
            return self.agents[agent_id]
        except KeyError as exc:
            raise ConfigError(f"Unknown agent '{agent_id}'") from exc

    def manager_id(self) -> str:
        if self.orchestration.manager:
            return self.orchestration.manager
        for spec in self.agents.values():
            if spec.role == "manager":
                return spec.id
        raise ConfigError("No manager agent configured")


def _load_workflows(data: Optional[Mapping[str, Any]]) -> Dict[str, "Workflow"]:
    if not data:
        return {}
    # deferred: workflow types import modules that import this one
    from .workflows.base import Workflow

    try:
        return {str(name): Workflow.from_mapping(str(name), info or {}) for name, info in data.items()}
    except WorkflowError as exc:
        raise ConfigError(exc.message) from exc


def import_string(path: str) -> Any:
    """Return attribute from module specified by path "module:qualname"."""

    if ":" not in path:
        raise ConfigError(f"Import path '{path}' must use module:qualname format")
    module_path, attr = path.split(":", 1)
    module = importlib.import_module(module_path)
    try:
        return getattr(module, attr)
    except AttributeError as exc:
        raise ConfigError(f"Module '{module_path}' has no attribute '{attr}'") from exc


def instantiate_from_path(path: str, *args: Any, **kwargs: Any) -> Any:
    """Import and instantiate a class given its dotted path."""

    cls = import_string(path)
    return cls(*args, **kwargs)
