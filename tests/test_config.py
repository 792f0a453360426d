from pathlib import Path

import pytest

from taskmesh.config import ConfigError, ProjectConfig, import_string, instantiate_from_path
from taskmesh.llm.provider import StaticResponseProvider

EXAMPLE = Path(__file__).resolve().parents[1] / "examples" / "configs" / "blog_team.yaml"

MINIMAL = """
name: minimal
agents:
  lead:
    role: manager
    tools: [text-generation]
  helper:
    tools: [text-generation]
"""


def test_example_config_loads():
    config = ProjectConfig.from_file(EXAMPLE)
    assert config.name == "blog-team"
    assert config.manager_id() == "editor"
    assert config.agents["writer"].temperature == 0.8
    assert config.agents["editor"].capabilities.can_delegate_work
    assert config.agents["editor"].sub_agents == ["researcher", "writer"]
    assert config.tool_specs["copywriting"].capabilities == ["writing", "editing"]
    settings = config.orchestration
    assert settings.duration_mode == "wall_clock"
    assert settings.subtask_timeout_seconds == 180
    assert settings.max_concurrent_subtasks == 3
    assert config.workflows["weekly-digest"].type.value == "hierarchical"
    assert config.workflows["weekly-digest"].steps[1].fallback_step_id == "draft-from-notes"
    assert config.defaults.llm_params["api_key_env"] == "OPENROUTER_API_KEY"


def test_defaults_apply():
    config = ProjectConfig.from_yaml(MINIMAL)
    helper = config.get_agent("helper")
    assert helper.role == "worker"
    assert helper.model == "gpt-4"
    assert helper.max_tokens == 2048
    assert config.manager_id() == "lead"
    settings = config.orchestration
    assert settings.max_retries == 1
    assert settings.minutes_per_complexity_unit == 5
    assert settings.capability_matching == "substring"
    assert settings.task_timeout_seconds is None
    assert settings.max_concurrent_subtasks is None
    assert config.workflows == {}
    assert settings.resources.base_memory_mb == 64


@pytest.mark.parametrize(
    "text, message",
    [
        ("agents: {}", "At least one agent"),
        ("agents:\n  a:\n    role: worker", "requires a tools list"),
        ("agents:\n  a:\n    tools: [hammer]", "unknown tool 'hammer'"),
        ("agents:\n  a:\n    tools: []\n    sub_agents: [b]", "unknown sub-agent"),
        ("agents:\n  a:\n    tools: []\n    role: boss", "role"),
        ("agents:\n  a:\n    tools: []\norchestration:\n  manager: b", "Unknown manager"),
        ("agents:\n  a:\n    tools: []\norchestration:\n  capability_matching: fuzzy", "capability_matching"),
        ("agents:\n  a:\n    tools: []\norchestration:\n  max_retries: -1", "negative"),
        ("agents:\n  a:\n    tools: []\norchestration:\n  max_concurrent_subtasks: 0", "at least 1"),
        ("agents:\n  a:\n    tools: []\nworkflows:\n  w:\n    steps: []", "no steps"),
        ("tools:\n  hammer: {}\nagents:\n  a:\n    tools: [hammer]", "requires a description"),
        ("- just\n- a list", "mapping"),
        ("agents: [", "not valid YAML"),
    ],
)
def test_invalid_configs(text, message):
    with pytest.raises(ConfigError, match=message):
        ProjectConfig.from_yaml(text)


def test_manager_required():
    config = ProjectConfig.from_yaml("agents:\n  a:\n    tools: [text-generation]")
    with pytest.raises(ConfigError, match="No manager"):
        config.manager_id()


def test_import_helpers():
    assert import_string("taskmesh.llm.provider:StaticResponseProvider") is StaticResponseProvider
    provider = instantiate_from_path("taskmesh.llm.provider:StaticResponseProvider", responses=["x"])
    assert isinstance(provider, StaticResponseProvider)
    with pytest.raises(ConfigError):
        import_string("taskmesh.llm.provider.StaticResponseProvider")
    with pytest.raises(ConfigError):
        import_string("taskmesh.llm.provider:Missing")
