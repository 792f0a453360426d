import pytest

from taskmesh.agents.base import Agent, AgentDirectory, AgentRole
from taskmesh.tasks.base import Subtask
from taskmesh.tools.base import ToolDescriptor

TEXT_TOOL = ToolDescriptor(id="text-generation", name="text-generation", description="Generates text")
COPYWRITING = ToolDescriptor(
    id="copywriting",
    name="copywriting",
    description="Writing and editing long-form content",
    capabilities=frozenset({"writing", "editing"}),
)
RESEARCH = ToolDescriptor(
    id="research-notes",
    name="research-notes",
    description="Research, outline drafting and fact gathering",
    capabilities=frozenset({"research", "outline"}),
)


@pytest.fixture
def manager():
    return Agent(id="manager", name="Manager", role=AgentRole.MANAGER, tools=[TEXT_TOOL])


@pytest.fixture
def writer():
    return Agent(id="writer", name="Writer", tools=[TEXT_TOOL, COPYWRITING])


@pytest.fixture
def researcher():
    return Agent(id="researcher", name="Researcher", tools=[TEXT_TOOL, RESEARCH])


@pytest.fixture
def directory(manager, writer, researcher):
    return AgentDirectory([manager, writer, researcher])


@pytest.fixture
def make_subtask():
    counter = {"index": 0}

    def factory(title, *, dependencies=(), capabilities=(), complexity=1, expected_output=""):
        counter["index"] += 1
        return Subtask(
            id=title,
            title=title,
            description=f"Do {title}",
            parent_task_id="task-1",
            dependencies=list(dependencies),
            required_capabilities=list(capabilities),
            complexity=complexity,
            expected_output=expected_output,
            order_index=counter["index"],
        )

    return factory
