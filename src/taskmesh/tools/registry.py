"""Registry that maps tool names to the handlers that execute them."""

from __future__ import annotations

from typing import Callable, Dict, Optional

from ..config import ToolSpec, instantiate_from_path
from .base import Tool

ToolFactory = Callable[[], Tool]


class ToolRegistry:
    """Stores handler factories and lazily instantiates them when requested.

    Tools without a dedicated handler resolve to the fallback handler, which is
    how mocked tool kinds are executed.
    """

    def __init__(self) -> None:
        self._factories: Dict[str, ToolFactory] = {}
        self._instances: Dict[str, Tool] = {}
        self._fallback: Optional[Tool] = None

    def register_instance(self, tool: Tool, *, overwrite: bool = False) -> None:
        if tool.name in self._instances and not overwrite:
            raise ValueError(f"Tool {tool.name} already registered")
        self._instances[tool.name] = tool

    def register_factory(self, name: str, factory: ToolFactory, *, overwrite: bool = False) -> None:
        if name in self._factories and not overwrite:
            raise ValueError(f"Tool factory {name} already registered")
        self._factories[name] = factory

    def set_fallback(self, tool: Tool) -> None:
        self._fallback = tool

    def register_from_spec(self, spec: ToolSpec) -> None:
        if not spec.type:
            return
        type_path = spec.type

        def factory() -> Tool:
            instance = instantiate_from_path(
                type_path, name=spec.name, description=spec.description, **spec.args
            )
            if not isinstance(instance, Tool):  # pragma: no cover - guard
                raise TypeError(f"Tool '{spec.name}' must inherit Tool")
            return instance

        self.register_factory(spec.name, factory, overwrite=True)

    def configure_from_specs(self, specs: Dict[str, ToolSpec]) -> None:
        for spec in specs.values():
            self.register_from_spec(spec)

    def get(self, name: str) -> Tool:
        if name in self._instances:
            return self._instances[name]
        if name in self._factories:
            instance = self._factories[name]()
            self._instances[name] = instance
            return instance
        if self._fallback is not None:
            return self._fallback
        raise KeyError(f"Tool {name} not registered")

    def __contains__(self, name: str) -> bool:
        return name in self._instances or name in self._factories
