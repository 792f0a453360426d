"""Task decomposition and multi-agent execution."""

from importlib import metadata

from .agents.orchestrator import Orchestrator
from .cli import app

try:
    __version__ = metadata.version("taskmesh")
except metadata.PackageNotFoundError:  # pragma: no cover - fallback for dev
    __version__ = "0.0.0"

__all__ = ["Orchestrator", "app", "__version__"]
