"""Agent package exports."""

from .base import Agent, AgentCapabilities, AgentDirectory, AgentRole
from .registry import CapabilityRegistry

__all__ = ["Agent", "AgentCapabilities", "AgentDirectory", "AgentRole", "CapabilityRegistry"]
