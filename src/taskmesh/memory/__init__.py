"""Storage used to retain task history."""

from .store import InMemoryStore, KeyValueStore

__all__ = ["InMemoryStore", "KeyValueStore"]
