"""Key-value storage for task history."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol


class KeyValueStore(Protocol):
    """Per-kind get/put/delete/all, the only persistence contract the core needs."""

    def get(self, kind: str, key: str) -> Optional[Any]:  # pragma: no cover - interface
        ...

    def put(self, kind: str, key: str, value: Any) -> None:  # pragma: no cover - interface
        ...

    def delete(self, kind: str, key: str) -> None:  # pragma: no cover - interface
        ...

    def all(self, kind: str) -> List[Any]:  # pragma: no cover - interface
        ...


class InMemoryStore:
    """Dictionary-backed store; insertion order is preserved per kind."""

    def __init__(self) -> None:
        self._items: Dict[str, Dict[str, Any]] = {}

    def get(self, kind: str, key: str) -> Optional[Any]:
        return self._items.get(kind, {}).get(key)

    def put(self, kind: str, key: str, value: Any) -> None:
        self._items.setdefault(kind, {})[key] = value

    def delete(self, kind: str, key: str) -> None:
        self._items.get(kind, {}).pop(key, None)

    def all(self, kind: str) -> List[Any]:
        return list(self._items.get(kind, {}).values())

    def clear(self) -> None:
        self._items.clear()
