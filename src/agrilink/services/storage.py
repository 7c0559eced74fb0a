"""Durable key-value storage abstractions."""

from dataclasses import dataclass, field
from typing import Protocol


class KeyValueStore(Protocol):
    """String key-value storage that outlives the process."""

    async def get(self, key: str) -> str | None:
        """Return the stored value, if present."""

    async def set(self, key: str, value: str) -> None:
        """Store a value under ``key``."""

    async def remove(self, key: str) -> None:
        """Delete ``key`` if present."""


@dataclass
class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store for browsers without disk access and for tests."""

    _entries: dict[str, str] = field(default_factory=dict)

    async def get(self, key: str) -> str | None:
        return self._entries.get(key)

    async def set(self, key: str, value: str) -> None:
        self._entries[key] = value

    async def remove(self, key: str) -> None:
        self._entries.pop(key, None)
