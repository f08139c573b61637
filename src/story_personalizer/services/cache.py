"""Keyed in-memory caches with explicit lifetimes."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from story_personalizer.domain.character import CharacterDescription
from story_personalizer.services.clock import Clock, utcnow


@dataclass
class _CacheEntry:
    value: object
    expires_at: datetime


@dataclass
class TtlCache:
    """Key-value cache whose entries expire after a fixed lifetime."""

    ttl_seconds: int
    clock: Clock = utcnow
    _entries: dict[str, _CacheEntry] = field(default_factory=dict)

    def get(self, key: str) -> object | None:
        """Return a cached value if it hasn't expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.clock() >= entry.expires_at:
            self._entries.pop(key, None)
            return None
        return entry.value

    def set(self, key: str, value: object) -> None:
        """Store a value for the configured lifetime."""
        expires_at = self.clock() + timedelta(seconds=self.ttl_seconds)
        self._entries[key] = _CacheEntry(value=value, expires_at=expires_at)

    def evict(self, key: str) -> None:
        """Drop a key regardless of its expiry."""
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class DescriptionCache(Protocol):
    """Per-session store for character descriptions."""

    def get(self, session_id: str) -> CharacterDescription | None:
        """Return the cached description for a session."""

    def set(self, session_id: str, description: CharacterDescription) -> None:
        """Cache the description for a session."""

    def evict(self, session_id: str) -> None:
        """Forget a session's description."""


@dataclass
class InMemoryDescriptionCache(DescriptionCache):
    """Description cache that lives as long as a session can."""

    cache: TtlCache

    @classmethod
    def create(cls, ttl_seconds: int) -> "InMemoryDescriptionCache":
        """Create a cache whose entries expire with the session lifetime."""
        return cls(cache=TtlCache(ttl_seconds=ttl_seconds))

    def get(self, session_id: str) -> CharacterDescription | None:
        value = self.cache.get(f"description:{session_id}")
        return value if isinstance(value, CharacterDescription) else None

    def set(self, session_id: str, description: CharacterDescription) -> None:
        self.cache.set(f"description:{session_id}", description)

    def evict(self, session_id: str) -> None:
        self.cache.evict(f"description:{session_id}")
