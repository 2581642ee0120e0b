"""
Conversation Engine - Memory Store
==================================

Keyed, namespaced persistence with optional expiry. Memory is advisory
context, not a source of truth: backend failures are logged and degrade to
"empty" (reads return None, writes become no-ops). Callers treat "memory
unavailable" and "memory empty" identically.

Scopes share one backend and prefix every key:

    store = MemoryStore()
    router = store.scoped("router", session_id)   → keys "router:{session}:..."
"""

import copy
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Protocol

from conversation_engine.models import MemoryEntry, MemoryStats

logger = logging.getLogger(__name__)


class MemoryBackend(Protocol):
    """Minimal key/value capability the store needs."""

    def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    def put(self, key: str, entry: Dict[str, Any]) -> None: ...

    def delete(self, key: str) -> None: ...

    def list(self, prefix: str = "") -> List[str]: ...


class InMemoryBackend:
    """Process-local backend. Values are deep-copied in and out."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = {}

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self._data.get(key)
        return copy.deepcopy(entry) if entry is not None else None

    def put(self, key: str, entry: Dict[str, Any]) -> None:
        self._data[key] = copy.deepcopy(entry)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def list(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class MemoryStore:
    """
    Namespaced memory with lazy TTL expiry.

    Args:
        backend: Storage capability. Defaults to a fresh InMemoryBackend.
        namespace: Key prefix for this scope (without trailing colon).
        clock: Returns the current time in seconds. Injectable for tests.
    """

    def __init__(
        self,
        backend: Optional[MemoryBackend] = None,
        namespace: str = "",
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend if backend is not None else InMemoryBackend()
        self.namespace = namespace
        self.clock = clock

    def scoped(self, *parts: str) -> "MemoryStore":
        """Child store whose keys live under `{namespace}:{part}:...`."""
        suffix = ":".join(str(p) for p in parts if p)
        namespace = f"{self.namespace}:{suffix}" if self.namespace else suffix
        return MemoryStore(backend=self.backend, namespace=namespace, clock=self.clock)

    # =========================================================================
    # Core operations
    # =========================================================================

    def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None if absent, expired, or unreadable."""
        full_key = self._key(key)
        try:
            raw = self.backend.get(full_key)
            if raw is None:
                return None
            entry = MemoryEntry(**raw)
            if self._expired(entry):
                logger.debug(f"[MemoryStore] Expired: {full_key}")
                self.backend.delete(full_key)
                return None
            return entry.data
        except Exception as e:
            logger.error(f"[MemoryStore] Error getting {full_key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store a value. `ttl` is in seconds; None means no expiry."""
        full_key = self._key(key)
        try:
            entry = MemoryEntry(key=full_key, data=value, timestamp=self.clock(), ttl=ttl)
            self.backend.put(full_key, entry.model_dump())
        except Exception as e:
            logger.error(f"[MemoryStore] Error setting {full_key}: {e}")

    def delete(self, key: str) -> None:
        full_key = self._key(key)
        try:
            self.backend.delete(full_key)
        except Exception as e:
            logger.error(f"[MemoryStore] Error deleting {full_key}: {e}")

    def list(self, prefix: str = "") -> List[str]:
        """Keys in this scope starting with `prefix`, relative to the scope."""
        scope_prefix = self._key("")
        try:
            keys = self.backend.list(scope_prefix + prefix)
        except Exception as e:
            logger.error(f"[MemoryStore] Error listing {scope_prefix}{prefix}: {e}")
            return []
        return [k[len(scope_prefix):] for k in keys]

    def clear(self) -> None:
        """Delete every key in this scope."""
        for key in self.list():
            self.delete(key)

    # =========================================================================
    # Sequence / counter helpers
    # =========================================================================

    def append(self, key: str, item: Any) -> List[Any]:
        """Append to a stored list, starting from [] if absent or not a list."""
        data = self.get(key)
        if not isinstance(data, list):
            data = []
        data.append(item)
        self.set(key, data)
        return data

    def increment(self, key: str, amount: float = 1) -> float:
        """Add `amount` to a stored number, starting from 0 if absent or not numeric."""
        value = self.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            value = 0
        value += amount
        self.set(key, value)
        return value

    # =========================================================================
    # Domain / skill memory
    # =========================================================================

    def initialize_domain(self, domain: str, initial: Optional[Dict[str, Any]] = None) -> None:
        """Seed `domain-memory:{domain}` unless it already holds a value."""
        key = f"domain-memory:{domain}"
        if not self.get(key):
            self.set(key, initial or {})

    def get_domain_memory(self, domain: str) -> Optional[Any]:
        return self.get(f"domain-memory:{domain}")

    def initialize_skill(self, skill_id: str, initial: Optional[Dict[str, Any]] = None) -> None:
        key = f"skill-memory:{skill_id}"
        if not self.get(key):
            self.set(key, initial or {})

    def get_skill_memory(self, skill_id: str) -> Optional[Any]:
        return self.get(f"skill-memory:{skill_id}")

    def update_skill_memory(self, skill_id: str, data: Any) -> None:
        self.set(f"skill-memory:{skill_id}", data)

    # =========================================================================
    # Stats
    # =========================================================================

    def get_stats(self) -> MemoryStats:
        """Entry count, approximate serialized size, and oldest/newest write times."""
        scope_prefix = self._key("")
        try:
            keys = self.backend.list(scope_prefix)
            total_size = 0
            timestamps: List[float] = []
            for key in keys:
                raw = self.backend.get(key)
                if raw is None:
                    continue
                total_size += len(json.dumps(raw, default=str))
                timestamps.append(raw.get("timestamp") or self.clock())
            return MemoryStats(
                total_entries=len(keys),
                approx_size=total_size,
                oldest_timestamp=min(timestamps) if timestamps else None,
                newest_timestamp=max(timestamps) if timestamps else None,
            )
        except Exception as e:
            logger.error(f"[MemoryStore] Error getting stats: {e}")
            return MemoryStats()

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}" if self.namespace else key

    def _expired(self, entry: MemoryEntry) -> bool:
        return bool(entry.ttl) and self.clock() > entry.timestamp + entry.ttl
