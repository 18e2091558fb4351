"""
State storage backends for the chat store.

Backends persist a PersistedState envelope under a string key. The in-memory
backend keeps serialized bytes so reloading always goes through the same
parsing path as a real backend.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Optional

import logfire

from db.migrations import PersistedState
from db.models.store_state import StoredState


class StateStorage(ABC):
    """Async key/value storage for persisted chat state."""

    @abstractmethod
    async def load(self, key: str) -> Optional[PersistedState]:
        """Return the envelope stored under key, or None."""
        ...

    @abstractmethod
    async def save(self, key: str, payload: PersistedState) -> None:
        ...

    @abstractmethod
    async def clear(self, key: str) -> None:
        ...


class InMemoryStateStorage(StateStorage):
    """Process-local storage, used when no database is configured."""

    def __init__(self) -> None:
        self._items: Dict[str, bytes] = {}

    async def load(self, key: str) -> Optional[PersistedState]:
        raw = self._items.get(key)
        if raw is None:
            return None
        return PersistedState.from_bytes(raw)

    async def save(self, key: str, payload: PersistedState) -> None:
        self._items[key] = payload.to_bytes()

    async def clear(self, key: str) -> None:
        self._items.pop(key, None)

    def raw(self, key: str) -> Optional[bytes]:
        return self._items.get(key)


class MongoStateStorage(StateStorage):
    """Storage backed by the StoredState beanie document. Requires init_db()."""

    async def load(self, key: str) -> Optional[PersistedState]:
        document = await StoredState.find_one(StoredState.key == key)
        if document is None:
            logfire.info(f"No persisted state found for key: {key}")
            return None
        return PersistedState(version=document.version, state=document.state)

    async def save(self, key: str, payload: PersistedState) -> None:
        document = await StoredState.find_one(StoredState.key == key)
        if document is None:
            document = StoredState(key=key, version=payload.version, state=payload.state)
            await document.insert()
        else:
            document.version = payload.version
            document.state = payload.state
            document.updated_at = datetime.now(timezone.utc)
            await document.save()
        logfire.debug(f"Persisted state saved for key: {key}")

    async def clear(self, key: str) -> None:
        document = await StoredState.find_one(StoredState.key == key)
        if document is not None:
            await document.delete()
            logfire.info(f"Persisted state cleared for key: {key}")
