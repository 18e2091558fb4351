"""
Controller Pool

Tracks one cancellation handle per (session, slot) pair for in-flight model
calls. A slot is normally the id of the assistant message being streamed; the
background memory and topic calls use the reserved MEMORY_SLOT / TOPIC_SLOT
names so they can be stopped alongside regular turns.

Example:
    pool = ChatControllerPool()
    pool.add(session.id, bot_message.id, controller)
    pool.stop(session.id, bot_message.id)
"""

from typing import Dict, Hashable, Protocol, Tuple

import logfire


MEMORY_SLOT = "memory"
TOPIC_SLOT = "topic"


class CancelHandle(Protocol):
    def abort(self) -> None:
        ...


class ChatControllerPool:
    """Registry of cancellation handles keyed by (session key, slot)."""

    def __init__(self) -> None:
        self._controllers: Dict[Tuple[Hashable, Hashable], CancelHandle] = {}

    @staticmethod
    def key(session_key: Hashable, slot: Hashable) -> Tuple[Hashable, Hashable]:
        return (session_key, slot)

    def add(self, session_key: Hashable, slot: Hashable, handle: CancelHandle) -> None:
        """Register a handle; an existing handle under the same key is replaced."""
        self._controllers[self.key(session_key, slot)] = handle
        logfire.debug(f"Controller registered for {session_key}/{slot}")

    def get(self, session_key: Hashable, slot: Hashable):
        return self._controllers.get(self.key(session_key, slot))

    def remove(self, session_key: Hashable, slot: Hashable) -> None:
        self._controllers.pop(self.key(session_key, slot), None)

    def stop(self, session_key: Hashable, slot: Hashable) -> bool:
        """
        Abort the handle under (session_key, slot) and forget it.

        Returns:
            True if a handle was found and aborted
        """
        handle = self._controllers.pop(self.key(session_key, slot), None)
        if handle is None:
            return False
        logfire.info(f"Stopping in-flight request {session_key}/{slot}")
        handle.abort()
        return True

    def stop_slot(self, slot: Hashable) -> bool:
        """Abort every handle registered under slot, whatever its session; True if any was found."""
        keys = [key for key in self._controllers if key[1] == slot]
        for key in keys:
            self.stop(*key)
        return bool(keys)

    def stop_all(self) -> None:
        handles = list(self._controllers.values())
        self._controllers.clear()
        for handle in handles:
            handle.abort()
        if handles:
            logfire.info(f"Stopped {len(handles)} in-flight requests")

    def has_pending(self) -> bool:
        return len(self._controllers) > 0

    def __contains__(self, key: Tuple[Hashable, Hashable]) -> bool:
        return key in self._controllers

    def __len__(self) -> int:
        return len(self._controllers)
