"""
Versioned persistence envelope for the chat store.

The store is persisted as {"version": STATE_VERSION, "state": {...}}. Loading
an older payload upgrades it through migrate_state; malformed payloads raise
whatever pydantic / json raise while parsing them.
"""

import copy
import json
from typing import Any, Dict

import logfire
from pydantic import BaseModel, Field

from schemas.chat_schema import ChatMessage, StoreState, create_empty_session


STATE_VERSION = 2


class UnsupportedStateVersion(ValueError):
    """The payload was written by a newer schema than this build understands."""


class PersistedState(BaseModel):
    """Envelope stored under the store key."""
    version: int = STATE_VERSION
    state: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_store(cls, state: StoreState) -> "PersistedState":
        return cls(version=STATE_VERSION, state=state.model_dump(mode="json"))

    @classmethod
    def from_bytes(cls, payload: bytes) -> "PersistedState":
        return cls.model_validate(json.loads(payload))

    def to_bytes(self) -> bytes:
        return self.model_dump_json().encode("utf-8")


def _migrate_v1(state: Dict[str, Any]) -> Dict[str, Any]:
    """
    Rebuild every session from its topic and messages.

    Session ids, memory prompts and summarize cursors are not carried over and
    the global id counter restarts at 0.
    """
    sessions = []
    for old_session in state["sessions"]:
        session = create_empty_session()
        session.topic = old_session["topic"]
        session.messages = [ChatMessage.model_validate(m) for m in old_session["messages"]]
        config = session.mask.llm_config
        config.send_memory = True
        config.history_message_count = 4
        config.compress_message_length_threshold = 1000
        sessions.append(session.model_dump(mode="json"))

    state["global_id"] = 0
    state["sessions"] = sessions
    return state


def migrate_state(state: Dict[str, Any], version: int) -> StoreState:
    """
    Upgrade a persisted state payload to the current schema.

    Args:
        state: The "state" part of the envelope
        version: The envelope version the payload was written with

    Returns:
        A validated StoreState

    Raises:
        UnsupportedStateVersion: If version is newer than STATE_VERSION
    """
    if version > STATE_VERSION:
        raise UnsupportedStateVersion(
            f"Persisted state version {version} is newer than supported version {STATE_VERSION}"
        )

    data = copy.deepcopy(state)
    if version < 2:
        logfire.info(f"Migrating persisted chat state from version {version} to 2")
        data = _migrate_v1(data)

    return StoreState.model_validate(data)
