"""Tests for state persistence and schema migration."""

import asyncio
import json

import pytest
from pydantic import ValidationError

from conftest import Script, wait_for
from db.migrations import STATE_VERSION, PersistedState, UnsupportedStateVersion, migrate_state
from models.chat_store import ChatStore
from models.chat_turn import TurnState
from schemas.chat_schema import create_message


def v1_payload(count):
    sessions = [
        {
            "id": f"legacy-{i}",
            "topic": f"Topic {i}",
            "memoryPrompt": "dropped",
            "messages": [
                {"role": "user", "content": f"question {i}", "date": "2023/03/01 10:00:00"},
                {"role": "assistant", "content": f"answer {i}", "date": "2023/03/01 10:00:05"},
            ],
        }
        for i in range(count)
    ]
    return json.dumps({"version": 1, "state": {"sessions": sessions, "current_session_index": 0}}).encode()


async def test_dump_and_init_round_trip(backend, clock):
    store = ChatStore(backend, clock=clock)
    store.new_session()
    await store.on_user_input("hello")
    store.current_session().set_memory_prompt("greeting exchanged")
    store.select_session(1)

    restored = ChatStore(backend, clock=clock)
    await restored.init(store.dump())

    assert restored.snapshot() == store.snapshot()
    assert restored.global_id == store.global_id
    assert restored.current_session_index == 1


async def test_envelope_carries_version(store):
    envelope = json.loads(store.dump())
    assert envelope["version"] == STATE_VERSION
    assert set(envelope["state"]) == {"sessions", "current_session_index", "global_id"}


async def test_changes_are_flushed_to_storage(backend, storage):
    store = ChatStore(backend, storage)
    await store.init()

    store.new_session()
    await store.tasks.drain()

    saved = PersistedState.from_bytes(storage.raw(store.store_key))
    assert len(saved.state["sessions"]) == 2
    assert saved.state["global_id"] == 1


async def test_reload_from_storage(backend, storage):
    store = ChatStore(backend, storage)
    await store.init()
    backend.queue(Script(final="stored answer"))
    await store.on_user_input("remember me")
    await store.shutdown()

    reloaded = ChatStore(backend, storage)
    await reloaded.init()

    contents = [m.content for m in reloaded.current_session().messages]
    assert contents == ["remember me", "stored answer"]
    assert reloaded.current_session().messages[1].streaming is False


async def test_v1_payload_is_migrated(store):
    await store.init(v1_payload(3))

    assert len(store.sessions) == 3
    assert store.global_id == 0
    for i, session in enumerate(store.sessions):
        assert session.topic == f"Topic {i}"
        assert [m.content for m in session.messages] == [f"question {i}", f"answer {i}"]
        assert session.memory_prompt == ""
        assert session.last_summarize_index == 0
        config = session.mask.llm_config
        assert config.send_memory is True
        assert config.history_message_count == 4
        assert config.compress_message_length_threshold == 1000


async def test_empty_v1_payload_gets_fresh_session(store):
    await store.init(json.dumps({"version": 1, "state": {"sessions": []}}).encode())

    assert len(store.sessions) == 1


def test_v1_session_without_messages_is_rejected():
    with pytest.raises(KeyError):
        migrate_state({"sessions": [{"topic": "t"}]}, 1)


async def test_newer_version_is_rejected(store):
    payload = json.dumps({"version": STATE_VERSION + 1, "state": {}}).encode()

    with pytest.raises(UnsupportedStateVersion):
        await store.init(payload)


async def test_malformed_payload_raises(store):
    payload = json.dumps({"version": 2, "state": {"sessions": [{"topic": "no id"}]}}).encode()

    with pytest.raises(ValidationError):
        await store.init(payload)


async def test_clear_all_data_clears_storage(backend, storage):
    store = ChatStore(backend, storage)
    await store.init()
    store.new_session()
    await store.tasks.drain()
    assert storage.raw(store.store_key) is not None

    await store.clear_all_data()

    assert storage.raw(store.store_key) is None
    assert len(store.sessions) == 1


async def test_persisted_messages_keep_error_flags(backend, storage):
    store = ChatStore(backend, storage)
    await store.init()
    session = store.current_session()
    session.append_message(create_message(content="bad", is_error=True))
    await store.flush()

    reloaded = ChatStore(backend, storage)
    await reloaded.init()

    assert reloaded.current_session().messages[0].is_error is True


async def test_shutdown_persists_stopped_turn(backend, storage):
    hold = asyncio.Event()
    store = ChatStore(backend, storage)
    await store.init()
    backend.queue(Script(updates=["Hi"], hold=hold))
    turn = store.submit("hello")
    await wait_for(lambda: turn.bot_message.content == "Hi")

    await store.shutdown()

    assert turn.state is TurnState.CANCELLED
    reloaded = ChatStore(backend, storage)
    await reloaded.init()
    bot = reloaded.current_session().messages[1]
    assert bot.streaming is False
    assert bot.content.startswith("Hi\n\n```json")
    assert "aborted" in bot.content
    assert bot.is_error is False
