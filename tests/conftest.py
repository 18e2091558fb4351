"""Shared test fixtures for the chat assistant."""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import logfire
import pytest

from agents.chat_agent import ChatBackend
from db.storage import InMemoryStateStorage
from models.chat_store import ChatStore
from schemas.chat_schema import ChatMessage, ChatSession, LLMConfig, create_empty_session, create_message


logfire.configure(send_to_logfire=False, console=False)


@dataclass
class Script:
    """One scripted model response."""

    updates: List[str] = field(default_factory=list)
    final: str = ""
    error: Optional[Exception] = None
    hold: Optional[asyncio.Event] = None  # awaited after the updates, before finishing


@dataclass
class Call:
    messages: List[ChatMessage]
    config: LLMConfig
    stream: bool


class ScriptedBackend(ChatBackend):
    """Chat backend replaying queued scripts; falls back to `default` when the queue is empty."""

    def __init__(self, *scripts: Script, default: Optional[Script] = None) -> None:
        self.scripts: List[Script] = list(scripts)
        self.default = default or Script(final="ok")
        self.calls: List[Call] = []
        self.started = asyncio.Event()

    def queue(self, *scripts: Script) -> None:
        self.scripts.extend(scripts)

    async def complete(self, messages, config, on_update=None) -> str:
        self.calls.append(Call(list(messages), config, on_update is not None))
        self.started.set()
        script = self.scripts.pop(0) if self.scripts else self.default
        for text in script.updates:
            await asyncio.sleep(0)
            if on_update is not None:
                on_update(text)
        if script.hold is not None:
            await script.hold.wait()
        if script.error is not None:
            raise script.error
        return script.final


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def wait_for(predicate: Callable[[], bool], attempts: int = 200) -> None:
    """Yield to the loop until predicate() holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


def make_session(contents: List[str], topic: str = "Existing topic", **config) -> ChatSession:
    """Session with alternating user/assistant messages holding the given contents."""
    session = create_empty_session()
    session.topic = topic
    for i, content in enumerate(contents):
        session.append_message(create_message(role="user" if i % 2 == 0 else "assistant", content=content))
    for name, value in config.items():
        setattr(session.mask.llm_config, name, value)
    return session


@pytest.fixture
def backend():
    return ScriptedBackend()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return InMemoryStateStorage()


@pytest.fixture
def store(backend, clock):
    return ChatStore(backend, clock=clock)
