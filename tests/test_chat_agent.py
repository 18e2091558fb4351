"""Tests for the chat call contract and the pydantic-ai backend."""

import asyncio

import pytest
from pydantic_ai.messages import ModelRequest, ModelResponse, SystemPromptPart, TextPart, UserPromptPart
from pydantic_ai.models.test import TestModel

from agents.chat_agent import (
    ChatAbortedError,
    ChatBackend,
    ChatOptions,
    PydanticAIChatBackend,
    is_aborted_error,
    to_model_messages,
)
from conftest import Script
from schemas.chat_schema import LLMConfig, create_message


class Recorder:
    """Collects the callbacks of one chat call."""

    def __init__(self):
        self.updates = []
        self.finished = []
        self.errors = []
        self.controllers = []

    def options(self, messages=None, stream=True):
        return ChatOptions(
            messages=messages or [create_message(content="hello")],
            config=LLMConfig(),
            stream=stream,
            on_update=self.updates.append,
            on_finish=self.finished.append,
            on_error=self.errors.append,
            on_controller=self.controllers.append,
        )

    @property
    def terminal_events(self):
        return len(self.finished) + len(self.errors)


# ================================================
# Call contract
# ================================================
async def test_streamed_call_reports_updates_then_finish(backend):
    backend.queue(Script(updates=["a", "ab"], final="abc"))
    recorder = Recorder()

    await backend.chat(recorder.options())

    assert recorder.updates == ["a", "ab"]
    assert recorder.finished == ["abc"]
    assert recorder.errors == []
    assert len(recorder.controllers) == 1


async def test_one_shot_call_sends_no_updates(backend):
    backend.queue(Script(updates=["ignored"], final="done"))
    recorder = Recorder()

    await backend.chat(recorder.options(stream=False))

    assert recorder.updates == []
    assert recorder.finished == ["done"]
    assert backend.calls[0].stream is False


async def test_failure_reaches_on_error(backend):
    error = RuntimeError("bad gateway")
    backend.queue(Script(error=error))
    recorder = Recorder()

    await backend.chat(recorder.options())

    assert recorder.errors == [error]
    assert recorder.terminal_events == 1


async def test_abort_ends_call_with_aborted_error(backend):
    hold = asyncio.Event()
    backend.queue(Script(updates=["part"], hold=hold))
    recorder = Recorder()

    call = asyncio.create_task(backend.chat(recorder.options()))
    await backend.started.wait()
    recorder.controllers[0].abort()
    await call

    assert recorder.terminal_events == 1
    assert isinstance(recorder.errors[0], ChatAbortedError)
    assert recorder.controllers[0].aborted


async def test_outer_cancellation_propagates(backend):
    hold = asyncio.Event()
    backend.queue(Script(hold=hold))
    recorder = Recorder()

    call = asyncio.create_task(backend.chat(recorder.options()))
    await backend.started.wait()
    call.cancel()

    with pytest.raises(asyncio.CancelledError):
        await call
    assert recorder.terminal_events == 0


def test_is_aborted_error():
    assert is_aborted_error(ChatAbortedError())
    assert is_aborted_error(RuntimeError("The user aborted a request."))
    assert not is_aborted_error(RuntimeError("timeout"))


# ================================================
# Pydantic AI backend
# ================================================
def test_to_model_messages_maps_roles_and_skips_empty():
    history = to_model_messages(
        [
            create_message(role="system", content="be brief"),
            create_message(role="user", content="hi"),
            create_message(role="assistant", content=""),
            create_message(role="assistant", content="hello"),
        ]
    )

    assert len(history) == 3
    assert isinstance(history[0], ModelRequest)
    assert isinstance(history[0].parts[0], SystemPromptPart)
    assert isinstance(history[1].parts[0], UserPromptPart)
    assert isinstance(history[2], ModelResponse)
    assert isinstance(history[2].parts[0], TextPart)
    assert history[2].parts[0].content == "hello"


async def test_pydantic_ai_backend_one_shot():
    backend = PydanticAIChatBackend(model=TestModel(custom_output_text="Hi there!"))
    recorder = Recorder()

    await backend.chat(
        recorder.options(
            messages=[
                create_message(role="system", content="be brief"),
                create_message(role="user", content="Hello"),
            ],
            stream=False,
        )
    )

    assert recorder.finished == ["Hi there!"]
    assert recorder.errors == []


async def test_pydantic_ai_backend_streams_accumulated_text():
    backend = PydanticAIChatBackend(model=TestModel(custom_output_text="Hi there friend"))
    recorder = Recorder()

    await backend.chat(recorder.options())

    assert recorder.finished == ["Hi there friend"]
    assert recorder.updates
    assert recorder.updates[-1] == "Hi there friend"
    for earlier, later in zip(recorder.updates, recorder.updates[1:]):
        assert later.startswith(earlier)


async def test_empty_conversation_is_an_error():
    backend = PydanticAIChatBackend(model=TestModel())
    recorder = Recorder()
    options = recorder.options()
    options.messages = []

    await backend.chat(options)

    assert isinstance(recorder.errors[0], ValueError)


def test_resolve_model_requires_api_key():
    backend = PydanticAIChatBackend(api_key="")

    with pytest.raises(RuntimeError, match="GROQ_API_KEY"):
        backend.resolve_model("openai/gpt-oss-120b")


def test_resolve_model_caches_per_name():
    backend = PydanticAIChatBackend(api_key="test-key")

    assert backend.resolve_model("a") is backend.resolve_model("a")
    assert backend.resolve_model("a") is not backend.resolve_model("b")


async def test_outer_cancellation_stops_model_call():
    class SlowBackend(ChatBackend):
        def __init__(self):
            self.started = asyncio.Event()
            self.cancelled = False

        async def complete(self, messages, config, on_update=None):
            self.started.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled = True
                raise
            return ""

    backend = SlowBackend()
    recorder = Recorder()

    call = asyncio.create_task(backend.chat(recorder.options()))
    await backend.started.wait()
    call.cancel()
    with pytest.raises(asyncio.CancelledError):
        await call
    await asyncio.sleep(0)

    assert backend.cancelled
