"""Tests for topic derivation."""

import pytest

from agents.prompts import DEFAULT_TOPIC, TOPIC_PROMPT
from conftest import Script, make_session
from models.topic_summarizer import TopicSummarizer
from services.background import BackgroundTasks
from services.controller_pool import ChatControllerPool


@pytest.fixture
def tasks():
    return BackgroundTasks()


@pytest.fixture
def summarizer(backend, tasks):
    return TopicSummarizer(backend, ChatControllerPool(), tasks, lambda session, persist: None, min_length=50)


async def test_short_sessions_keep_default_topic(summarizer, backend):
    session = make_session(["hi", "hello"], topic=DEFAULT_TOPIC)

    assert summarizer.maybe_summarize(session) is None
    assert backend.calls == []


async def test_topic_is_derived_with_one_shot_call(summarizer, backend, tasks):
    session = make_session(["Plan a trip to Lisbon in May", "Sure, here are some ideas for your trip"], topic=DEFAULT_TOPIC)
    backend.queue(Script(final='  Lisbon trip planning."  '))

    assert summarizer.maybe_summarize(session) is not None
    await tasks.drain()

    assert session.topic == "Lisbon trip planning"
    call = backend.calls[0]
    assert call.stream is False
    assert call.messages[-1].role == "user"
    assert call.messages[-1].content == TOPIC_PROMPT
    assert len(call.messages) == 3


async def test_empty_topic_result_keeps_default(summarizer, backend, tasks):
    session = make_session(["x" * 60], topic=DEFAULT_TOPIC)
    backend.queue(Script(final="..."))

    summarizer.maybe_summarize(session)
    await tasks.drain()

    assert session.topic == DEFAULT_TOPIC


async def test_custom_topic_is_not_replaced(summarizer, backend):
    session = make_session(["x" * 60], topic="My own title")

    assert summarizer.maybe_summarize(session) is None
    assert backend.calls == []


async def test_failed_call_keeps_default(summarizer, backend, tasks):
    session = make_session(["x" * 60], topic=DEFAULT_TOPIC)
    backend.queue(Script(error=RuntimeError("rate limited")))

    summarizer.maybe_summarize(session)
    await tasks.drain()

    assert session.topic == DEFAULT_TOPIC
    assert summarizer.should_summarize(session)


async def test_single_derivation_in_flight(summarizer, backend, tasks):
    session = make_session(["x" * 60], topic=DEFAULT_TOPIC)

    assert summarizer.maybe_summarize(session) is not None
    assert summarizer.maybe_summarize(session) is None
    await tasks.drain()

    assert len(backend.calls) == 1
