"""
Topic summarizer.

Once a session still carrying the default topic holds enough content, a
one-shot model call asks for a short title and the result replaces the topic.
The call runs as a background task; its failure is logged and leaves the
default topic in place.
"""

import asyncio
from typing import Callable, Optional, Set

import logfire

from agents.chat_agent import ChatBackend, ChatController, ChatOptions, is_aborted_error
from agents.prompts import DEFAULT_TOPIC, TOPIC_PROMPT
from config.settings import settings
from models.length_metric import LengthMetric, char_length, count_length
from schemas.chat_schema import ChatSession, create_message
from services.background import BackgroundTasks
from services.controller_pool import TOPIC_SLOT, ChatControllerPool
from utils.format import trim_topic


class TopicSummarizer:
    """Derives a session topic from its first messages."""

    def __init__(
        self,
        backend: ChatBackend,
        pool: ChatControllerPool,
        tasks: BackgroundTasks,
        on_change: Callable[[ChatSession, bool], None],
        metric: LengthMetric = char_length,
        min_length: Optional[int] = None,
    ) -> None:
        self._backend = backend
        self._pool = pool
        self._tasks = tasks
        self._on_change = on_change
        self._metric = metric
        self.min_length = settings.SUMMARIZE_MIN_LENGTH if min_length is None else min_length
        self._pending: Set[int] = set()

    def should_summarize(self, session: ChatSession) -> bool:
        return (
            session.topic == DEFAULT_TOPIC
            and session.id not in self._pending
            and count_length(session.messages, self._metric) >= self.min_length
        )

    def maybe_summarize(self, session: ChatSession) -> Optional[asyncio.Task]:
        """Spawn the topic call when the session qualifies; returns the task if one was started."""
        if not self.should_summarize(session):
            return None

        messages = list(session.messages) + [create_message(role="user", content=TOPIC_PROMPT)]
        config = session.mask.llm_config.model_copy()
        self._pending.add(session.id)
        logfire.info(f"Deriving topic for session {session.id}")
        return self._tasks.spawn(self._derive(session, messages, config), name=f"topic-{session.id}")

    async def _derive(self, session: ChatSession, messages, config) -> None:
        def on_finish(text: str) -> None:
            topic = trim_topic(text) if text else ""
            session.set_topic(topic or DEFAULT_TOPIC)
            logfire.info(f"Session {session.id} topic set to: {session.topic}")
            self._on_change(session, True)

        def on_error(error: Exception) -> None:
            if is_aborted_error(error):
                logfire.info(f"[Topic] session {session.id}: stopped")
                return
            logfire.error(f"[Topic] session {session.id}: {error!r}")

        def on_controller(controller: ChatController) -> None:
            self._pool.add(session.id, TOPIC_SLOT, controller)

        try:
            await self._backend.chat(
                ChatOptions(
                    messages=messages,
                    config=config,
                    stream=False,
                    on_finish=on_finish,
                    on_error=on_error,
                    on_controller=on_controller,
                )
            )
        finally:
            self._pool.remove(session.id, TOPIC_SLOT)
            self._pending.discard(session.id)
