"""
Memory Compactor

Two-tier conversation memory for a chat session:

- Short-term: the most recent messages, bounded by the mask's
  history_message_count and a length budget of twice the compression
  threshold, sent verbatim.
- Long-term: everything before the summarize cursor, represented only by the
  session's memory_prompt, a running summary regenerated by a streaming
  model call once unsummarized history grows past the compression threshold.

All lengths come from a LengthMetric (characters by default).
"""

import asyncio
from typing import Callable, List, Optional, Set

import logfire

from agents.chat_agent import ChatBackend, ChatController, ChatOptions, is_aborted_error
from agents.prompts import SUMMARIZE_PROMPT, history_prompt
from models.length_metric import LengthMetric, char_length, count_length
from models.topic_summarizer import TopicSummarizer
from schemas.chat_schema import ChatMessage, ChatSession, LLMConfig, create_message
from services.background import BackgroundTasks
from services.controller_pool import MEMORY_SLOT, ChatControllerPool


class MemoryCompactor:
    """
    Chooses the messages sent with each request and keeps memory_prompt current.

    Attributes:
        metric: Length metric applied to message contents
        topic_summarizer: Run alongside compaction after each completed turn
    """

    def __init__(
        self,
        backend: ChatBackend,
        pool: ChatControllerPool,
        tasks: BackgroundTasks,
        on_change: Callable[[ChatSession, bool], None],
        metric: LengthMetric = char_length,
        topic_summarizer: Optional[TopicSummarizer] = None,
    ) -> None:
        self._backend = backend
        self._pool = pool
        self._tasks = tasks
        self._on_change = on_change
        self.metric = metric
        self.topic_summarizer = topic_summarizer or TopicSummarizer(
            backend, pool, tasks, on_change, metric=metric
        )
        self._compressing: Set[int] = set()

    # ----------------------------------------------
    # Effective Messages
    # ----------------------------------------------
    def get_memory_prompt(self, session: ChatSession) -> ChatMessage:
        """System message carrying the long-term memory; empty content when there is none."""
        content = history_prompt(session.memory_prompt) if session.memory_prompt else ""
        return create_message(role="system", content=content, date="")

    def get_messages_with_memory(self, session: ChatSession) -> List[ChatMessage]:
        """
        Build the ordered message list to send ahead of the next user message.

        Returns:
            Mask context messages, then the memory prompt (when memory is
            enabled and non-empty), then the recent window in chronological
            order.
        """
        config = session.mask.llm_config

        cleared = session.messages[session.clear_context_index or 0:]
        messages = [m for m in cleared if not m.is_error]
        n = len(messages)

        context = [m.model_copy() for m in session.mask.context]
        if config.send_memory and session.memory_prompt:
            context.append(self.get_memory_prompt(session))

        short_term_start = max(0, n - config.history_message_count)
        long_term_start = session.last_summarize_index
        most_recent_index = max(short_term_start, long_term_start)

        budget = config.compress_message_length_threshold * 2

        # walk backwards until the window start or the budget is used up
        reversed_recent: List[ChatMessage] = []
        count = 0
        i = n - 1
        while i >= most_recent_index and count < budget:
            message = messages[i]
            i -= 1
            if message.is_error:
                continue
            count += self.metric(message.content)
            reversed_recent.append(message)

        return context + list(reversed(reversed_recent))

    # ----------------------------------------------
    # Summarization
    # ----------------------------------------------
    def summarize_session(self, session: ChatSession) -> Optional[asyncio.Task]:
        """
        Run the post-turn checks: topic derivation and memory compaction.

        Both model calls run as background tasks. Returns the compaction task
        when one was started.
        """
        self.topic_summarizer.maybe_summarize(session)

        config = session.mask.llm_config
        summarize_index = max(session.last_summarize_index, session.clear_context_index or 0)
        to_summarize = [m for m in session.messages if not m.is_error][summarize_index:]

        history_length = count_length(to_summarize, self.metric)
        if history_length > config.max_tokens:
            n = len(to_summarize)
            to_summarize = to_summarize[max(0, n - config.history_message_count):]

        to_summarize.insert(0, self.get_memory_prompt(session))
        last_summarize_index = len(session.messages)

        if not (history_length > config.compress_message_length_threshold and config.send_memory):
            return None
        if session.id in self._compressing:
            logfire.debug(f"Compaction already running for session {session.id}")
            return None

        messages = to_summarize + [create_message(role="system", content=SUMMARIZE_PROMPT, date="")]
        self._compressing.add(session.id)
        logfire.info(
            f"Compacting session {session.id}: {history_length} chars since index {summarize_index}"
        )
        return self._tasks.spawn(
            self._compress(session, messages, config.model_copy(), last_summarize_index),
            name=f"memory-{session.id}",
        )

    async def _compress(
        self,
        session: ChatSession,
        messages: List[ChatMessage],
        config: LLMConfig,
        last_summarize_index: int,
    ) -> None:
        controllers: List[ChatController] = []

        def stopped() -> bool:
            return any(c.aborted for c in controllers)

        def on_update(text: str) -> None:
            if stopped():
                return
            session.set_memory_prompt(text)
            self._on_change(session, False)

        def on_finish(text: str) -> None:
            if stopped():
                return
            if text:
                session.set_memory_prompt(text)
            session.advance_summarize_cursor(last_summarize_index)
            logfire.info(f"[Memory] session {session.id}: {text}")
            self._on_change(session, True)

        def on_error(error: Exception) -> None:
            if is_aborted_error(error):
                logfire.info(f"[Summarize] session {session.id}: stopped")
                return
            logfire.error(f"[Summarize] session {session.id}: {error!r}")

        def on_controller(controller: ChatController) -> None:
            controllers.append(controller)
            self._pool.add(session.id, MEMORY_SLOT, controller)

        try:
            await self._backend.chat(
                ChatOptions(
                    messages=messages,
                    config=config,
                    stream=True,
                    on_update=on_update,
                    on_finish=on_finish,
                    on_error=on_error,
                    on_controller=on_controller,
                )
            )
        finally:
            self._pool.remove(session.id, MEMORY_SLOT)
            self._compressing.discard(session.id)
