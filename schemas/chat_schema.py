"""
Chat message, session and store state schemas.

Sessions expose explicit mutation methods (append_message, set_memory_prompt,
advance_summarize_cursor, ...) so every write to session state goes through an
enumerable call site. The chat store is the only caller of those methods.
"""

import random
import time
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from agents.prompts import BOT_HELLO, DEFAULT_TOPIC
from config.settings import settings


Role = Literal["system", "user", "assistant"]

_last_message_id = 0


def now_ms() -> int:
    return int(time.time() * 1000)


def next_message_id() -> int:
    """Return a millisecond timestamp id, strictly increasing within the process."""
    global _last_message_id
    _last_message_id = max(now_ms(), _last_message_id + 1)
    return _last_message_id


def format_date(moment: Optional[datetime] = None) -> str:
    return (moment or datetime.now()).strftime("%Y/%m/%d %H:%M:%S")


# ----------------------------------------------
# Messages
# ----------------------------------------------
class ChatMessage(BaseModel):
    """A single chat turn."""
    id: int = Field(default_factory=next_message_id)
    role: Role = "user"
    content: str = ""
    date: str = Field(default_factory=format_date)
    streaming: bool = False
    is_error: bool = False
    model: Optional[str] = None


def create_message(**overrides) -> ChatMessage:
    """Create a message with defaults (fresh id, formatted now, user role, empty content)."""
    return ChatMessage(**overrides)


class ChatStat(BaseModel):
    """Per-session counters. Only char_count is maintained today."""
    token_count: int = 0
    word_count: int = 0
    char_count: int = 0


# ----------------------------------------------
# Masks
# ----------------------------------------------
class LLMConfig(BaseModel):
    """Model configuration carried by a mask."""
    model: str = Field(default_factory=lambda: settings.DEFAULT_MODEL)
    temperature: float = Field(default_factory=lambda: settings.DEFAULT_TEMPERATURE)
    max_tokens: int = Field(default_factory=lambda: settings.DEFAULT_MAX_TOKENS)
    send_memory: bool = Field(default_factory=lambda: settings.DEFAULT_SEND_MEMORY)
    history_message_count: int = Field(default_factory=lambda: settings.DEFAULT_HISTORY_MESSAGE_COUNT)
    compress_message_length_threshold: int = Field(
        default_factory=lambda: settings.DEFAULT_COMPRESS_MESSAGE_LENGTH_THRESHOLD
    )


class Mask(BaseModel):
    """Reusable configuration bundle, copied by value into a session."""
    id: int = Field(default_factory=now_ms)
    name: str = DEFAULT_TOPIC
    context: List[ChatMessage] = Field(default_factory=list)
    llm_config: LLMConfig = Field(default_factory=LLMConfig)


def create_empty_mask() -> Mask:
    return Mask()


# ----------------------------------------------
# Sessions
# ----------------------------------------------
class ChatSession(BaseModel):
    """One conversation thread: messages, long-term memory, stats and mask."""
    id: int
    topic: str = DEFAULT_TOPIC
    memory_prompt: str = ""
    messages: List[ChatMessage] = Field(default_factory=list)
    stat: ChatStat = Field(default_factory=ChatStat)
    last_update: int = Field(default_factory=now_ms)
    last_summarize_index: int = 0
    clear_context_index: Optional[int] = None
    mask: Mask = Field(default_factory=create_empty_mask)

    def append_message(self, message: ChatMessage) -> None:
        self.messages.append(message)

    def set_memory_prompt(self, memory_prompt: str) -> None:
        self.memory_prompt = memory_prompt

    def advance_summarize_cursor(self, index: int) -> None:
        """Move the summarize cursor forward to index, never past the message count."""
        self.last_summarize_index = min(max(self.last_summarize_index, index), len(self.messages))

    def set_topic(self, topic: str) -> None:
        self.topic = topic

    def touch(self, timestamp: Optional[int] = None) -> None:
        self.last_update = timestamp if timestamp is not None else now_ms()

    def record_stat(self, message: ChatMessage) -> None:
        self.stat.char_count += len(message.content)
        # TODO: maintain word_count and token_count

    def clear_context(self) -> None:
        self.clear_context_index = len(self.messages)

    def reset(self) -> None:
        """Drop all messages and long-term memory, keeping identity, topic and mask."""
        self.messages = []
        self.memory_prompt = ""
        self.last_summarize_index = 0
        self.clear_context_index = None

    def find_message(self, message_id: int) -> Optional[ChatMessage]:
        return next((m for m in self.messages if m.id == message_id), None)


def create_empty_session() -> ChatSession:
    """Return a fresh session with a time-plus-random id and a default mask."""
    return ChatSession(id=now_ms() * 1000 + random.randrange(1000))


def bot_hello() -> ChatMessage:
    return create_message(role="assistant", content=BOT_HELLO)


# ----------------------------------------------
# Store State
# ----------------------------------------------
class StoreState(BaseModel):
    """Everything the chat store persists."""
    sessions: List[ChatSession] = Field(default_factory=lambda: [create_empty_session()])
    current_session_index: int = 0
    global_id: int = 0
