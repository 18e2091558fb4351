"""
WebSocket message schemas.
"""

from pydantic import BaseModel
from typing import Literal, Optional
from enum import Enum

from schemas.chat_schema import ChatMessage


class Action(Enum):
    """Actions a client can send over the conversation socket."""
    USER_INPUT = "user_input"
    STOP = "stop"
    STOP_ALL = "stop_all"


class WebSocketInput(BaseModel):
    """Input schema for WebSocket messages."""
    action: Action
    content: Optional[str] = None  # User text for USER_INPUT
    context: Optional[str] = None  # Caller-supplied context, skips retrieval
    message_id: Optional[int] = None  # Assistant message to stop for STOP
    session_id: Optional[int] = None  # Session of message_id; any session when omitted


class MessageEvent(BaseModel):
    """A message created or changed in a session."""
    event: Literal["message"] = "message"
    session_id: int
    message: ChatMessage


class SessionEvent(BaseModel):
    """Session-level changes (topic, memory prompt, list order)."""
    event: Literal["session"] = "session"
    session_id: Optional[int] = None
    topic: Optional[str] = None


class WebSocketError(BaseModel):
    """Error schema for WebSocket messages."""
    event: Literal["error"] = "error"
    error: str
