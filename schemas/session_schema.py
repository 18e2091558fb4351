"""
Session API request/response schemas.
"""

from pydantic import BaseModel
from typing import List, Optional

from schemas.chat_schema import ChatSession, Mask


class SessionSummary(BaseModel):
    """Listing entry for a session."""
    index: int
    id: int
    topic: str
    message_count: int
    last_update: int


class SessionListResponse(BaseModel):
    sessions: List[SessionSummary]
    current_session_index: int


class NewSessionRequest(BaseModel):
    mask: Optional[Mask] = None


class MoveSessionRequest(BaseModel):
    from_index: int
    to_index: int


class SessionResponse(BaseModel):
    index: int
    session: ChatSession
