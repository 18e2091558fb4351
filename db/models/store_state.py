"""
Stored chat state document.
"""

from beanie import Document
from pydantic import Field
from typing import Any, Dict
from datetime import datetime, timezone


class StoredState(Document):
    """Persisted chat store envelope, one document per store key."""

    key: str = Field(..., description="Store key")
    version: int = Field(..., description="Schema version of state")
    state: Dict[str, Any] = Field(default_factory=dict, description="Serialized store state")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "chat_states"
        indexes = [
            "key",
            "updated_at"
        ]
