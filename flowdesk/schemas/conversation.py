"""
Conversation (execution session) and message schemas.
"""

import enum
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, validator
from pydantic.alias_generators import to_camel


class MessageRole(str, enum.Enum):
    """Message role enum."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    ERROR = "error"
    LOADING = "loading"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Message(BaseModel):
    """A single transcript entry as shown to the user."""

    role: MessageRole = Field(..., description="Who produced the message")
    content: str = Field(default="", description="Display text")
    timestamp: str = Field(default_factory=utc_now_iso, description="ISO timestamp")
    id: Optional[str] = Field(None, description="Backend message ID, absent for local messages")
    pending: bool = Field(
        default=False,
        description="True for an optimistic message the backend has not confirmed"
    )

    @validator('id', pre=True)
    def coerce_id(cls, v):
        return str(v) if v is not None else v

    @validator('content', pre=True)
    def coerce_content(cls, v):
        return "" if v is None else str(v)

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp,
            "pending": self.pending
        }


class ConversationSummary(BaseModel):
    """A conversation known to the backend for one workflow."""

    id: str = Field(..., description="Conversation ID")
    workflow_id: Optional[str] = Field(None, description="Owning workflow ID")
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    message_count: Optional[int] = None

    @validator('id', 'workflow_id', pre=True)
    def coerce_ids(cls, v):
        return str(v) if v is not None else v

    @validator('created_at', 'updated_at', pre=True)
    def coerce_timestamps(cls, v):
        if v is None:
            return v
        return v.isoformat() if hasattr(v, "isoformat") else str(v)

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "allow"


class ConversationStats(BaseModel):
    """Message statistics for one conversation."""

    total_messages: int = 0
    user_messages: int = 0
    ai_messages: int = 0
    system_messages: int = 0
    avg_user_message_length: int = 0
    avg_ai_message_length: int = 0
    first_message_time: Optional[str] = None
    last_message_time: Optional[str] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "allow"
