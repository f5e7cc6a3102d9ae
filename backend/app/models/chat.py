"""
Chat-related Pydantic models
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class EmbedChatRequest(BaseModel):
    """Request body for POST /api/embed/{embedId}/chat"""
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., min_length=1)
    session_id: str = Field(..., alias="sessionId", min_length=1)
    context: Optional[str] = None  # free-text hint about the user, passed through as-is


class CallerMetadata(BaseModel):
    """Identity of the caller as supplied by upstream auth middleware"""
    username: Optional[str] = None


class ChatMessage(BaseModel):
    """Chat message model"""
    model_config = ConfigDict(populate_by_name=True)

    role: str  # "user" or "assistant"
    content: str
    sent_at: Optional[datetime] = Field(None, alias="sentAt")


class ChatHistory(BaseModel):
    history: List[ChatMessage]
