"""Request/response bodies for the HTTP gateway."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)
    conversation_id: Optional[str] = None


class MessageOut(BaseModel):
    role: str
    content: str
    timestamp: Optional[datetime] = None


class ChatResponse(BaseModel):
    conversation_id: str
    agent_conversation_id: str
    message: MessageOut


class FeedbackRequest(BaseModel):
    feedback: str = Field(..., min_length=1)
    conversation_id: Optional[str] = None


class ConversationOut(BaseModel):
    id: str
    title: str
    message_count: int
    created_at: datetime
    updated_at: datetime


class TranscriptOut(BaseModel):
    conversation_id: str
    agent_conversation_id: str
    messages: list[MessageOut]
