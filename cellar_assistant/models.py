from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """Request payload for chat API."""
    session_id: Optional[str] = Field(default=None)
    message: str


class ChatResponse(BaseModel):
    """Response payload returned by the chat API."""
    session_id: str
    accepted: bool
    answer_text: Optional[str] = None
    reason: Optional[str] = None


class ConversationMessage(BaseModel):
    """One entry of the append-only chat log."""
    id: str
    role: Literal["user", "assistant"]
    content: str
    timestamp: float


class SessionSummary(BaseModel):
    """Lightweight session summary for sidebar listing."""
    session_id: str
    title: str
    updated_at: float
    busy: bool = False


class SessionTranscript(BaseModel):
    session_id: str
    messages: List[ConversationMessage]


class InventoryStatus(BaseModel):
    """Inventory snapshot state rendered in the header/status bar."""
    available: bool
    record_count: int
    warning: Optional[str] = None
    fetched_at: str = ""
    source: str = ""
