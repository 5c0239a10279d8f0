"""
===========================================================================
schemas.py — Pydantic Data Models (Request/Response Schemas)
===========================================================================

PURPOSE:
    This file defines the "shape" of the data that moves through the app:

    - ChatMessage : one stored message of a conversation
    - ChatRequest : what the chat widget posts to /api/chat-stream
    - PageContext : everything the chat page template needs to render

USED BY:
    rag_chat.py, page_context.py, routes/chat_routes.py, routes/page_routes.py
===========================================================================
"""

import time
import uuid
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


# ===========================================================================
# SECTION 1: Conversation Messages
# ===========================================================================

class ChatMessage(BaseModel):
    """
    A single message in a conversation, as stored in the history list.

    Example JSON:
        {
            "id": "0f6c...",
            "role": "user",
            "content": "What is this page about?",
            "created_at": 1760870400.0
        }
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: Literal["user", "assistant", "system"]
    content: str
    created_at: float = Field(default_factory=time.time)


class ChatRequest(BaseModel):
    """
    Schema for the /api/chat-stream endpoint.

    Fields:
        session_id (str) : The session id the page was rendered with
        url        (str) : The page the question is about, only its
                            excerpts are given to the model
        message    (str) : The text the user typed
        model      (str) : Which text model to use (first one by default)
    """
    session_id: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    model: Optional[str] = None


# ===========================================================================
# SECTION 2: Page Rendering
# ===========================================================================

IndexStatus = Literal["already-indexed", "indexed", "in-progress", "failed"]


class PageContext(BaseModel):
    """What a rendered chat page is seeded with."""
    url: str
    session_id: str
    initial_messages: List[ChatMessage] = Field(default_factory=list)
    index_status: IndexStatus
