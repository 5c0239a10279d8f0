"""
===========================================================================
routes/chat_routes.py — Streaming Chat Route
===========================================================================

PURPOSE:
    The chat widget on every page posts the user's question here:

        POST /api/chat-stream   {"session_id": "...", "url": "...", "message": "..."}

HOW THE CHAT FLOW WORKS:
    ┌─────────────┐     ┌──────────────┐     ┌───────────────────┐
    │ User sends   │ ──→ │ Save message │ ──→ │ Find page chunks  │
    │ a question   │     │ to history   │     │ matching question │
    └─────────────┘     └──────────────┘     └─────────┬─────────┘
                                                        │
    ┌─────────────┐     ┌──────────────┐                │
    │ Save reply  │ ←── │ Stream model │ ←──────────────┘
    │ to history  │     │ answer (SSE) │
    └─────────────┘     └──────────────┘

    The answer is streamed as Server-Sent Events:
        data: {"content": "Hel"}
        data: {"content": "lo"}
        data: [DONE]

USED BY:
    main.py (included via the router)
===========================================================================
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from config_loader import config
from dependencies import get_rag_chat
from errors import HistoryUnavailableError
from models_loader import load_text_model
from rag_chat import RAGChat
from schemas import ChatMessage, ChatRequest

logger = logging.getLogger(__name__)

router = APIRouter()

SYSTEM_PROMPT = (
    "You are a helpful assistant answering questions about a web page. "
    "Use the page excerpts below when they are relevant and say so when "
    "the answer is not in them."
)


def build_messages(chunks: list, history: list, question: str) -> list:
    """
    Build the llama.cpp message list:
    [system prompt + page excerpts] + [past messages] + [the new question]
    """
    system = SYSTEM_PROMPT
    if chunks:
        excerpts = "\n\n".join(f"[{c['source']}]\n{c['content']}" for c in chunks)
        system = f"{SYSTEM_PROMPT}\n\nPage excerpts:\n{excerpts}"

    messages = [{"role": "system", "content": system}]
    messages.extend({"role": m.role, "content": m.content} for m in history)
    messages.append({"role": "user", "content": question})
    return messages


@router.post("/api/chat-stream")
async def chat_stream(request: ChatRequest, rag_chat: RAGChat = Depends(get_rag_chat)):
    """
    Answer a question about the page the session belongs to.

    Steps:
    1. Load the text model (503 if none is available)
    2. Read the recent history and the chunks of request.url that
       match the question (never chunks of another page)
    3. Save the user's message
    4. Stream the answer and save it once it is complete
    """
    llm_instance = load_text_model(request.model)
    if llm_instance is None:
        raise HTTPException(
            status_code=503,
            detail="No text model loaded. Check config.json and the models directory."
        )

    try:
        history = await rag_chat.history.get_messages(
            amount=config["history_amount"], session_id=request.session_id
        )
        chunks = await rag_chat.context.retrieve(
            request.message, source=request.url, top_k=config["context"]["top_k"]
        )
        await rag_chat.history.add_message(
            ChatMessage(role="user", content=request.message), session_id=request.session_id
        )
    except HistoryUnavailableError as e:
        logger.error("Chat history unavailable: %s", e)
        raise HTTPException(status_code=503, detail="Chat history unavailable, try again shortly.")

    messages = build_messages(chunks, history, request.message)

    async def event_generator():
        parts = []
        stream = llm_instance.create_chat_completion(messages=messages, stream=True)
        for chunk in stream:
            delta = chunk["choices"][0].get("delta", {}).get("content")
            if delta:
                parts.append(delta)
                yield f"data: {json.dumps({'content': delta})}\n\n"

        await rag_chat.history.add_message(
            ChatMessage(role="assistant", content="".join(parts)), session_id=request.session_id
        )
        yield "data: [DONE]\n\n"

    return StreamingResponse(event_generator(), media_type="text/event-stream")
