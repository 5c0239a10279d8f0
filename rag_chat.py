"""
===========================================================================
rag_chat.py — Retrieval Context & Conversation History
===========================================================================

PURPOSE:
    This module is the app's small "RAG chat" service. It has two parts,
    exposed the same way on one object:

        rag_chat.context.add(type="html", source=url)
        rag_chat.context.retrieve(question, source=url, top_k=4)
        rag_chat.history.get_messages(amount=10, session_id=...)
        rag_chat.history.add_message(message, session_id=...)

    1. CONTEXT: pages are downloaded, stripped down to their readable
       text, split into overlapping chunks (RecursiveCharacterTextSplitter)
       and pushed onto a Redis list of their own, "context:<ns>:<url>".
       When the user asks something about a page, only THAT page's chunks
       are ranked against the question with BM25 and handed to the model.

    2. HISTORY: every message of a session is appended to its own Redis
       list ("history:<session_id>"), so any page render can show the
       last few messages again.

    NOTE: adding the same source twice stores its chunks twice. Callers
    decide whether a source still needs indexing (see kv_store.py).

USED BY:
    page_context.py, routes/chat_routes.py, dependencies.py
===========================================================================
"""

import json
import logging
import re
from typing import List

import httpx
from bs4 import BeautifulSoup
from langchain_community.retrievers import BM25Retriever
from langchain_core.documents import Document
from langchain_text_splitters import RecursiveCharacterTextSplitter
from redis.exceptions import RedisError

from errors import HistoryUnavailableError, IngestionError
from schemas import ChatMessage

logger = logging.getLogger(__name__)

# Tags whose text is never useful as context
NON_CONTENT_TAGS = ["script", "style", "noscript", "template", "svg", "nav", "footer", "header"]

_WORD_RE = re.compile(r"\w+", re.UNICODE)


# ===========================================================================
# SECTION 1: Text helpers
# ===========================================================================

def html_to_text(html: str) -> str:
    """Return the visible text of an HTML document, whitespace collapsed."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(NON_CONTENT_TAGS):
        tag.decompose()
    return " ".join(soup.get_text(separator=" ").split())


def tokenize(text: str) -> List[str]:
    """BM25 tokens: lowercase words, punctuation dropped."""
    return _WORD_RE.findall(text.lower())


# ===========================================================================
# SECTION 2: Context (indexing + retrieval)
# ===========================================================================

class ContextService:
    """Indexes sources into per-source Redis lists of chunks and retrieves them."""

    SUPPORTED_TYPES = ("html", "text")

    def __init__(self, redis_client, http_client: httpx.AsyncClient, namespace: str = "default",
                 chunk_size: int = 1000, chunk_overlap: int = 100, fetch_timeout: float = 30.0):
        self.redis = redis_client
        self.http = http_client
        self.namespace = namespace
        self.splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            length_function=len,
        )
        self.fetch_timeout = fetch_timeout

    def key(self, source: str) -> str:
        return f"context:{self.namespace}:{source}"

    async def add(self, type: str, source: str) -> int:
        """
        Index one source and return the number of chunks stored.

        Args:
            type   : "html" → ``source`` is a URL to download
                     "text" → ``source`` is the text itself
            source : URL or raw text

        Raises:
            ValueError     : unsupported ``type``
            IngestionError : download, parsing or storage failed
        """
        if type not in self.SUPPORTED_TYPES:
            raise ValueError(f"unsupported context type: {type!r}")

        if type == "html":
            text = html_to_text(await self._fetch(source))
        else:
            text = " ".join(source.split())

        chunks = self.splitter.split_text(text)
        if not chunks:
            raise IngestionError(source, "no readable text")

        entries = [json.dumps({"source": source, "type": type, "content": c}) for c in chunks]
        try:
            await self.redis.rpush(self.key(source), *entries)
        except RedisError as e:
            raise IngestionError(source, f"could not store chunks: {e}") from e

        logger.info("Indexed %s (%s, %d chunks)", source, type, len(chunks))
        return len(chunks)

    async def _fetch(self, url: str) -> str:
        try:
            response = await self.http.get(url, follow_redirects=True, timeout=self.fetch_timeout)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise IngestionError(url, str(e) or e.__class__.__name__) from e
        return response.text

    async def retrieve(self, question: str, source: str, top_k: int = 4) -> List[dict]:
        """
        Return up to ``top_k`` chunks of ``source`` ranked by BM25 against
        ``question``. Chunks of other sources are never considered.
        """
        if not tokenize(question):
            return []

        try:
            raw_chunks = await self.redis.lrange(self.key(source), 0, -1)
        except RedisError as e:
            logger.warning("Answering without context, could not read %s: %s", self.key(source), e)
            return []
        if not raw_chunks:
            return []

        documents = []
        for raw in raw_chunks:
            chunk = json.loads(raw)
            documents.append(Document(
                page_content=chunk["content"],
                metadata={"source": chunk["source"], "type": chunk["type"]},
            ))

        retriever = BM25Retriever.from_documents(documents, k=top_k, preprocess_func=tokenize)
        return [
            {"source": doc.metadata["source"], "type": doc.metadata["type"], "content": doc.page_content}
            for doc in retriever.invoke(question)
        ]


# ===========================================================================
# SECTION 3: Conversation history
# ===========================================================================

class HistoryService:
    """Per-session message lists, oldest message first."""

    def __init__(self, redis_client):
        self.redis = redis_client

    @staticmethod
    def key(session_id: str) -> str:
        return f"history:{session_id}"

    async def get_messages(self, amount: int, session_id: str) -> List[ChatMessage]:
        """Return the ``amount`` most recent messages, oldest to newest."""
        if amount <= 0:
            return []
        try:
            raw = await self.redis.lrange(self.key(session_id), -amount, -1)
        except RedisError as e:
            raise HistoryUnavailableError(f"could not read history for {session_id!r}: {e}") from e
        return [ChatMessage.model_validate_json(item) for item in raw]

    async def add_message(self, message: ChatMessage, session_id: str) -> None:
        try:
            await self.redis.rpush(self.key(session_id), message.model_dump_json())
        except RedisError as e:
            raise HistoryUnavailableError(f"could not write history for {session_id!r}: {e}") from e


class RAGChat:
    """Bundles the context and history services behind one client."""

    def __init__(self, context: ContextService, history: HistoryService):
        self.context = context
        self.history = history
