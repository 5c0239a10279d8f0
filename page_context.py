"""
===========================================================================
page_context.py — Building a Chat Page for a URL
===========================================================================

PURPOSE:
    Everything that happens between "someone opened /<some url>" and
    "the chat template is rendered" lives here:

    ┌───────────────┐   ┌──────────────┐   ┌──────────────────┐
    │ route segments│ → │ rebuild URL  │ → │ derive session id│
    └───────────────┘   └──────────────┘   └────────┬─────────┘
                                                    │
                 ┌──────────────────────────────────┴───────┐
                 ▼   (both run at the same time)            ▼
    ┌──────────────────────────┐            ┌──────────────────────┐
    │ index page if not in the │            │ fetch last 10        │
    │ "indexed-urls" set       │            │ history messages     │
    └────────────┬─────────────┘            └──────────┬───────────┘
                 └──────────────┬──────────────────────┘
                                ▼
                        PageContext → chat.html

    A URL is only recorded as indexed AFTER its content was added to the
    context successfully. A failed attempt leaves no record behind, so
    the next visit simply tries again.

USED BY:
    routes/page_routes.py, dependencies.py
===========================================================================
"""

import asyncio
import logging
from typing import List, Optional
from urllib.parse import unquote

from errors import HistoryUnavailableError, IngestionError, MissingRouteSegmentsError
from schemas import ChatMessage, PageContext

logger = logging.getLogger(__name__)

SESSION_POLICIES = ("composite", "shared")


# ===========================================================================
# SECTION 1: Pure helpers
# ===========================================================================

def coerce_segments(value) -> List[str]:
    """
    Validate a route parameter and return it as a list of segments.

    A single string becomes a one-element list. ``None``, an empty value or
    anything that is not a sequence of strings raises
    MissingRouteSegmentsError.
    """
    if isinstance(value, str):
        value = [value] if value else []
    if value is None or not isinstance(value, (list, tuple)):
        raise MissingRouteSegmentsError()
    if not all(isinstance(segment, str) for segment in value):
        raise MissingRouteSegmentsError("route segments must be strings")
    if not value:
        raise MissingRouteSegmentsError()
    return list(value)


def reconstruct_url(segments: List[str]) -> str:
    """
    Percent-decode every segment on its own, then join them with "/".

    Decoding per segment keeps an encoded slash inside a segment:
        reconstruct_url(["a%2Fb", "c"]) == "a/b/c"
    """
    return "/".join(unquote(segment) for segment in segments)


def derive_session_id(url: str, token: Optional[str] = None, policy: str = "composite",
                      shared_session_id: str = "mock-session",
                      anonymous_token: str = "anonymous") -> str:
    """
    Build the session id that groups a conversation.

    Policies:
        "shared"    → always ``shared_session_id`` (everyone shares one history)
        "composite" → "<url>--<token>" with every "/" removed, so history is
                      scoped to both the page and the browser session. A
                      missing or empty cookie token becomes ``anonymous_token``.
    """
    if policy == "shared":
        return shared_session_id
    if policy != "composite":
        raise ValueError(f"unknown session policy: {policy!r}")

    token = token or anonymous_token
    return f"{url}--{token}".replace("/", "")


# ===========================================================================
# SECTION 2: The orchestrator
# ===========================================================================

class PageOrchestrator:
    """
    Runs the per-request page flow against explicitly passed clients.

    Args:
        store      : IndexedUrlStore (membership set + indexing lock)
        rag_chat   : RAGChat (``context.add`` and ``history.get_messages``)
        history_amount       : how many past messages seed the page
        session_policy       : "composite" or "shared"
        lock_seconds         : indexing lock TTL, 0 turns the lock off
    """

    def __init__(self, store, rag_chat, history_amount: int = 10,
                 session_policy: str = "composite", shared_session_id: str = "mock-session",
                 anonymous_token: str = "anonymous", lock_seconds: int = 0):
        if session_policy not in SESSION_POLICIES:
            raise ValueError(f"unknown session policy: {session_policy!r}")
        self.store = store
        self.rag_chat = rag_chat
        self.history_amount = history_amount
        self.session_policy = session_policy
        self.shared_session_id = shared_session_id
        self.anonymous_token = anonymous_token
        self.lock_seconds = lock_seconds

    def session_id_for(self, url: str, cookie_token: Optional[str]) -> str:
        return derive_session_id(
            url,
            cookie_token,
            policy=self.session_policy,
            shared_session_id=self.shared_session_id,
            anonymous_token=self.anonymous_token,
        )

    async def ensure_indexed(self, url: str) -> str:
        """
        Index ``url`` unless the membership set says it already was.

        Returns one of:
            "already-indexed" : found in the set, nothing done
            "indexed"         : content added, URL recorded
            "in-progress"     : another request holds the indexing lock
            "failed"          : content could not be added, URL NOT recorded

        MembershipStoreError from Redis is not caught.
        """
        if await self.store.is_indexed(url):
            return "already-indexed"

        lock_token = None
        if self.lock_seconds > 0:
            lock_token = await self.store.acquire_lock(url, self.lock_seconds)
            if lock_token is None:
                logger.info("Skipping %s, another request is indexing it", url)
                return "in-progress"

        try:
            # The lock holder before us may have finished in between
            if lock_token and await self.store.is_indexed(url):
                return "already-indexed"

            try:
                await self.rag_chat.context.add(type="html", source=url)
            except IngestionError as e:
                logger.warning("Indexing failed, will retry on next visit: %s", e)
                return "failed"

            await self.store.mark_indexed(url)
            return "indexed"
        finally:
            if lock_token:
                await self.store.release_lock(url, lock_token)

    async def fetch_history(self, session_id: str) -> List[ChatMessage]:
        try:
            return await self.rag_chat.history.get_messages(
                amount=self.history_amount, session_id=session_id
            )
        except HistoryUnavailableError as e:
            logger.warning("Rendering without history: %s", e)
            return []

    async def build(self, segments, cookie_token: Optional[str] = None) -> PageContext:
        """Run the whole flow for one request and return what to render."""
        url = reconstruct_url(coerce_segments(segments))
        session_id = self.session_id_for(url, cookie_token)

        index_task = asyncio.ensure_future(self.ensure_indexed(url))
        history_task = asyncio.ensure_future(self.fetch_history(session_id))
        try:
            index_status, history = await asyncio.gather(index_task, history_task)
        except BaseException:
            # one step failed, the page will not render: stop the other one
            for task in (index_task, history_task):
                task.cancel()
            raise
        logger.info("Page %s: session=%s index=%s history=%d",
                    url, session_id, index_status, len(history))

        return PageContext(
            url=url,
            session_id=session_id,
            initial_messages=history,
            index_status=index_status,
        )
