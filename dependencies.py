"""
===========================================================================
dependencies.py — Client Construction & Route Dependencies
===========================================================================

PURPOSE:
    The Redis client, the HTTP client used to download pages, and the
    services built on top of them are created ONCE when the app starts
    (see the lifespan in main.py) and kept on ``app.state``.

    Routes never import those objects directly. They ask for them with
    FastAPI's ``Depends(...)``, which makes them easy to swap in tests:

        app.dependency_overrides[get_orchestrator] = lambda: fake

USED BY:
    main.py, routes/page_routes.py, routes/chat_routes.py
===========================================================================
"""

import logging

import httpx
from fastapi import Request

from kv_store import IndexedUrlStore, create_redis_client
from page_context import PageOrchestrator
from rag_chat import ContextService, HistoryService, RAGChat

logger = logging.getLogger(__name__)

USER_AGENT = "site-chat/0.1 (+page indexer)"


def build_services(config: dict, redis_client=None, http_client=None) -> dict:
    """Create every long-lived client and service from the config dict."""
    redis_client = redis_client or create_redis_client(config["redis_url"])
    http_client = http_client or httpx.AsyncClient(headers={"User-Agent": USER_AGENT})

    context_config = config["context"]
    rag_chat = RAGChat(
        context=ContextService(
            redis_client,
            http_client,
            namespace=context_config["namespace"],
            chunk_size=context_config["chunk_size"],
            chunk_overlap=context_config["chunk_overlap"],
            fetch_timeout=context_config["fetch_timeout"],
        ),
        history=HistoryService(redis_client),
    )
    orchestrator = PageOrchestrator(
        IndexedUrlStore(redis_client, config["indexed_urls_key"]),
        rag_chat,
        history_amount=config["history_amount"],
        session_policy=config["session_policy"],
        shared_session_id=config["shared_session_id"],
        anonymous_token=config["anonymous_session_token"],
        lock_seconds=config["indexing_lock_seconds"],
    )
    return {
        "redis": redis_client,
        "http": http_client,
        "rag_chat": rag_chat,
        "orchestrator": orchestrator,
    }


async def close_services(services: dict) -> None:
    await services["http"].aclose()
    await services["redis"].aclose()
    logger.info("Closed Redis and HTTP clients")


# ===========================================================================
# Route dependencies
# ===========================================================================

def get_orchestrator(request: Request) -> PageOrchestrator:
    return request.app.state.orchestrator


def get_rag_chat(request: Request) -> RAGChat:
    return request.app.state.rag_chat
