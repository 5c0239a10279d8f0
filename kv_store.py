"""
===========================================================================
kv_store.py — Indexed-URL Membership Store (Redis)
===========================================================================

PURPOSE:
    This file keeps track of which URLs have already been indexed.

    Every URL whose content was successfully added to the chat context is
    stored as a member of one Redis SET (default name: "indexed-urls").
    Before indexing a page we ask "is this URL already in the set?" and
    only index it when the answer is no.

    ┌──────────────┐  SISMEMBER  ┌──────────────────────┐
    │ page request │ ──────────→ │ SET "indexed-urls"   │
    └──────────────┘  SADD       │  https://a.dev/docs  │
                      ─────────→ │  https://b.dev/intro │
                                 └──────────────────────┘

    A short-lived lock key ("indexed-urls:lock:<url>") written with
    SET NX EX stops two simultaneous first visits from indexing the same
    page twice. Its value is a per-request token, and only the request
    holding that token may delete it.

USED BY:
    page_context.py (through the PageOrchestrator), main.py (startup)
===========================================================================
"""

import logging
import uuid
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from errors import MembershipStoreError

logger = logging.getLogger(__name__)

# Compare-and-delete: only the holder that wrote the token may remove the key
RELEASE_LOCK_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


def create_redis_client(url: str) -> aioredis.Redis:
    """
    Create the process-wide async Redis client.

    The client owns a connection pool and does not connect until the first
    command, so creating it never blocks app startup.
    """
    return aioredis.from_url(url, decode_responses=True)


class IndexedUrlStore:
    """Membership ledger of indexed URLs backed by a Redis set."""

    def __init__(self, client, set_name: str = "indexed-urls"):
        self.client = client
        self.set_name = set_name

    def lock_key(self, url: str) -> str:
        return f"{self.set_name}:lock:{url}"

    async def is_indexed(self, url: str) -> bool:
        """SISMEMBER <set_name> <url>"""
        try:
            return bool(await self.client.sismember(self.set_name, url))
        except RedisError as e:
            raise MembershipStoreError(f"SISMEMBER {self.set_name} failed: {e}") from e

    async def mark_indexed(self, url: str) -> None:
        """SADD <set_name> <url>"""
        try:
            await self.client.sadd(self.set_name, url)
        except RedisError as e:
            raise MembershipStoreError(f"SADD {self.set_name} failed: {e}") from e
        logger.info("Recorded %s in %s", url, self.set_name)

    async def acquire_lock(self, url: str, ttl_seconds: int) -> Optional[str]:
        """
        Try to take the indexing lock for ``url``.

        Returns:
            str or None: a token identifying this holder, or None if another
                         request is already indexing the same URL. Pass the
                         token back to release_lock.
        """
        token = uuid.uuid4().hex
        try:
            acquired = await self.client.set(self.lock_key(url), token, nx=True, ex=ttl_seconds)
        except RedisError as e:
            raise MembershipStoreError(f"SET NX {self.lock_key(url)} failed: {e}") from e
        return token if acquired else None

    async def release_lock(self, url: str, token: str) -> None:
        """
        Delete the lock only if ``token`` still holds it. After the TTL ran
        out another request may own the key, and its lock must survive.
        """
        # The lock expires on its own, so a failed release only delays a retry
        try:
            released = await self.client.eval(RELEASE_LOCK_SCRIPT, 1, self.lock_key(url), token)
        except RedisError as e:
            logger.warning("Could not release indexing lock for %s: %s", url, e)
            return
        if not released:
            logger.warning("Indexing lock for %s expired before it was released", url)
