"""
===========================================================================
test_rag_chat.py — Tests for context indexing and chat history
===========================================================================

PURPOSE:
    Exercises rag_chat.py against FakeRedis and an httpx MockTransport,
    so pages are "downloaded" from a dict instead of the network.

    python -m unittest test_rag_chat
===========================================================================
"""

import json
import unittest

import httpx

from errors import HistoryUnavailableError, IngestionError
from rag_chat import ContextService, HistoryService, RAGChat, html_to_text, tokenize
from schemas import ChatMessage
from test_support import FakeRedis, html_transport

PAGE = """
<html>
  <head><title>Redis Sets</title><style>.x { color: red; }</style></head>
  <body>
    <nav>Menu Home About</nav>
    <h1>Sets</h1>
    <p>Redis sets keep their members unique. SADD adds members to a set.</p>
    <script>var tracking = 1;</script>
    <footer>Copyright</footer>
  </body>
</html>
"""


class TestTextHelpers(unittest.TestCase):

    def test_html_to_text_keeps_only_readable_content(self):
        text = html_to_text(PAGE)
        self.assertIn("Redis sets keep their members unique.", text)
        self.assertNotIn("tracking", text)
        self.assertNotIn("color", text)
        self.assertNotIn("Menu", text)
        self.assertNotIn("Copyright", text)

    def test_tokenize_lowercases_and_drops_punctuation(self):
        self.assertEqual(tokenize("Redis SETS, fast!"), ["redis", "sets", "fast"])
        self.assertEqual(tokenize("?! ..."), [])


FRUIT_PAGE = """
<html><body>
  <p>Bananas are yellow fruit grown in warm places.</p>
  <p>Redis sets store unique members and are fast.</p>
  <p>Lists keep insertion order and allow duplicates.</p>
  <p>Hashes map fields to values inside one key.</p>
  <p>Streams append entries with generated ids.</p>
</body></html>
"""

SECRET_PAGE = "<html><body><p>Beta secret password is hunter2.</p></body></html>"


class TestContextService(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.redis = FakeRedis()
        self.http = httpx.AsyncClient(transport=html_transport({
            "https://example.com/sets": PAGE,
            "https://example.com/fruit": FRUIT_PAGE,
            "https://b.dev/": SECRET_PAGE,
        }))
        self.context = ContextService(self.redis, self.http, namespace="test", chunk_size=60, chunk_overlap=10)

    async def asyncTearDown(self):
        await self.http.aclose()

    async def test_add_html_stores_chunks(self):
        count = await self.context.add(type="html", source="https://example.com/sets")

        key = "context:test:https://example.com/sets"
        stored = [json.loads(raw) for raw in self.redis.lists[key]]
        self.assertEqual(len(stored), count)
        self.assertGreater(count, 1)
        self.assertTrue(all(c["source"] == "https://example.com/sets" for c in stored))
        self.assertTrue(all(c["type"] == "html" for c in stored))

    async def test_each_page_gets_its_own_list(self):
        await self.context.add(type="html", source="https://example.com/sets")
        await self.context.add(type="html", source="https://b.dev/")
        self.assertEqual(
            set(self.redis.lists),
            {"context:test:https://example.com/sets", "context:test:https://b.dev/"},
        )

    async def test_chunks_never_exceed_chunk_size(self):
        text = "x" * 50 + " " + "y" * 50
        context = ContextService(self.redis, self.http, namespace="test", chunk_size=60, chunk_overlap=55)
        count = await context.add(type="text", source=text)

        stored = [json.loads(raw)["content"] for raw in self.redis.lists[context.key(text)]]
        self.assertEqual(len(stored), count)
        for chunk in stored:
            self.assertLessEqual(len(chunk), 60)
        self.assertEqual(stored, ["x" * 50, "y" * 50])

    async def test_long_text_is_split_with_overlap(self):
        words = [f"word{i}" for i in range(200)]
        text = " ".join(words)
        await self.context.add(type="text", source=text)

        chunks = [json.loads(raw)["content"] for raw in self.redis.lists[self.context.key(text)]]
        self.assertGreater(len(chunks), 1)
        for chunk in chunks:
            self.assertLessEqual(len(chunk), 60)
        # every chunk after the first repeats the tail of the previous one
        for previous, current in zip(chunks, chunks[1:]):
            self.assertIn(current.split()[0], previous.split())
        covered = {w for chunk in chunks for w in chunk.split()}
        self.assertEqual(covered, set(words))

    async def test_add_missing_page_raises_and_stores_nothing(self):
        with self.assertRaises(IngestionError) as ctx:
            await self.context.add(type="html", source="https://example.com/missing")
        self.assertEqual(ctx.exception.source, "https://example.com/missing")
        self.assertEqual(self.redis.lists, {})

    async def test_add_empty_page_raises(self):
        http = httpx.AsyncClient(transport=html_transport({"https://example.com/empty": "<html></html>"}))
        context = ContextService(self.redis, http, namespace="test")
        with self.assertRaises(IngestionError):
            await context.add(type="html", source="https://example.com/empty")
        await http.aclose()

    async def test_add_storage_failure_raises(self):
        context = ContextService(FakeRedis(failing={"rpush"}), self.http)
        with self.assertRaises(IngestionError):
            await context.add(type="html", source="https://example.com/sets")

    async def test_add_text(self):
        source = "Lists are ordered.  Sets are not."
        await self.context.add(type="text", source=source)
        stored = json.loads(self.redis.lists[self.context.key(source)][0])
        self.assertEqual(stored["content"], "Lists are ordered. Sets are not.")

    async def test_unsupported_type(self):
        with self.assertRaises(ValueError):
            await self.context.add(type="pdf", source="https://example.com/file.pdf")

    async def test_retrieve_puts_best_match_first(self):
        count = await self.context.add(type="html", source="https://example.com/fruit")
        self.assertGreaterEqual(count, 4)

        results = await self.context.retrieve("Which fruit is yellow?", source="https://example.com/fruit", top_k=2)
        self.assertEqual(len(results), 2)
        self.assertIn("yellow fruit", results[0]["content"])
        self.assertTrue(all(r["source"] == "https://example.com/fruit" for r in results))

    async def test_retrieve_only_reads_the_requested_page(self):
        await self.context.add(type="html", source="https://example.com/sets")
        await self.context.add(type="html", source="https://b.dev/")

        results = await self.context.retrieve(
            "What is the secret password?", source="https://example.com/sets", top_k=10
        )
        self.assertTrue(results)
        self.assertTrue(all(r["source"] == "https://example.com/sets" for r in results))
        self.assertFalse(any("hunter2" in r["content"] for r in results))

    async def test_retrieve_unknown_page(self):
        await self.context.add(type="html", source="https://example.com/sets")
        self.assertEqual(await self.context.retrieve("redis sets", source="https://nowhere.dev/"), [])

    async def test_retrieve_without_usable_terms(self):
        await self.context.add(type="html", source="https://example.com/sets")
        self.assertEqual(await self.context.retrieve("?! ...", source="https://example.com/sets"), [])

    async def test_retrieve_survives_redis_failure(self):
        context = ContextService(FakeRedis(failing={"lrange"}), self.http)
        self.assertEqual(await context.retrieve("redis sets", source="https://example.com/sets"), [])


class TestHistoryService(unittest.IsolatedAsyncioTestCase):

    async def test_returns_most_recent_messages_oldest_first(self):
        history = HistoryService(FakeRedis())
        for i in range(15):
            await history.add_message(ChatMessage(role="user", content=f"m{i}"), session_id="s1")

        messages = await history.get_messages(amount=10, session_id="s1")
        self.assertEqual([m.content for m in messages], [f"m{i}" for i in range(5, 15)])

    async def test_sessions_are_separate(self):
        history = HistoryService(FakeRedis())
        await history.add_message(ChatMessage(role="user", content="hello"), session_id="a")
        self.assertEqual(await history.get_messages(amount=10, session_id="b"), [])

    async def test_zero_amount(self):
        history = HistoryService(FakeRedis())
        await history.add_message(ChatMessage(role="user", content="hello"), session_id="a")
        self.assertEqual(await history.get_messages(amount=0, session_id="a"), [])

    async def test_read_and_write_failures(self):
        history = HistoryService(FakeRedis(failing={"lrange", "rpush"}))
        with self.assertRaises(HistoryUnavailableError):
            await history.get_messages(amount=10, session_id="a")
        with self.assertRaises(HistoryUnavailableError):
            await history.add_message(ChatMessage(role="user", content="x"), session_id="a")

    async def test_rag_chat_bundles_both_services(self):
        redis = FakeRedis()
        history = HistoryService(redis)
        rag_chat = RAGChat(context=ContextService(redis, httpx.AsyncClient()), history=history)
        self.assertIs(rag_chat.history, history)
        await rag_chat.context.http.aclose()


if __name__ == "__main__":
    unittest.main()
