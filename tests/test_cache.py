"""
Tests for the persisted search cache.
"""

import unittest
from unittest.mock import patch

import aiosqlite

from agent_knowledge.knowledge.cache import KnowledgeCache, make_key


class TestMakeKey(unittest.TestCase):

    def test_key_components(self):
        key = make_key("search", "agent-a", "what is the workflow")
        purpose, agent_id, digest = key.split(":")
        self.assertEqual(purpose, "search")
        self.assertEqual(agent_id, "agent-a")
        self.assertEqual(len(digest), 32)

    def test_key_is_stable(self):
        self.assertEqual(make_key("search", "a", "q"), make_key("search", "a", "q"))
        self.assertNotEqual(make_key("search", "a", "q"), make_key("search", "b", "q"))


class TestKnowledgeCache(unittest.IsolatedAsyncioTestCase):
    """Tests for KnowledgeCache."""

    async def asyncSetUp(self):
        self.conn = await aiosqlite.connect(":memory:")
        self.cache = KnowledgeCache(ttl_seconds=60, name="test")
        await self.cache.bind(self.conn)

    async def asyncTearDown(self):
        await self.conn.close()

    async def test_unbound_cache_raises(self):
        cache = KnowledgeCache()
        self.assertFalse(cache.is_bound)
        with self.assertRaises(RuntimeError):
            await cache.get("missing")

    async def test_miss_then_hit(self):
        self.assertIsNone(await self.cache.get("k"))

        await self.cache.set("k", "agent-a", [{"id": "r1", "similarity": 0.9}])
        self.assertEqual(await self.cache.get("k"), [{"id": "r1", "similarity": 0.9}])

        stats = self.cache.stats()
        self.assertEqual(stats["hits"], 1)
        self.assertEqual(stats["misses"], 1)
        self.assertEqual(stats["hit_rate"], 0.5)

    async def test_expired_entry_is_a_miss(self):
        with patch("agent_knowledge.knowledge.cache.time") as mock_time:
            mock_time.time.return_value = 1_000.0
            await self.cache.set("k", "agent-a", "value")

            mock_time.time.return_value = 1_030.0
            self.assertEqual(await self.cache.get("k"), "value")

            mock_time.time.return_value = 1_061.0
            self.assertIsNone(await self.cache.get("k"))

        async with self.conn.execute("SELECT COUNT(*) FROM cache") as cursor:
            self.assertEqual((await cursor.fetchone())[0], 0)

    async def test_invalidate_agent(self):
        await self.cache.set("a1", "agent-a", 1)
        await self.cache.set("a2", "agent-a", 2)
        await self.cache.set("b1", "agent-b", 3)

        self.assertEqual(await self.cache.invalidate_agent("agent-a"), 2)
        self.assertIsNone(await self.cache.get("a1"))
        self.assertEqual(await self.cache.get("b1"), 3)

    async def test_invalidate_all(self):
        await self.cache.set("a1", "agent-a", 1)
        await self.cache.set("b1", "agent-b", 2)

        self.assertEqual(await self.cache.invalidate_all(), 2)
        self.assertIsNone(await self.cache.get("b1"))

    async def test_cleanup_expired(self):
        with patch("agent_knowledge.knowledge.cache.time") as mock_time:
            mock_time.time.return_value = 1_000.0
            await self.cache.set("old", "agent-a", 1)
            mock_time.time.return_value = 1_050.0
            await self.cache.set("new", "agent-a", 2)

            mock_time.time.return_value = 1_070.0
            self.assertEqual(await self.cache.cleanup_expired(), 1)
            self.assertEqual(await self.cache.get("new"), 2)


if __name__ == "__main__":
    unittest.main()
