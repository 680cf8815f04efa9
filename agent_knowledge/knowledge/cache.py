"""
Search result cache persisted alongside the knowledge records.

Entries are keyed by (purpose, agent, query) and expire after a TTL. Any
mutation of an agent's knowledge drops every entry for that agent; a mutation
of shared knowledge drops every entry for every agent.
"""

import hashlib
import json
import logging
import time
from typing import Any, Dict, Optional

import aiosqlite

logger = logging.getLogger(__name__)

CACHE_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache (
    key TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL,
    value TEXT NOT NULL,
    created_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_cache_agent ON cache(agent_id);
"""


def make_key(purpose: str, agent_id: str, query: str) -> str:
    """Build a cache key from its three components."""
    digest = hashlib.sha256(query.encode("utf-8")).hexdigest()[:32]
    return f"{purpose}:{agent_id}:{digest}"


class KnowledgeCache:
    """
    TTL cache backed by the ``cache`` table of the knowledge database.

    The cache is bound to the store's connection when the store initializes.

    Features:
    - TTL-based expiration
    - Whole-agent invalidation
    - Cache hit/miss statistics
    """

    def __init__(self, ttl_seconds: float = 3600, name: str = "knowledge"):
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._conn: Optional[aiosqlite.Connection] = None
        self._hits = 0
        self._misses = 0

    @property
    def is_bound(self) -> bool:
        return self._conn is not None

    async def bind(self, conn: aiosqlite.Connection) -> None:
        """Attach the cache to an open connection and create its table."""
        await conn.executescript(CACHE_SCHEMA)
        self._conn = conn

    def unbind(self) -> None:
        self._conn = None

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError(f"Cache {self.name} is not bound to a database")
        return self._conn

    def _is_expired(self, created_at: int) -> bool:
        return time.time() * 1000 - created_at > self.ttl_seconds * 1000

    async def get(self, key: str) -> Optional[Any]:
        """
        Get a value from the cache.

        Returns None if not found or expired.
        """
        conn = self._connection()
        async with conn.execute(
            "SELECT value, created_at FROM cache WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()

        if row is None:
            self._misses += 1
            return None

        if self._is_expired(row[1]):
            await conn.execute("DELETE FROM cache WHERE key = ?", (key,))
            self._misses += 1
            logger.debug("Cache miss (expired): %s[%s]", self.name, key)
            return None

        self._hits += 1
        logger.debug("Cache hit: %s[%s]", self.name, key)
        return json.loads(row[0])

    async def set(self, key: str, agent_id: str, value: Any) -> None:
        """Store a JSON-serializable value for an agent."""
        conn = self._connection()
        await conn.execute(
            "INSERT OR REPLACE INTO cache (key, agent_id, value, created_at) "
            "VALUES (?, ?, ?, ?)",
            (key, agent_id, json.dumps(value), int(time.time() * 1000)),
        )
        logger.debug("Cache set: %s[%s]", self.name, key)

    async def invalidate_agent(self, agent_id: str) -> int:
        """Drop every entry belonging to an agent. Returns the count removed."""
        conn = self._connection()
        cursor = await conn.execute("DELETE FROM cache WHERE agent_id = ?", (agent_id,))
        removed = cursor.rowcount
        await cursor.close()
        if removed:
            logger.debug("Cache invalidated for agent %s: %d entries", agent_id, removed)
        return removed

    async def invalidate_all(self) -> int:
        conn = self._connection()
        cursor = await conn.execute("DELETE FROM cache")
        removed = cursor.rowcount
        await cursor.close()
        if removed:
            logger.debug("Cache cleared: %s (%d entries)", self.name, removed)
        return removed

    async def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        conn = self._connection()
        cutoff = int((time.time() - self.ttl_seconds) * 1000)
        cursor = await conn.execute("DELETE FROM cache WHERE created_at < ?", (cutoff,))
        removed = cursor.rowcount
        await cursor.close()
        if removed:
            logger.info("Cache cleanup: %s removed %d expired entries", self.name, removed)
        return removed

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total = self._hits + self._misses
        return {
            "name": self.name,
            "ttl_seconds": self.ttl_seconds,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total, 3) if total else 0.0,
        }
