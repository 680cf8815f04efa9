"""
SQLite knowledge store with hybrid vector and keyword search.

Records live in a single ``knowledge`` table; vector distances are computed
inside SQLite by the sqlite-vec extension so that scoring, filtering and
ordering happen in one query. Multi-statement writes run in explicit
transactions serialized through an asyncio lock.

Search scoring:
- vector_score = 1 / (1 + L2 distance)
- keyword_score = keyword boost when the record text contains the keyword,
  times a chunk or main-record multiplier
- combined score = vector_score * keyword_score
"""

import asyncio
import hashlib
import json
import logging
import sqlite3
import struct
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Iterable, List, Optional, Set, Tuple, Union

import aiosqlite
import sqlite_vec

from ..types.knowledge import (
    EmbeddingVector,
    HybridSearchConfig,
    KnowledgeMetadata,
    KnowledgeRecord,
)
from .cache import KnowledgeCache, make_key
from .errors import DuplicateKnowledgeError, KnowledgeStoreError

logger = logging.getLogger(__name__)

MEMORY_DATABASE = ":memory:"

KNOWLEDGE_SCHEMA = """
CREATE TABLE IF NOT EXISTS knowledge (
    id TEXT PRIMARY KEY,
    agent_id TEXT,
    content TEXT NOT NULL,
    embedding BLOB,
    created_at INTEGER NOT NULL,
    is_main INTEGER NOT NULL DEFAULT 0,
    is_chunk INTEGER NOT NULL DEFAULT 0,
    original_id TEXT,
    chunk_index INTEGER,
    is_shared INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_knowledge_agent ON knowledge(agent_id);
CREATE INDEX IF NOT EXISTS idx_knowledge_original ON knowledge(original_id);
CREATE INDEX IF NOT EXISTS idx_knowledge_shared ON knowledge(is_shared);
"""

INSERT_SQL = """
INSERT INTO knowledge (
    id, agent_id, content, embedding, created_at,
    is_main, is_chunk, original_id, chunk_index, is_shared
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

SEARCH_SQL = """
WITH scored AS (
    SELECT *,
        1.0 / (1.0 + vec_distance_L2(embedding, :embedding)) AS vector_score,
        (CASE
            WHEN :keyword != ''
                AND instr(unicode_lower(json_extract(content, '$.text')), :keyword) > 0
            THEN :keyword_boost
            ELSE 1.0
        END)
        * (CASE
            WHEN is_chunk = 1 THEN :chunk_boost
            WHEN is_main = 1 THEN :main_boost
            ELSE 1.0
        END) AS keyword_score
    FROM knowledge
    WHERE (agent_id = :agent_id OR is_shared = 1)
        AND embedding IS NOT NULL
)
SELECT *, vector_score * keyword_score AS combined_score
FROM scored
WHERE vector_score >= :threshold
    OR (keyword_score > 1.0 AND vector_score >= :rescue_threshold)
ORDER BY combined_score DESC
LIMIT :match_count
"""

_VISIBLE_TO_AGENT = "(agent_id = ? OR is_shared = 1)"


def serialize_embedding(embedding: EmbeddingVector) -> bytes:
    return sqlite_vec.serialize_float32(embedding)


def deserialize_embedding(blob: Optional[bytes]) -> Optional[EmbeddingVector]:
    if blob is None:
        return None
    return list(struct.unpack(f"{len(blob) // 4}f", blob))


def _unicode_lower(value: Optional[str]) -> Optional[str]:
    return value.lower() if value is not None else None


def _like_pattern(wildcard_id: str) -> str:
    escaped = wildcard_id.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped.replace("*", "%")


class KnowledgeStore:
    """
    Persistent store for knowledge records.

    Shared records are stored without an owning agent and are visible to
    every agent; private records are visible only to their owner.
    """

    def __init__(
        self,
        database_path: Union[str, Path] = MEMORY_DATABASE,
        cache: Optional[KnowledgeCache] = None,
        search_config: Optional[HybridSearchConfig] = None,
    ):
        """
        Initialize the store.

        Args:
            database_path: SQLite file path, or ":memory:"
            cache: Optional search result cache, bound on initialize()
            search_config: Hybrid search scoring constants
        """
        self.database_path = str(database_path)
        self.cache = cache
        self.search_config = search_config or HybridSearchConfig()
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._conn is not None

    async def initialize(self) -> None:
        """Open the database, load sqlite-vec and create the schema."""
        if self._conn is not None:
            return

        if self.database_path != MEMORY_DATABASE:
            Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = await aiosqlite.connect(self.database_path, isolation_level=None)
        except sqlite3.Error as e:
            raise KnowledgeStoreError(
                f"Failed to open knowledge database {self.database_path}: {e}",
                operation="initialize",
            ) from e

        try:
            conn.row_factory = aiosqlite.Row
            await conn.enable_load_extension(True)
            await conn.load_extension(sqlite_vec.loadable_path())
            await conn.enable_load_extension(False)
            await conn.create_function("unicode_lower", 1, _unicode_lower, deterministic=True)
            if self.database_path != MEMORY_DATABASE:
                await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA busy_timeout=3000")
            await conn.executescript(KNOWLEDGE_SCHEMA)
            if self.cache is not None:
                await self.cache.bind(conn)
        except (sqlite3.Error, AttributeError) as e:
            await conn.close()
            raise KnowledgeStoreError(
                f"Failed to initialize knowledge database: {e}",
                operation="initialize",
            ) from e

        self._conn = conn
        logger.info(f"Knowledge store initialized at {self.database_path}")

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise KnowledgeStoreError("Knowledge store is not initialized", operation="connect")
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Run statements in one transaction.

        Commits when the block exits normally and rolls back on any exception.
        """
        conn = self._connection()
        async with self._lock:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            await conn.execute("COMMIT")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _insert(self, conn: aiosqlite.Connection, record: KnowledgeRecord) -> bool:
        metadata = record.metadata
        content = json.dumps(
            {"text": record.text, "metadata": metadata.to_dict()},
            ensure_ascii=False,
        )
        params = (
            record.id,
            None if metadata.is_shared else record.agent_id,
            content,
            serialize_embedding(record.embedding) if record.embedding is not None else None,
            record.created_at,
            int(metadata.is_main),
            int(metadata.is_chunk),
            metadata.original_id,
            metadata.chunk_index,
            int(metadata.is_shared),
        )
        try:
            await conn.execute(INSERT_SQL, params)
        except sqlite3.IntegrityError as e:
            if metadata.is_shared:
                logger.debug(f"Shared knowledge {record.id} already exists, skipping")
                return False
            raise DuplicateKnowledgeError(
                f"Knowledge {record.id} already exists for agent {record.agent_id}",
                knowledge_id=record.id,
            ) from e
        return True

    async def create(self, record: KnowledgeRecord) -> bool:
        """
        Insert a single record.

        Returns:
            False when a shared record with the same id already exists

        Raises:
            DuplicateKnowledgeError: If a private record id already exists
        """
        return await self.create_many([record]) == 1

    async def create_many(self, records: List[KnowledgeRecord]) -> int:
        """Insert records in one transaction. Returns the number inserted."""
        if not records:
            return 0
        try:
            async with self.transaction() as conn:
                inserted = [record for record in records if await self._insert(conn, record)]
        except sqlite3.Error as e:
            raise KnowledgeStoreError(f"Failed to create knowledge: {e}", operation="create") from e

        await self._invalidate(_scopes_of(inserted))
        return len(inserted)

    async def replace(self, knowledge_id: str, records: List[KnowledgeRecord]) -> int:
        """
        Atomically remove a parent with its chunks and insert new records.

        Used for replace-on-change: either the whole new version is stored or
        the old version is left untouched.
        """
        try:
            async with self.transaction() as conn:
                removed_scopes = await self._scopes_for(
                    conn, "id = ? OR original_id = ?", (knowledge_id, knowledge_id)
                )
                await conn.execute("DELETE FROM knowledge WHERE original_id = ?", (knowledge_id,))
                await conn.execute("DELETE FROM knowledge WHERE id = ?", (knowledge_id,))
                inserted = [record for record in records if await self._insert(conn, record)]
        except sqlite3.Error as e:
            raise KnowledgeStoreError(
                f"Failed to replace knowledge {knowledge_id}: {e}",
                operation="replace",
            ) from e

        await self._invalidate(removed_scopes | _scopes_of(inserted))
        return len(inserted)

    async def remove(self, knowledge_id: str) -> int:
        """
        Delete a record and every chunk derived from it.

        An id containing "*" is treated as a wildcard pattern and deletes all
        matching records together with their chunks.

        Returns:
            Number of rows deleted
        """
        try:
            async with self.transaction() as conn:
                if "*" in knowledge_id:
                    pattern = _like_pattern(knowledge_id)
                    scopes = await self._scopes_for(
                        conn,
                        "id LIKE ? ESCAPE '\\' OR original_id IN "
                        "(SELECT id FROM knowledge WHERE id LIKE ? ESCAPE '\\')",
                        (pattern, pattern),
                    )
                    chunks = await conn.execute(
                        "DELETE FROM knowledge WHERE original_id IN "
                        "(SELECT id FROM knowledge WHERE id LIKE ? ESCAPE '\\')",
                        (pattern,),
                    )
                    matched = await conn.execute(
                        "DELETE FROM knowledge WHERE id LIKE ? ESCAPE '\\'", (pattern,)
                    )
                else:
                    scopes = await self._scopes_for(
                        conn, "id = ? OR original_id = ?", (knowledge_id, knowledge_id)
                    )
                    chunks = await conn.execute(
                        "DELETE FROM knowledge WHERE original_id = ?", (knowledge_id,)
                    )
                    matched = await conn.execute(
                        "DELETE FROM knowledge WHERE id = ?", (knowledge_id,)
                    )
                removed = chunks.rowcount + matched.rowcount
        except sqlite3.Error as e:
            raise KnowledgeStoreError(
                f"Failed to remove knowledge {knowledge_id}: {e}",
                operation="remove",
            ) from e

        if removed:
            logger.debug(f"Removed {removed} records for {knowledge_id}")
        await self._invalidate(scopes)
        return removed

    async def clear(self, agent_id: str, include_shared: bool = False) -> int:
        """Delete all of an agent's records, optionally with all shared ones."""
        where = "agent_id = ? OR is_shared = 1" if include_shared else "agent_id = ?"
        try:
            async with self.transaction() as conn:
                cursor = await conn.execute(f"DELETE FROM knowledge WHERE {where}", (agent_id,))
                removed = cursor.rowcount
        except sqlite3.Error as e:
            raise KnowledgeStoreError(f"Failed to clear knowledge: {e}", operation="clear") from e

        logger.info(
            f"Cleared {removed} knowledge records for agent {agent_id} "
            f"(include_shared={include_shared})"
        )
        await self._invalidate({(agent_id, include_shared)})
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _fetch(self, sql: str, params: Tuple = ()) -> List[KnowledgeRecord]:
        conn = self._connection()
        try:
            async with conn.execute(sql, params) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise KnowledgeStoreError(f"Knowledge query failed: {e}", operation="query") from e
        return [self._row_to_record(row) for row in rows]

    async def get_by_id(self, knowledge_id: str) -> Optional[KnowledgeRecord]:
        """Look up a record by id regardless of owner."""
        records = await self._fetch("SELECT * FROM knowledge WHERE id = ?", (knowledge_id,))
        return records[0] if records else None

    async def get(
        self,
        agent_id: str,
        knowledge_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[KnowledgeRecord]:
        """
        Direct lookup by id, or a listing, of records visible to an agent.

        Args:
            agent_id: Agent whose private and shared records are visible
            knowledge_id: Record id to look up. If None, lists records.
            limit: Maximum records to list, newest first
        """
        if knowledge_id is not None:
            return await self._fetch(
                f"SELECT * FROM knowledge WHERE id = ? AND {_VISIBLE_TO_AGENT}",
                (knowledge_id, agent_id),
            )
        return await self.list_all(agent_id=agent_id, limit=limit)

    async def list_all(
        self,
        agent_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[KnowledgeRecord]:
        """List records, scoped to an agent's visibility when agent_id is given."""
        sql = "SELECT * FROM knowledge"
        params: Tuple = ()
        if agent_id is not None:
            sql += f" WHERE {_VISIBLE_TO_AGENT}"
            params = (agent_id,)
        sql += " ORDER BY created_at DESC, id"
        if limit is not None:
            sql += " LIMIT ?"
            params += (limit,)
        return await self._fetch(sql, params)

    async def list_parents(self, agent_id: Optional[str] = None) -> List[KnowledgeRecord]:
        sql = "SELECT * FROM knowledge WHERE is_chunk = 0"
        params: Tuple = ()
        if agent_id is not None:
            sql += f" AND {_VISIBLE_TO_AGENT}"
            params = (agent_id,)
        return await self._fetch(sql + " ORDER BY id", params)

    async def list_chunks(self, parent_id: str) -> List[KnowledgeRecord]:
        return await self._fetch(
            "SELECT * FROM knowledge WHERE original_id = ? ORDER BY chunk_index",
            (parent_id,),
        )

    async def count(self, agent_id: str) -> dict:
        """Count parents, chunks and shared records visible to an agent."""
        conn = self._connection()
        sql = (
            "SELECT "
            "COALESCE(SUM(CASE WHEN is_chunk = 0 THEN 1 ELSE 0 END), 0) AS parents, "
            "COALESCE(SUM(CASE WHEN is_chunk = 1 THEN 1 ELSE 0 END), 0) AS chunks, "
            "COALESCE(SUM(CASE WHEN is_shared = 1 THEN 1 ELSE 0 END), 0) AS shared "
            f"FROM knowledge WHERE {_VISIBLE_TO_AGENT}"
        )
        async with conn.execute(sql, (agent_id,)) as cursor:
            row = await cursor.fetchone()
        return {"parents": row["parents"], "chunks": row["chunks"], "shared": row["shared"]}

    async def search(
        self,
        agent_id: str,
        embedding: EmbeddingVector,
        keyword_text: str = "",
        match_threshold: float = 0.6,
        match_count: int = 6,
    ) -> List[KnowledgeRecord]:
        """
        Hybrid vector and keyword search over records visible to an agent.

        A record qualifies when its vector score reaches the threshold, or when
        its keyword score exceeds 1.0 and its vector score reaches the rescue
        threshold. Each returned record's ``similarity`` is its combined score.

        Raises:
            KnowledgeStoreError: If the query fails
        """
        keyword = (keyword_text or "").strip().lower()
        embedding_blob = serialize_embedding(embedding)

        cache_key = None
        if self.cache is not None:
            cache_key = make_key(
                "search",
                agent_id,
                json.dumps(
                    [
                        keyword,
                        match_threshold,
                        match_count,
                        hashlib.sha256(embedding_blob).hexdigest(),
                    ]
                ),
            )
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return [KnowledgeRecord.from_dict(item) for item in cached]

        params = {
            "embedding": embedding_blob,
            "keyword": keyword,
            "keyword_boost": self.search_config.keyword_match_boost,
            "chunk_boost": self.search_config.chunk_boost,
            "main_boost": self.search_config.main_boost,
            "agent_id": agent_id,
            "threshold": match_threshold,
            "rescue_threshold": self.search_config.rescue_threshold,
            "match_count": match_count,
        }

        conn = self._connection()
        try:
            async with conn.execute(SEARCH_SQL, params) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise KnowledgeStoreError(f"Knowledge search failed: {e}", operation="search") from e

        results = []
        for row in rows:
            record = self._row_to_record(row)
            record.similarity = row["combined_score"]
            results.append(record)

        if cache_key is not None:
            await self.cache.set(cache_key, agent_id, [record.to_dict() for record in results])

        return results

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _scopes_for(
        self,
        conn: aiosqlite.Connection,
        where: str,
        params: Tuple,
    ) -> Set[Tuple[Optional[str], bool]]:
        async with conn.execute(
            f"SELECT DISTINCT agent_id, is_shared FROM knowledge WHERE {where}", params
        ) as cursor:
            rows = await cursor.fetchall()
        return {(row["agent_id"], bool(row["is_shared"])) for row in rows}

    async def _invalidate(self, scopes: Iterable[Tuple[Optional[str], bool]]) -> None:
        """Drop cached searches that may include the mutated records."""
        if self.cache is None or not self.cache.is_bound:
            return
        scopes = set(scopes)
        if any(is_shared for _, is_shared in scopes):
            await self.cache.invalidate_all()
            return
        for agent_id in {agent_id for agent_id, _ in scopes if agent_id is not None}:
            await self.cache.invalidate_agent(agent_id)

    def _row_to_record(self, row: aiosqlite.Row) -> KnowledgeRecord:
        content = json.loads(row["content"])
        metadata = KnowledgeMetadata.from_dict(content.get("metadata") or {})
        metadata.is_main = bool(row["is_main"])
        metadata.is_chunk = bool(row["is_chunk"])
        metadata.original_id = row["original_id"]
        metadata.chunk_index = row["chunk_index"]
        metadata.is_shared = bool(row["is_shared"])

        return KnowledgeRecord(
            id=row["id"],
            agent_id=row["agent_id"],
            text=content.get("text", ""),
            metadata=metadata,
            embedding=deserialize_embedding(row["embedding"]),
            created_at=row["created_at"],
        )

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is None:
            return
        if self.cache is not None:
            self.cache.unbind()
        await self._conn.close()
        self._conn = None
        logger.debug("Knowledge store closed")


def _scopes_of(records: Iterable[KnowledgeRecord]) -> Set[Tuple[Optional[str], bool]]:
    return {(record.agent_id, record.is_shared) for record in records}
