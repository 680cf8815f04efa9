"""
Knowledge service for agent retrieval augmented generation.

This module provides the main orchestration layer of the engine, wiring the
store, cache, embedding client, indexer and reranker together behind the
entry points used by the agent runtime.

Features:
- Direct-add APIs for literal strings, files and external items
- Incremental directory synchronization with deleted-file cleanup
- Hybrid search with a lexical rerank pass
- Per-agent knowledge with shared records visible to every agent
"""

import logging
from typing import Iterable, List, Optional, Sequence

from ..config import Settings, get_settings
from ..types.knowledge import (
    DirectorySource,
    ExternalKnowledgeItem,
    FileIngestRequest,
    IngestOutcome,
    KnowledgeRecord,
    KnowledgeSource,
    KnowledgeStats,
    SyncReport,
)
from ..utils.logging import Timer, set_agent_context
from .cache import KnowledgeCache
from .chunker import TextChunker
from .embeddings import EmbeddingGenerator
from .errors import KnowledgeBaseError, KnowledgeStoreError
from .indexer import KnowledgeIndexer
from .preprocessor import get_query_terms, preprocess
from .reranker import Reranker
from .store import KnowledgeStore

logger = logging.getLogger(__name__)


class KnowledgeService:
    """
    Main service for an agent's knowledge base.

    Orchestrates ingestion, synchronization and retrieval for one agent.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: EmbeddingGenerator,
        indexer: KnowledgeIndexer,
        reranker: Optional[Reranker] = None,
        match_threshold: float = 0.6,
        match_count: int = 6,
    ):
        """
        Initialize the knowledge service.

        Args:
            store: Knowledge store (with its cache)
            embedder: Embedding client
            indexer: Indexer owning ingestion for the agent
            reranker: Lexical rerank pass
            match_threshold: Minimum score for search results
            match_count: Default number of results
        """
        self.store = store
        self.embedder = embedder
        self.indexer = indexer
        self.reranker = reranker or Reranker()
        self.match_threshold = match_threshold
        self.match_count = match_count
        self._initialized = False

    @property
    def agent_id(self) -> str:
        return self.indexer.agent_id

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        agent_id: Optional[str] = None,
        embedder: Optional[EmbeddingGenerator] = None,
    ) -> "KnowledgeService":
        """
        Create a KnowledgeService from application settings.

        Args:
            settings: Settings to use. If None, loads them from the environment.
            agent_id: Override the configured agent id
            embedder: Override the embedding client

        Returns:
            Configured KnowledgeService instance
        """
        settings = settings or get_settings()

        cache = None
        if settings.cache.kb_cache_enabled:
            cache = KnowledgeCache(ttl_seconds=settings.cache.kb_cache_ttl_seconds)

        store = KnowledgeStore(
            settings.store.database_path,
            cache=cache,
            search_config=settings.retrieval.to_search_config(),
        )
        embedder = embedder or EmbeddingGenerator.from_settings(settings)
        indexer = KnowledgeIndexer(
            store=store,
            embedder=embedder,
            agent_id=agent_id or settings.sync.kb_agent_id,
            chunker=TextChunker(settings.chunking.to_config()),
            knowledge_root=settings.sync.knowledge_root,
            supported_extensions=settings.sync.extensions,
            embedding_batch_size=settings.chunking.kb_embedding_batch_size,
            file_batch_size=settings.sync.kb_file_batch_size,
        )

        return cls(
            store=store,
            embedder=embedder,
            indexer=indexer,
            reranker=Reranker(settings.retrieval.to_rerank_config()),
            match_threshold=settings.retrieval.kb_match_threshold,
            match_count=settings.retrieval.kb_match_count,
        )

    async def initialize(self) -> None:
        """Initialize all components."""
        if self._initialized:
            return

        try:
            await self.store.initialize()
        except KnowledgeStoreError as e:
            raise KnowledgeBaseError(
                f"Failed to initialize knowledge service: {e}",
                operation="initialize",
            ) from e

        set_agent_context(agent_id=self.agent_id)
        self._initialized = True
        logger.info(f"Knowledge service initialized for agent {self.agent_id}")

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def get_knowledge(
        self,
        knowledge_id: Optional[str] = None,
        query: Optional[str] = None,
        conversation_context: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[KnowledgeRecord]:
        """
        Look up knowledge by id, or search it by query.

        An id that matches nothing falls back to the query search when a
        query is also given.

        A query is normalized and, when conversation context is given, the
        normalized context is prepended to the embedded search text. The store
        is asked for twice the requested results before reranking.

        Search failures are logged and yield an empty list.

        Args:
            knowledge_id: Record id for a direct lookup
            query: Search query
            conversation_context: Recent conversation used to expand the query
            limit: Maximum number of results

        Returns:
            Matching records, best first
        """
        await self._ensure_initialized()

        if knowledge_id is not None:
            records = await self.store.get(self.agent_id, knowledge_id=knowledge_id)
            if records or not query:
                return records
            logger.debug(f"No knowledge with id {knowledge_id}, searching by query instead")

        if not query:
            return []

        limit = limit or self.match_count
        processed_query = preprocess(query)
        if not processed_query:
            return []

        search_text = processed_query
        context = preprocess(conversation_context) if conversation_context else ""
        if context:
            search_text = f"{context} {processed_query}"

        try:
            with Timer("get_knowledge", logger):
                embedding = await self.embedder.generate_embedding(search_text)
                results = await self.store.search(
                    agent_id=self.agent_id,
                    embedding=embedding,
                    keyword_text=processed_query,
                    match_threshold=self.match_threshold,
                    match_count=limit * 2,
                )
                return self.reranker.rerank(
                    results,
                    get_query_terms(processed_query),
                    match_threshold=self.match_threshold,
                    limit=limit,
                    has_context=bool(context),
                )
        except Exception as e:
            logger.error(f"Knowledge search failed for agent {self.agent_id}: {e}", exc_info=True)
            return []

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def add_knowledge(self, source: KnowledgeSource) -> SyncReport:
        await self._ensure_initialized()
        return await self.indexer.ingest(source)

    async def add_string_knowledge(self, text: str, is_shared: bool = False) -> IngestOutcome:
        await self._ensure_initialized()
        return await self.indexer.add_string_knowledge(text, is_shared)

    async def add_file_knowledge(self, relative_path: str, is_shared: bool = False) -> IngestOutcome:
        await self._ensure_initialized()
        return await self.indexer.add_file_knowledge(relative_path, is_shared)

    async def add_external_knowledge(self, items: Iterable[ExternalKnowledgeItem]) -> SyncReport:
        await self._ensure_initialized()
        return await self.indexer.add_external_knowledge(items)

    async def process_file(self, request: FileIngestRequest) -> IngestOutcome:
        await self._ensure_initialized()
        return await self.indexer.process_file(request)

    async def cleanup_deleted(self) -> List[str]:
        await self._ensure_initialized()
        return await self.indexer.cleanup_deleted()

    def default_directories(self) -> List[DirectorySource]:
        """Every directory directly under the knowledge root, as private groups."""
        root = self.indexer.knowledge_root
        if root is None or not root.is_dir():
            return []
        return [
            DirectorySource(path=child.name)
            for child in sorted(root.iterdir())
            if child.is_dir()
        ]

    async def sync(self, directories: Optional[Sequence[DirectorySource]] = None) -> SyncReport:
        """Synchronize knowledge groups (all root subdirectories by default)."""
        await self._ensure_initialized()
        if directories is None:
            directories = self.default_directories()
        return await self.indexer.sync(directories)

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    async def remove_knowledge(self, knowledge_id: str) -> int:
        await self._ensure_initialized()
        return await self.store.remove(knowledge_id)

    async def clear_knowledge(
        self,
        agent_id: Optional[str] = None,
        include_shared: bool = False,
    ) -> int:
        await self._ensure_initialized()
        return await self.store.clear(agent_id or self.agent_id, include_shared)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def get_stats(self) -> KnowledgeStats:
        await self._ensure_initialized()
        counts = await self.store.count(self.agent_id)
        return KnowledgeStats(
            agent_id=self.agent_id,
            parents=counts["parents"],
            chunks=counts["chunks"],
            shared=counts["shared"],
            cache=self.store.cache.stats() if self.store.cache is not None else {},
        )

    async def close(self) -> None:
        """Close all connections."""
        await self.store.close()
        await self.embedder.close()
        self._initialized = False


# Global service instance
_knowledge_service: Optional[KnowledgeService] = None


def get_knowledge_service() -> KnowledgeService:
    """
    Get or create the global KnowledgeService instance.

    Returns:
        Configured KnowledgeService
    """
    global _knowledge_service
    if _knowledge_service is None:
        _knowledge_service = KnowledgeService.from_settings()
    return _knowledge_service
