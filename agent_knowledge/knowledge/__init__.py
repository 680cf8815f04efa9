"""
Knowledge indexing and retrieval engine for AI agents.

This package ingests files, inline strings and externally supplied items into
a per-agent knowledge base and serves hybrid semantic and lexical retrieval.

Key Components:
- preprocessor: Normalize markdown and chat text for embedding
- chunker: Split normalized text into overlapping windows
- embeddings: Generate vector embeddings with OpenAI
- store: Persist records in SQLite and run the hybrid search query
- cache: Cache search results per agent
- reranker: Boost results by query term overlap and proximity
- indexer: Incremental, scope-aware synchronization of knowledge sources
- watcher: Debounced filesystem watching that feeds the indexer
- knowledge_service: Orchestrate the full pipeline

Usage:
    from agent_knowledge.knowledge import KnowledgeService

    service = KnowledgeService.from_settings(agent_id="agent-1")
    await service.sync()
    results = await service.get_knowledge(query="how do workflows run?")
"""

from .cache import KnowledgeCache
from .chunker import TextChunker, split_chunks
from .embeddings import BaseEmbeddingProvider, EmbeddingError, EmbeddingGenerator, OpenAIEmbeddingProvider
from .errors import (
    DuplicateKnowledgeError,
    KnowledgeBaseError,
    KnowledgeConfigError,
    KnowledgeStoreError,
    UnsupportedFileTypeError,
)
from .indexer import KnowledgeIndexer
from .knowledge_service import KnowledgeService, get_knowledge_service
from .preprocessor import get_query_terms, preprocess
from .reranker import Reranker
from .store import KnowledgeStore
from .watcher import KnowledgeChangeHandler, KnowledgeWatcher

__all__ = [
    # Main service
    "KnowledgeService",
    "get_knowledge_service",
    # Errors
    "DuplicateKnowledgeError",
    "KnowledgeBaseError",
    "KnowledgeConfigError",
    "KnowledgeStoreError",
    "UnsupportedFileTypeError",
    # Text processing
    "TextChunker",
    "get_query_terms",
    "preprocess",
    "split_chunks",
    # Embeddings
    "BaseEmbeddingProvider",
    "EmbeddingError",
    "EmbeddingGenerator",
    "OpenAIEmbeddingProvider",
    # Storage and retrieval
    "KnowledgeCache",
    "KnowledgeStore",
    "Reranker",
    # Synchronization
    "KnowledgeIndexer",
    "KnowledgeChangeHandler",
    "KnowledgeWatcher",
]
