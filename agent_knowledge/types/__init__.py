"""
Type definitions for the agent knowledge engine.
"""

from .knowledge import (
    DIRECT_KIND,
    EXTERNAL_SOURCE,
    LITERAL_SOURCE,
    NON_FILESYSTEM_SOURCES,
    ChangeEvent,
    ChangeKind,
    ChunkingConfig,
    DirectorySource,
    EmbeddingConfig,
    EmbeddingVector,
    ExternalKnowledgeItem,
    ExternalSource,
    FileIngestRequest,
    FileSource,
    HybridSearchConfig,
    IngestOutcome,
    KnowledgeMetadata,
    KnowledgeRecord,
    KnowledgeScope,
    KnowledgeSource,
    KnowledgeStats,
    LiteralSource,
    RerankConfig,
    SyncReport,
    now_ms,
)

__all__ = [
    "DIRECT_KIND",
    "EXTERNAL_SOURCE",
    "LITERAL_SOURCE",
    "NON_FILESYSTEM_SOURCES",
    "ChangeEvent",
    "ChangeKind",
    "ChunkingConfig",
    "DirectorySource",
    "EmbeddingConfig",
    "EmbeddingVector",
    "ExternalKnowledgeItem",
    "ExternalSource",
    "FileIngestRequest",
    "FileSource",
    "HybridSearchConfig",
    "IngestOutcome",
    "KnowledgeMetadata",
    "KnowledgeRecord",
    "KnowledgeScope",
    "KnowledgeSource",
    "KnowledgeStats",
    "LiteralSource",
    "RerankConfig",
    "SyncReport",
    "now_ms",
]
