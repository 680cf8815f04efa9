"""
Type definitions for the agent knowledge engine.

This module defines the data structures shared by the preprocessing, indexing,
storage and retrieval layers: persisted knowledge records, the tagged variants
describing where knowledge comes from, filesystem change events and the
tuning configuration for chunking, embeddings and hybrid search.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

# Source markers for knowledge that is not backed by a file on disk
LITERAL_SOURCE = "string"
EXTERNAL_SOURCE = "external-reference"
NON_FILESYSTEM_SOURCES = frozenset({LITERAL_SOURCE, EXTERNAL_SOURCE})

# Kind recorded for knowledge added directly rather than read from a file
DIRECT_KIND = "direct"

EmbeddingVector = List[float]


def now_ms() -> int:
    """Current wall-clock time in milliseconds."""
    return int(time.time() * 1000)


class KnowledgeScope(str, Enum):
    """Visibility of a knowledge record."""

    SHARED = "shared"
    PRIVATE = "private"

    @classmethod
    def from_flag(cls, is_shared: bool) -> "KnowledgeScope":
        return cls.SHARED if is_shared else cls.PRIVATE


class ChangeKind(str, Enum):
    """Kinds of filesystem change reported by a watcher."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


class IngestOutcome(str, Enum):
    """Result of running one source through the indexing state machine."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    EMPTY = "empty"


@dataclass
class KnowledgeMetadata:
    """Metadata stored alongside every knowledge record."""

    source: str
    kind: str
    is_main: bool = False
    is_chunk: bool = False
    original_id: Optional[str] = None
    chunk_index: Optional[int] = None
    is_shared: bool = False
    content_hash: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "kind": self.kind,
            "is_main": self.is_main,
            "is_chunk": self.is_chunk,
            "original_id": self.original_id,
            "chunk_index": self.chunk_index,
            "is_shared": self.is_shared,
            "content_hash": self.content_hash,
            "extra": self.extra,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KnowledgeMetadata":
        return cls(
            source=data.get("source", ""),
            kind=data.get("kind", DIRECT_KIND),
            is_main=bool(data.get("is_main", False)),
            is_chunk=bool(data.get("is_chunk", False)),
            original_id=data.get("original_id"),
            chunk_index=data.get("chunk_index"),
            is_shared=bool(data.get("is_shared", False)),
            content_hash=data.get("content_hash"),
            extra=dict(data.get("extra") or {}),
        )


@dataclass
class KnowledgeRecord:
    """
    A persisted unit of knowledge.

    Parent records hold a whole source document; chunk records hold one
    window of their parent's normalized text and point back to it through
    ``metadata.original_id``. ``agent_id`` is None for shared records.
    """

    id: str
    agent_id: Optional[str]
    text: str
    metadata: KnowledgeMetadata
    embedding: Optional[EmbeddingVector] = None
    created_at: int = field(default_factory=now_ms)
    similarity: Optional[float] = None

    @property
    def is_shared(self) -> bool:
        return self.metadata.is_shared

    @property
    def is_chunk(self) -> bool:
        return self.metadata.is_chunk

    def to_dict(self, include_embedding: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "agent_id": self.agent_id,
            "text": self.text,
            "metadata": self.metadata.to_dict(),
            "created_at": self.created_at,
            "similarity": self.similarity,
        }
        if include_embedding:
            data["embedding"] = self.embedding
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KnowledgeRecord":
        return cls(
            id=data["id"],
            agent_id=data.get("agent_id"),
            text=data.get("text", ""),
            metadata=KnowledgeMetadata.from_dict(data.get("metadata") or {}),
            embedding=data.get("embedding"),
            created_at=data.get("created_at") or now_ms(),
            similarity=data.get("similarity"),
        )


# =============================================================================
# Knowledge sources
# =============================================================================


@dataclass
class ExternalKnowledgeItem:
    """Knowledge supplied by an outside system (for example a CMS)."""

    text: str
    id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    embedding: Optional[EmbeddingVector] = None
    is_shared: bool = False


@dataclass
class LiteralSource:
    """Inline text handed to the engine directly."""

    text: str
    is_shared: bool = False


@dataclass
class FileSource:
    """A single file, relative to the knowledge root."""

    path: str
    is_shared: bool = False


@dataclass
class DirectorySource:
    """A knowledge group directory, relative to the knowledge root."""

    path: str
    is_shared: bool = False


@dataclass
class ExternalSource:
    """A batch of externally supplied items."""

    items: List[ExternalKnowledgeItem] = field(default_factory=list)


KnowledgeSource = Union[LiteralSource, FileSource, DirectorySource, ExternalSource]


@dataclass
class FileIngestRequest:
    """Direct ingestion request for one file whose content is already read."""

    path: str
    content: str
    kind: str = "md"
    is_shared: bool = False


@dataclass
class ChangeEvent:
    """A filesystem change waiting to be applied to the index."""

    path: str
    kind: ChangeKind


@dataclass
class SyncReport:
    """Aggregate result of a synchronization pass."""

    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)

    @property
    def processed(self) -> int:
        return len(self.created) + len(self.updated) + len(self.unchanged)

    def record(self, path: str, outcome: IngestOutcome) -> None:
        if outcome == IngestOutcome.CREATED:
            self.created.append(path)
        elif outcome == IngestOutcome.UPDATED:
            self.updated.append(path)
        elif outcome == IngestOutcome.UNCHANGED:
            self.unchanged.append(path)

    def merge(self, other: "SyncReport") -> "SyncReport":
        self.created.extend(other.created)
        self.updated.extend(other.updated)
        self.unchanged.extend(other.unchanged)
        self.removed.extend(other.removed)
        self.failed.update(other.failed)
        return self

    def summary(self) -> Dict[str, int]:
        return {
            "created": len(self.created),
            "updated": len(self.updated),
            "unchanged": len(self.unchanged),
            "removed": len(self.removed),
            "failed": len(self.failed),
        }


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class ChunkingConfig:
    """Configuration for splitting normalized text into windows."""

    chunk_size: int = 512  # Characters per chunk
    chunk_overlap: int = 20  # Characters shared by neighbouring chunks
    separators: List[str] = field(
        default_factory=lambda: ["\n\n", "\n", " ", ""]
    )


@dataclass
class EmbeddingConfig:
    """Configuration for the embedding client."""

    model: str = "text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 100  # Texts per provider request
    max_retries: int = 3
    retry_delay: float = 1.0  # Seconds, doubled on each retry


@dataclass
class HybridSearchConfig:
    """Scoring constants for the store's hybrid vector and keyword query."""

    rescue_threshold: float = 0.3
    keyword_match_boost: float = 3.0
    chunk_boost: float = 1.5
    main_boost: float = 1.2


@dataclass
class RerankConfig:
    """Multipliers applied by the lexical second pass."""

    term_boost: float = 2.0
    proximity_boost: float = 1.5
    proximity_window: int = 5
    no_match_penalty: float = 0.3


@dataclass
class KnowledgeStats:
    """Counts describing the contents of an agent's knowledge base."""

    agent_id: str
    parents: int = 0
    chunks: int = 0
    shared: int = 0
    cache: Dict[str, Any] = field(default_factory=dict)
