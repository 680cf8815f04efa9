"""
Incremental indexing of knowledge sources.

Every source runs through the same state machine:
- unseen: preprocess, embed, store the parent and its chunks
- indexed, byte-identical content: skipped with no embedding call or write
- indexed, changed content: parent and chunks replaced in one transaction
- removed: a filesystem source whose file no longer exists is deleted by the
  cleanup sweep, together with its chunks

Directory sources are expanded into their supported files first. Failures of
individual files during a directory pass are collected in a SyncReport rather
than aborting the pass.
"""

import asyncio
import logging
import uuid
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Optional, Sequence, Union

from ..types.knowledge import (
    DIRECT_KIND,
    EXTERNAL_SOURCE,
    LITERAL_SOURCE,
    NON_FILESYSTEM_SOURCES,
    DirectorySource,
    EmbeddingVector,
    ExternalKnowledgeItem,
    ExternalSource,
    FileIngestRequest,
    FileSource,
    IngestOutcome,
    KnowledgeMetadata,
    KnowledgeRecord,
    KnowledgeScope,
    KnowledgeSource,
    LiteralSource,
    SyncReport,
)
from ..utils.ids import chunk_id, content_hash, string_to_uuid
from ..utils.logging import Timer, set_agent_context, sync_id_var, timed
from .chunker import TextChunker
from .embeddings import EmbeddingError, EmbeddingGenerator
from .errors import KnowledgeConfigError, UnsupportedFileTypeError
from .preprocessor import preprocess
from .store import KnowledgeStore

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = (".md", ".txt")

# Literal and external identities are derived from this many leading characters
IDENTITY_PREFIX_LENGTH = 50


def sanitize_relative_path(path: Union[str, Path]) -> str:
    """Drop "." and ".." segments so a relative path stays under its root."""
    parts = [part for part in PurePosixPath(Path(path).as_posix()).parts if part not in (".", "..")]
    return PurePosixPath(*parts).as_posix() if parts else ""


class KnowledgeIndexer:
    """
    Creates, updates and removes knowledge records for one agent.

    File sources are identified by their path relative to the knowledge root,
    qualified by scope, so moving the root does not change identities.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: EmbeddingGenerator,
        agent_id: str,
        chunker: Optional[TextChunker] = None,
        knowledge_root: Optional[Union[str, Path]] = None,
        supported_extensions: Sequence[str] = DEFAULT_EXTENSIONS,
        embedding_batch_size: int = 10,
        file_batch_size: int = 5,
    ):
        """
        Initialize the indexer.

        Args:
            store: Store receiving the records
            embedder: Embedding client for parents and chunks
            agent_id: Owner of private records
            chunker: Chunker for normalized text
            knowledge_root: Directory that relative file paths resolve against
            supported_extensions: File extensions that are indexed
            embedding_batch_size: Chunks embedded concurrently per batch
            file_batch_size: Files processed concurrently in a directory pass
        """
        self.store = store
        self.embedder = embedder
        self.agent_id = agent_id
        self.chunker = chunker or TextChunker()
        self.knowledge_root = Path(knowledge_root).resolve() if knowledge_root is not None else None
        self.supported_extensions = tuple(ext.lower() for ext in supported_extensions)
        self.embedding_batch_size = max(1, embedding_batch_size)
        self.file_batch_size = max(1, file_batch_size)

    # ------------------------------------------------------------------
    # Identity and paths
    # ------------------------------------------------------------------

    def generate_scoped_id(self, path: str, is_shared: bool) -> str:
        """
        Identity of a file source.

        Shared and private scopes never collide for the same path, and private
        identities are additionally qualified by the owning agent.
        """
        if is_shared:
            scope = KnowledgeScope.SHARED.value
        else:
            scope = f"{KnowledgeScope.PRIVATE.value}-{self.agent_id}"
        return string_to_uuid(f"{scope}-{path}")

    def _literal_id(self, text: str, is_shared: bool, marker: str = "") -> str:
        owner = KnowledgeScope.SHARED.value if is_shared else self.agent_id
        return string_to_uuid(f"{owner}-{marker}{text[:IDENTITY_PREFIX_LENGTH]}")

    def require_root(self) -> Path:
        if self.knowledge_root is None:
            raise KnowledgeConfigError(
                "Knowledge root is not configured",
                operation="sync",
            )
        if not self.knowledge_root.is_dir():
            raise KnowledgeConfigError(
                f"Knowledge root {self.knowledge_root} does not exist or is not a directory",
                operation="sync",
            )
        return self.knowledge_root

    def relative_source(self, path: Union[str, Path]) -> str:
        """Normalize a path into the source string stored in metadata."""
        path = Path(path)
        if path.is_absolute():
            if self.knowledge_root is not None:
                try:
                    return path.resolve().relative_to(self.knowledge_root).as_posix()
                except ValueError:
                    pass
            return path.as_posix()
        return sanitize_relative_path(path)

    def resolve_source(self, source: str) -> Path:
        path = Path(source)
        if path.is_absolute():
            return path
        return (self.knowledge_root or Path(".")) / path

    def is_supported(self, path: Union[str, Path]) -> bool:
        return Path(path).suffix.lower() in self.supported_extensions

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _embed_chunks(self, chunks: List[str]) -> List[EmbeddingVector]:
        """Embed chunks concurrently within a batch, batches one after another."""
        embeddings: List[EmbeddingVector] = []
        for i in range(0, len(chunks), self.embedding_batch_size):
            batch = chunks[i : i + self.embedding_batch_size]
            embeddings.extend(
                await asyncio.gather(*(self.embedder.generate_embedding(chunk) for chunk in batch))
            )
        return embeddings

    async def _index(
        self,
        knowledge_id: str,
        content: str,
        source: str,
        kind: str,
        is_shared: bool,
        extra: Optional[dict] = None,
        embedding: Optional[EmbeddingVector] = None,
    ) -> IngestOutcome:
        existing = await self.store.get_by_id(knowledge_id)
        if existing is not None and existing.text == content:
            logger.debug(f"Knowledge unchanged, skipping: {source}")
            return IngestOutcome.UNCHANGED

        processed = preprocess(content)
        if not processed:
            if existing is not None:
                await self.store.remove(knowledge_id)
                logger.info(f"Removed knowledge with empty content: {source}")
            return IngestOutcome.EMPTY

        parent_embedding = embedding
        if parent_embedding is None:
            parent_embedding = await self.embedder.generate_embedding(processed)
        elif len(parent_embedding) != self.embedder.dimensions:
            raise EmbeddingError(
                f"Supplied embedding for {source} has {len(parent_embedding)} dimensions, "
                f"expected {self.embedder.dimensions}"
            )
        chunks = self.chunker.split(processed)
        chunk_embeddings = await self._embed_chunks(chunks)

        owner = None if is_shared else self.agent_id
        records = [
            KnowledgeRecord(
                id=knowledge_id,
                agent_id=owner,
                text=content,
                metadata=KnowledgeMetadata(
                    source=source,
                    kind=kind,
                    is_main=True,
                    is_shared=is_shared,
                    content_hash=content_hash(content),
                    extra=dict(extra or {}),
                ),
                embedding=parent_embedding,
            )
        ]
        for index, (chunk, chunk_embedding) in enumerate(zip(chunks, chunk_embeddings)):
            records.append(
                KnowledgeRecord(
                    id=chunk_id(knowledge_id, index),
                    agent_id=owner,
                    text=chunk,
                    metadata=KnowledgeMetadata(
                        source=source,
                        kind=kind,
                        is_chunk=True,
                        original_id=knowledge_id,
                        chunk_index=index,
                        is_shared=is_shared,
                    ),
                    embedding=chunk_embedding,
                )
            )

        await self.store.replace(knowledge_id, records)

        outcome = IngestOutcome.UPDATED if existing is not None else IngestOutcome.CREATED
        logger.info(f"Knowledge {outcome.value}: {source} ({len(chunks)} chunks)")
        return outcome

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def process_file(self, request: FileIngestRequest) -> IngestOutcome:
        """Index a file whose content has already been read."""
        source = self.relative_source(request.path)
        knowledge_id = self.generate_scoped_id(source, request.is_shared)
        with Timer(f"process_file {source}", logger):
            return await self._index(
                knowledge_id,
                request.content,
                source=source,
                kind=request.kind,
                is_shared=request.is_shared,
            )

    async def add_string_knowledge(self, text: str, is_shared: bool = False) -> IngestOutcome:
        return await self._index(
            self._literal_id(text, is_shared),
            text,
            source=LITERAL_SOURCE,
            kind=DIRECT_KIND,
            is_shared=is_shared,
        )

    async def add_file_knowledge(self, relative_path: str, is_shared: bool = False) -> IngestOutcome:
        """
        Read and index one file under the knowledge root.

        Raises:
            UnsupportedFileTypeError: If the extension is not supported
            OSError: If the file cannot be read
        """
        source = self.relative_source(relative_path)
        if not self.is_supported(source):
            raise UnsupportedFileTypeError(
                f"Unsupported knowledge file type: {source}",
                operation="add_file_knowledge",
            )

        path = self.resolve_source(source)
        content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        return await self.process_file(
            FileIngestRequest(
                path=source,
                content=content,
                kind=Path(source).suffix.lstrip(".").lower(),
                is_shared=is_shared,
            )
        )

    async def add_directory_knowledge(self, directory: DirectorySource) -> SyncReport:
        """Index every supported file below a knowledge group directory."""
        root = self.require_root()
        relative = sanitize_relative_path(directory.path)
        path = root / relative if relative else root
        report = SyncReport()

        if not path.is_dir():
            logger.error(f"Knowledge directory not found: {path}")
            report.failed[relative or "."] = "directory not found"
            return report

        files = sorted(
            candidate
            for candidate in path.rglob("*")
            if candidate.is_file() and self.is_supported(candidate)
        )
        logger.info(f"Indexing {len(files)} files from {path} (shared={directory.is_shared})")

        for i in range(0, len(files), self.file_batch_size):
            batch = [self.relative_source(candidate) for candidate in files[i : i + self.file_batch_size]]
            outcomes = await asyncio.gather(
                *(self.add_file_knowledge(source, directory.is_shared) for source in batch),
                return_exceptions=True,
            )
            for source, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    logger.error(f"Failed to index {source}: {outcome}", exc_info=outcome)
                    report.failed[source] = str(outcome)
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    report.record(source, outcome)

        return report

    async def add_external_knowledge(self, items: Iterable[ExternalKnowledgeItem]) -> SyncReport:
        """
        Index externally supplied items.

        Items without an embedding are embedded here. Each item's failure is
        recorded in the report without affecting the others.
        """
        report = SyncReport()
        for item in items:
            knowledge_id = item.id or self._literal_id(item.text, item.is_shared, marker="external-")
            try:
                outcome = await self._index(
                    knowledge_id,
                    item.text,
                    source=EXTERNAL_SOURCE,
                    kind=DIRECT_KIND,
                    is_shared=item.is_shared,
                    extra=item.metadata,
                    embedding=item.embedding,
                )
            except Exception as e:
                logger.error(f"Failed to index external item {knowledge_id}: {e}", exc_info=True)
                report.failed[knowledge_id] = str(e)
                continue
            report.record(knowledge_id, outcome)
        return report

    async def ingest(self, source: KnowledgeSource) -> SyncReport:
        """Dispatch a tagged knowledge source to its entry point."""
        if isinstance(source, LiteralSource):
            report = SyncReport()
            report.record(LITERAL_SOURCE, await self.add_string_knowledge(source.text, source.is_shared))
            return report
        if isinstance(source, FileSource):
            report = SyncReport()
            outcome = await self.add_file_knowledge(source.path, source.is_shared)
            report.record(self.relative_source(source.path), outcome)
            return report
        if isinstance(source, DirectorySource):
            return await self.add_directory_knowledge(source)
        if isinstance(source, ExternalSource):
            return await self.add_external_knowledge(source.items)
        raise TypeError(f"Unknown knowledge source: {type(source).__name__}")

    @timed("cleanup_deleted", logger=logger)
    async def cleanup_deleted(self) -> List[str]:
        """
        Remove parents whose backing file no longer exists.

        Literal and external knowledge is never touched. Returns the sources
        that were removed.
        """
        removed: List[str] = []
        for record in await self.store.list_parents(self.agent_id):
            source = record.metadata.source
            if not source or source in NON_FILESYSTEM_SOURCES:
                continue
            try:
                if self.resolve_source(source).exists():
                    continue
                await self.store.remove(record.id)
            except Exception as e:
                logger.error(f"Failed to clean up knowledge {record.id} ({source}): {e}")
                continue
            logger.info(f"Removed knowledge for deleted file: {source}")
            removed.append(source)
        return removed

    async def sync(self, directories: Sequence[DirectorySource]) -> SyncReport:
        """
        Synchronize knowledge directories with the store.

        Indexes every group and then sweeps records whose files disappeared.

        Raises:
            KnowledgeConfigError: If the knowledge root is unusable
        """
        self.require_root()
        set_agent_context(agent_id=self.agent_id, sync_id=uuid.uuid4().hex[:12])
        report = SyncReport()
        try:
            for directory in directories:
                report.merge(await self.add_directory_knowledge(directory))
            report.removed.extend(await self.cleanup_deleted())
        finally:
            sync_id_var.set(None)

        if report.has_failures:
            logger.warning(
                f"Sync pass finished with {len(report.failed)} failures",
                extra={"failed_paths": sorted(report.failed)},
            )
        logger.info("Sync pass complete", extra={"sync_summary": report.summary()})
        return report
