"""
Chunking of normalized text into overlapping windows.

Sizes are measured in characters. Splitting prefers paragraph, then line,
then word boundaries, falling back to raw characters only for unbroken runs.
"""

import logging
from typing import List, Optional

from langchain_text_splitters import RecursiveCharacterTextSplitter

from ..types.knowledge import ChunkingConfig

logger = logging.getLogger(__name__)


class TextChunker:
    """
    Deterministic splitter for fragment-level retrieval.

    Text that fits in a single window yields no chunks: the parent record
    already covers it in full.
    """

    def __init__(self, config: Optional[ChunkingConfig] = None):
        self.config = config or ChunkingConfig()
        if self.config.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= self.config.chunk_overlap < self.config.chunk_size:
            raise ValueError("chunk_overlap must be in [0, chunk_size)")

        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=self.config.chunk_size,
            chunk_overlap=self.config.chunk_overlap,
            length_function=len,
            separators=list(self.config.separators),
        )

    def split(self, text: str) -> List[str]:
        if not text or len(text) <= self.config.chunk_size:
            return []

        chunks = [chunk for chunk in self._splitter.split_text(text) if chunk.strip()]
        logger.debug(
            f"Split {len(text)} characters into {len(chunks)} chunks "
            f"(size={self.config.chunk_size}, overlap={self.config.chunk_overlap})"
        )
        return chunks


def split_chunks(text: str, chunk_size: int = 512, chunk_overlap: int = 20) -> List[str]:
    """Split text with an ad hoc configuration."""
    return TextChunker(
        ChunkingConfig(chunk_size=chunk_size, chunk_overlap=chunk_overlap)
    ).split(text)
