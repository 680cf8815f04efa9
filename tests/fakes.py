"""
Test doubles shared by the test modules.
"""

import hashlib
from typing import Dict, List, Optional, Set

from agent_knowledge.knowledge.embeddings import (
    BaseEmbeddingProvider,
    EmbeddingError,
    EmbeddingGenerator,
)
from agent_knowledge.types.knowledge import EmbeddingConfig, EmbeddingVector

DIMENSIONS = 4


def hashed_vector(text: str, dimensions: int = DIMENSIONS) -> EmbeddingVector:
    """Stable pseudo-embedding derived from the text's hash."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [byte / 255.0 for byte in digest[:dimensions]]


class FakeEmbeddingProvider(BaseEmbeddingProvider):
    """Deterministic provider that records every text it embeds."""

    name = "fake"

    def __init__(self, vectors: Optional[Dict[str, EmbeddingVector]] = None):
        super().__init__(EmbeddingConfig(model="fake", dimensions=DIMENSIONS))
        self.vectors = dict(vectors or {})
        self.calls: List[str] = []
        self.fail_on: Set[str] = set()

    async def generate_embeddings(self, texts: List[str]) -> List[EmbeddingVector]:
        results = []
        for text in texts:
            self.calls.append(text)
            if any(marker in text for marker in self.fail_on):
                raise EmbeddingError(f"Embedding refused for {text[:20]!r}", provider=self.name)
            results.append(self.vectors.get(text) or hashed_vector(text))
        return results


def make_embedder(provider: Optional[FakeEmbeddingProvider] = None) -> EmbeddingGenerator:
    return EmbeddingGenerator(
        config=EmbeddingConfig(
            model="fake",
            dimensions=DIMENSIONS,
            max_retries=1,
            retry_delay=0,
        ),
        provider=provider or FakeEmbeddingProvider(),
    )


def long_document(paragraphs: int = 6, marker: str = "workflow") -> str:
    """Markdown text long enough to be split into several chunks."""
    blocks = []
    for i in range(paragraphs):
        sentence = f"Paragraph {i} explains how the agent runs its {marker} steps in order. "
        blocks.append(sentence * 3)
    return "\n\n".join(blocks)
