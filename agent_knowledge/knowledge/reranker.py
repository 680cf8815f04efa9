"""
Lexical second pass over hybrid search results.

Results that contain the query terms, especially close together, are boosted;
results that contain none of them are penalized unless the query was
expanded with conversation context.
"""

import logging
from typing import List, Optional, Sequence

from ..types.knowledge import KnowledgeRecord, RerankConfig

logger = logging.getLogger(__name__)


def has_proximity_match(text: str, terms: Sequence[str], window: int = 5) -> bool:
    """
    Check whether two matched-term occurrences lie within ``window`` words.

    Each term contributes one position per word containing it, so a single
    word holding two terms is a match at distance zero.
    """
    if not terms:
        return False

    words = text.lower().split()
    positions = sorted(
        index
        for term in terms
        for index, word in enumerate(words)
        if term in word
    )
    return any(
        later - earlier <= window
        for earlier, later in zip(positions, positions[1:])
    )


class Reranker:
    """Adjusts and filters search results by query term overlap."""

    def __init__(self, config: Optional[RerankConfig] = None):
        self.config = config or RerankConfig()

    def score(
        self,
        record: KnowledgeRecord,
        terms: Sequence[str],
        has_context: bool = False,
    ) -> float:
        score = record.similarity or 0.0
        text = record.text.lower()
        matching = [term for term in terms if term in text]

        if matching:
            score *= 1 + (len(matching) / len(terms)) * self.config.term_boost
            if has_proximity_match(text, matching, self.config.proximity_window):
                score *= self.config.proximity_boost
        elif not has_context:
            score *= self.config.no_match_penalty

        return max(score, 0.0)

    def rerank(
        self,
        results: List[KnowledgeRecord],
        terms: Sequence[str],
        match_threshold: float,
        limit: int,
        has_context: bool = False,
    ) -> List[KnowledgeRecord]:
        """
        Rescore, re-sort, filter and truncate search results.

        Args:
            results: Store results carrying their combined score in ``similarity``
            terms: Stop-word filtered query terms
            match_threshold: Minimum adjusted score to keep a result
            limit: Maximum number of results returned
            has_context: Whether the query was expanded with conversation context

        Returns:
            Results with adjusted ``similarity``, best first
        """
        for record in results:
            record.similarity = self.score(record, terms, has_context)

        ranked = sorted(results, key=lambda record: record.similarity, reverse=True)
        kept = [record for record in ranked if record.similarity >= match_threshold]

        logger.debug(
            f"Reranked {len(results)} results with {len(terms)} terms, "
            f"kept {min(len(kept), limit)}"
        )
        return kept[:limit]
