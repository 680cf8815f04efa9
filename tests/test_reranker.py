"""
Tests for lexical reranking.
"""

import unittest

from agent_knowledge.knowledge.reranker import Reranker, has_proximity_match
from agent_knowledge.types.knowledge import KnowledgeMetadata, KnowledgeRecord, RerankConfig


def make_result(text: str, similarity: float, record_id: str = "r1") -> KnowledgeRecord:
    return KnowledgeRecord(
        id=record_id,
        agent_id="agent-a",
        text=text,
        metadata=KnowledgeMetadata(),
        similarity=similarity,
    )


class TestProximity(unittest.TestCase):
    """Tests for has_proximity_match()."""

    def test_terms_close_together(self):
        self.assertTrue(has_proximity_match("agent workflow runs", ["agent", "workflow"]))

    def test_terms_far_apart(self):
        text = "agent " + "filler " * 10 + "workflow"
        self.assertFalse(has_proximity_match(text, ["agent", "workflow"]))

    def test_window_is_inclusive(self):
        """Occurrences exactly window words apart still match."""
        text = "agent one two three four workflow"
        self.assertTrue(has_proximity_match(text, ["agent", "workflow"], window=5))
        self.assertFalse(has_proximity_match(text, ["agent", "workflow"], window=4))

    def test_two_terms_in_one_word(self):
        """A word containing both terms is a match at distance zero."""
        self.assertTrue(has_proximity_match("the workflows ran", ["work", "flow"]))

    def test_single_term_once(self):
        self.assertFalse(has_proximity_match("the workflows ran", ["work"]))

    def test_no_terms(self):
        self.assertFalse(has_proximity_match("agent workflow", []))


class TestReranker(unittest.TestCase):
    """Tests for Reranker scoring and filtering."""

    def setUp(self):
        self.reranker = Reranker(RerankConfig())

    def test_full_match_with_proximity(self):
        """All terms adjacent: 0.5 * (1 + 1 * 2.0) * 1.5 = 2.25."""
        record = make_result("the agent workflow", 0.5)
        score = self.reranker.score(record, ["agent", "workflow"])
        self.assertAlmostEqual(score, 2.25)

    def test_partial_match(self):
        """Half the terms: 0.5 * (1 + 0.5 * 2.0) = 1.0."""
        record = make_result("the agent sleeps", 0.5)
        score = self.reranker.score(record, ["agent", "workflow"])
        self.assertAlmostEqual(score, 1.0)

    def test_no_match_is_penalized(self):
        """No terms and no context: 0.5 * 0.3 = 0.15."""
        record = make_result("unrelated text", 0.5)
        score = self.reranker.score(record, ["agent", "workflow"])
        self.assertAlmostEqual(score, 0.15)

    def test_no_match_with_context_keeps_score(self):
        record = make_result("unrelated text", 0.5)
        score = self.reranker.score(record, ["agent"], has_context=True)
        self.assertAlmostEqual(score, 0.5)

    def test_score_is_never_negative(self):
        reranker = Reranker(RerankConfig(no_match_penalty=-1.0))
        record = make_result("unrelated", 0.5)
        self.assertEqual(reranker.score(record, ["agent"]), 0.0)

    def test_rerank_sorts_filters_and_limits(self):
        results = [
            make_result("nothing relevant here", 0.9, "a"),
            make_result("the agent workflow", 0.5, "b"),
            make_result("an agent alone", 0.6, "c"),
            make_result("agent workflow again", 0.4, "d"),
        ]

        ranked = self.reranker.rerank(
            results, ["agent", "workflow"], match_threshold=0.6, limit=2
        )

        self.assertEqual([record.id for record in ranked], ["b", "d"])
        self.assertAlmostEqual(ranked[0].similarity, 2.25)
        self.assertAlmostEqual(ranked[1].similarity, 1.8)

    def test_rerank_drops_below_threshold(self):
        results = [make_result("nothing relevant", 0.9)]
        self.assertEqual(self.reranker.rerank(results, ["agent"], 0.6, 5), [])

    def test_rerank_empty_results(self):
        self.assertEqual(self.reranker.rerank([], ["agent"], 0.6, 5), [])


if __name__ == "__main__":
    unittest.main()
