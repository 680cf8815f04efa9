"""
Tests for the text chunker.
"""

import unittest

from agent_knowledge.knowledge.chunker import TextChunker, split_chunks
from agent_knowledge.types.knowledge import ChunkingConfig

from fakes import long_document


class TestTextChunker(unittest.TestCase):
    """Tests for TextChunker."""

    def setUp(self):
        self.chunker = TextChunker(ChunkingConfig(chunk_size=200, chunk_overlap=20))

    def test_short_text_has_no_chunks(self):
        """Text that fits one window yields no chunks."""
        self.assertEqual(self.chunker.split("a short note"), [])
        self.assertEqual(self.chunker.split("x" * 200), [])

    def test_empty_text_has_no_chunks(self):
        self.assertEqual(self.chunker.split(""), [])

    def test_long_text_is_split(self):
        """Long text splits into several windows no larger than chunk_size."""
        text = long_document().lower()
        chunks = self.chunker.split(text)

        self.assertGreater(len(chunks), 1)
        for chunk in chunks:
            self.assertLessEqual(len(chunk), 200)
            self.assertTrue(chunk.strip())

    def test_split_is_deterministic(self):
        """Equal input always gives an equal chunk list."""
        text = long_document().lower()
        self.assertEqual(self.chunker.split(text), self.chunker.split(text))

    def test_chunks_cover_the_text(self):
        """Every paragraph of the source shows up in some chunk."""
        text = long_document(paragraphs=4).lower()
        joined = " ".join(self.chunker.split(text))
        for i in range(4):
            self.assertIn(f"paragraph {i}", joined)

    def test_unbroken_text_falls_back_to_characters(self):
        """A run with no separators is still cut at chunk_size."""
        chunks = self.chunker.split("y" * 450)
        self.assertGreater(len(chunks), 1)
        self.assertTrue(all(len(chunk) <= 200 for chunk in chunks))

    def test_invalid_overlap_raises(self):
        """Overlap must be smaller than the chunk size."""
        with self.assertRaises(ValueError):
            TextChunker(ChunkingConfig(chunk_size=100, chunk_overlap=100))
        with self.assertRaises(ValueError):
            TextChunker(ChunkingConfig(chunk_size=100, chunk_overlap=-1))

    def test_invalid_size_raises(self):
        with self.assertRaises(ValueError):
            TextChunker(ChunkingConfig(chunk_size=0, chunk_overlap=0))

    def test_split_chunks_defaults(self):
        """The helper uses the default 512/20 windows."""
        text = long_document(paragraphs=10).lower()
        chunks = split_chunks(text)
        self.assertGreater(len(chunks), 1)
        self.assertTrue(all(len(chunk) <= 512 for chunk in chunks))


if __name__ == "__main__":
    unittest.main()
