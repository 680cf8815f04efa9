"""
End-to-end sync scenarios over a temporary knowledge root.
"""

import tempfile
import unittest
from pathlib import Path

from agent_knowledge.knowledge.indexer import KnowledgeIndexer
from agent_knowledge.knowledge.store import KnowledgeStore
from agent_knowledge.types.knowledge import DirectorySource

from fakes import FakeEmbeddingProvider, long_document, make_embedder


class TestSyncScenarios(unittest.IsolatedAsyncioTestCase):
    """A knowledge root with one private docs group."""

    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        (self.root / "docs").mkdir()

        self.store = KnowledgeStore()
        await self.store.initialize()
        self.provider = FakeEmbeddingProvider()
        self.indexer = KnowledgeIndexer(
            self.store,
            make_embedder(self.provider),
            agent_id="agent-a",
            knowledge_root=self.root,
        )
        self.docs = [DirectorySource(path="docs")]

    async def asyncTearDown(self):
        await self.store.close()
        self._tmp.cleanup()

    async def test_intro_document_lifecycle(self):
        intro = self.root / "docs" / "intro.md"

        intro.write_text("agentVooc helps automate workflows", encoding="utf-8")
        await self.indexer.sync(self.docs)
        self.assertEqual(await self.store.count("agent-a"), {"parents": 1, "chunks": 0, "shared": 0})
        parent = (await self.store.list_parents("agent-a"))[0]

        intro.write_text("agentVooc helps automate workflows\n\n" + long_document(12), encoding="utf-8")
        await self.indexer.sync(self.docs)
        edited = await self.store.count("agent-a")
        chunks = await self.store.list_chunks(parent.id)
        self.assertEqual(edited["parents"], 1)
        self.assertGreater(len(chunks), 0)
        self.assertEqual(edited["chunks"], len(chunks))
        self.assertTrue(all(chunk.metadata.original_id == parent.id for chunk in chunks))

        intro.unlink()
        self.assertEqual(await self.indexer.cleanup_deleted(), ["docs/intro.md"])
        self.assertEqual(await self.store.list_all(), [])

    async def test_resync_is_idempotent(self):
        (self.root / "docs" / "guide.md").write_text(long_document(12), encoding="utf-8")
        await self.indexer.sync(self.docs)
        before = sorted((record.id, record.text) for record in await self.store.list_all())
        calls = len(self.provider.calls)

        report = await self.indexer.sync(self.docs)

        after = sorted((record.id, record.text) for record in await self.store.list_all())
        self.assertEqual(before, after)
        self.assertEqual(len(self.provider.calls), calls)
        self.assertEqual(report.unchanged, ["docs/guide.md"])


if __name__ == "__main__":
    unittest.main()
