"""
Tests for the knowledge service.
"""

import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, patch

from agent_knowledge.config import Settings
from agent_knowledge.knowledge.errors import KnowledgeBaseError, KnowledgeStoreError
from agent_knowledge.knowledge.indexer import KnowledgeIndexer
from agent_knowledge.knowledge.knowledge_service import KnowledgeService
from agent_knowledge.knowledge.store import KnowledgeStore
from agent_knowledge.types.knowledge import (
    DirectorySource,
    ExternalKnowledgeItem,
    IngestOutcome,
    LiteralSource,
)

from fakes import FakeEmbeddingProvider, make_embedder

NOTE = "The agent workflow runs nightly."
UNRELATED = "Cooking recipes for pasta."


class ServiceTestCase(unittest.IsolatedAsyncioTestCase):
    """Service over an in-memory store with controlled embeddings."""

    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        (self.root / "docs").mkdir()
        (self.root / "team").mkdir()

        self.provider = FakeEmbeddingProvider(
            {
                "the agent workflow runs nightly.": [1.0, 0.0, 0.0, 0.0],
                "agent workflow": [1.0, 0.0, 0.0, 0.0],
                "cooking recipes for pasta.": [-3.0, 0.0, 0.0, 0.0],
            }
        )
        embedder = make_embedder(self.provider)
        store = KnowledgeStore()
        indexer = KnowledgeIndexer(store, embedder, agent_id="agent-a", knowledge_root=self.root)
        self.service = KnowledgeService(store, embedder, indexer)
        await self.service.initialize()

    async def asyncTearDown(self):
        await self.service.close()
        self._tmp.cleanup()


class TestGetKnowledge(ServiceTestCase):

    async def test_query_finds_matching_note(self):
        await self.service.add_string_knowledge(NOTE)
        await self.service.add_string_knowledge(UNRELATED)

        results = await self.service.get_knowledge(query="Agent workflow")

        self.assertEqual([record.text for record in results], [NOTE])
        self.assertGreater(results[0].similarity, 0.6)

    async def test_lookup_by_id(self):
        await self.service.add_string_knowledge(NOTE)
        record_id = (await self.service.store.list_all())[0].id

        results = await self.service.get_knowledge(knowledge_id=record_id)

        self.assertEqual([record.id for record in results], [record_id])

    async def test_unknown_id_falls_back_to_query(self):
        await self.service.add_string_knowledge(NOTE)

        self.assertEqual(await self.service.get_knowledge(knowledge_id="missing"), [])
        results = await self.service.get_knowledge(knowledge_id="missing", query="Agent workflow")

        self.assertEqual([record.text for record in results], [NOTE])

    async def test_wrong_length_external_embedding_leaves_search_working(self):
        await self.service.add_string_knowledge(NOTE)
        self.assertEqual(len(await self.service.get_knowledge(query="Agent workflow")), 1)

        with self.assertLogs("agent_knowledge.knowledge.indexer", level="ERROR"):
            report = await self.service.add_external_knowledge(
                [ExternalKnowledgeItem(text="cms item", id="cms-1", embedding=[0.1, 0.2])]
            )

        self.assertEqual(report.created, [])
        self.assertIn("cms-1", report.failed)
        self.assertIsNone(await self.service.store.get_by_id("cms-1"))
        self.assertEqual(len(await self.service.get_knowledge(query="Agent workflow")), 1)

    async def test_empty_query(self):
        self.assertEqual(await self.service.get_knowledge(), [])
        self.assertEqual(await self.service.get_knowledge(query="```\nonly code\n```"), [])

    async def test_embedding_failure_returns_empty(self):
        await self.service.add_string_knowledge(NOTE)
        self.provider.fail_on.add("workflow")

        with self.assertLogs("agent_knowledge.knowledge.knowledge_service", level="ERROR"):
            results = await self.service.get_knowledge(query="Agent workflow")

        self.assertEqual(results, [])

    async def test_store_failure_returns_empty(self):
        self.service.store.search = AsyncMock(side_effect=KnowledgeStoreError("disk I/O error"))

        with self.assertLogs("agent_knowledge.knowledge.knowledge_service", level="ERROR"):
            results = await self.service.get_knowledge(query="Agent workflow")

        self.assertEqual(results, [])

    async def test_context_is_prepended_and_store_over_fetches(self):
        self.service.store.search = AsyncMock(return_value=[])

        await self.service.get_knowledge(
            query="Agent workflow",
            conversation_context="Earlier we TALKED",
            limit=3,
        )

        self.assertEqual(self.provider.calls[-1], "earlier we talked agent workflow")
        kwargs = self.service.store.search.await_args.kwargs
        self.assertEqual(kwargs["match_count"], 6)
        self.assertEqual(kwargs["keyword_text"], "agent workflow")

    async def test_context_avoids_no_match_penalty(self):
        with patch.object(self.service.reranker, "rerank", wraps=self.service.reranker.rerank) as rerank:
            self.service.store.search = AsyncMock(return_value=[])
            await self.service.get_knowledge(query="Agent workflow", conversation_context="hello")
            self.assertTrue(rerank.call_args.kwargs["has_context"])

            await self.service.get_knowledge(query="Agent workflow")
            self.assertFalse(rerank.call_args.kwargs["has_context"])


class TestIngestionAndHousekeeping(ServiceTestCase):

    async def test_default_directories_are_private_groups(self):
        self.assertEqual(
            self.service.default_directories(),
            [DirectorySource(path="docs"), DirectorySource(path="team")],
        )

    async def test_sync_defaults_to_all_groups(self):
        (self.root / "docs" / "a.md").write_text("Doc", encoding="utf-8")
        (self.root / "team" / "b.md").write_text("Team", encoding="utf-8")

        report = await self.service.sync()

        self.assertEqual(sorted(report.created), ["docs/a.md", "team/b.md"])

    async def test_add_knowledge_dispatches_sources(self):
        report = await self.service.add_knowledge(LiteralSource(text="A literal note"))
        self.assertEqual(report.created, ["string"])

    async def test_stats_and_clear(self):
        await self.service.add_string_knowledge(NOTE)
        self.assertEqual(
            await self.service.add_string_knowledge("Shared fact", is_shared=True),
            IngestOutcome.CREATED,
        )

        stats = await self.service.get_stats()
        self.assertEqual((stats.agent_id, stats.parents, stats.shared), ("agent-a", 2, 1))

        self.assertEqual(await self.service.clear_knowledge(), 1)
        self.assertEqual(await self.service.clear_knowledge(include_shared=True), 1)

    async def test_remove_knowledge(self):
        await self.service.add_string_knowledge(NOTE)
        record_id = (await self.service.store.list_all())[0].id
        self.assertEqual(await self.service.remove_knowledge(record_id), 1)


class TestServiceSetup(unittest.IsolatedAsyncioTestCase):

    async def test_from_settings(self):
        settings = Settings()
        settings = settings.model_copy(
            update={
                "store": settings.store.model_copy(update={"kb_database_path": ":memory:"}),
                "sync": settings.sync.model_copy(update={"kb_agent_id": "configured"}),
            }
        )

        service = KnowledgeService.from_settings(settings, embedder=make_embedder())

        self.assertEqual(service.agent_id, "configured")
        self.assertEqual(service.store.database_path, ":memory:")
        self.assertIsNotNone(service.store.cache)
        self.assertEqual(service.match_threshold, settings.retrieval.kb_match_threshold)
        self.assertEqual(
            KnowledgeService.from_settings(settings, agent_id="other", embedder=make_embedder()).agent_id,
            "other",
        )

    async def test_initialize_failure_is_wrapped(self):
        store = KnowledgeStore()
        store.initialize = AsyncMock(side_effect=KnowledgeStoreError("cannot open", operation="initialize"))
        embedder = make_embedder()
        service = KnowledgeService(store, embedder, KnowledgeIndexer(store, embedder, agent_id="a"))

        with self.assertRaises(KnowledgeBaseError):
            await service.initialize()


if __name__ == "__main__":
    unittest.main()
