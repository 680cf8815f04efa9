"""
Tests for the command line interface.
"""

import io
import json
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch

from agent_knowledge.cli import apply_overrides, build_directories, build_parser, main
from agent_knowledge.config import Settings
from agent_knowledge.types.knowledge import DirectorySource

from fakes import make_embedder


class TestParser(unittest.TestCase):

    def test_sync_groups(self):
        args = build_parser().parse_args(
            ["--agent-id", "agent-a", "sync", "--private", "docs", "notes", "--shared", "team"]
        )
        self.assertEqual(args.agent_id, "agent-a")
        self.assertEqual(
            build_directories(args.private, args.shared),
            [
                DirectorySource(path="docs"),
                DirectorySource(path="notes"),
                DirectorySource(path="team", is_shared=True),
            ],
        )

    def test_no_groups_means_defaults(self):
        args = build_parser().parse_args(["sync"])
        self.assertIsNone(build_directories(args.private, args.shared))

    def test_search_options(self):
        args = build_parser().parse_args(["search", "agent workflow", "--limit", "3"])
        self.assertEqual((args.query, args.limit, args.context), ("agent workflow", 3, None))

    def test_command_is_required(self):
        with patch("sys.stderr", new_callable=io.StringIO), self.assertRaises(SystemExit):
            build_parser().parse_args([])

    def test_overrides(self):
        args = build_parser().parse_args(["--root", "/srv/knowledge", "--database", ":memory:", "stats"])
        settings = apply_overrides(Settings(), args)
        self.assertEqual(settings.sync.kb_knowledge_root, "/srv/knowledge")
        self.assertEqual(settings.store.kb_database_path, ":memory:")


@patch("agent_knowledge.cli.setup_logging")
@patch("agent_knowledge.knowledge.knowledge_service.EmbeddingGenerator.from_settings")
class TestMain(unittest.TestCase):

    def run_main(self, argv):
        output = io.StringIO()
        with redirect_stdout(output):
            code = main(argv)
        return code, output.getvalue()

    def test_stats(self, mock_embedder, mock_logging):
        mock_embedder.return_value = make_embedder()

        code, output = self.run_main(["--database", ":memory:", "--agent-id", "cli-agent", "stats"])

        self.assertEqual(code, 0)
        stats = json.loads(output)
        self.assertEqual(stats["agent_id"], "cli-agent")
        self.assertEqual(stats["parents"], 0)
        mock_logging.assert_called_once()

    def test_add_text(self, mock_embedder, mock_logging):
        mock_embedder.return_value = make_embedder()

        code, output = self.run_main(["--database", ":memory:", "add-text", "A note", "--shared"])

        self.assertEqual(code, 0)
        self.assertEqual(output.strip(), "created")

    def test_sync(self, mock_embedder, mock_logging):
        mock_embedder.return_value = make_embedder()
        with tempfile.TemporaryDirectory() as tmp:
            (Path(tmp) / "docs").mkdir()
            (Path(tmp) / "docs" / "intro.md").write_text("# Intro\nHello", encoding="utf-8")

            code, output = self.run_main(["--database", ":memory:", "--root", tmp, "sync"])

        self.assertEqual(code, 0)
        self.assertEqual(json.loads(output)["summary"]["created"], 1)


if __name__ == "__main__":
    unittest.main()
