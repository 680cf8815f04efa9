"""
Command line interface for the agent knowledge engine.
"""

import argparse
import asyncio
import json
import logging
import signal
from dataclasses import asdict
from typing import List, Optional

from .config import Settings, get_settings
from .knowledge.knowledge_service import KnowledgeService
from .knowledge.watcher import KnowledgeWatcher
from .types.knowledge import DirectorySource, SyncReport
from .utils.logging import setup_logging


def build_directories(private: Optional[List[str]], shared: Optional[List[str]]) -> Optional[List[DirectorySource]]:
    """Turn --private/--shared options into directory groups."""
    if not private and not shared:
        return None
    directories = [DirectorySource(path=path) for path in private or []]
    directories.extend(DirectorySource(path=path, is_shared=True) for path in shared or [])
    return directories


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    if args.root:
        settings = settings.model_copy(
            update={"sync": settings.sync.model_copy(update={"kb_knowledge_root": args.root})}
        )
    if args.database:
        settings = settings.model_copy(
            update={"store": settings.store.model_copy(update={"kb_database_path": args.database})}
        )
    return settings


def print_report(report: SyncReport) -> None:
    print(json.dumps({"summary": report.summary(), "failed": report.failed}, indent=2))


async def run_watch(service: KnowledgeService, settings: Settings, directories: Optional[List[DirectorySource]]) -> None:
    directories = directories if directories is not None else service.default_directories()
    print_report(await service.sync(directories))

    watcher = KnowledgeWatcher(
        service.indexer,
        directories,
        debounce_seconds=settings.sync.kb_watch_debounce_seconds,
        queue_size=settings.sync.kb_watch_queue_size,
    )
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    await watcher.start()
    try:
        await stop.wait()
    finally:
        await watcher.stop()


async def run_command(args: argparse.Namespace, settings: Settings) -> int:
    service = KnowledgeService.from_settings(settings, agent_id=args.agent_id)
    await service.initialize()
    try:
        if args.command == "sync":
            report = await service.sync(build_directories(args.private, args.shared))
            print_report(report)
            return 1 if report.has_failures else 0

        if args.command == "search":
            results = await service.get_knowledge(
                query=args.query,
                conversation_context=args.context,
                limit=args.limit,
            )
            print(json.dumps([record.to_dict() for record in results], indent=2, ensure_ascii=False))
            return 0

        if args.command == "add-text":
            outcome = await service.add_string_knowledge(args.text, is_shared=args.shared)
            print(outcome.value)
            return 0

        if args.command == "remove":
            print(f"Removed {await service.remove_knowledge(args.id)} records")
            return 0

        if args.command == "cleanup":
            removed = await service.cleanup_deleted()
            print(json.dumps({"removed": removed}, indent=2))
            return 0

        if args.command == "clear":
            count = await service.clear_knowledge(include_shared=args.include_shared)
            print(f"Cleared {count} records")
            return 0

        if args.command == "stats":
            stats = await service.get_stats()
            print(json.dumps(asdict(stats), indent=2))
            return 0

        if args.command == "watch":
            await run_watch(service, settings, build_directories(args.private, args.shared))
            return 0
    finally:
        await service.close()

    return 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Index and search agent knowledge")
    parser.add_argument("--agent-id", help="The agent that owns private knowledge")
    parser.add_argument("--root", help="The knowledge root directory")
    parser.add_argument("--database", help="The SQLite database path")

    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("sync", "Index knowledge directories and remove deleted files"),
        ("watch", "Sync, then watch knowledge directories for changes"),
    ):
        command = subparsers.add_parser(name, help=help_text)
        command.add_argument("--private", help="Private knowledge group directories", nargs="+")
        command.add_argument("--shared", help="Shared knowledge group directories", nargs="+")

    search = subparsers.add_parser("search", help="Search the knowledge base")
    search.add_argument("query", help="The search query")
    search.add_argument("--context", help="Conversation context to expand the query")
    search.add_argument("--limit", help="The number of results", type=int)

    add_text = subparsers.add_parser("add-text", help="Add a literal piece of knowledge")
    add_text.add_argument("text", help="The knowledge text")
    add_text.add_argument("--shared", help="Share with all agents", action="store_true")

    remove = subparsers.add_parser("remove", help="Remove a record and its chunks")
    remove.add_argument("id", help="Record id; '*' matches any characters")

    subparsers.add_parser("cleanup", help="Remove records whose files were deleted")

    clear = subparsers.add_parser("clear", help="Delete all of the agent's knowledge")
    clear.add_argument("--include-shared", help="Also delete shared knowledge", action="store_true")

    subparsers.add_parser("stats", help="Show knowledge base counts")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main function for the knowledge command line.
    """
    args = build_parser().parse_args(argv)
    settings = apply_overrides(get_settings(), args)
    setup_logging(
        log_level=getattr(logging, settings.logging.log_level),
        force_json=settings.logging.log_format_json,
    )

    try:
        return asyncio.run(run_command(args, settings))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
