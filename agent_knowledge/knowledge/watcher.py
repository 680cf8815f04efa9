"""
Filesystem watching for knowledge directories.

Uses the `watchdog` library. The observer thread only translates filesystem
events into ChangeEvents and hands them to the event loop through a bounded
queue; a single consumer coroutine waits for a quiet period, coalesces the
queued events by path and applies them to the indexer. Any other producer can
feed the same queue through KnowledgeWatcher.submit().
"""

import asyncio
import logging
import os
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Sequence

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..types.knowledge import ChangeEvent, ChangeKind, DirectorySource, SyncReport
from .indexer import KnowledgeIndexer, sanitize_relative_path

logger = logging.getLogger(__name__)


class KnowledgeChangeHandler(FileSystemEventHandler):
    """
    Forward watchdog events for supported files into an asyncio queue.

    Runs in the observer thread; all queue access is scheduled onto the
    event loop.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        queue: "asyncio.Queue[ChangeEvent]",
        extensions: Sequence[str],
    ):
        super().__init__()
        self._loop = loop
        self._queue = queue
        self.extensions = tuple(ext.lower() for ext in extensions)

    def _is_supported(self, path: str) -> bool:
        return os.path.splitext(path)[1].lower() in self.extensions

    def _put(self, change: ChangeEvent) -> None:
        try:
            self._queue.put_nowait(change)
        except asyncio.QueueFull:
            logger.warning(f"Change queue full, dropping {change.kind.value} event for {change.path}")

    def _enqueue(self, path, kind: ChangeKind) -> None:
        path = os.fsdecode(path)
        if kind != ChangeKind.DELETED and not self._is_supported(path):
            return
        self._loop.call_soon_threadsafe(self._put, ChangeEvent(path=path, kind=kind))

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._enqueue(event.src_path, ChangeKind.CREATED)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._enqueue(event.src_path, ChangeKind.MODIFIED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._enqueue(event.src_path, ChangeKind.DELETED)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._enqueue(event.src_path, ChangeKind.DELETED)
        if not event.is_directory:
            self._enqueue(event.dest_path, ChangeKind.CREATED)


class KnowledgeWatcher:
    """
    Debounced consumer of knowledge file changes.

    Each changed file is matched to the configured directory group that
    contains it, which decides whether it is indexed as shared or private.
    Deletions trigger one cleanup sweep per debounce window.
    """

    def __init__(
        self,
        indexer: KnowledgeIndexer,
        directories: Sequence[DirectorySource],
        debounce_seconds: float = 1.0,
        queue_size: int = 1000,
    ):
        self.indexer = indexer
        self.directories = list(directories)
        self.debounce_seconds = debounce_seconds
        self.queue: "asyncio.Queue[ChangeEvent]" = asyncio.Queue(maxsize=queue_size)
        self._observer: Optional[Observer] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def submit(self, change: ChangeEvent) -> bool:
        """Queue a change from the event loop thread. Returns False if full."""
        try:
            self.queue.put_nowait(change)
        except asyncio.QueueFull:
            logger.warning(f"Change queue full, dropping {change.kind.value} event for {change.path}")
            return False
        return True

    def group_for(self, path: str) -> Optional[DirectorySource]:
        """Find the most specific directory group containing a path."""
        source = self.indexer.relative_source(path)
        if PurePosixPath(source).is_absolute():
            return None
        parts = PurePosixPath(source).parts

        best: Optional[DirectorySource] = None
        best_depth = -1
        for group in self.directories:
            group_path = sanitize_relative_path(group.path)
            group_parts = PurePosixPath(group_path).parts if group_path else ()
            if len(parts) > len(group_parts) and parts[: len(group_parts)] == group_parts:
                if len(group_parts) > best_depth:
                    best, best_depth = group, len(group_parts)
        return best

    async def start(self) -> None:
        """Start the watchdog observer and the consumer task."""
        if self.is_running:
            return

        root = self.indexer.require_root()
        handler = KnowledgeChangeHandler(
            asyncio.get_running_loop(),
            self.queue,
            self.indexer.supported_extensions,
        )
        observer = Observer()
        observer.schedule(handler, str(root), recursive=True)
        observer.start()
        self._observer = observer
        self._task = asyncio.create_task(self.run())
        logger.info(
            f"Watching {root} for knowledge changes "
            f"({len(self.directories)} groups, debounce={self.debounce_seconds}s)"
        )

    async def stop(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            await asyncio.to_thread(self._observer.join)
            self._observer = None
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Knowledge watcher stopped")

    async def _collect(self, first: ChangeEvent) -> List[ChangeEvent]:
        """Gather events until the queue stays quiet for the debounce window."""
        pending: Dict[str, ChangeEvent] = {first.path: first}
        while True:
            try:
                change = await asyncio.wait_for(self.queue.get(), timeout=self.debounce_seconds)
            except asyncio.TimeoutError:
                break
            pending.pop(change.path, None)
            pending[change.path] = change
        return list(pending.values())

    async def run(self) -> None:
        """Consume changes forever; failures are logged, never fatal."""
        while True:
            first = await self.queue.get()
            changes = await self._collect(first)
            try:
                await self.apply(changes)
            except Exception as e:
                logger.error(f"Failed to apply {len(changes)} knowledge changes: {e}", exc_info=True)

    async def drain(self) -> SyncReport:
        """Apply every queued change immediately, without debouncing."""
        pending: Dict[str, ChangeEvent] = {}
        while not self.queue.empty():
            change = self.queue.get_nowait()
            pending.pop(change.path, None)
            pending[change.path] = change
        return await self.apply(list(pending.values()))

    async def apply(self, changes: Sequence[ChangeEvent]) -> SyncReport:
        """Reindex changed files and sweep deleted ones."""
        report = SyncReport()
        needs_cleanup = False

        for change in changes:
            if change.kind == ChangeKind.DELETED:
                needs_cleanup = True
                continue

            group = self.group_for(change.path)
            if group is None:
                logger.debug(f"Ignoring change outside knowledge groups: {change.path}")
                continue

            source = self.indexer.relative_source(change.path)
            try:
                outcome = await self.indexer.add_file_knowledge(source, group.is_shared)
            except FileNotFoundError:
                logger.debug(f"File vanished before indexing: {source}")
                needs_cleanup = True
                continue
            except Exception as e:
                logger.error(f"Failed to index changed file {source}: {e}", exc_info=True)
                report.failed[source] = str(e)
                continue
            report.record(source, outcome)

        if needs_cleanup:
            report.removed.extend(await self.indexer.cleanup_deleted())

        if report.has_failures:
            logger.warning(f"{len(report.failed)} knowledge changes failed to apply")
        return report
