"""File system monitoring for codeagent workspaces."""

import asyncio
import logging
import threading
import time
from typing import Callable, Optional, Set

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .indexer import CodebaseIndexer, IndexReport

logger = logging.getLogger(__name__)

WATCHED_EVENTS = ('created', 'modified', 'deleted', 'moved')


class WorkspaceMonitor(FileSystemEventHandler):
    """Keep a workspace index current while files change on disk.

    Events arrive on the watchdog thread and only record paths; the asyncio
    side re-indexes them once activity has settled for ``update_delay``
    seconds, holding the same lock the agent holds during an operation.
    """

    def __init__(
        self,
        indexer: CodebaseIndexer,
        update_delay: float = 2.0,
        on_update: Optional[Callable[[IndexReport], None]] = None,
    ):
        self.indexer = indexer
        self.update_delay = update_delay
        self.on_update = on_update
        self.pending_paths: Set[str] = set()
        self.last_event_time = time.time()
        self.observer: Optional[Observer] = None
        self._lock = threading.Lock()

    def _should_track(self, relative: str, removal: bool) -> bool:
        if self.indexer._should_ignore(relative):
            return False
        # Removed directories have no suffix but may hold indexed files.
        return removal or self.indexer.is_indexable(relative)

    def handle_path(self, path: str, removal: bool = False) -> bool:
        """Record a changed path; returns True when it will be re-indexed."""
        relative = self.indexer.relative_path(path)
        if relative is None or not self._should_track(relative, removal):
            logger.debug(f"Ignoring change: {path}")
            return False
        with self._lock:
            self.pending_paths.add(relative)
            self.last_event_time = time.time()
        logger.debug(f"Queued {relative} for re-indexing")
        return True

    def on_any_event(self, event: FileSystemEvent):
        if event.event_type not in WATCHED_EVENTS:
            return
        if event.event_type == 'moved':
            self.handle_path(event.src_path, removal=True)
            if not event.is_directory:
                self.handle_path(event.dest_path)
        elif event.event_type == 'deleted':
            self.handle_path(event.src_path, removal=True)
        elif not event.is_directory:
            self.handle_path(event.src_path)

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return bool(self.pending_paths)

    async def flush(self) -> Optional[IndexReport]:
        """Re-index every queued path now."""
        with self._lock:
            paths = sorted(self.pending_paths)
            self.pending_paths.clear()
        if not paths:
            return None

        async with self.indexer.lock:
            report = self.indexer.update_index(paths)
        if report.changed:
            logger.info(
                f"Updated index for {self.indexer.root_path}: "
                f"{report.indexed} indexed, {report.removed} removed, {report.failed} failed"
            )
            if self.on_update is not None:
                self.on_update(report)
        return report

    async def process_updates(self):
        """Process pending updates with debouncing."""
        while True:
            with self._lock:
                settled = bool(self.pending_paths) and time.time() - self.last_event_time >= self.update_delay
            if settled:
                try:
                    await self.flush()
                except (OSError, ValueError) as e:
                    logger.error(f"Error updating index: {e}")
            await asyncio.sleep(0.2)

    def start(self):
        """Start watching the workspace."""
        if self.observer is not None:
            return
        self.observer = Observer()
        watch_path = str(self.indexer.root_path)
        self.observer.schedule(self, watch_path, recursive=True)
        self.observer.start()
        logger.info(f"Started monitoring {watch_path}")

    def stop(self):
        """Stop watching the workspace."""
        if self.observer:
            try:
                self.observer.stop()
                self.observer.join(timeout=5)
            finally:
                self.observer = None
            logger.info(f"Stopped monitoring {self.indexer.root_path}")

    async def run(self):
        """Watch until cancelled."""
        self.start()
        try:
            await self.process_updates()
        finally:
            self.stop()
