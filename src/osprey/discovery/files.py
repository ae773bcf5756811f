"""Discover container logs by scanning Docker's containers directory."""

import asyncio
import logging
import os
from pathlib import Path

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from ..config import ShipperConfig
from ..registry import SourceDescriptor
from ..sources.file import FileSource
from .base import DiscoverySource, SourceListener

logger = logging.getLogger(__name__)

# Docker keeps <root>/<container id>/<container id>-json.log
LOG_FILE_PATTERN = "*/*.log"
LOG_FILE_SUFFIX = "-json.log"


class _DirectoryEventHandler(FileSystemEventHandler):
    """Hands watchdog events from the observer thread to the event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue):
        super().__init__()
        self._loop = loop
        self._queue = queue

    def on_created(self, event):
        if event.is_directory:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    def on_deleted(self, event):
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)


class DirectoryDiscovery(DiscoverySource):
    """Find ``*/*.log`` files under a root directory and optionally watch it."""

    def __init__(
        self,
        root: str | Path,
        config: ShipperConfig | None = None,
        watch: bool = False,
        parse_structured: bool = True,
        from_end: bool = True,
        pattern: str = LOG_FILE_PATTERN,
    ):
        self.root = Path(root)
        self.config = config or ShipperConfig()
        self.watches = watch
        self.parse_structured = parse_structured
        self.from_end = from_end
        self.pattern = pattern
        self._observer: Observer | None = None

    def source_id_for(self, path: Path) -> str:
        """Configured ID matching the file name, else the container directory name."""
        return self.config.match(path.name) or path.parent.name

    async def enumerate(self, listener: SourceListener) -> None:
        found = set()
        for path in sorted(self.root.glob(self.pattern)):
            source_id = self.source_id_for(path)
            found.add(source_id)
            await listener.add_source(source_id, str(path), default_name=source_id)

        for source_id in self.config.sources:
            if source_id not in found and source_id not in self.config.ignore:
                logger.warning("Container %s doesn't exist", source_id)

    async def _handle(self, event: FileSystemEvent, listener: SourceListener) -> None:
        path = Path(os.fsdecode(event.src_path))
        if path.parent != self.root:
            return

        container_id = path.name
        source_id = self.config.match(container_id) or container_id

        if event.event_type == EVENT_TYPE_CREATED:
            logger.debug("New directory creation detected: %s", path)
            log_file = path / f"{container_id}{LOG_FILE_SUFFIX}"
            await listener.add_source(source_id, str(log_file), default_name=source_id)
        elif event.event_type == EVENT_TYPE_DELETED:
            logger.debug("Removal detected: %s", path)
            await listener.remove_source(source_id)

    async def watch(self, listener: SourceListener) -> None:
        loop = asyncio.get_running_loop()
        events: asyncio.Queue = asyncio.Queue()

        self._observer = Observer()
        self._observer.schedule(_DirectoryEventHandler(loop, events), str(self.root), recursive=False)
        self._observer.start()
        logger.info("Watching docker logs directory %s", self.root)

        while True:
            event = await events.get()
            try:
                await self._handle(event, listener)
            except Exception as e:
                logger.warning("Error handling %s for %s: %s", event.event_type, event.src_path, e)

    def open_source(self, descriptor: SourceDescriptor) -> FileSource:
        return FileSource(descriptor.location, from_end=self.from_end)

    async def close(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        await asyncio.get_running_loop().run_in_executor(None, observer.join, 5.0)
        logger.info("Stopped watching %s", self.root)
