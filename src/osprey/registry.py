"""Registry of the log sources currently being watched."""

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from .config import ShipperConfig

logger = logging.getLogger(__name__)


class QuitSignal:
    """
    Single-use stop handshake between whoever removes a source and its tailer.

    The initiator calls ``stop()``, which raises the request and waits until
    the tailer calls ``acknowledge()``.
    """

    def __init__(self):
        self._requested = asyncio.Event()
        self._acknowledged = asyncio.Event()

    @property
    def requested(self) -> bool:
        return self._requested.is_set()

    @property
    def acknowledged(self) -> bool:
        return self._acknowledged.is_set()

    async def wait(self) -> None:
        """Block until a stop has been requested."""
        await self._requested.wait()

    def acknowledge(self) -> None:
        self._acknowledged.set()

    async def stop(self, timeout: float | None = None) -> bool:
        """
        Request a stop and wait for the acknowledgement.

        Returns False if the tailer did not acknowledge within timeout.
        """
        self._requested.set()
        try:
            await asyncio.wait_for(self._acknowledged.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True


@dataclass(frozen=True, eq=False)
class SourceDescriptor:
    """One watched source: its ID, delivery token and where to read it from."""

    source_id: str
    token: str
    location: str
    name: str | None = None
    quit: QuitSignal = field(default_factory=QuitSignal, repr=False)

    @property
    def label(self) -> str:
        return self.name or self.source_id


@dataclass
class SourceOverrides:
    """Per-source settings taken from the source's own metadata."""

    token: str | None = None
    name: str | None = None
    ignore: bool = False


class SourceRegistry:
    """Thread-safe mapping of source ID to SourceDescriptor."""

    def __init__(self, default_token: str, config: ShipperConfig | None = None):
        self.default_token = default_token
        self.config = config or ShipperConfig()
        self.ignore = set(self.config.ignore)
        self._sources: dict[str, SourceDescriptor] = {}
        self._lock = threading.Lock()

    def is_ignored(self, source_id: str) -> bool:
        return source_id in self.ignore

    def add(
        self,
        source_id: str,
        location: str,
        overrides: SourceOverrides | None = None,
        default_name: str | None = None,
    ) -> SourceDescriptor | None:
        """
        Register a source, replacing any existing entry with the same ID.

        Returns None when the source is ignored or has no location.
        """
        if self.is_ignored(source_id) or (overrides and overrides.ignore):
            logger.info("Ignoring container %s", source_id)
            return None

        if not location:
            logger.warning("Container %s has no log location, dropping", source_id)
            return None

        overrides = overrides or SourceOverrides()
        entry = self.config.get(source_id)

        token = overrides.token or (entry.token if entry else None) or self.default_token
        name = overrides.name or (entry.name if entry else None) or default_name

        descriptor = SourceDescriptor(
            source_id=source_id,
            token=token,
            location=location,
            name=name,
        )
        with self._lock:
            self._sources[source_id] = descriptor
        return descriptor

    def remove(self, source_id: str) -> SourceDescriptor | None:
        with self._lock:
            return self._sources.pop(source_id, None)

    def discard(self, descriptor: SourceDescriptor) -> bool:
        """Remove descriptor only if it is still the registered one for its ID."""
        with self._lock:
            if self._sources.get(descriptor.source_id) is descriptor:
                del self._sources[descriptor.source_id]
                return True
        return False

    def lookup(self, source_id: str) -> SourceDescriptor | None:
        with self._lock:
            return self._sources.get(source_id)

    def descriptors(self) -> list[SourceDescriptor]:
        with self._lock:
            return list(self._sources.values())

    def for_each(self, fn: Callable[[SourceDescriptor], None]) -> None:
        # Iterate over a snapshot so fn may call back into the registry
        for descriptor in self.descriptors():
            fn(descriptor)

    def __contains__(self, source_id: str) -> bool:
        with self._lock:
            return source_id in self._sources

    def __len__(self) -> int:
        with self._lock:
            return len(self._sources)
