"""Base class for discovery strategies."""

from abc import ABC, abstractmethod
from typing import Protocol

from ..registry import SourceDescriptor, SourceOverrides
from ..sources.base import LogSource


class SourceListener(Protocol):
    """Receives add/remove notifications from a discovery strategy."""

    async def add_source(
        self,
        source_id: str,
        location: str,
        overrides: SourceOverrides | None = None,
        default_name: str | None = None,
    ) -> None: ...

    async def remove_source(self, source_id: str) -> None: ...


class DiscoverySource(ABC):
    """Finds log sources and reports them to a listener."""

    # Whether watch() should be scheduled after enumerate()
    watches: bool = False
    # Whether lines from this strategy's sources are Docker json-file records
    parse_structured: bool = False
    # Whether lines carry the source name, or go out as token plus raw bytes
    named_lines: bool = True

    @abstractmethod
    async def enumerate(self, listener: SourceListener) -> None:
        """Report every source that exists right now."""

    async def watch(self, listener: SourceListener) -> None:
        """Report sources appearing and disappearing until cancelled."""
        pass

    @abstractmethod
    def open_source(self, descriptor: SourceDescriptor) -> LogSource:
        """Build the log source that reads the given descriptor."""

    async def close(self) -> None:
        """Release any watch resources."""
        pass
