"""File-based log source with tail -F like functionality."""

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from pathlib import Path

import aiofiles

from ..errors import SourceUnavailable
from .base import LogSource

logger = logging.getLogger(__name__)


class FileSource(LogSource):
    """Follow a log file for new lines, reopening it when it is rotated."""

    def __init__(
        self,
        path: str | Path,
        from_end: bool = True,
        follow: bool = True,
        open_wait: float = 5.0,
        poll_interval: float = 0.1,
    ):
        """
        Initialize file log source.

        Args:
            path: Log file to follow
            from_end: Start at the end of the file rather than the beginning
            follow: Keep waiting for new lines at EOF
            open_wait: Seconds to wait for the file to appear before giving up
            poll_interval: Seconds to sleep when no new data is available
        """
        self.path = Path(path)
        self.from_end = from_end
        self.follow = follow
        self.open_wait = open_wait
        self.poll_interval = poll_interval
        self._stop = False
        self._file = None
        self._inode: int | None = None
        super().__init__(name=str(self.path))

    async def open(self) -> None:
        # A freshly created container directory may not hold its log yet
        waited = 0.0
        while not self.path.exists():
            if waited >= self.open_wait:
                raise SourceUnavailable(f"Log file not found: {self.path}")
            await asyncio.sleep(self.poll_interval)
            waited += self.poll_interval

        self._file = await aiofiles.open(self.path, mode="rb")
        self._inode = os.fstat(self._file.fileno()).st_ino
        if self.from_end:
            await self._file.seek(0, os.SEEK_END)
        logger.debug("Opened %s", self.path)

    def _rotated(self, position: int) -> bool:
        """Check whether the file was replaced or truncated since it was opened."""
        try:
            stat = os.stat(self.path)
        except FileNotFoundError:
            return False
        return stat.st_ino != self._inode or stat.st_size < position

    async def _reopen(self) -> None:
        logger.info("File rotated, reopening: %s", self.path)
        await self._file.close()
        self._file = await aiofiles.open(self.path, mode="rb")
        self._inode = os.fstat(self._file.fileno()).st_ino

    async def stream(self) -> AsyncIterator[bytes]:
        """Stream complete lines (without the newline) from the file."""
        if self._file is None:
            await self.open()

        partial = b""
        while not self._stop:
            chunk = await self._file.readline()
            if chunk:
                partial += chunk
                if partial.endswith(b"\n"):
                    line, partial = partial[:-1], b""
                    yield line
                continue

            if not self.follow:
                if partial:
                    yield partial
                break

            position = await self._file.tell()
            if self._rotated(position):
                partial = b""
                await self._reopen()
                continue

            # No new line, wait a bit before checking again
            await asyncio.sleep(self.poll_interval)

    async def close(self) -> None:
        """Stop following the file and release the handle."""
        self._stop = True
        if self._file is not None:
            await self._file.close()
            self._file = None
