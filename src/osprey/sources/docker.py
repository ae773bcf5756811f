"""Docker container log source."""

import asyncio
import logging
from collections.abc import AsyncIterator
from threading import Thread

import docker
import docker.errors

from ..errors import SourceUnavailable
from .base import LogSource

logger = logging.getLogger(__name__)


class DockerSource(LogSource):
    """Follow the stdout/stderr of a running Docker container."""

    def __init__(self, client: docker.DockerClient, container_id: str, tail: int = 0):
        """
        Initialize Docker log source.

        Args:
            client: Connected Docker client
            container_id: Container name or ID
            tail: Number of existing lines to send first (0 = none, -1 = all)
        """
        self.client = client
        self.container_id = container_id
        self.tail = tail
        self._stop = False
        self._container = None
        self._log_stream = None
        self._reader_thread: Thread | None = None
        super().__init__(name=f"docker:{container_id[:12]}")

    async def open(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            self._container = await loop.run_in_executor(
                None, self.client.containers.get, self.container_id
            )
        except docker.errors.NotFound as e:
            raise SourceUnavailable(f"Container not found: {self.container_id}") from e
        except docker.errors.APIError as e:
            raise SourceUnavailable(f"Unable to inspect {self.container_id}: {e}") from e

        tail_arg = "all" if self.tail == -1 else self.tail
        try:
            self._log_stream = await loop.run_in_executor(
                None,
                lambda: self._container.logs(
                    stream=True,
                    follow=True,
                    stdout=True,
                    stderr=True,
                    tail=tail_arg,
                ),
            )
        except docker.errors.APIError as e:
            raise SourceUnavailable(f"Unable to attach to {self.container_id}: {e}") from e

    def _read_logs(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue) -> None:
        """Background thread copying Docker log lines onto the loop's queue."""

        def put(item: bytes | None) -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(queue.put_nowait, item)

        try:
            buffer = b""
            for chunk in self._log_stream:
                if self._stop:
                    break

                buffer += chunk

                # Process complete lines, keeping their newline
                while b"\n" in buffer:
                    line, buffer = buffer.split(b"\n", 1)
                    put(line + b"\n")

            # Don't forget remaining buffer content
            if buffer and not self._stop:
                put(buffer)

        except Exception as e:
            # Closing the stream from close() surfaces here as a read error
            if not self._stop:
                logger.warning("Log stream for %s failed: %s", self.container_id, e)
        finally:
            put(None)  # Signal end of stream

    async def stream(self) -> AsyncIterator[bytes]:
        """Stream lines from the container until it stops."""
        if self._log_stream is None:
            await self.open()

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        self._reader_thread = Thread(
            target=self._read_logs,
            args=(loop, queue),
            name=f"docker-logs-{self.container_id[:12]}",
            daemon=True,
        )
        self._reader_thread.start()

        while not self._stop:
            line = await queue.get()
            if line is None:
                break  # End of stream
            yield line

    async def close(self) -> None:
        """Stop following container logs and close the HTTP stream."""
        self._stop = True
        if self._log_stream is not None:
            try:
                self._log_stream.close()
            except Exception as e:
                logger.debug("Error closing log stream for %s: %s", self.container_id, e)
        if self._reader_thread and self._reader_thread.is_alive():
            await asyncio.get_running_loop().run_in_executor(
                None, self._reader_thread.join, 1.0
            )
