"""Per-source tailer feeding lines into the shared channel."""

import asyncio
import logging

from .errors import SourceUnavailable
from .registry import SourceDescriptor
from .sources.base import LogLine, LogSource

logger = logging.getLogger(__name__)


class Tailer:
    """
    Follow one source and push every line into the fan-in channel.

    Runs until the source is exhausted or the descriptor's quit signal is
    raised. In both cases the source is closed and the quit signal is
    acknowledged before ``run()`` returns.
    """

    def __init__(
        self,
        descriptor: SourceDescriptor,
        source: LogSource,
        channel: asyncio.Queue,
        parse_structured: bool = False,
        named: bool = True,
    ):
        self.descriptor = descriptor
        self.source = source
        self.channel = channel
        self.parse_structured = parse_structured
        self.named = named
        self.lines_dropped = 0

    def _make_line(self, raw: bytes) -> LogLine | None:
        d = self.descriptor
        name = d.name if self.named else None
        if not self.parse_structured:
            return LogLine(token=d.token, payload=raw, name=name)

        try:
            return LogLine.from_docker_json(d.token, raw, name=name)
        except ValueError as e:
            self.lines_dropped += 1
            logger.warning("Error decoding log from %s: %s", d.label, e)
            return None

    async def _read(self) -> None:
        async for raw in self.source.stream():
            line = self._make_line(raw)
            if line is None:
                continue
            await self.channel.put(line)

    async def run(self) -> None:
        d = self.descriptor
        try:
            await self.source.open()
        except (SourceUnavailable, OSError) as e:
            logger.warning("Unable to tail %s: %s", d.location, e)
            await self.source.close()
            d.quit.acknowledge()
            return

        logger.info("Watching %s (%s)", d.label, d.location)

        reader = asyncio.create_task(self._read())
        quit_waiter = asyncio.create_task(d.quit.wait())
        try:
            done, _ = await asyncio.wait(
                {reader, quit_waiter}, return_when=asyncio.FIRST_COMPLETED
            )
            if reader in done:
                error = reader.exception()
                if error is not None:
                    logger.warning("Stopped reading %s: %s", d.label, error)
                else:
                    logger.info("Stream for %s closed", d.label)
            else:
                logger.info("Stopping tail of %s", d.label)
        finally:
            reader.cancel()
            quit_waiter.cancel()
            await asyncio.gather(reader, quit_waiter, return_exceptions=True)
            await self.source.close()
            d.quit.acknowledge()
