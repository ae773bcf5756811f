"""Tests for the per-source tailer."""

import asyncio
from collections.abc import AsyncIterator

import pytest

from osprey.config import ShipperConfig, SourceConfig
from osprey.errors import SourceUnavailable
from osprey.registry import SourceRegistry
from osprey.sources.base import LogSource
from osprey.tailer import Tailer


class FakeSource(LogSource):
    """Source that yields a fixed list of lines, then optionally blocks."""

    def __init__(self, lines: list[bytes], block: bool = False, fail_open: bool = False):
        super().__init__(name="fake")
        self.lines = lines
        self.block = block
        self.fail_open = fail_open
        self.opened = False
        self.closed = False

    async def open(self) -> None:
        if self.fail_open:
            raise SourceUnavailable("gone")
        self.opened = True

    async def stream(self) -> AsyncIterator[bytes]:
        for line in self.lines:
            yield line
        if self.block:
            await asyncio.Event().wait()

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def registry():
    return SourceRegistry("DEF")


async def _drain(channel, count):
    return [await asyncio.wait_for(channel.get(), timeout=1) for _ in range(count)]


@pytest.mark.asyncio
async def test_lines_tagged_with_token_in_order(registry):
    descriptor = registry.add("c1", "c1")
    channel = asyncio.Queue(maxsize=1)
    source = FakeSource([b"one\n", b"two\n", b"three\n"])
    task = asyncio.create_task(Tailer(descriptor, source, channel).run())

    lines = await _drain(channel, 3)
    await asyncio.wait_for(task, timeout=1)

    assert [l.to_bytes() for l in lines] == [b"DEFone\n", b"DEFtwo\n", b"DEFthree\n"]
    assert source.closed


@pytest.mark.asyncio
async def test_quit_handshake_stops_and_releases(registry):
    descriptor = registry.add("c1", "c1")
    channel = asyncio.Queue(maxsize=1)
    source = FakeSource([b"one\n"], block=True)
    task = asyncio.create_task(Tailer(descriptor, source, channel).run())

    await _drain(channel, 1)
    assert await descriptor.quit.stop(timeout=1) is True
    assert source.closed
    await asyncio.wait_for(task, timeout=1)


@pytest.mark.asyncio
async def test_quit_while_blocked_on_full_channel(registry):
    descriptor = registry.add("c1", "c1")
    channel = asyncio.Queue(maxsize=1)
    source = FakeSource([b"one\n", b"two\n", b"three\n"], block=True)
    task = asyncio.create_task(Tailer(descriptor, source, channel).run())

    # Nobody drains the channel, so the tailer is stuck in put()
    await asyncio.sleep(0.05)
    assert await descriptor.quit.stop(timeout=1) is True
    assert source.closed
    await asyncio.wait_for(task, timeout=1)


@pytest.mark.asyncio
async def test_open_failure_exits_without_reading(registry):
    descriptor = registry.add("c1", "/missing.log")
    channel = asyncio.Queue(maxsize=1)
    source = FakeSource([b"never\n"], fail_open=True)

    await asyncio.wait_for(Tailer(descriptor, source, channel).run(), timeout=1)

    assert channel.empty()
    assert source.closed
    # A late stop on a tailer that already exited must not hang
    assert await descriptor.quit.stop(timeout=0.1) is True


@pytest.mark.asyncio
async def test_structured_lines_decoded_and_bad_ones_dropped(registry):
    descriptor = registry.add("def456", "/x.log", default_name="def456")
    channel = asyncio.Queue(maxsize=5)
    source = FakeSource([
        b'{"log":"hello","stream":"stdout"}',
        b"garbage",
        b'{"log":"bye\\n","stream":"stderr"}',
    ])
    tailer = Tailer(descriptor, source, channel, parse_structured=True)
    await asyncio.wait_for(tailer.run(), timeout=1)

    lines = await _drain(channel, 2)
    assert [l.to_bytes() for l in lines] == [
        b"DEF def456 (stdout) hello\n",
        b"DEF def456 (stderr) bye\n",
    ]
    assert tailer.lines_dropped == 1
    assert channel.empty()


@pytest.mark.asyncio
async def test_unnamed_strategy_ignores_configured_name():
    registry = SourceRegistry("DEF", ShipperConfig(sources={"c1": SourceConfig(name="web")}))
    descriptor = registry.add("c1", "c1")
    assert descriptor.name == "web"

    channel = asyncio.Queue(maxsize=1)
    source = FakeSource([b"raw bytes\r\n"])
    task = asyncio.create_task(Tailer(descriptor, source, channel, named=False).run())

    lines = await _drain(channel, 1)
    await asyncio.wait_for(task, timeout=1)

    assert lines[0].to_bytes() == b"DEFraw bytes\r\n"
