"""Tests for the source registry and quit handshake."""

import asyncio

import pytest

from osprey.config import ShipperConfig, SourceConfig
from osprey.registry import QuitSignal, SourceOverrides, SourceRegistry


@pytest.fixture
def registry():
    config = ShipperConfig(
        sources={"abc123": SourceConfig(token="ABC-TOKEN", name="web")},
        ignore={"skipme"},
    )
    return SourceRegistry("DEF", config)


class TestAdd:
    def test_configured_token(self, registry):
        d = registry.add("abc123", "/logs/abc123/abc123-json.log")
        assert d.token == "ABC-TOKEN"
        assert d.name == "web"

    def test_default_token(self, registry):
        d = registry.add("def456", "/logs/def456/def456-json.log", default_name="def456")
        assert d.token == "DEF"
        assert d.name == "def456"

    def test_override_token_wins(self, registry):
        d = registry.add("abc123", "abc123", overrides=SourceOverrides(token="ENV-TOKEN"))
        assert d.token == "ENV-TOKEN"

    def test_ignored_id_is_never_added(self, registry):
        assert registry.add("skipme", "/logs/skipme/skipme-json.log") is None
        assert "skipme" not in registry
        assert len(registry) == 0

    def test_ignore_override(self, registry):
        assert registry.add("c1", "c1", overrides=SourceOverrides(ignore=True)) is None
        assert registry.lookup("c1") is None

    def test_empty_location_dropped(self, registry):
        assert registry.add("def456", "") is None
        assert "def456" not in registry

    def test_add_twice_keeps_one(self, registry):
        registry.add("def456", "/first.log")
        second = registry.add("def456", "/second.log")
        assert len(registry) == 1
        assert registry.lookup("def456") is second
        assert registry.lookup("def456").location == "/second.log"


class TestRemove:
    def test_remove_present(self, registry):
        registry.add("def456", "/x.log")
        removed = registry.remove("def456")
        assert removed is not None
        assert registry.lookup("def456") is None

    def test_remove_missing_is_noop(self, registry):
        assert registry.remove("nothere") is None
        assert len(registry) == 0

    def test_discard_only_matching_descriptor(self, registry):
        old = registry.add("def456", "/old.log")
        new = registry.add("def456", "/new.log")
        assert registry.discard(old) is False
        assert registry.lookup("def456") is new
        assert registry.discard(new) is True
        assert len(registry) == 0


def test_for_each_visits_all(registry):
    registry.add("a", "/a.log")
    registry.add("b", "/b.log")
    seen = []
    registry.for_each(lambda d: seen.append(d.source_id))
    assert sorted(seen) == ["a", "b"]


class TestQuitSignal:
    @pytest.mark.asyncio
    async def test_stop_waits_for_acknowledge(self):
        quit = QuitSignal()

        async def tailer():
            await quit.wait()
            await asyncio.sleep(0.01)
            quit.acknowledge()

        task = asyncio.create_task(tailer())
        assert await quit.stop() is True
        assert quit.requested and quit.acknowledged
        await task

    @pytest.mark.asyncio
    async def test_stop_times_out(self):
        quit = QuitSignal()
        assert await quit.stop(timeout=0.05) is False
        assert quit.requested
        assert not quit.acknowledged

    @pytest.mark.asyncio
    async def test_stop_after_acknowledge_returns_immediately(self):
        quit = QuitSignal()
        quit.acknowledge()
        assert await quit.stop(timeout=0.01) is True
