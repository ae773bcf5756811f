"""Tests for Docker API discovery."""

import asyncio
from unittest.mock import MagicMock

import docker.errors
import pytest

from osprey.discovery.docker import DockerDiscovery, container_env, overrides_for
from osprey.registry import SourceRegistry
from osprey.sources.docker import DockerSource


class RecordingListener:
    def __init__(self):
        self.added = []

    async def add_source(self, source_id, location, overrides=None, default_name=None):
        self.added.append((source_id, location, overrides))

    async def remove_source(self, source_id):
        pass


def _container(cid, env=None):
    container = MagicMock()
    container.id = cid
    container.attrs = {"Config": {"Env": env or []}}
    return container


@pytest.fixture
def client():
    containers = {
        "aaa": _container("aaa", ["PATH=/bin", "OSPREY_TOKEN=tok-a"]),
        "bbb": _container("bbb", ["OSPREY_IGNORE=1"]),
        "ccc": _container("ccc"),
    }

    def get(cid):
        if cid not in containers:
            raise docker.errors.NotFound(f"No such container: {cid}")
        return containers[cid]

    client = MagicMock()
    client.containers.get.side_effect = get
    client.containers.list.return_value = [
        _container("aaa"), _container("gone"), _container("bbb"), _container("ccc"),
    ]
    return client


def test_container_env():
    attrs = {"Config": {"Env": ["A=1", "B=x=y", "NOVALUE"]}}
    assert container_env(attrs) == {"A": "1", "B": "x=y"}
    assert container_env({}) == {}


def test_overrides_for():
    overrides = overrides_for({"Config": {"Env": ["OSPREY_TOKEN=abc", "OSPREY_IGNORE="]}})
    assert overrides.token == "abc"
    assert overrides.ignore is False
    assert overrides_for({"Config": {"Env": ["OSPREY_IGNORE=yes"]}}).ignore is True


@pytest.mark.asyncio
async def test_enumerate_skips_failed_inspect(client):
    listener = RecordingListener()
    await DockerDiscovery(client).enumerate(listener)

    ids = [a[0] for a in listener.added]
    assert ids == ["aaa", "bbb", "ccc"]
    assert listener.added[0][2].token == "tok-a"
    assert listener.added[1][2].ignore is True
    assert listener.added[2][2].token is None
    client.containers.list.assert_called_once_with(sparse=True)


@pytest.mark.asyncio
async def test_enumerate_list_failure_is_not_fatal(client):
    client.containers.list.side_effect = docker.errors.APIError("daemon down")
    listener = RecordingListener()
    await DockerDiscovery(client).enumerate(listener)
    assert listener.added == []


@pytest.mark.asyncio
async def test_watch_adds_started_containers(client):
    client.events.return_value = iter([
        {"status": "start", "id": "ccc", "Type": "container"},
        {"status": "die", "id": "aaa", "Type": "container"},
        {"Action": "start", "Actor": {"ID": "aaa"}, "Type": "container"},
    ])
    listener = RecordingListener()
    discovery = DockerDiscovery(client)

    # The event iterator ends, which ends the watch
    await asyncio.wait_for(discovery.watch(listener), timeout=2)

    assert [a[0] for a in listener.added] == ["ccc", "aaa"]
    client.events.assert_called_once_with(
        decode=True, filters={"type": "container", "event": "start"}
    )


@pytest.mark.asyncio
async def test_watch_subscription_failure(client):
    client.events.side_effect = docker.errors.APIError("nope")
    listener = RecordingListener()
    await asyncio.wait_for(DockerDiscovery(client).watch(listener), timeout=1)
    assert listener.added == []


def test_open_source_is_docker_source(client):
    descriptor = SourceRegistry("DEF").add("aaa", "aaa")
    source = DockerDiscovery(client, tail=5).open_source(descriptor)
    assert isinstance(source, DockerSource)
    assert source.container_id == "aaa"
    assert source.tail == 5


@pytest.mark.asyncio
async def test_close_closes_event_stream(client):
    discovery = DockerDiscovery(client)
    events = MagicMock()
    discovery._events = events
    await discovery.close()
    events.close.assert_called_once()


def test_lines_are_sent_without_names(client):
    discovery = DockerDiscovery(client)
    assert discovery.named_lines is False
    assert discovery.parse_structured is False
