"""Discover containers through the Docker API and its event stream."""

import asyncio
import logging
from threading import Thread

import docker
import docker.errors

from ..registry import SourceDescriptor, SourceOverrides
from ..sources.docker import DockerSource
from .base import DiscoverySource, SourceListener

logger = logging.getLogger(__name__)

# Container environment variables that override per-container behaviour
ENV_IGNORE = "OSPREY_IGNORE"
ENV_TOKEN = "OSPREY_TOKEN"


def container_env(attrs: dict) -> dict[str, str]:
    """Container environment from inspect data, as a dict."""
    env = (attrs.get("Config") or {}).get("Env") or []
    result = {}
    for item in env:
        key, sep, value = item.partition("=")
        if sep:
            result[key] = value
    return result


def overrides_for(attrs: dict) -> SourceOverrides:
    env = container_env(attrs)
    return SourceOverrides(
        token=env.get(ENV_TOKEN) or None,
        ignore=bool(env.get(ENV_IGNORE)),
    )


class DockerDiscovery(DiscoverySource):
    """List running containers, then follow ``start`` events for new ones."""

    watches = True
    parse_structured = False
    named_lines = False

    def __init__(self, client: docker.DockerClient, tail: int = 0):
        self.client = client
        self.tail = tail
        self._events = None
        self._closing = False

    async def _add(self, container_id: str, listener: SourceListener) -> None:
        loop = asyncio.get_running_loop()
        try:
            container = await loop.run_in_executor(None, self.client.containers.get, container_id)
        except docker.errors.DockerException as e:
            logger.warning("Unable to inspect container %s: %s", container_id[:12], e)
            return

        await listener.add_source(container.id, container.id, overrides=overrides_for(container.attrs))

    async def enumerate(self, listener: SourceListener) -> None:
        loop = asyncio.get_running_loop()
        try:
            containers = await loop.run_in_executor(
                None, lambda: self.client.containers.list(sparse=True)
            )
        except docker.errors.DockerException as e:
            logger.error("Unable to list containers: %s", e)
            return

        for container in containers:
            await self._add(container.id, listener)

    def _pump(self, events, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue) -> None:
        """Background thread copying Docker events onto the loop's queue."""
        error = None
        try:
            for event in events:
                loop.call_soon_threadsafe(queue.put_nowait, event)
        except Exception as e:
            if not self._closing:
                error = e
        if loop.is_closed():
            return
        loop.call_soon_threadsafe(queue.put_nowait, error)

    async def watch(self, listener: SourceListener) -> None:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        try:
            self._events = await loop.run_in_executor(
                None,
                lambda: self.client.events(
                    decode=True, filters={"type": "container", "event": "start"}
                ),
            )
        except docker.errors.DockerException as e:
            logger.error("Unable to subscribe to docker events: %s", e)
            return

        Thread(target=self._pump, args=(self._events, loop, queue), name="docker-events", daemon=True).start()
        logger.info("Watching docker events")

        while True:
            event = await queue.get()
            if event is None or isinstance(event, Exception):
                if not self._closing:
                    logger.error("Docker event stream ended: %s", event or "closed")
                return

            logger.debug("Got event: %s", event)
            if event.get("status") != "start" and event.get("Action") != "start":
                continue
            container_id = event.get("id") or (event.get("Actor") or {}).get("ID")
            if container_id:
                await self._add(container_id, listener)

    def open_source(self, descriptor: SourceDescriptor) -> DockerSource:
        return DockerSource(self.client, descriptor.location, tail=self.tail)

    async def close(self) -> None:
        self._closing = True
        events, self._events = self._events, None
        if events is not None:
            events.close()
