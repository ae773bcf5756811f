"""Pipeline coordinator and signal-driven lifecycle."""

import asyncio
import logging
import signal
from collections.abc import Callable
from enum import Enum

from .config import Settings, ShipperConfig, load_config
from .delivery import DeliveryConnection
from .discovery.base import DiscoverySource
from .errors import ConfigError
from .registry import SourceDescriptor, SourceOverrides, SourceRegistry
from .tailer import Tailer

logger = logging.getLogger(__name__)


class State(Enum):
    STARTING = "starting"
    RUNNING = "running"
    RELOADING = "reloading"
    SHUTTING_DOWN = "shutting down"


class Pipeline:
    """
    Owns the registry, discovery strategy, fan-in channel and delivery connection.

    Discovery reports sources through ``add_source``/``remove_source``. Each
    registered source gets one tailer task feeding the shared channel, which
    the delivery connection drains.
    """

    def __init__(
        self,
        settings: Settings,
        discovery_factory: Callable[[ShipperConfig], DiscoverySource],
        delivery: DeliveryConnection,
        config: ShipperConfig | None = None,
        config_loader: Callable[[str | None], ShipperConfig] = load_config,
    ):
        self.settings = settings
        self.discovery_factory = discovery_factory
        self.delivery = delivery
        self.config = config or ShipperConfig()
        self.config_loader = config_loader
        self.registry = SourceRegistry(settings.default_token, self.config)
        self.discovery: DiscoverySource | None = None
        # maxsize=1: a slow endpoint throttles every tailer
        self.channel: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._tailers: dict[SourceDescriptor, asyncio.Task] = {}
        self._watch_task: asyncio.Task | None = None

    @property
    def tailer_count(self) -> int:
        return len(self._tailers)

    async def start(self, config: ShipperConfig | None = None) -> None:
        """Build a fresh registry and start tailing everything discovery finds."""
        if config is not None:
            self.config = config
        self.registry = SourceRegistry(self.settings.default_token, self.config)
        self.discovery = self.discovery_factory(self.config)

        await self.discovery.enumerate(self)
        if self.discovery.watches:
            self._watch_task = asyncio.create_task(self.discovery.watch(self), name="discovery-watch")
            self._watch_task.add_done_callback(self._watch_done)

        logger.info("Shipping logs from %d sources", len(self.registry))

    @staticmethod
    def _watch_done(task: asyncio.Task) -> None:
        # Running tailers keep going without discovery
        if not task.cancelled() and task.exception() is not None:
            logger.error("Discovery watch failed: %s", task.exception())

    def _start_tailer(self, descriptor: SourceDescriptor) -> None:
        tailer = Tailer(
            descriptor,
            self.discovery.open_source(descriptor),
            self.channel,
            parse_structured=self.discovery.parse_structured,
            named=self.discovery.named_lines,
        )
        task = asyncio.create_task(tailer.run(), name=f"tail-{descriptor.source_id[:12]}")
        self._tailers[descriptor] = task
        task.add_done_callback(lambda t: self._tailer_done(descriptor, t))

    def _tailer_done(self, descriptor: SourceDescriptor, task: asyncio.Task) -> None:
        self._tailers.pop(descriptor, None)
        # A stream that ended on its own means the source went away
        if self.registry.discard(descriptor):
            logger.info("Stopped watching %s", descriptor.label)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Tailer for %s failed: %s", descriptor.label, task.exception())

    async def _stop(self, descriptor: SourceDescriptor) -> None:
        """Quit handshake with the descriptor's tailer."""
        if await descriptor.quit.stop(self.settings.quit_timeout):
            return

        logger.warning(
            "Tailer for %s did not stop within %.1fs, cancelling",
            descriptor.label, self.settings.quit_timeout,
        )
        task = self._tailers.get(descriptor)
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def add_source(
        self,
        source_id: str,
        location: str,
        overrides: SourceOverrides | None = None,
        default_name: str | None = None,
    ) -> None:
        previous = self.registry.lookup(source_id)
        if previous is not None:
            await self._stop(previous)
            self.registry.discard(previous)

        descriptor = self.registry.add(source_id, location, overrides, default_name)
        if descriptor is not None:
            self._start_tailer(descriptor)

    async def remove_source(self, source_id: str) -> None:
        descriptor = self.registry.lookup(source_id)
        if descriptor is None:
            return
        await self._stop(descriptor)
        self.registry.discard(descriptor)
        logger.debug("Container log watch removed: %s", source_id)

    async def teardown(self) -> None:
        """Stop discovery, then stop every tailer and wait for all of them."""
        watch_task, self._watch_task = self._watch_task, None
        if watch_task is not None:
            watch_task.cancel()
            await asyncio.gather(watch_task, return_exceptions=True)

        if self.discovery is not None:
            await self.discovery.close()

        descriptors = self.registry.descriptors()
        await asyncio.gather(*(self._stop(d) for d in descriptors))
        for descriptor in descriptors:
            self.registry.discard(descriptor)
        logger.info("Stopped %d tailers", len(descriptors))

    async def reload(self) -> None:
        await self.teardown()
        try:
            config = self.config_loader(self.settings.config_file)
        except ConfigError as e:
            logger.error("Reload failed, keeping previous configuration: %s", e)
            config = self.config
        await self.start(config)


class LifecycleController:
    """
    Drives the pipeline through starting, running, reloading and shutting down.

    SIGINT/SIGTERM shut down, SIGHUP reloads. A reload requested outside the
    running state is ignored. A shutdown requested while starting or
    reloading runs once that step completes.
    """

    def __init__(self, pipeline: Pipeline, drain_timeout: float = 5.0):
        self.pipeline = pipeline
        self.drain_timeout = drain_timeout
        self.state = State.STARTING
        self._done = asyncio.Event()
        self._deferred_shutdown = False
        self._error: BaseException | None = None
        self._pending: set[asyncio.Task] = set()

    def _spawn(self, action: Callable) -> None:
        task = asyncio.create_task(action())
        self._pending.add(task)
        task.add_done_callback(self._action_done)

    def _action_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._error = task.exception()
            self._done.set()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._spawn, self.shutdown)
        loop.add_signal_handler(signal.SIGHUP, self._spawn, self.reload)

    def remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM, signal.SIGHUP):
            loop.remove_signal_handler(sig)

    async def shutdown(self) -> None:
        if self.state is State.SHUTTING_DOWN:
            logger.debug("Shutdown already in progress")
            return
        if self.state in (State.STARTING, State.RELOADING):
            logger.info("Shutdown requested while %s, deferring", self.state.value)
            self._deferred_shutdown = True
            return

        self.state = State.SHUTTING_DOWN
        logger.info("Shutting down")
        try:
            await self.pipeline.teardown()
        finally:
            self._done.set()

    async def reload(self) -> None:
        if self.state is not State.RUNNING:
            logger.warning("Reload requested while %s, ignoring", self.state.value)
            return

        self.state = State.RELOADING
        logger.info("Reloading configuration")
        try:
            await self.pipeline.reload()
        finally:
            self.state = State.RUNNING

        if self._deferred_shutdown:
            await self.shutdown()

    async def _drain(self, delivery_task: asyncio.Task) -> None:
        """Give the delivery task a moment to send what is still queued."""
        if delivery_task.done() or self.pipeline.channel.empty():
            return
        try:
            await asyncio.wait_for(self.pipeline.channel.join(), self.drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("Gave up waiting for queued lines to be delivered")

    async def run(self, install_signals: bool = True) -> None:
        """
        Connect, start the pipeline and deliver until shut down.

        Raises DeliveryError (or TrustError) when delivery fails for good.
        """
        pipeline = self.pipeline
        await pipeline.delivery.connect()

        if install_signals:
            self.install_signal_handlers()

        delivery_task = asyncio.create_task(pipeline.delivery.run(pipeline.channel), name="delivery")
        done_task = asyncio.create_task(self._done.wait())
        try:
            await pipeline.start()
            self.state = State.RUNNING
            if self._deferred_shutdown:
                await self.shutdown()

            await asyncio.wait({delivery_task, done_task}, return_when=asyncio.FIRST_COMPLETED)

            if delivery_task.done():
                delivery_task.result()
            if self._error is not None:
                raise self._error
            await self._drain(delivery_task)
        finally:
            if install_signals:
                self.remove_signal_handlers()
            if self.state is not State.SHUTTING_DOWN:
                self.state = State.SHUTTING_DOWN
                await pipeline.teardown()
            for task in (delivery_task, done_task, *self._pending):
                task.cancel()
            await asyncio.gather(delivery_task, done_task, *self._pending, return_exceptions=True)
            await pipeline.delivery.close()
