"""CLI interface for Osprey."""

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Annotated, Optional

import docker
import docker.errors
import typer

from . import __version__
from .config import DEFAULT_CONFIG_FILE, DEFAULT_HOST, Settings, ShipperConfig, load_config
from .delivery import DeliveryConnection, parse_address
from .discovery import DirectoryDiscovery, DiscoverySource, DockerDiscovery
from .errors import OspreyError
from .pipeline import LifecycleController, Pipeline
from . import output


app = typer.Typer(
    name="osprey",
    help="Osprey - ship container logs to a remote endpoint over TLS",
    no_args_is_help=True,
)
logger = logging.getLogger("osprey.cli")


def version_callback(value: bool) -> None:
    if value:
        output.console.print(f"Osprey v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        Optional[bool],
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
    default_token: Annotated[
        Optional[str],
        typer.Option("--default-token", "-t", envvar="OSPREY_DEFAULT_TOKEN", help="Token for containers without one of their own"),
    ] = None,
    config_file: Annotated[
        str,
        typer.Option("--config", "-c", envvar="OSPREY_CONFIG_FILE", help="Per-container configuration file (YAML)"),
    ] = DEFAULT_CONFIG_FILE,
    host: Annotated[
        str,
        typer.Option("--host", envvar="OSPREY_HOST", help="host:port of the TLS log endpoint"),
    ] = DEFAULT_HOST,
    pem_file: Annotated[
        Optional[str],
        typer.Option("--pem-file", envvar="OSPREY_PEM_FILE", help="CA certificates for the endpoint (default: system CAs)"),
    ] = None,
    log_level: Annotated[
        str,
        typer.Option("--log-level", "-l", envvar="OSPREY_LOG_LEVEL", help="debug, info, warning, error or fatal"),
    ] = "warning",
    quit_timeout: Annotated[
        float,
        typer.Option("--quit-timeout", envvar="OSPREY_QUIT_TIMEOUT", help="Seconds to wait for a tailer to stop"),
    ] = 10.0,
) -> None:
    """Osprey - tail container logs and ship them, token first, to a log endpoint."""
    ctx.obj = Settings(
        default_token=default_token or "",
        host=host,
        config_file=config_file,
        pem_file=pem_file,
        log_level=log_level,
        quit_timeout=quit_timeout,
    )


def _usage_error(ctx: typer.Context, message: str) -> None:
    output.print_error(message)
    output.console.print(ctx.get_help())
    raise typer.Exit(1)


def _check_common(ctx: typer.Context, settings: Settings) -> None:
    if not settings.default_token:
        _usage_error(ctx, "Required --default-token missing.")
    if not settings.host:
        _usage_error(ctx, "Required --host missing.")
    try:
        parse_address(settings.host)
    except ValueError as e:
        _usage_error(ctx, str(e))


async def _serve(
    settings: Settings,
    discovery_factory: Callable[[ShipperConfig], DiscoverySource],
    config: ShipperConfig,
) -> DeliveryConnection:
    delivery = DeliveryConnection(settings.host, settings.pem_file)
    pipeline = Pipeline(settings, discovery_factory, delivery, config=config)
    await LifecycleController(pipeline).run()
    return delivery


def _run(
    settings: Settings,
    strategy: str,
    discovery_factory: Callable[[ShipperConfig], DiscoverySource],
) -> None:
    try:
        config = load_config(settings.config_file)
        output.print_startup(strategy, settings.host)
        delivery = asyncio.run(_serve(settings, discovery_factory, config))
    except OspreyError as e:
        logger.critical("%s", e)
        raise typer.Exit(1)

    output.print_summary(delivery.lines_sent, delivery.reconnects)


@app.command()
def files(
    ctx: typer.Context,
    log_directory: Annotated[
        Optional[Path],
        typer.Option("--log-directory", "-d", envvar="OSPREY_LOG_DIRECTORY", help="Docker containers directory"),
    ] = None,
    watch: Annotated[
        bool,
        typer.Option("--watch/--no-watch", envvar="OSPREY_WATCH_LOG_DIRECTORY", help="Watch the directory for new/removed containers"),
    ] = False,
    parse_docker_logs: Annotated[
        bool,
        typer.Option("--parse-docker-logs/--raw", envvar="OSPREY_PARSE_DOCKER_LOGS", help="Decode Docker's JSON log format"),
    ] = True,
) -> None:
    """Tail */*.log files under Docker's containers directory."""
    settings: Settings = ctx.obj
    _check_common(ctx, settings)
    if log_directory is None:
        _usage_error(ctx, "Required --log-directory missing.")
    if not log_directory.is_dir():
        _usage_error(ctx, f"{log_directory} is not a directory.")

    output.setup_logging(settings.log_level)

    def discovery_factory(config: ShipperConfig) -> DiscoverySource:
        return DirectoryDiscovery(
            log_directory,
            config,
            watch=watch,
            parse_structured=parse_docker_logs,
        )

    _run(settings, "file", discovery_factory)


@app.command("docker")
def docker_command(
    ctx: typer.Context,
    docker_host: Annotated[
        Optional[str],
        typer.Option("--docker-host", envvar="DOCKER_HOST", help="Docker daemon URL (default: from environment)"),
    ] = None,
    tail: Annotated[
        int,
        typer.Option("--tail", help="Existing lines to send per container (0 = none, -1 = all)"),
    ] = 0,
) -> None:
    """Follow running containers through the Docker API."""
    settings: Settings = ctx.obj
    _check_common(ctx, settings)
    output.setup_logging(settings.log_level)

    try:
        client = docker.DockerClient(base_url=docker_host) if docker_host else docker.from_env()
    except docker.errors.DockerException as e:
        output.print_error(f"Unable to connect to Docker: {e}")
        raise typer.Exit(1)

    _run(settings, "docker", lambda config: DockerDiscovery(client, tail=tail))


@app.command("help")
def help_command(ctx: typer.Context) -> None:
    """Show usage and exit."""
    output.console.print(ctx.parent.get_help())


if __name__ == "__main__":
    app()
