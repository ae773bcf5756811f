"""Runtime settings and the per-container configuration file."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)


DEFAULT_HOST = "data.logentries.com:20000"
DEFAULT_CONFIG_FILE = "config.yml"


@dataclass
class Settings:
    """Options given on the command line or through the environment."""

    default_token: str
    host: str = DEFAULT_HOST
    config_file: str | None = DEFAULT_CONFIG_FILE
    pem_file: str | None = None
    log_level: str = "warning"
    quit_timeout: float = 10.0


@dataclass
class SourceConfig:
    """Token and display name configured for one source ID."""

    token: str | None = None
    name: str | None = None


@dataclass
class ShipperConfig:
    """Contents of the configuration file."""

    sources: dict[str, SourceConfig] = field(default_factory=dict)
    ignore: set[str] = field(default_factory=set)

    def get(self, source_id: str) -> SourceConfig | None:
        return self.sources.get(source_id)

    def match(self, filename: str) -> str | None:
        """
        Return the configured ID that is a prefix of filename, if any.

        This lets a short configured ID stand in for a full container ID.
        """
        for source_id in self.sources:
            if filename.startswith(source_id):
                return source_id
        return None


def _parse(data: object, path: str) -> ShipperConfig:
    if data is None:
        return ShipperConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")

    containers = data.get("containers") or {}
    if not isinstance(containers, dict):
        raise ConfigError(f"{path}: 'containers' must be a mapping")

    sources: dict[str, SourceConfig] = {}
    for source_id, entry in containers.items():
        entry = entry or {}
        if not isinstance(entry, dict):
            raise ConfigError(f"{path}: entry for {source_id!r} must be a mapping")
        sources[str(source_id)] = SourceConfig(
            token=entry.get("token") or None,
            name=entry.get("name") or None,
        )

    ignore = data.get("ignore") or []
    if not isinstance(ignore, list):
        raise ConfigError(f"{path}: 'ignore' must be a list")

    return ShipperConfig(sources=sources, ignore={str(i) for i in ignore})


def load_config(path: str | Path | None) -> ShipperConfig:
    """Load the YAML configuration file. A missing file gives an empty config."""
    if path is None:
        return ShipperConfig()

    path = Path(path)
    if not path.exists():
        logger.info("Config file %s not found, using defaults", path)
        return ShipperConfig()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Unable to read config file {path}: {e}") from e

    config = _parse(data, str(path))
    logger.info(
        "Loaded config from %s (%d containers, %d ignored)",
        path, len(config.sources), len(config.ignore),
    )
    return config
