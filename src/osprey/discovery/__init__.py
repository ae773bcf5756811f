"""Discovery strategies that find log sources."""

from .base import DiscoverySource, SourceListener
from .files import DirectoryDiscovery
from .docker import DockerDiscovery

__all__ = ["DiscoverySource", "SourceListener", "DirectoryDiscovery", "DockerDiscovery"]
