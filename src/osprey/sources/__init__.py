"""Log source implementations."""

from .base import LogLine, LogSource
from .file import FileSource
from .docker import DockerSource

__all__ = ["LogLine", "LogSource", "FileSource", "DockerSource"]
