"""Base class for log sources and the line record they feed."""

import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass


@dataclass
class LogLine:
    """A single line of output, tagged with the token of its source."""

    token: str
    payload: bytes
    name: str | None = None

    @classmethod
    def from_docker_json(cls, token: str, raw: bytes | str, name: str | None = None) -> "LogLine":
        """
        Decode one record of Docker's json-file log format.

        Raises ValueError if the record is not a JSON object with a log field.
        """
        entry = json.loads(raw)
        if not isinstance(entry, dict) or "log" not in entry:
            raise ValueError(f"Not a Docker log entry: {raw!r}")

        message = str(entry["log"]).rstrip("\n")
        stream = entry.get("stream", "")
        return cls(token=token, payload=f"({stream}) {message}".encode("utf-8"), name=name)

    def to_bytes(self) -> bytes:
        """
        Wire form of the line.

        Without a name the token is prepended to the payload unchanged.
        With a name the line is ``<token> <name> <payload>`` newline terminated.
        """
        if self.name is None:
            return self.token.encode("utf-8") + self.payload

        data = f"{self.token} {self.name} ".encode("utf-8") + self.payload
        if not data.endswith(b"\n"):
            data += b"\n"
        return data

    def __str__(self) -> str:
        return self.to_bytes().decode("utf-8", errors="replace")


class LogSource(ABC):
    """Abstract base class for log sources."""

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def open(self) -> None:
        """
        Open the underlying stream.

        Raises SourceUnavailable (or OSError) if the source cannot be opened.
        """

    @abstractmethod
    async def stream(self) -> AsyncIterator[bytes]:
        """Stream raw units of output from the source."""
        yield  # type: ignore

    async def close(self) -> None:
        """Clean up resources."""
        pass
