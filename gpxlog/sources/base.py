from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Callable

from ..fix import Fix

DEFAULT_SERVER = "localhost"
DEFAULT_PORT = "2947"

FixCallback = Callable[[Fix], object]


class SourceConnectionError(ConnectionError):
    pass


@dataclass(frozen=True, slots=True)
class SourceSpec:
    server: str = DEFAULT_SERVER
    port: str = DEFAULT_PORT
    device: str | None = None


def parse_source_spec(text: str | None) -> SourceSpec:
    """Parse ``server[:port[:device]]``; IPv6 servers go in brackets."""
    if text is None or not text.strip():
        return SourceSpec()
    text = text.strip()
    server = DEFAULT_SERVER
    rest = ""
    if text.startswith("["):
        close = text.find("]")
        if close < 0:
            raise ValueError(f"unterminated IPv6 address in source: {text}")
        server = text[1:close] or DEFAULT_SERVER
        rest = text[close + 1 :]
        if rest and not rest.startswith(":"):
            raise ValueError(f"malformed source: {text}")
        rest = rest[1:]
    else:
        head, _sep, rest = text.partition(":")
        server = head or DEFAULT_SERVER
    port = DEFAULT_PORT
    device = None
    if rest:
        port_text, _sep, device_text = rest.partition(":")
        port = port_text or DEFAULT_PORT
        device = device_text or None
    return SourceSpec(server=server, port=port, device=device)


class FixSource(abc.ABC):
    """A live stream of fixes from one export method.

    ``open`` raises SourceConnectionError when the source is unreachable.
    ``stream`` invokes the callback once per fix, in arrival order, until the
    source is exhausted or the task is cancelled. ``close`` is idempotent.
    """

    name: str = ""
    description: str = ""

    @abc.abstractmethod
    async def open(self) -> None: ...

    @abc.abstractmethod
    async def stream(self, on_fix: FixCallback) -> None: ...

    @abc.abstractmethod
    async def close(self) -> None: ...
