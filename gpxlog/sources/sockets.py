from __future__ import annotations

import asyncio
import contextlib
import logging

from ..decode import FixAssembler, build_watch_command, decode_gpsd_line
from .base import FixCallback, FixSource, SourceConnectionError, SourceSpec

logger = logging.getLogger(__name__)

_READ_LIMIT_BYTES = 1 << 20


class SocketFixSource(FixSource):
    """gpsd JSON reports over a TCP connection."""

    name = "sockets"
    description = "JSON via sockets"

    def __init__(self, spec: SourceSpec, *, connect_timeout_seconds: float = 10.0) -> None:
        self._spec = spec
        self._connect_timeout_seconds = connect_timeout_seconds
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self.assembler = FixAssembler()

    @property
    def spec(self) -> SourceSpec:
        return self._spec

    async def open(self) -> None:
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(
                    self._spec.server,
                    int(self._spec.port),
                    limit=_READ_LIMIT_BYTES,
                ),
                timeout=self._connect_timeout_seconds,
            )
        except (OSError, ValueError, asyncio.TimeoutError) as exc:
            raise SourceConnectionError(
                f"no gpsd running or network error: {self._spec.server}:{self._spec.port}: {exc}"
            ) from exc
        self._writer.write(build_watch_command(self._spec.device))
        try:
            await self._writer.drain()
        except OSError as exc:
            await self.close()
            raise SourceConnectionError(f"failed to enable watch mode: {exc}") from exc
        logger.info("connected to gpsd at %s:%s", self._spec.server, self._spec.port)

    async def stream(self, on_fix: FixCallback) -> None:
        if self._reader is None:
            raise SourceConnectionError("source is not open")
        while True:
            line = await self._reader.readline()
            if not line:
                logger.warning("gpsd closed the connection")
                return
            line = line.strip()
            if not line:
                continue
            result = decode_gpsd_line(line)
            if result.json_error:
                logger.debug("undecodable gpsd report: %r", result.json_error_sample)
            fix = self.assembler.update(result)
            if fix is not None:
                on_fix(fix)
                # let pending signal callbacks run between buffered reports
                await asyncio.sleep(0)

    async def close(self) -> None:
        writer = self._writer
        self._writer = None
        self._reader = None
        if writer is None:
            return
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
