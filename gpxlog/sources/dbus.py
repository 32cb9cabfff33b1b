"""gpsd DBUS broadcast: the ``fix`` signal on interface ``org.gpsd``."""

from __future__ import annotations

import contextlib
import logging
from typing import Any, Sequence

from jeepney import MatchRule, message_bus
from jeepney.io.asyncio import Proxy, open_dbus_router

from ..fix import Fix, FixMode, FixStatus, coerce_mode
from .base import FixCallback, FixSource, SourceConnectionError

logger = logging.getLogger(__name__)

GPSD_DBUS_INTERFACE = "org.gpsd"
GPSD_DBUS_PATH = "/org/gpsd"
GPSD_DBUS_MEMBER = "fix"


def fix_from_signal_body(body: Sequence[Any]) -> Fix:
    """Build a Fix from the gpsd ``fix`` signal arguments.

    Argument order: time, mode, ept, latitude, longitude, eph, altitude, epv,
    track, epd, speed, eps, climb, epc, device name.
    """
    if len(body) < 15:
        raise ValueError(f"short gpsd fix signal: {len(body)} arguments")
    mode = coerce_mode(body[1])
    return Fix(
        latitude=float(body[3]),
        longitude=float(body[4]),
        time=float(body[0]),
        mode=mode,
        altitude=float(body[6]),
        status=FixStatus.FIX if mode >= FixMode.MODE_2D else FixStatus.NO_FIX,
        tag=str(body[14]),
    )


class DbusFixSource(FixSource):
    name = "dbus"
    description = "DBUS broadcast"

    def __init__(self, *, bus: str = "SYSTEM", queue_size: int = 64) -> None:
        self._bus = bus
        self._queue_size = queue_size
        self._stack: contextlib.AsyncExitStack | None = None
        self._router: Any = None
        self._rule = MatchRule(
            type="signal",
            interface=GPSD_DBUS_INTERFACE,
            path=GPSD_DBUS_PATH,
            member=GPSD_DBUS_MEMBER,
        )

    async def open(self) -> None:
        stack = contextlib.AsyncExitStack()
        try:
            self._router = await stack.enter_async_context(open_dbus_router(bus=self._bus))
            await Proxy(message_bus, self._router).AddMatch(self._rule)
        except (OSError, KeyError, ValueError) as exc:
            await stack.aclose()
            raise SourceConnectionError(f"cannot subscribe to gpsd on the {self._bus} bus: {exc}") from exc
        self._stack = stack
        logger.info("listening for gpsd fixes on the %s bus", self._bus)

    async def stream(self, on_fix: FixCallback) -> None:
        if self._router is None:
            raise SourceConnectionError("source is not open")
        with self._router.filter(self._rule, bufsize=self._queue_size) as queue:
            while True:
                message = await queue.get()
                try:
                    fix = fix_from_signal_body(message.body)
                except (TypeError, ValueError) as exc:
                    logger.debug("ignoring malformed gpsd signal: %s", exc)
                    continue
                on_fix(fix)

    async def close(self) -> None:
        stack = self._stack
        self._stack = None
        self._router = None
        if stack is None:
            return
        await stack.aclose()
