"""gpsd shared-memory export.

gpsd publishes its ``gps_data_t`` into a SysV segment wrapped by two bookend
counters. Only the leading fix block is mapped here; the rest of the struct
varies between gpsd releases, so satellites and DOPs are reported unknown.
"""

from __future__ import annotations

import asyncio
import ctypes
import ctypes.util
import logging
import math
import os

from ..fix import Fix, FixMode, FixStatus, coerce_mode
from .base import FixCallback, FixSource, SourceConnectionError

logger = logging.getLogger(__name__)

SHM_RDONLY = 0o10000


class _Timespec(ctypes.Structure):
    _fields_ = [("tv_sec", ctypes.c_long), ("tv_nsec", ctypes.c_long)]


class _FixBlock(ctypes.Structure):
    _fields_ = [
        ("time", _Timespec),
        ("mode", ctypes.c_int),
        ("status", ctypes.c_int),
        ("ept", ctypes.c_double),
        ("latitude", ctypes.c_double),
        ("epy", ctypes.c_double),
        ("longitude", ctypes.c_double),
        ("epx", ctypes.c_double),
        ("altitude", ctypes.c_double),
        ("alt_hae", ctypes.c_double),
    ]


class ShmExportHeader(ctypes.Structure):
    _fields_ = [
        ("bookend1", ctypes.c_int),
        ("set", ctypes.c_uint64),
        ("online", _Timespec),
        ("gps_fd", ctypes.c_int),
        ("fix", _FixBlock),
    ]


def fix_from_header(header: ShmExportHeader) -> Fix:
    block = header.fix
    mode = coerce_mode(block.mode)
    altitude = block.alt_hae if not math.isnan(block.alt_hae) else block.altitude
    status = block.status
    if status not in (FixStatus.NO_FIX, FixStatus.FIX, FixStatus.DGPS_FIX):
        status = FixStatus.FIX if mode >= FixMode.MODE_2D else FixStatus.NO_FIX
    return Fix(
        latitude=block.latitude,
        longitude=block.longitude,
        time=block.time.tv_sec + block.time.tv_nsec / 1e9,
        mode=mode,
        altitude=altitude,
        status=status,
        tag="shm",
    )


def _load_libc() -> ctypes.CDLL:
    libc = ctypes.CDLL(ctypes.util.find_library("c"), use_errno=True)
    libc.shmget.argtypes = [ctypes.c_int, ctypes.c_size_t, ctypes.c_int]
    libc.shmget.restype = ctypes.c_int
    libc.shmat.argtypes = [ctypes.c_int, ctypes.c_void_p, ctypes.c_int]
    libc.shmat.restype = ctypes.c_void_p
    libc.shmdt.argtypes = [ctypes.c_void_p]
    libc.shmdt.restype = ctypes.c_int
    return libc


def _snapshot(addr: int, size: int) -> bytes:
    return ctypes.string_at(addr, size)


class ShmFixSource(FixSource):
    name = "shm"
    description = "shared memory"

    def __init__(self, *, key: int, poll_interval_seconds: float = 0.25) -> None:
        self._key = key
        self._poll_interval_seconds = max(0.01, poll_interval_seconds)
        self._libc: ctypes.CDLL | None = None
        self._addr: int | None = None
        self._last_bookend: int | None = None

    async def open(self) -> None:
        try:
            libc = _load_libc()
        except (OSError, AttributeError) as exc:
            raise SourceConnectionError(f"shared memory unavailable: {exc}") from exc
        shmid = libc.shmget(self._key, ctypes.sizeof(ShmExportHeader), 0)
        if shmid == -1:
            err = ctypes.get_errno()
            raise SourceConnectionError(
                f"no gpsd shared memory segment at key {self._key:#x}: {os.strerror(err)}"
            )
        addr = libc.shmat(shmid, None, SHM_RDONLY)
        if addr is None or addr == ctypes.c_void_p(-1).value:
            err = ctypes.get_errno()
            raise SourceConnectionError(f"cannot attach gpsd shared memory: {os.strerror(err)}")
        self._libc = libc
        self._addr = addr
        logger.info("attached gpsd shared memory segment %#x", self._key)

    def read_header(self) -> ShmExportHeader | None:
        """Copy the export header; None while gpsd is mid-update or nothing changed.

        The trailing bookend moves between gpsd releases, so the block is
        copied twice and both copies must agree with the leading bookend.
        """
        if self._addr is None:
            raise SourceConnectionError("source is not open")
        size = ctypes.sizeof(ShmExportHeader)
        before = ctypes.c_int.from_address(self._addr).value
        first = _snapshot(self._addr, size)
        second = _snapshot(self._addr, size)
        after = ctypes.c_int.from_address(self._addr).value
        if before != after or first != second:
            return None
        header = ShmExportHeader.from_buffer_copy(first)
        if header.bookend1 != before:
            return None
        if before == self._last_bookend:
            return None
        self._last_bookend = before
        return header

    async def stream(self, on_fix: FixCallback) -> None:
        while True:
            header = self.read_header()
            if header is not None:
                on_fix(fix_from_header(header))
            await asyncio.sleep(self._poll_interval_seconds)

    async def close(self) -> None:
        addr = self._addr
        self._addr = None
        if addr is None or self._libc is None:
            return
        self._libc.shmdt(addr)
