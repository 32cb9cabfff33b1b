from __future__ import annotations

import math
from dataclasses import dataclass
from enum import IntEnum


class FixMode(IntEnum):
    NOT_SEEN = 0
    NO_FIX = 1
    MODE_2D = 2
    MODE_3D = 3


class FixStatus(IntEnum):
    NO_FIX = 0
    FIX = 1
    DGPS_FIX = 2


def coerce_mode(value: object) -> FixMode | int:
    """Map a raw mode to FixMode, keeping unrecognized integers as-is."""
    try:
        raw = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return FixMode.NOT_SEEN
    try:
        return FixMode(raw)
    except ValueError:
        return raw


@dataclass(frozen=True, slots=True)
class Fix:
    latitude: float
    longitude: float
    time: float
    mode: FixMode | int
    altitude: float = math.nan
    status: FixStatus | int = FixStatus.NO_FIX
    satellites_used: int = 0
    hdop: float = math.nan
    vdop: float = math.nan
    pdop: float = math.nan
    tag: str = ""

    @property
    def has_position(self) -> bool:
        return self.mode >= FixMode.MODE_2D
