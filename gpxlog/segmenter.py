"""Track segmentation policy.

Decides, for every incoming fix, whether it is discarded, continues the open
track segment, or starts a new one. ``classify`` is a pure predicate;
``apply`` mutates the continuity memory and is only called for accepted
fixes.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from .fix import Fix, FixMode
from .geo import earth_distance

DISCARD_DUPLICATE_TIME = "duplicate_time"
DISCARD_NO_FIX = "no_fix"
DISCARD_INVALID_TIME = "invalid_time"
DISCARD_MIN_MOVE = "min_move"


@dataclass(frozen=True, slots=True)
class SegmentPolicy:
    timeout_seconds: float = 5.0
    min_move_meters: float = 0.0

    @property
    def distance_filter(self) -> bool:
        return self.min_move_meters > 0


@dataclass(slots=True)
class SegmentState:
    last_time: float | None = None
    last_latitude: float = 0.0
    last_longitude: float = 0.0
    first: bool = True
    segment_open: bool = False


@dataclass(frozen=True, slots=True)
class Decision:
    accepted: bool
    starts_new_segment: bool = False
    reason: str | None = None

    @classmethod
    def discard(cls, reason: str) -> "Decision":
        return cls(accepted=False, reason=reason)


def classify(fix: Fix, state: SegmentState, policy: SegmentPolicy) -> Decision:
    if math.isnan(fix.time):
        return Decision.discard(DISCARD_INVALID_TIME)
    if state.last_time is not None and fix.time == state.last_time:
        return Decision.discard(DISCARD_DUPLICATE_TIME)
    if fix.mode < FixMode.MODE_2D:
        return Decision.discard(DISCARD_NO_FIX)

    if policy.distance_filter and not state.first:
        moved = earth_distance(
            fix.latitude,
            fix.longitude,
            state.last_latitude,
            state.last_longitude,
        )
        if moved < policy.min_move_meters:
            return Decision.discard(DISCARD_MIN_MOVE)

    # Gaps in either direction split the track; receivers occasionally
    # step their clock backwards.
    starts_new = (
        state.first
        or state.last_time is None
        or abs(fix.time - state.last_time) > policy.timeout_seconds
        or not state.segment_open
    )
    return Decision(accepted=True, starts_new_segment=starts_new)


def apply(fix: Fix, state: SegmentState, policy: SegmentPolicy) -> None:
    state.last_time = fix.time
    state.first = False
    if policy.distance_filter:
        state.last_latitude = fix.latitude
        state.last_longitude = fix.longitude
