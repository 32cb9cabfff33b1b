from __future__ import annotations

import logging

from .fix import Fix
from .gpx_writer import GpxWriter
from .segmenter import Decision, SegmentPolicy, SegmentState, apply, classify

logger = logging.getLogger(__name__)


class TrackRecorder:
    """Feeds fixes through the segmentation policy into a GPX writer."""

    def __init__(
        self,
        writer: GpxWriter,
        policy: SegmentPolicy,
        state: SegmentState | None = None,
    ) -> None:
        self.writer = writer
        self.policy = policy
        self.state = state if state is not None else SegmentState()
        self.discarded: dict[str, int] = {}

    def record_fix(self, fix: Fix) -> Decision:
        decision = classify(fix, self.state, self.policy)
        if not decision.accepted:
            reason = decision.reason or "unknown"
            self.discarded[reason] = self.discarded.get(reason, 0) + 1
            logger.debug("discarding fix at %s: %s", fix.time, reason)
            return decision
        if decision.starts_new_segment and self.state.segment_open:
            logger.debug("time gap before %s, starting new track segment", fix.time)
            self.writer.end_segment()
            self.state.segment_open = False
        if not self.state.segment_open:
            self.writer.start_segment()
            self.state.segment_open = True
        apply(fix, self.state, self.policy)
        self.writer.write_point(fix, fix.time)
        return decision

    def close(self) -> None:
        """Finalize the document; the open segment, if any, is closed first."""
        self.writer.finalize()
        self.state.segment_open = False
