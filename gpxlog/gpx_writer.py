"""Incremental GPX 1.1 writer.

Each operation appends well-formed markup and flushes the sink, so points
already written survive a crash. ``finalize`` always leaves a closed
document behind, whatever phase the writer was in.
"""

from __future__ import annotations

import math
import sys
import time
from enum import Enum
from typing import Callable, TextIO
from xml.sax.saxutils import escape

from . import __version__
from .fix import Fix, FixMode, FixStatus
from .timefmt import unix_to_iso8601

# track logs carry the gpsd project identity in creator and <src>
GENERATOR_NAME = "GPSD"
GENERATOR_URL = "https://gpsd.io/"

_FIX_NAMES = {
    FixMode.MODE_3D: "3d",
    FixMode.MODE_2D: "2d",
    FixMode.NO_FIX: "none",
}


class GpxWriterError(RuntimeError):
    pass


class WriterPhase(Enum):
    NOT_STARTED = "not_started"
    HEADER_WRITTEN = "header_written"
    SEGMENT_OPEN = "segment_open"
    SEGMENT_CLOSED = "segment_closed"
    FINALIZED = "finalized"


def fix_indicator(fix: Fix) -> str | None:
    if fix.status == FixStatus.DGPS_FIX:
        return "dgps"
    return _FIX_NAMES.get(fix.mode)


class GpxWriter:
    def __init__(
        self,
        sink: TextIO,
        *,
        generator: str = GENERATOR_NAME,
        version: str = __version__,
        url: str = GENERATOR_URL,
        clock: Callable[[], float] = time.time,
        close_sink: bool = True,
    ) -> None:
        self._sink = sink
        self._close_sink = close_sink
        self._generator = generator
        self._version = version
        self._url = url
        self._clock = clock
        self._phase = WriterPhase.NOT_STARTED
        self.points_written = 0
        self.segments_written = 0

    @property
    def phase(self) -> WriterPhase:
        return self._phase

    @property
    def segment_open(self) -> bool:
        return self._phase is WriterPhase.SEGMENT_OPEN

    def _emit(self, text: str) -> None:
        self._sink.write(text)
        self._sink.flush()

    def _require(self, *phases: WriterPhase, op: str) -> None:
        if self._phase not in phases:
            raise GpxWriterError(f"{op} not allowed in phase {self._phase.value}")

    def write_header(self) -> None:
        self._require(WriterPhase.NOT_STARTED, op="write_header")
        stamp = unix_to_iso8601(self._clock())
        self._emit(
            '<?xml version="1.0" encoding="utf-8"?>\n'
            f'<gpx version="1.1" creator="{escape(self._generator)} {escape(self._version)}'
            f' - {escape(self._url)}"\n'
            '        xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"\n'
            '        xmlns="http://www.topografix.com/GPX/1/1"\n'
            '        xsi:schemaLocation="http://www.topografix.com/GPX/1/1\n'
            '        http://www.topografix.com/GPX/1/1/gpx.xsd">\n'
            " <metadata>\n"
            f"  <time>{stamp}</time>\n"
            " </metadata>\n"
        )
        self._phase = WriterPhase.HEADER_WRITTEN

    def start_segment(self) -> None:
        self._require(
            WriterPhase.HEADER_WRITTEN,
            WriterPhase.SEGMENT_CLOSED,
            op="start_segment",
        )
        self._emit(
            " <trk>\n"
            f"  <src>{escape(self._generator)} {escape(self._version)}</src>\n"
            "  <trkseg>\n"
        )
        self._phase = WriterPhase.SEGMENT_OPEN
        self.segments_written += 1

    def write_point(self, fix: Fix, timestamp: float) -> None:
        self._require(WriterPhase.SEGMENT_OPEN, op="write_point")
        lines = [f'   <trkpt lat="{fix.latitude:f}" lon="{fix.longitude:f}">\n']
        if not math.isnan(fix.altitude):
            lines.append(f"    <ele>{fix.altitude:f}</ele>\n")
        lines.append(f"    <time>{unix_to_iso8601(timestamp)}</time>\n")
        lines.append(f'    <src>tag="{escape(fix.tag)}"</src>\n')
        indicator = fix_indicator(fix)
        if indicator is not None:
            lines.append(f"    <fix>{indicator}</fix>\n")
        if fix.mode > FixMode.NO_FIX and fix.satellites_used > 0:
            lines.append(f"    <sat>{fix.satellites_used:d}</sat>\n")
        for name, value in (("hdop", fix.hdop), ("vdop", fix.vdop), ("pdop", fix.pdop)):
            if not math.isnan(value):
                lines.append(f"    <{name}>{value:.1f}</{name}>\n")
        lines.append("   </trkpt>\n")
        self._emit("".join(lines))
        self.points_written += 1

    def end_segment(self) -> None:
        self._require(WriterPhase.SEGMENT_OPEN, op="end_segment")
        self._emit("  </trkseg>\n </trk>\n")
        self._phase = WriterPhase.SEGMENT_CLOSED

    def finalize(self) -> None:
        if self._phase is WriterPhase.FINALIZED:
            return
        try:
            if self._phase is WriterPhase.SEGMENT_OPEN:
                self.end_segment()
            if self._phase is not WriterPhase.NOT_STARTED:
                self._emit("</gpx>\n")
        finally:
            self._phase = WriterPhase.FINALIZED
            self._release_sink()

    def _release_sink(self) -> None:
        if not self._close_sink or self._sink in (sys.stdout, sys.__stdout__):
            self._sink.flush()
            return
        self._sink.close()
