import asyncio
import io
import os
import signal
import sys
import xml.etree.ElementTree as ET

import pytest

from gpxlog.fix import Fix, FixMode
from gpxlog.gpx_writer import GpxWriter, WriterPhase
import gpxlog.lifecycle as lifecycle
from gpxlog.config import Config
from gpxlog.lifecycle import ShutdownController, run_logger
from gpxlog.output import OutputTarget
from gpxlog.recorder import TrackRecorder
from gpxlog.segmenter import SegmentPolicy
from gpxlog.sources import FixSource, SourceConnectionError

GPX_NS = {"gpx": "http://www.topografix.com/GPX/1/1"}


class FakeSource(FixSource):
    name = "fake"
    description = "canned fixes"

    def __init__(
        self, fixes, *, hold=False, burst=False, after_fix=None, fail_with=None, open_error=None
    ):
        self.fixes = list(fixes)
        self.hold = hold
        self.burst = burst
        self.after_fix = after_fix
        self.fail_with = fail_with
        self.open_error = open_error
        self.opened = 0
        self.closed = 0

    async def open(self):
        self.opened += 1
        if self.open_error is not None:
            raise self.open_error

    async def stream(self, on_fix):
        for index, fix in enumerate(self.fixes):
            on_fix(fix)
            if self.after_fix is not None:
                self.after_fix(index)
            if not self.burst:
                await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with
        if self.hold:
            await asyncio.Event().wait()

    async def close(self):
        self.closed += 1


def _fix(t, lat=48.0, lon=11.0):
    return Fix(latitude=lat, longitude=lon, time=t, mode=FixMode.MODE_3D, tag="fake")


def _recorder():
    sink = io.StringIO()
    writer = GpxWriter(sink, clock=lambda: 0.0, close_sink=False)
    return TrackRecorder(writer, SegmentPolicy(timeout_seconds=5.0)), sink


def _points(sink):
    root = ET.fromstring(sink.getvalue().encode("utf-8"))
    return [
        len(seg.findall("gpx:trkpt", GPX_NS))
        for seg in root.findall("gpx:trk/gpx:trkseg", GPX_NS)
    ]


@pytest.mark.asyncio
async def test_stop_request_finalizes_once():
    recorder, sink = _recorder()
    source = FakeSource([_fix(100.0 + step) for step in range(5)], hold=True)
    controller = ShutdownController(recorder, source)

    def _after(index):
        if index == 0:
            controller.request_stop("SIGINT")
            # a second signal while stopping is ignored
            controller.request_stop("SIGTERM")

    source.after_fix = _after
    exit_code = await run_logger(source, recorder, install_signals=False, controller=controller)

    assert exit_code == 0
    assert controller.stop_reason == "SIGINT"
    assert controller.finalized
    assert source.closed == 1
    text = sink.getvalue()
    assert text.count("</gpx>") == 1
    assert text.count("</trkseg>") == 1
    assert _points(sink) == [1]
    assert recorder.writer.points_written == 1


@pytest.mark.asyncio
@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
async def test_sigterm_stops_logger():
    recorder, sink = _recorder()

    def _after(index):
        if index == 1:
            os.kill(os.getpid(), signal.SIGTERM)

    source = FakeSource([_fix(100.0), _fix(101.0)], hold=True, after_fix=_after)
    controller = ShutdownController(recorder, source)
    exit_code = await asyncio.wait_for(
        run_logger(source, recorder, controller=controller),
        timeout=5.0,
    )
    assert exit_code == 0
    assert controller.stop_reason == "SIGTERM"
    assert _points(sink) == [2]
    assert recorder.writer.phase is WriterPhase.FINALIZED


@pytest.mark.asyncio
async def test_stream_exhaustion_closes_document():
    recorder, sink = _recorder()
    source = FakeSource([_fix(100.0), _fix(101.0), _fix(300.0)])
    exit_code = await run_logger(source, recorder, install_signals=False)
    assert exit_code == 0
    assert _points(sink) == [2, 1]
    assert source.closed == 1


@pytest.mark.asyncio
async def test_no_fixes_yields_empty_document():
    recorder, sink = _recorder()
    exit_code = await run_logger(FakeSource([]), recorder, install_signals=False)
    assert exit_code == 0
    root = ET.fromstring(sink.getvalue().encode("utf-8"))
    assert root.findall("gpx:trk", GPX_NS) == []
    assert root.find("gpx:metadata/gpx:time", GPX_NS).text == "1970-01-01T00:00:00.00Z"


@pytest.mark.asyncio
async def test_connection_failure_exits_nonzero(capsys):
    recorder, sink = _recorder()
    source = FakeSource([], open_error=SourceConnectionError("can't connect to localhost:2947"))
    exit_code = await run_logger(source, recorder, install_signals=False)
    assert exit_code == 1
    assert sink.getvalue() == ""
    assert "can't connect to localhost:2947" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_stream_error_still_finalizes():
    recorder, sink = _recorder()
    source = FakeSource([_fix(100.0)], fail_with=ConnectionResetError("gpsd went away"))
    exit_code = await run_logger(source, recorder, install_signals=False)
    assert exit_code == 0
    assert _points(sink) == [1]
    assert source.closed == 1


@pytest.mark.asyncio
async def test_writer_error_exits_nonzero():
    recorder, sink = _recorder()
    # recorder believes a segment is open, writer does not
    recorder.state.segment_open = True
    exit_code = await run_logger(FakeSource([_fix(100.0)]), recorder, install_signals=False)
    assert exit_code == 1
    assert sink.getvalue().endswith("</gpx>\n")


@pytest.mark.asyncio
async def test_finalize_is_idempotent():
    recorder, sink = _recorder()
    source = FakeSource([])
    controller = ShutdownController(recorder, source)
    recorder.writer.write_header()
    await controller.finalize()
    await controller.finalize()
    recorder.close()
    assert sink.getvalue().count("</gpx>") == 1
    assert source.closed == 1


@pytest.mark.asyncio
async def test_stop_drops_fixes_delivered_in_one_burst():
    recorder, sink = _recorder()
    source = FakeSource([_fix(100.0 + step) for step in range(5)], burst=True)
    controller = ShutdownController(recorder, source)
    source.after_fix = lambda index: controller.request_stop("SIGINT")
    exit_code = await run_logger(source, recorder, install_signals=False, controller=controller)
    assert exit_code == 0
    assert _points(sink) == [1]
    assert recorder.discarded == {}


def test_keyboard_interrupt_releases_source(monkeypatch, tmp_path):
    async def _interrupted(source, recorder, **kwargs):
        raise KeyboardInterrupt

    monkeypatch.setattr(lifecycle, "run_logger", _interrupted)
    path = tmp_path / "track.gpx"
    stream = path.open("w", encoding="utf-8")
    source = FakeSource([])
    exit_code = lifecycle.run_gpxlogger(Config(), OutputTarget(stream=stream, path=path), source=source)
    assert exit_code == 0
    assert source.closed == 1
    assert stream.closed
    assert path.read_text(encoding="utf-8") == ""
