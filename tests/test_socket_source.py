import asyncio
import io
import xml.etree.ElementTree as ET

import orjson
import pytest

from gpxlog.gpx_writer import GpxWriter
from gpxlog.lifecycle import ShutdownController, run_logger
from gpxlog.recorder import TrackRecorder
from gpxlog.segmenter import SegmentPolicy
from gpxlog.sources import SourceConnectionError, SourceSpec
from gpxlog.sources.sockets import SocketFixSource

GPX_NS = {"gpx": "http://www.topografix.com/GPX/1/1"}


def _tpv(t, lat=46.5, lon=7.5, mode=3):
    return {"class": "TPV", "device": "/dev/ttyUSB0", "mode": mode, "time": t, "lat": lat, "lon": lon}


async def _fake_gpsd(reports, received):
    async def _handle(reader, writer):
        received.append(await reader.readline())
        writer.write(b'{"class":"VERSION","release":"3.25","proto_major":3}\n')
        for report in reports:
            writer.write(orjson.dumps(report) + b"\n")
        await writer.drain()
        writer.close()

    server = await asyncio.start_server(_handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    return server, port


@pytest.mark.asyncio
async def test_socket_source_streams_fixes():
    received = []
    reports = [
        {"class": "SKY", "uSat": 8, "hdop": 0.9, "vdop": 1.1, "pdop": 1.4},
        _tpv("1970-01-01T00:01:40.00Z"),
        _tpv("1970-01-01T00:01:41.00Z", mode=2),
    ]
    server, port = await _fake_gpsd(reports, received)
    async with server:
        source = SocketFixSource(SourceSpec("127.0.0.1", str(port), "/dev/ttyUSB0"))
        await source.open()
        fixes = []
        await asyncio.wait_for(source.stream(fixes.append), timeout=5.0)
        await source.close()
        await source.close()
    assert received == [b'?WATCH={"enable":true,"json":true,"device":"/dev/ttyUSB0"};\n']
    assert [fix.time for fix in fixes] == [100.0, 101.0]
    assert fixes[0].satellites_used == 8
    assert fixes[1].pdop == 1.4
    assert fixes[0].tag == "/dev/ttyUSB0"


@pytest.mark.asyncio
async def test_socket_source_connection_refused():
    server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()
    source = SocketFixSource(SourceSpec("127.0.0.1", str(port)), connect_timeout_seconds=2.0)
    with pytest.raises(SourceConnectionError):
        await source.open()


@pytest.mark.asyncio
async def test_socket_source_bad_port():
    source = SocketFixSource(SourceSpec("127.0.0.1", "gpsd"))
    with pytest.raises(ConnectionError):
        await source.open()


@pytest.mark.asyncio
async def test_socket_stream_to_gpx_document():
    received = []
    reports = [
        _tpv("1970-01-01T00:01:40.00Z"),
        _tpv("1970-01-01T00:01:42.00Z"),
        {"class": "TPV", "mode": 1, "time": "1970-01-01T00:01:43.00Z"},
        _tpv("1970-01-01T00:03:20.00Z"),
    ]
    server, port = await _fake_gpsd(reports, received)
    sink = io.StringIO()
    recorder = TrackRecorder(
        GpxWriter(sink, clock=lambda: 0.0, close_sink=False),
        SegmentPolicy(timeout_seconds=5.0),
    )
    async with server:
        source = SocketFixSource(SourceSpec("127.0.0.1", str(port)))
        exit_code = await asyncio.wait_for(
            run_logger(source, recorder, install_signals=False),
            timeout=5.0,
        )
    assert exit_code == 0
    root = ET.fromstring(sink.getvalue().encode("utf-8"))
    segments = root.findall("gpx:trk/gpx:trkseg", GPX_NS)
    assert [len(seg.findall("gpx:trkpt", GPX_NS)) for seg in segments] == [2, 1]


@pytest.mark.asyncio
async def test_socket_stop_skips_buffered_reports():
    received = []
    reports = [_tpv(f"1970-01-01T00:01:4{step}.00Z") for step in range(5)]
    server, port = await _fake_gpsd(reports, received)
    sink = io.StringIO()
    recorder = TrackRecorder(
        GpxWriter(sink, clock=lambda: 0.0, close_sink=False),
        SegmentPolicy(timeout_seconds=5.0),
    )
    source = SocketFixSource(SourceSpec("127.0.0.1", str(port)))
    controller = ShutdownController(recorder, source)
    record_fix = recorder.record_fix

    def _record_then_stop(fix):
        decision = record_fix(fix)
        controller.request_stop("SIGINT")
        return decision

    recorder.record_fix = _record_then_stop
    async with server:
        exit_code = await asyncio.wait_for(
            run_logger(source, recorder, install_signals=False, controller=controller),
            timeout=5.0,
        )
    assert exit_code == 0
    assert recorder.writer.points_written == 1
    root = ET.fromstring(sink.getvalue().encode("utf-8"))
    assert len(root.findall("gpx:trk/gpx:trkseg/gpx:trkpt", GPX_NS)) == 1
