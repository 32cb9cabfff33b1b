"""Process lifecycle: run the fix loop and shut down cleanly exactly once.

Signal handlers only record the signal and set the stop event. The actual
finalize runs on the normal control path once the main coroutine observes
the stop, so it never races a half-written point. Fixes still queued when
the stop is seen are dropped.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys

from .config import Config
from .fix import Fix
from .gpx_writer import GpxWriter, GpxWriterError
from .output import OutputTarget
from .recorder import TrackRecorder
from .sources import FixSource, SourceConnectionError, build_source

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = tuple(
    sig
    for sig in (
        signal.SIGINT,
        getattr(signal, "SIGQUIT", None),
        signal.SIGTERM,
    )
    if sig is not None
)


class ShutdownController:
    def __init__(self, recorder: TrackRecorder, source: FixSource) -> None:
        self.recorder = recorder
        self.source = source
        self.stop_event = asyncio.Event()
        self.stop_reason: str | None = None
        self._finalized = False

    @property
    def finalized(self) -> bool:
        return self._finalized

    def request_stop(self, reason: str) -> None:
        if self.stop_event.is_set():
            return
        self.stop_reason = reason
        self.stop_event.set()

    async def finalize(self) -> None:
        if self._finalized:
            return
        self._finalized = True
        try:
            self.recorder.close()
        finally:
            await self.source.close()


def _install_signal_handlers(controller: ShutdownController) -> list[signal.Signals]:
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []

    def _request_stop(sig: signal.Signals) -> None:
        if controller.stop_event.is_set():
            return
        loop.call_soon_threadsafe(controller.request_stop, sig.name)

    for sig in SHUTDOWN_SIGNALS:
        try:
            loop.add_signal_handler(sig, _request_stop, sig)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            try:
                signal.signal(sig, lambda *_args, _sig=sig: _request_stop(_sig))
            except (ValueError, AttributeError):
                continue
    return installed


def _remove_signal_handlers(installed: list[signal.Signals]) -> None:
    loop = asyncio.get_running_loop()
    for sig in installed:
        with contextlib.suppress(ValueError, RuntimeError):
            loop.remove_signal_handler(sig)


def _log_stop_reason(reason: str) -> None:
    # Ctrl-C is routine, keep it out of the logs
    if reason == signal.SIGINT.name:
        logger.debug("exiting, %s received", reason)
    else:
        logger.info("exiting, signal %s received", reason)


async def run_logger(
    source: FixSource,
    recorder: TrackRecorder,
    *,
    install_signals: bool = True,
    controller: ShutdownController | None = None,
) -> int:
    controller = controller or ShutdownController(recorder, source)
    try:
        await source.open()
    except SourceConnectionError as exc:
        print(f"gpxlog: {exc}", file=sys.stderr)
        recorder.close()
        return 1

    def _record(fix: Fix) -> None:
        # fixes already buffered when the stop arrives are not logged
        if controller.stop_event.is_set():
            raise asyncio.CancelledError
        recorder.record_fix(fix)

    installed = _install_signal_handlers(controller) if install_signals else []
    exit_code = 0
    try:
        recorder.writer.write_header()
        stream_task = asyncio.create_task(source.stream(_record))
        stop_task = asyncio.create_task(controller.stop_event.wait())
        done, pending = await asyncio.wait(
            {stream_task, stop_task},
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if stream_task in done and not stream_task.cancelled():
            exc = stream_task.exception()
            if isinstance(exc, GpxWriterError):
                logger.error("track log writer failed: %s", exc)
                exit_code = 1
            elif exc is not None:
                logger.warning("fix stream failed: %s: %s", type(exc).__name__, exc)
            else:
                logger.info("fix stream ended")
        if controller.stop_reason is not None:
            _log_stop_reason(controller.stop_reason)
    finally:
        await controller.finalize()
        _remove_signal_handlers(installed)
    logger.info(
        "wrote %d points in %d segments, discarded %s",
        recorder.writer.points_written,
        recorder.writer.segments_written,
        recorder.discarded or "none",
    )
    return exit_code


def run_gpxlogger(
    config: Config,
    target: OutputTarget,
    *,
    source: FixSource | None = None,
) -> int:
    writer = GpxWriter(target.stream)
    recorder = TrackRecorder(writer, config.segment_policy())
    if source is None:
        source = build_source(config)
    controller = ShutdownController(recorder, source)
    try:
        return asyncio.run(run_logger(source, recorder, controller=controller))
    except KeyboardInterrupt:
        asyncio.run(controller.finalize())
        return 0
