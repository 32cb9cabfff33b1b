from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

import orjson

from .fix import Fix, FixMode, FixStatus, coerce_mode
from .timefmt import parse_fix_time


@dataclass
class GpsdDecodeResult:
    raw_text: str
    payload: dict[str, Any] | None
    report_class: str | None
    json_error: bool
    json_error_sample: str | None = None


def decode_gpsd_line(raw: bytes | str) -> GpsdDecodeResult:
    """Decode one newline-delimited gpsd JSON report."""
    if isinstance(raw, bytes):
        raw_text = raw.decode("utf-8", errors="ignore")
        raw_payload: str | bytes = raw
    else:
        raw_text = str(raw)
        raw_payload = raw_text
    try:
        payload = orjson.loads(raw_payload)
    except orjson.JSONDecodeError:
        return GpsdDecodeResult(
            raw_text=raw_text,
            payload=None,
            report_class=None,
            json_error=True,
            json_error_sample=raw_text[:50],
        )
    if not isinstance(payload, dict):
        return GpsdDecodeResult(
            raw_text=raw_text,
            payload=None,
            report_class=None,
            json_error=False,
        )
    report_class = payload.get("class")
    return GpsdDecodeResult(
        raw_text=raw_text,
        payload=payload,
        report_class=report_class if isinstance(report_class, str) else None,
        json_error=False,
    )


def _float_or_nan(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def build_watch_command(device: str | None = None) -> bytes:
    payload: dict[str, Any] = {"enable": True, "json": True}
    if device:
        payload["device"] = device
    return b"?WATCH=" + orjson.dumps(payload) + b";\n"


@dataclass
class FixAssembler:
    """Folds TPV and SKY reports into Fix records.

    SKY reports carry the satellite count and dilution of precision; they are
    remembered and attached to every following TPV until the next SKY.
    """

    satellites_used: int = 0
    hdop: float = math.nan
    vdop: float = math.nan
    pdop: float = math.nan
    counts: dict[str, int] = field(default_factory=dict)

    def update(self, result: GpsdDecodeResult) -> Fix | None:
        if result.json_error:
            self.counts["json_errors"] = self.counts.get("json_errors", 0) + 1
            return None
        if result.payload is None or result.report_class is None:
            return None
        self.counts[result.report_class] = self.counts.get(result.report_class, 0) + 1
        if result.report_class == "SKY":
            self._apply_sky(result.payload)
            return None
        if result.report_class == "TPV":
            return self._fix_from_tpv(result.payload)
        return None

    def _apply_sky(self, payload: dict[str, Any]) -> None:
        used = payload.get("uSat")
        if used is None:
            satellites = payload.get("satellites")
            if isinstance(satellites, list):
                used = sum(
                    1 for sat in satellites if isinstance(sat, dict) and sat.get("used")
                )
        if used is not None:
            try:
                self.satellites_used = max(0, int(used))
            except (TypeError, ValueError):
                self.satellites_used = 0
        self.hdop = _float_or_nan(payload.get("hdop"))
        self.vdop = _float_or_nan(payload.get("vdop"))
        self.pdop = _float_or_nan(payload.get("pdop"))

    def _fix_from_tpv(self, payload: dict[str, Any]) -> Fix:
        mode = coerce_mode(payload.get("mode"))
        altitude = _float_or_nan(payload.get("alt"))
        if math.isnan(altitude):
            altitude = _float_or_nan(payload.get("altHAE"))
        status_raw = payload.get("status")
        if status_raw is None:
            status: FixStatus | int = (
                FixStatus.FIX if mode >= FixMode.MODE_2D else FixStatus.NO_FIX
            )
        else:
            try:
                status = int(status_raw)
            except (TypeError, ValueError):
                status = FixStatus.NO_FIX
        tag = payload.get("tag") or payload.get("device") or ""
        return Fix(
            latitude=_float_or_nan(payload.get("lat")),
            longitude=_float_or_nan(payload.get("lon")),
            time=parse_fix_time(payload.get("time")),
            mode=mode,
            altitude=altitude,
            status=status,
            satellites_used=self.satellites_used,
            hdop=self.hdop,
            vdop=self.vdop,
            pdop=self.pdop,
            tag=str(tag),
        )
