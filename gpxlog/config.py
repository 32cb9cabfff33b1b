from __future__ import annotations

from dataclasses import dataclass, fields
import types
import typing
from typing import Any, get_args, get_origin

from .segmenter import SegmentPolicy

ENV_PREFIX = "GPXLOG_"

MIN_TRACK_TIMEOUT_SECONDS = 1
SUSPICIOUS_TRACK_TIMEOUT_SECONDS = 3600
GPSD_SHM_KEY = 0x47505344


def _parse_bool(value: str) -> bool:
    val = str(value).strip().lower()
    if val in {"1", "true", "yes", "y", "on"}:
        return True
    if val in {"0", "false", "no", "n", "off"}:
        return False
    raise ValueError(f"invalid bool: {value}")


def _parse_number(value: str, target_type: type) -> Any:
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    return value


def _unwrap_optional(field_type: Any) -> tuple[Any, bool]:
    if isinstance(field_type, str):
        # postponed annotations: "int | None"
        parts = [part.strip() for part in field_type.split("|")]
        if len(parts) == 2 and "None" in parts:
            base = parts[0] if parts[1] == "None" else parts[1]
            return base, True
        return field_type, False
    origin = get_origin(field_type)
    union_type = getattr(types, "UnionType", None)
    if origin not in (typing.Union, union_type):
        return field_type, False
    args = get_args(field_type)
    if args and type(None) in args and len(args) == 2:
        base = args[0] if args[1] is type(None) else args[1]
        return base, True
    return field_type, False


def _is_field_type(field_type: Any, expected: type, expected_name: str) -> bool:
    base_type, _is_optional = _unwrap_optional(field_type)
    if base_type is expected:
        return True
    if isinstance(base_type, str) and base_type == expected_name:
        return True
    return False


def _parse_optional(raw: str, target_type: Any) -> Any:
    text = str(raw).strip()
    if text == "":
        return None
    lower = text.lower()
    if lower in {"none", "null"}:
        return None
    if target_type in (bool, "bool"):
        return _parse_bool(text)
    if target_type in (int, "int"):
        return int(text)
    if target_type in (float, "float"):
        return float(text)
    return text


def clamp_track_timeout(seconds: int) -> int:
    return max(MIN_TRACK_TIMEOUT_SECONDS, int(seconds))


def is_suspicious_track_timeout(seconds: int) -> bool:
    return seconds >= SUSPICIOUS_TRACK_TIMEOUT_SECONDS


@dataclass
class Config:
    export_method: str | None = None
    source: str | None = None
    output: str | None = None
    track_timeout_seconds: int = 5
    min_move_meters: float = 0.0
    daemonize: bool = False
    debug: int = 0
    log_json: bool = False
    connect_timeout_seconds: float = 10.0
    shm_key: int = GPSD_SHM_KEY
    shm_poll_interval_seconds: float = 0.25
    dbus_bus: str = "SYSTEM"

    def apply_overrides(self, overrides: dict[str, Any]) -> "Config":
        for field in fields(self):
            name = field.name
            if name in overrides:
                value = overrides[name]
                if value is None:
                    _base_type, is_optional = _unwrap_optional(field.type)
                    if is_optional:
                        setattr(self, name, None)
                    continue
                setattr(self, name, value)
        return self

    @classmethod
    def from_env_and_cli(cls, cli_overrides: dict[str, Any], env: dict[str, str]) -> "Config":
        cfg = cls().apply_overrides(cli_overrides)
        for field in fields(cfg):
            env_key = ENV_PREFIX + field.name.upper()
            if env_key not in env:
                continue
            raw = env[env_key]
            base_type, is_optional = _unwrap_optional(field.type)
            if is_optional:
                value = _parse_optional(raw, base_type)
            elif _is_field_type(field.type, bool, "bool"):
                value = _parse_bool(raw)
            elif _is_field_type(field.type, int, "int"):
                value = _parse_number(raw, int)
            elif _is_field_type(field.type, float, "float"):
                value = _parse_number(raw, float)
            else:
                value = raw
            setattr(cfg, field.name, value)
        return cfg

    def segment_policy(self) -> SegmentPolicy:
        return SegmentPolicy(
            timeout_seconds=float(clamp_track_timeout(self.track_timeout_seconds)),
            min_move_meters=float(self.min_move_meters),
        )
