"""Export methods: interchangeable transports delivering fixes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from ..config import Config
from .base import FixSource, SourceConnectionError, SourceSpec, parse_source_spec
from .dbus import DbusFixSource
from .shm import ShmFixSource
from .sockets import SocketFixSource

DEFAULT_EXPORT_METHOD = "sockets"


class UnknownExportMethod(ValueError):
    pass


@dataclass(frozen=True)
class ExportMethod:
    name: str
    description: str
    build: Callable[[Config], FixSource]


def _build_sockets(config: Config) -> FixSource:
    return SocketFixSource(
        parse_source_spec(config.source),
        connect_timeout_seconds=config.connect_timeout_seconds,
    )


def _build_shm(config: Config) -> FixSource:
    return ShmFixSource(
        key=config.shm_key,
        poll_interval_seconds=config.shm_poll_interval_seconds,
    )


def _build_dbus(config: Config) -> FixSource:
    return DbusFixSource(bus=config.dbus_bus)


EXPORT_METHODS: dict[str, ExportMethod] = {
    method.name: method
    for method in (
        ExportMethod(SocketFixSource.name, SocketFixSource.description, _build_sockets),
        ExportMethod(ShmFixSource.name, ShmFixSource.description, _build_shm),
        ExportMethod(DbusFixSource.name, DbusFixSource.description, _build_dbus),
    )
}


def get_export_method(name: str | None) -> ExportMethod:
    key = name or DEFAULT_EXPORT_METHOD
    method = EXPORT_METHODS.get(key)
    if method is None:
        raise UnknownExportMethod(f"{key} is not a known export method.")
    return method


def build_source(config: Config) -> FixSource:
    return get_export_method(config.export_method).build(config)


__all__ = [
    "DEFAULT_EXPORT_METHOD",
    "EXPORT_METHODS",
    "ExportMethod",
    "FixSource",
    "SourceConnectionError",
    "SourceSpec",
    "UnknownExportMethod",
    "build_source",
    "get_export_method",
    "parse_source_spec",
]
