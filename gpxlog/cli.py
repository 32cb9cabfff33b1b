from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import fields
from typing import Any

from . import __version__
from .config import Config, clamp_track_timeout, is_suspicious_track_timeout
from .daemon import daemonize
from .lifecycle import run_gpxlogger
from .logging_setup import setup_logging
from .output import OutputTemplateError, open_output
from .sources import (
    DEFAULT_EXPORT_METHOD,
    EXPORT_METHODS,
    UnknownExportMethod,
    get_export_method,
    parse_source_spec,
)

logger = logging.getLogger(__name__)

PROG = "gpxlog"

# Config fields with a dedicated short option; the rest get --long-name flags.
_SURFACE_FIELDS = {
    "export_method",
    "source",
    "output",
    "track_timeout_seconds",
    "min_move_meters",
    "daemonize",
    "debug",
}


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: {message}\n")


def _is_field_type(field_type, expected: type, expected_name: str) -> bool:
    if field_type is expected:
        return True
    if isinstance(field_type, str) and field_type == expected_name:
        return True
    return False


def _str2bool(value: str | bool) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "y", "on"}:
        return True
    if text in {"0", "false", "no", "n", "off"}:
        return False
    raise argparse.ArgumentTypeError(f"invalid bool: {value}")


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    for field in fields(Config):
        if field.name in _SURFACE_FIELDS:
            continue
        name = field.name.replace("_", "-")
        if _is_field_type(field.type, bool, "bool"):
            group = parser.add_mutually_exclusive_group()
            group.add_argument(f"--{name}", dest=field.name, action="store_true")
            group.add_argument(f"--no-{name}", dest=field.name, action="store_false")
            parser.set_defaults(**{field.name: None})
        else:
            parser.add_argument(f"--{name}", dest=field.name, default=None)


def _cli_overrides(ns: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for field in fields(Config):
        value = getattr(ns, field.name, None)
        if value is None:
            continue
        if _is_field_type(field.type, bool, "bool"):
            overrides[field.name] = _str2bool(value)
        elif _is_field_type(field.type, int, "int"):
            overrides[field.name] = int(value)
        elif _is_field_type(field.type, float, "float"):
            overrides[field.name] = float(value)
        else:
            overrides[field.name] = value
    return overrides


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog=PROG,
        description="Write gpsd position fixes to a GPX track log.",
        epilog=f"defaults to '{PROG} -i 5 -e {DEFAULT_EXPORT_METHOD} localhost:2947'",
    )
    parser.add_argument("-e", "--export-method", dest="export_method", default=None)
    parser.add_argument("-l", "--list-methods", dest="list_methods", action="store_true")
    parser.add_argument(
        "-f",
        "--output",
        dest="output",
        default=None,
        help="output file name; strftime directives are expanded",
    )
    parser.add_argument(
        "-i",
        "--interval",
        dest="track_timeout_seconds",
        type=int,
        default=None,
        help="seconds without a fix before a new track segment starts",
    )
    parser.add_argument(
        "-m",
        "--minmove",
        dest="min_move_meters",
        type=float,
        default=None,
        help="minimum movement in meters for a fix to be logged",
    )
    parser.add_argument("-d", "--daemonize", dest="daemonize", action="store_true", default=None)
    parser.add_argument("-D", "--debug", dest="debug", type=int, default=None)
    parser.add_argument("-V", "--version", dest="version", action="store_true")
    _add_config_args(parser)
    parser.add_argument("source", nargs="?", default=None, help="server[:port[:device]]")
    return parser


def _fail(message: str) -> int:
    print(f"{PROG}: {message}", file=sys.stderr)
    return 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"{PROG} revision {__version__}", file=sys.stderr)
        return 0
    if args.list_methods:
        for method in EXPORT_METHODS.values():
            print(f"{method.name}: {method.description}")
        return 0

    try:
        config = Config.from_env_and_cli(_cli_overrides(args), os.environ)
    except ValueError as exc:
        return _fail(f"invalid configuration: {exc}")
    setup_logging(config.debug, daemon=config.daemonize, json_format=config.log_json)

    try:
        method = get_export_method(config.export_method)
    except UnknownExportMethod as exc:
        return _fail(str(exc))

    config.track_timeout_seconds = clamp_track_timeout(config.track_timeout_seconds)
    if is_suspicious_track_timeout(config.track_timeout_seconds):
        print("WARNING: track timeout is an hour or more!", file=sys.stderr)

    try:
        parse_source_spec(config.source)
    except ValueError as exc:
        return _fail(str(exc))

    try:
        target = open_output(config.output)
    except OutputTemplateError as exc:
        return _fail(str(exc))
    if config.daemonize and target.is_stdout:
        return _fail("Daemon mode with no valid logfile name - exiting.")

    if config.daemonize:
        try:
            daemonize()
        except OSError as exc:
            logger.error("daemonization failed: %s", exc)

    logger.debug("export method %s, source %s", method.name, config.source or "localhost:2947")
    return run_gpxlogger(config, target, source=method.build(config))


if __name__ == "__main__":
    raise SystemExit(main())
