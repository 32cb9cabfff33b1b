"""
Logging setup for gpxlog.

Defaults to stderr-only output. Daemonized runs also log to syslog, since
stderr is detached after the fork. JSON formatting is opt-in
(GPXLOG_LOG_JSON=1 or --log-json).
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import sys

_INITIALIZED = False
SYSLOG_ADDRESS = "/dev/log"


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        return json.dumps(payload, ensure_ascii=False)


def level_for_debug(debug: int) -> int:
    if debug >= 2:
        return logging.DEBUG
    if debug == 1:
        return logging.INFO
    return logging.WARNING


def setup_logging(debug: int = 0, *, daemon: bool = False, json_format: bool = False) -> None:
    global _INITIALIZED
    if _INITIALIZED:
        return

    root = logging.getLogger()
    root.setLevel(level_for_debug(debug))

    if json_format:
        formatter: logging.Formatter = _JSONFormatter()
    else:
        formatter = logging.Formatter("gpxlog: %(levelname)s %(name)s %(message)s")

    sh = logging.StreamHandler(stream=sys.stderr)
    sh.setFormatter(formatter)
    root.addHandler(sh)

    if daemon and os.path.exists(SYSLOG_ADDRESS):
        try:
            syslog = logging.handlers.SysLogHandler(
                address=SYSLOG_ADDRESS,
                facility=logging.handlers.SysLogHandler.LOG_DAEMON,
            )
        except OSError as exc:
            root.warning("syslog unavailable: %s", exc)
        else:
            syslog.setFormatter(logging.Formatter("gpxlog[%(process)d]: %(message)s"))
            root.addHandler(syslog)

    _INITIALIZED = True
