from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

logger = logging.getLogger(__name__)


class OutputTemplateError(ValueError):
    pass


@dataclass
class OutputTarget:
    stream: TextIO
    path: Path | None

    @property
    def is_stdout(self) -> bool:
        return self.path is None


def expand_output_template(template: str, now: float | None = None) -> str:
    """Expand strftime directives in an output filename against local time."""
    stamp = time.localtime(time.time() if now is None else now)
    try:
        expanded = time.strftime(template, stamp)
    except ValueError as exc:
        raise OutputTemplateError(f'Bad template "{template}": {exc}') from exc
    if not expanded:
        raise OutputTemplateError(f'Bad template "{template}"')
    return expanded


def open_output(template: str | None, now: float | None = None) -> OutputTarget:
    """Open the track log destination; stdout when none is configured.

    An unopenable file is not fatal: the log goes to stdout instead.
    """
    if template is None:
        return OutputTarget(stream=sys.stdout, path=None)
    path = Path(expand_output_template(template, now))
    try:
        stream = path.open("w", encoding="utf-8")
    except OSError as exc:
        logger.warning("Failed to open %s: %s, logging to stdout.", path, exc)
        return OutputTarget(stream=sys.stdout, path=None)
    return OutputTarget(stream=stream, path=path)
