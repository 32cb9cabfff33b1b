from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Any

_FRACTION_RE = re.compile(r"\.(\d+)")


def unix_to_iso8601(timestamp: float) -> str:
    """Format epoch seconds as ``YYYY-MM-DDTHH:MM:SS.ffZ`` in UTC."""
    centis = int(round(timestamp * 100))
    whole, frac = divmod(centis, 100)
    stamp = datetime.fromtimestamp(whole, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
    return f"{stamp}.{frac:02d}Z"


def _normalize_fraction(text: str) -> str:
    # fromisoformat only takes 3 or 6 fraction digits before 3.11
    match = _FRACTION_RE.search(text)
    if match is None:
        return text
    digits = (match.group(1) + "000000")[:6]
    return text[: match.start()] + "." + digits + text[match.end():]


def parse_fix_time(value: Any) -> float:
    """Parse a gpsd report time (ISO-8601 string or epoch number) to epoch seconds.

    Returns NaN when the value is missing or unparseable.
    """
    if value is None or isinstance(value, bool):
        return math.nan
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return math.nan
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(_normalize_fraction(text))
        except ValueError:
            return math.nan
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
    return math.nan
