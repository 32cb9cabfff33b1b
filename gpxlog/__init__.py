"""GPX track logger for gpsd-style position sources."""

__version__ = "0.1.0"

__all__ = [
    "cli",
    "config",
    "fix",
    "geo",
    "timefmt",
    "segmenter",
    "gpx_writer",
    "recorder",
    "lifecycle",
    "output",
    "sources",
]
