"""Round-robin timeseries storage on SQLite with Python collection handlers."""

__version__ = "0.0.1"
__all__ = [
    "database",
    "errors",
    "format",
    "scripting",
    "single",
    "store",
    "tiered",
    "timecell",
]