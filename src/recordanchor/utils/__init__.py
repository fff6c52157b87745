from .json import canonical_json
from .logging import configure_logging
from .timestamps import now_iso, now_unix, now_utc
from .fs import atomic_write_json, read_json

__all__ = [
    "canonical_json",
    "configure_logging",
    "now_iso",
    "now_unix",
    "now_utc",
    "atomic_write_json",
    "read_json",
]
