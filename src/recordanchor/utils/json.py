import json
from typing import Any


def canonical_json(obj: Any) -> str:
    """Sorted keys, compact separators, ASCII only, no NaN/Infinity."""
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        allow_nan=False,
    )
