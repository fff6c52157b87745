from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional


def atomic_write_json(path: Path, data: Any, *, sync: bool = True) -> None:
    """
    Write JSON to `path` via a temp file and os.replace.

    Readers observe either the previous file or the complete new one.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
        f.flush()
        if sync:
            os.fsync(f.fileno())
    os.replace(str(tmp_path), str(path))


def read_json(path: Path) -> Optional[Any]:
    """Return parsed JSON, or None when the file does not exist."""
    if not path.exists():
        return None
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
