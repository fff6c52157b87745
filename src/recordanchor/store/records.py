"""
Record repository.

Minimal record-management collaborator: holds the current content of each
record so that verification can re-hash it. Records are plain JSON
mappings keyed by their identity field.
"""

from __future__ import annotations

import copy
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from recordanchor.protocol.errors import RecordNotFoundError, StorageError
from recordanchor.utils.fs import atomic_write_json, read_json
from recordanchor.utils.timestamps import now_iso

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class RecordRepository:
    """
    Thread-safe in-memory record repository.

    Returned records are deep copies; mutating them never changes stored
    content.
    """

    def __init__(self, *, identity_field: str = "id") -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, Record] = {}
        self._identity_field = identity_field

    def _persist(self, records: Dict[str, Record]) -> None:
        return None

    def save(self, record: Record) -> Record:
        """Insert or replace a record."""
        identity = record[self._identity_field]
        stored = copy.deepcopy(dict(record))
        with self._lock:
            records = dict(self._records)
            records[identity] = stored
            self._persist(records)
            self._records = records
        return copy.deepcopy(stored)

    def get(self, identity: str) -> Optional[Record]:
        with self._lock:
            record = self._records.get(identity)
        return copy.deepcopy(record) if record is not None else None

    def require(self, identity: str) -> Record:
        record = self.get(identity)
        if record is None:
            raise RecordNotFoundError(identity)
        return record

    def list(self) -> List[Record]:
        with self._lock:
            records = list(self._records.values())
        logger.debug("Listed %d records", len(records))
        return [copy.deepcopy(r) for r in records]

    def delete(self, identity: str) -> Record:
        with self._lock:
            if identity not in self._records:
                raise RecordNotFoundError(identity)
            records = dict(self._records)
            removed = records.pop(identity)
            self._persist(records)
            self._records = records
        return copy.deepcopy(removed)

    def count(self) -> int:
        with self._lock:
            return len(self._records)


class JsonFileRecordRepository(RecordRepository):
    """Record repository persisted to a single JSON file."""

    def __init__(
        self,
        path: Union[str, Path],
        *,
        identity_field: str = "id",
        sync: bool = True,
    ) -> None:
        super().__init__(identity_field=identity_field)
        self._path = Path(path)
        self._sync = sync
        try:
            data = read_json(self._path)
        except (OSError, ValueError) as ex:
            raise StorageError(f"Cannot read records {self._path}: {ex}") from ex
        if data:
            self._records = dict(data.get("records", {}))
            logger.info("Loaded %d records from %s", len(self._records), self._path)

    def _persist(self, records: Dict[str, Record]) -> None:
        data = {"updated_at": now_iso(), "count": len(records), "records": records}
        try:
            atomic_write_json(self._path, data, sync=self._sync)
        except OSError as ex:
            raise StorageError(f"Cannot write records {self._path}: {ex}") from ex
