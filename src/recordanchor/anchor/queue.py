"""
Pending Anchor Queue

Holds leaf digests of records that are saved but not yet anchored.

Rules:
- One entry per record identity (a re-saved record replaces its entry)
- FIFO order by enqueue sequence
- append / drain_snapshot / restore are mutually exclusive
- Optional JSON persistence, written atomically after every mutation
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from recordanchor.protocol.errors import StorageError
from recordanchor.utils.fs import atomic_write_json, read_json
from recordanchor.utils.timestamps import now_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingEntry:
    """
    A record digest waiting to be anchored.

    Attributes:
        identity: Record identity
        digest: Leaf digest of the record content at queuing time
        enqueued_at: ISO-8601 UTC enqueue time
        seq: Queue-wide monotonic sequence number (defines FIFO order)
    """
    identity: str
    digest: bytes
    enqueued_at: str
    seq: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": self.identity,
            "digest": self.digest.hex(),
            "enqueued_at": self.enqueued_at,
            "seq": self.seq,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingEntry":
        return cls(
            identity=data["identity"],
            digest=bytes.fromhex(data["digest"]),
            enqueued_at=data["enqueued_at"],
            seq=int(data["seq"]),
        )


class PendingQueue:
    """
    Thread-safe queue of PendingEntry keyed by record identity.

    The lock only guards in-memory mutation (and the optional file write);
    it is never held across ledger calls.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None, *, sync: bool = True) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, PendingEntry] = {}
        self._seq = 0
        self._path = Path(path) if path else None
        self._sync = sync
        if self._path is not None:
            self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _load(self) -> None:
        try:
            data = read_json(self._path)
        except (OSError, ValueError) as ex:
            raise StorageError(f"Cannot read pending queue {self._path}: {ex}") from ex
        if not data:
            return
        entries = sorted(
            (PendingEntry.from_dict(e) for e in data.get("entries", [])),
            key=lambda e: e.seq,
        )
        self._entries = {e.identity: e for e in entries}
        self._seq = max([int(data.get("seq", 0))] + [e.seq for e in entries])
        logger.info("Loaded %d pending entries from %s", len(self._entries), self._path)

    def _save(self, entries: Dict[str, PendingEntry], seq: int) -> None:
        # Called before the in-memory swap so a failed write changes nothing.
        if self._path is None:
            return
        data = {
            "seq": seq,
            "count": len(entries),
            "entries": [e.to_dict() for e in entries.values()],
        }
        try:
            atomic_write_json(self._path, data, sync=self._sync)
        except OSError as ex:
            raise StorageError(f"Cannot write pending queue {self._path}: {ex}") from ex

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def append(self, identity: str, digest: bytes) -> PendingEntry:
        """
        Queue a digest for `identity`.

        Last write wins: an identity already queued is replaced and moves
        to the tail of the queue.
        """
        if not identity:
            raise ValueError("identity is required")
        with self._lock:
            seq = self._seq + 1
            entry = PendingEntry(
                identity=identity,
                digest=bytes(digest),
                enqueued_at=now_iso(),
                seq=seq,
            )
            entries = dict(self._entries)
            replaced = entries.pop(identity, None)
            entries[identity] = entry
            self._save(entries, seq)
            self._entries = entries
            self._seq = seq

        if replaced is not None:
            logger.debug("Replaced pending digest for %s", identity)
        return entry

    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.count()

    def snapshot(self) -> List[PendingEntry]:
        """Copy of the current entries in FIFO order. Does not drain."""
        with self._lock:
            return list(self._entries.values())

    def drain_snapshot(self) -> List[PendingEntry]:
        """
        Atomically remove and return every entry in FIFO order.

        An empty queue yields an empty list.
        """
        with self._lock:
            drained = list(self._entries.values())
            if not drained:
                return []
            self._save({}, self._seq)
            self._entries = {}
        logger.debug("Drained %d pending entries", len(drained))
        return drained

    def restore(self, entries: Iterable[PendingEntry]) -> int:
        """
        Put back entries from a failed batch attempt.

        Identities re-queued in the meantime keep their newer entry.
        Returns the number of entries restored.
        """
        restored = 0
        with self._lock:
            merged = dict(self._entries)
            for entry in entries:
                current = merged.get(entry.identity)
                if current is not None and current.seq >= entry.seq:
                    continue
                merged[entry.identity] = entry
                restored += 1
            ordered = {
                e.identity: e for e in sorted(merged.values(), key=lambda e: e.seq)
            }
            self._save(ordered, self._seq)
            self._entries = ordered

        if restored:
            logger.warning("Restored %d pending entries after failed batch", restored)
        return restored
