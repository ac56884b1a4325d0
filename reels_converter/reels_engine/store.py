"""
In-memory binary store for source images and rendered clips.

The store exclusively owns the raw bytes, keyed by (job id, kind). Callers get
`Handle` objects, which are lookup-only tokens: they stop resolving as soon as
the bytes are removed. Bytes that an in-flight conversion still reads are
pinned with `lease()`; removing a leased entry hides it immediately and drops
the bytes once the last lease ends.
"""

from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Tuple

from .errors import NotFound
from .schemas import Handle, Kind

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    data: bytes
    handle: Handle
    leases: int = 0
    released: bool = False


class BinaryStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, Kind], _Entry] = {}
        self._handles: Dict[str, _Entry] = {}
        # Removed while leased; dropped when the lease count reaches zero.
        self._draining: Dict[int, _Entry] = {}

    def put(self, job_id: str, data: bytes, kind: Kind, mimetype: str) -> Handle:
        kind = Kind(kind)
        handle = Handle(token=uuid.uuid4().hex, job_id=job_id, kind=kind, mimetype=mimetype)
        entry = _Entry(data=bytes(data), handle=handle)
        with self._lock:
            previous = self._entries.get((job_id, kind))
            if previous is not None:
                self._release_locked(previous)
            self._entries[(job_id, kind)] = entry
            self._handles[handle.token] = entry
        logger.debug("Stored %d bytes for %s/%s", len(entry.data), job_id, kind.value)
        return handle

    def get(self, job_id: str, kind: Kind) -> bytes:
        with self._lock:
            entry = self._entries.get((job_id, Kind(kind)))
            if entry is None:
                raise NotFound(f"No {Kind(kind).value} bytes for job {job_id}")
            return entry.data

    def resolve(self, token: str) -> Tuple[bytes, Handle]:
        with self._lock:
            entry = self._handles.get(token)
            if entry is None:
                raise NotFound(f"Handle {token} is not valid")
            return entry.data, entry.handle

    def contains(self, job_id: str, kind: Optional[Kind] = None) -> bool:
        with self._lock:
            if kind is not None:
                return (job_id, Kind(kind)) in self._entries
            return any(key[0] == job_id for key in self._entries)

    @contextmanager
    def lease(self, job_id: str, kind: Kind) -> Iterator[bytes]:
        """Pin the bytes for the duration of the block."""
        with self._lock:
            entry = self._entries.get((job_id, Kind(kind)))
            if entry is None:
                raise NotFound(f"No {Kind(kind).value} bytes for job {job_id}")
            entry.leases += 1
        try:
            yield entry.data
        finally:
            with self._lock:
                entry.leases -= 1
                if entry.released and entry.leases == 0:
                    self._draining.pop(id(entry), None)
                    logger.debug("Dropped drained bytes for %s", entry.handle.job_id)

    def remove(self, job_id: str, kind: Optional[Kind] = None) -> int:
        """Release one kind, or every kind, for a job. Returns how many entries went away."""
        kinds = [Kind(kind)] if kind is not None else list(Kind)
        removed = 0
        with self._lock:
            for k in kinds:
                entry = self._entries.get((job_id, k))
                if entry is not None:
                    self._release_locked(entry)
                    removed += 1
        return removed

    def clear(self) -> int:
        with self._lock:
            entries = list(self._entries.values())
            for entry in entries:
                self._release_locked(entry)
        return len(entries)

    def _release_locked(self, entry: _Entry) -> None:
        handle = entry.handle
        self._entries.pop((handle.job_id, handle.kind), None)
        self._handles.pop(handle.token, None)
        entry.released = True
        if entry.leases > 0:
            self._draining[id(entry)] = entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def handle_count(self) -> int:
        with self._lock:
            return len(self._handles)

    def retained_bytes(self) -> int:
        """Bytes still held, including entries waiting for a lease to end."""
        with self._lock:
            live = sum(len(e.data) for e in self._entries.values())
            return live + sum(len(e.data) for e in self._draining.values())
