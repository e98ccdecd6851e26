# src/propvault/ledger/store.py
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import ContextManager, Dict, Iterator, Optional, Protocol, Tuple

from propvault.ledger.types import Record, canon_record_json, record_from_canon


class AccountStore(Protocol):
    """Keyed storage of typed ledger records.

    Contract:
      - get(address) returns None when no account exists yet. That state is
        distinct from a zero-valued record.
      - put(address, rec) is an atomic single-address upsert.
      - discard(address) is rollback-only: it undoes a creation made by an
        operation that is being compensated. Business code never deletes.
      - exclusive() serializes one whole operation against the store.
    """

    def get(self, address: bytes) -> Optional[Record]: ...

    def put(self, address: bytes, rec: Record) -> None: ...

    def discard(self, address: bytes) -> None: ...

    def exclusive(self) -> ContextManager[None]: ...

    def items(self) -> Iterator[Tuple[bytes, Record]]: ...


class MemoryAccountStore:
    """In-process store.

    Values are held as canonical JSON and decoded on every read, so a caller
    holding a record can never mutate stored state by aliasing.
    """

    def __init__(self) -> None:
        self._rows: Dict[bytes, str] = {}
        self._lock = threading.RLock()

    def get(self, address: bytes) -> Optional[Record]:
        with self._lock:
            raw = self._rows.get(bytes(address))
        return None if raw is None else record_from_canon(raw)

    def put(self, address: bytes, rec: Record) -> None:
        raw = canon_record_json(rec)
        with self._lock:
            self._rows[bytes(address)] = raw

    def discard(self, address: bytes) -> None:
        with self._lock:
            self._rows.pop(bytes(address), None)

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        with self._lock:
            yield

    def items(self) -> Iterator[Tuple[bytes, Record]]:
        with self._lock:
            snapshot = sorted(self._rows.items())
        for addr, raw in snapshot:
            yield addr, record_from_canon(raw)

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)


__all__ = ["AccountStore", "MemoryAccountStore"]
