# src/propvault/runtime/sqlite_db.py
from __future__ import annotations

import logging
import os
import random
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Tuple

from propvault.ledger.types import PaymentRecord, Record, canon_record_json, record_from_canon
from propvault.runtime.structured_logging import log_event

_LOG = logging.getLogger("propvault.sqlite")

_DDL = (
    "CREATE TABLE IF NOT EXISTS meta (key TEXT PRIMARY KEY, value TEXT NOT NULL);",
    """
    CREATE TABLE IF NOT EXISTS accounts (
      address TEXT PRIMARY KEY,
      kind TEXT NOT NULL,
      property_id INTEGER NOT NULL,
      payer TEXT,
      record_json TEXT NOT NULL,
      updated_ts_ms INTEGER NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_accounts_property ON accounts(property_id, kind);",
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _synchronous() -> str:
    # FULL in prod, NORMAL elsewhere; PROPVAULT_SQLITE_SYNCHRONOUS overrides.
    fallback = "FULL" if (os.environ.get("PROPVAULT_MODE") or "prod").strip().lower() == "prod" else "NORMAL"
    v = (os.environ.get("PROPVAULT_SQLITE_SYNCHRONOUS") or fallback).strip().upper()
    return v if v in {"OFF", "NORMAL", "FULL", "EXTRA"} else fallback


def _is_locked(e: sqlite3.OperationalError) -> bool:
    msg = str(e).lower()
    return "locked" in msg or "busy" in msg


class SqliteDB:
    """One SQLite file holding every ledger account.

    Connections are never shared between threads. Writers serialize on
    BEGIN IMMEDIATE; when another process holds the write lock, BEGIN and
    COMMIT are retried with jittered exponential backoff until
    PROPVAULT_SQLITE_WRITE_DEADLINE_MS runs out, then the error propagates.
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    def _connect(self) -> sqlite3.Connection:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        timeout_ms = _env_int("PROPVAULT_SQLITE_CONNECT_TIMEOUT_MS", 30_000)
        con = sqlite3.connect(self.path, timeout=timeout_ms / 1000.0, isolation_level=None, check_same_thread=False)
        con.row_factory = sqlite3.Row

        journal = str(con.execute("PRAGMA journal_mode=WAL;").fetchone()[0]).lower()
        waived = (os.environ.get("PROPVAULT_SQLITE_ALLOW_NON_WAL") or "").strip().lower() in {"1", "true"}
        if journal != "wal" and not waived:
            con.close()
            raise RuntimeError(f"sqlite journal_mode is '{journal}', expected 'wal'")

        for pragma in (
            f"synchronous={_synchronous()}",
            "foreign_keys=ON",
            "temp_store=MEMORY",
            f"wal_autocheckpoint={max(1, _env_int('PROPVAULT_SQLITE_WAL_AUTOCHECKPOINT', 1000))}",
            f"busy_timeout={max(0, _env_int('PROPVAULT_SQLITE_BUSY_TIMEOUT_MS', timeout_ms))}",
        ):
            con.execute(f"PRAGMA {pragma};")
        return con

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    def init_schema(self) -> None:
        with self.write_tx() as con:
            for stmt in _DDL:
                con.execute(stmt)
            row = con.execute("SELECT value FROM meta WHERE key='schema_version';").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
                return
            have = int(row["value"]) if str(row["value"]).isdigit() else 0
            if have != self.SCHEMA_VERSION:
                raise RuntimeError(f"sqlite schema_version mismatch: have={have} want={self.SCHEMA_VERSION}")

    def _execute_retrying(self, con: sqlite3.Connection, sql: str, deadline_ms: int) -> None:
        base_s = max(1, _env_int("PROPVAULT_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0
        cap_s = max(base_s, _env_int("PROPVAULT_SQLITE_WRITE_BACKOFF_MAX_MS", 250) / 1000.0)
        attempt = 0
        while True:
            try:
                con.execute(sql)
                return
            except sqlite3.OperationalError as e:
                if not _is_locked(e) or _now_ms() >= deadline_ms:
                    raise
            time.sleep(min(cap_s, base_s * 2 ** min(attempt, 8)) * (0.5 + random.random()))
            attempt += 1

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        deadline_ms = _now_ms() + max(250, _env_int("PROPVAULT_SQLITE_WRITE_DEADLINE_MS", 30_000))
        with self.connection() as con:
            self._execute_retrying(con, "BEGIN IMMEDIATE;", deadline_ms)
            try:
                yield con
                self._execute_retrying(con, "COMMIT;", deadline_ms)
            except BaseException:
                try:
                    con.execute("ROLLBACK;")
                except sqlite3.Error as rb:
                    log_event(_LOG, "sqlite_rollback_failed", level=logging.WARNING, error=str(rb))
                raise


class SqliteAccountStore:
    """AccountStore persisted in SQLite, one row per derived address.

    Outside exclusive(), every get/put uses its own connection and put is a
    single-row write transaction. Inside exclusive(), the calling thread holds
    one BEGIN IMMEDIATE transaction and all reads and writes go through it, so
    a whole operation is serialized against every other process.
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()
        self._local = threading.local()

    def _bound(self) -> Optional[sqlite3.Connection]:
        return getattr(self._local, "con", None)

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        if self._bound() is not None:
            # re-entrant: already inside this thread's transaction
            yield
            return
        with self._db.write_tx() as con:
            self._local.con = con
            try:
                yield
            finally:
                self._local.con = None

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Connection]:
        con = self._bound()
        if con is not None:
            yield con
            return
        with self._db.connection() as c:
            yield c

    @contextmanager
    def _writer(self) -> Iterator[sqlite3.Connection]:
        con = self._bound()
        if con is not None:
            yield con
            return
        with self._db.write_tx() as c:
            yield c

    def get(self, address: bytes) -> Optional[Record]:
        with self._reader() as con:
            row = con.execute("SELECT record_json FROM accounts WHERE address=?;", (bytes(address).hex(),)).fetchone()
        if row is None:
            return None
        return record_from_canon(str(row["record_json"]))

    def put(self, address: bytes, rec: Record) -> None:
        payer = rec.payer.hex() if isinstance(rec, PaymentRecord) else None
        with self._writer() as con:
            con.execute(
                """
                INSERT INTO accounts(address, kind, property_id, payer, record_json, updated_ts_ms)
                VALUES(?, ?, ?, ?, ?, ?)
                ON CONFLICT(address) DO UPDATE SET
                  kind=excluded.kind,
                  property_id=excluded.property_id,
                  payer=excluded.payer,
                  record_json=excluded.record_json,
                  updated_ts_ms=excluded.updated_ts_ms;
                """,
                (bytes(address).hex(), rec.kind, int(rec.property_id), payer, canon_record_json(rec), _now_ms()),
            )

    def discard(self, address: bytes) -> None:
        with self._writer() as con:
            con.execute("DELETE FROM accounts WHERE address=?;", (bytes(address).hex(),))

    def items(self) -> Iterator[Tuple[bytes, Record]]:
        with self._reader() as con:
            rows = con.execute("SELECT address, record_json FROM accounts ORDER BY address;").fetchall()
        for row in rows:
            yield bytes.fromhex(str(row["address"])), record_from_canon(str(row["record_json"]))


__all__ = ["SqliteDB", "SqliteAccountStore"]
