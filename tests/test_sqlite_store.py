from __future__ import annotations

import sqlite3
import threading
import time
from pathlib import Path

import pytest

from propvault.ledger.types import PaymentRecord, VaultAccount
from propvault.runtime.sqlite_db import SqliteAccountStore, SqliteDB


def _pragma(con: sqlite3.Connection, name: str) -> int | str:
    row = con.execute(f"PRAGMA {name};").fetchone()
    if row is None:
        raise AssertionError(f"missing pragma: {name}")
    return row[0]


def test_sqlite_operational_pragmas_are_applied(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROPVAULT_MODE", "prod")
    monkeypatch.delenv("PROPVAULT_SQLITE_SYNCHRONOUS", raising=False)
    monkeypatch.setenv("PROPVAULT_SQLITE_BUSY_TIMEOUT_MS", "1234")
    monkeypatch.setenv("PROPVAULT_SQLITE_WAL_AUTOCHECKPOINT", "777")

    db = SqliteDB(path=str(tmp_path / "propvault.db"))
    db.init_schema()

    with db.connection() as con:
        assert str(_pragma(con, "journal_mode")).lower() == "wal"
        # FULL is the prod default.
        assert int(_pragma(con, "synchronous")) == 2
        assert int(_pragma(con, "foreign_keys")) == 1
        assert int(_pragma(con, "temp_store")) == 2
        assert int(_pragma(con, "busy_timeout")) == 1234
        assert int(_pragma(con, "wal_autocheckpoint")) == 777


def test_schema_version_mismatch_refuses_to_start(tmp_path: Path) -> None:
    db = SqliteDB(path=str(tmp_path / "propvault.db"))
    db.init_schema()
    with db.write_tx() as con:
        con.execute("UPDATE meta SET value='99' WHERE key='schema_version';")

    with pytest.raises(RuntimeError, match="schema_version mismatch"):
        db.init_schema()


def test_records_persist_across_store_instances(tmp_path: Path) -> None:
    path = str(tmp_path / "propvault.db")
    addr_v = b"\x11" * 32
    addr_p = b"\x22" * 32
    rec = PaymentRecord(property_id=3, payer=b"\x33" * 32, amount=700, withdrawn=False, bump=253)

    st = SqliteAccountStore(db=SqliteDB(path=path))
    assert st.get(addr_v) is None
    st.put(addr_v, VaultAccount(property_id=3, total_balance=900, bump=255))
    st.put(addr_p, rec)

    st2 = SqliteAccountStore(db=SqliteDB(path=path))
    assert st2.get(addr_v) == VaultAccount(property_id=3, total_balance=900, bump=255)
    assert st2.get(addr_p) == rec
    assert sorted(a for a, _ in st2.items()) == [addr_v, addr_p]

    st2.discard(addr_p)
    assert st.get(addr_p) is None


def test_exclusive_rolls_back_on_error(tmp_path: Path) -> None:
    st = SqliteAccountStore(db=SqliteDB(path=str(tmp_path / "propvault.db")))
    addr = b"\x44" * 32
    st.put(addr, VaultAccount(property_id=4, total_balance=10, bump=255))

    with pytest.raises(RuntimeError):
        with st.exclusive():
            st.put(addr, VaultAccount(property_id=4, total_balance=99, bump=255))
            # reads inside the transaction see its own writes
            assert st.get(addr).total_balance == 99
            raise RuntimeError("boom")

    assert st.get(addr).total_balance == 10


def test_exclusive_is_reentrant(tmp_path: Path) -> None:
    st = SqliteAccountStore(db=SqliteDB(path=str(tmp_path / "propvault.db")))
    addr = b"\x55" * 32
    with st.exclusive():
        with st.exclusive():
            st.put(addr, VaultAccount(property_id=5, total_balance=1, bump=255))
    assert st.get(addr) is not None


def test_writer_gives_up_after_deadline(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROPVAULT_SQLITE_BUSY_TIMEOUT_MS", "0")
    monkeypatch.setenv("PROPVAULT_SQLITE_WRITE_DEADLINE_MS", "250")
    db = SqliteDB(path=str(tmp_path / "propvault.db"))
    db.init_schema()

    with db.write_tx():
        with pytest.raises(sqlite3.OperationalError, match="locked"):
            with db.write_tx():
                pass


def test_writer_waits_for_lock_release(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROPVAULT_SQLITE_BUSY_TIMEOUT_MS", "0")
    monkeypatch.setenv("PROPVAULT_SQLITE_WRITE_DEADLINE_MS", "10000")
    st = SqliteAccountStore(db=SqliteDB(path=str(tmp_path / "propvault.db")))
    addr = b"\x55" * 32
    held = threading.Event()

    def _hold() -> None:
        with st.exclusive():
            st.put(addr, VaultAccount(property_id=5, total_balance=1, bump=255))
            held.set()
            time.sleep(0.2)

    t = threading.Thread(target=_hold)
    t.start()
    held.wait(5)
    st.put(addr, VaultAccount(property_id=5, total_balance=2, bump=255))
    t.join(5)

    assert st.get(addr).total_balance == 2
