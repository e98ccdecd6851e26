from __future__ import annotations

import multiprocessing as mp
from pathlib import Path

from propvault.ledger.constants import DEFAULT_PROGRAM_ID, DEFAULT_RENT_FLOOR
from propvault.runtime.balance_engine import BalanceEngine
from propvault.runtime.engine_config import EngineConfig
from propvault.runtime.sqlite_db import SqliteAccountStore, SqliteDB
from propvault.testing.sigtools import identity_for

_PROPERTY = 11
_AMOUNT = 10


def _engine(db_path: str) -> BalanceEngine:
    cfg = EngineConfig(
        program_id=DEFAULT_PROGRAM_ID,
        master_authority=identity_for("master"),
        rent_floor=DEFAULT_RENT_FLOOR,
        mode="test",
    )
    return BalanceEngine(store=SqliteAccountStore(db=SqliteDB(path=db_path)), config=cfg)


def _worker(db_path: str, label: str, n: int) -> None:
    engine = _engine(db_path)
    payer = identity_for(label)
    for _ in range(int(n)):
        engine.fund_property(_PROPERTY, payer, _AMOUNT)


def test_sqlite_funding_is_cross_process_safe(tmp_path: Path) -> None:
    """Concurrent funders on one property from several processes lose nothing.

    The vault is created lazily by whichever process gets there first; the
    rent floor must still be charged exactly once.
    """
    db_path = str(tmp_path / "propvault_test.db")
    engine = _engine(db_path)

    workers = 4
    per = 25
    procs: list[mp.Process] = []
    for i in range(workers):
        pr = mp.Process(target=_worker, args=(db_path, f"payer-{i}", per))
        pr.start()
        procs.append(pr)

    for pr in procs:
        pr.join(60)
        assert pr.exitcode == 0

    vault = engine.get_vault(_PROPERTY)
    assert vault is not None
    assert vault.total_balance == DEFAULT_RENT_FLOOR + workers * per * _AMOUNT

    records = engine.list_payment_records(_PROPERTY)
    assert len(records) == workers
    assert all(r.amount == per * _AMOUNT for r in records)
