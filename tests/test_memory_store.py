from __future__ import annotations

import threading

from propvault.ledger.store import MemoryAccountStore
from propvault.ledger.types import PaymentRecord, VaultAccount


def test_absent_is_distinct_from_zero_valued() -> None:
    st = MemoryAccountStore()
    addr = b"\x01" * 32
    assert st.get(addr) is None

    st.put(addr, VaultAccount(property_id=1, total_balance=0, bump=200))
    got = st.get(addr)
    assert got is not None
    assert got.total_balance == 0


def test_put_overwrites_and_discard_removes() -> None:
    st = MemoryAccountStore()
    addr = b"\x02" * 32
    rec = PaymentRecord(property_id=1, payer=b"\x03" * 32, amount=10, withdrawn=False, bump=250)
    st.put(addr, rec)
    st.put(addr, PaymentRecord(property_id=1, payer=b"\x03" * 32, amount=4, withdrawn=False, bump=250))
    assert st.get(addr).amount == 4
    assert len(st) == 1

    st.discard(addr)
    assert st.get(addr) is None
    st.discard(addr)  # idempotent


def test_items_are_sorted_snapshots() -> None:
    st = MemoryAccountStore()
    st.put(b"\x09" * 32, VaultAccount(property_id=9, total_balance=1, bump=1))
    st.put(b"\x01" * 32, VaultAccount(property_id=1, total_balance=1, bump=1))
    assert [a for a, _ in st.items()] == [b"\x01" * 32, b"\x09" * 32]


def test_exclusive_blocks_other_threads() -> None:
    st = MemoryAccountStore()
    addr = b"\x05" * 32
    st.put(addr, VaultAccount(property_id=5, total_balance=0, bump=1))

    def bump() -> None:
        for _ in range(200):
            with st.exclusive():
                cur = st.get(addr)
                st.put(addr, VaultAccount(property_id=5, total_balance=cur.total_balance + 1, bump=1))

    threads = [threading.Thread(target=bump) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(30)

    assert st.get(addr).total_balance == 800
