from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "propvault" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from propvault.ledger.constants import DEFAULT_PROGRAM_ID, DEFAULT_RENT_FLOOR  # noqa: E402
from propvault.ledger.store import MemoryAccountStore  # noqa: E402
from propvault.runtime.balance_engine import BalanceEngine  # noqa: E402
from propvault.runtime.dispatch import OperationDispatcher  # noqa: E402
from propvault.runtime.engine_config import EngineConfig  # noqa: E402
from propvault.testing.sigtools import identity_for  # noqa: E402

RENT = DEFAULT_RENT_FLOOR


@pytest.fixture
def master() -> bytes:
    return identity_for("master")


@pytest.fixture
def alice() -> bytes:
    return identity_for("alice")


@pytest.fixture
def bob() -> bytes:
    return identity_for("bob")


@pytest.fixture
def cfg(master: bytes) -> EngineConfig:
    return EngineConfig(program_id=DEFAULT_PROGRAM_ID, master_authority=master, rent_floor=RENT, mode="test")


@pytest.fixture
def store() -> MemoryAccountStore:
    return MemoryAccountStore()


@pytest.fixture
def engine(store: MemoryAccountStore, cfg: EngineConfig) -> BalanceEngine:
    return BalanceEngine(store=store, config=cfg)


@pytest.fixture
def dispatcher(engine: BalanceEngine) -> OperationDispatcher:
    return OperationDispatcher(engine=engine)
