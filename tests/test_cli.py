from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import pytest

from propvault.cli import main
from propvault.env import reset_dotenv_state
from propvault.ledger.address import derive_payment_address, derive_vault_address
from propvault.ledger.constants import DEFAULT_PROGRAM_ID, DEFAULT_RENT_FLOOR
from propvault.testing.sigtools import deterministic_ed25519_keypair


@pytest.fixture(autouse=True)
def _cli_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    root = logging.getLogger()
    saved = (list(root.handlers), root.level, getattr(root, "_propvault_configured", False))

    master_pk, _ = deterministic_ed25519_keypair(label="master")
    monkeypatch.chdir(tmp_path)
    for k in ("PROPVAULT_CONFIG_PATH", "PROPVAULT_PROGRAM_ID", "PROPVAULT_RENT_FLOOR", "PROPVAULT_DOTENV_PATH"):
        monkeypatch.delenv(k, raising=False)
    monkeypatch.setenv("PROPVAULT_MASTER_AUTHORITY", master_pk)
    monkeypatch.setenv("PROPVAULT_DB_PATH", str(tmp_path / "data" / "propvault.db"))
    monkeypatch.setenv("PROPVAULT_MODE", "test")
    monkeypatch.setenv("PROPVAULT_LOG_LEVEL", "WARNING")
    reset_dotenv_state()
    yield
    reset_dotenv_state()
    root.handlers, root.level = saved[0], saved[1]
    setattr(root, "_propvault_configured", saved[2])


def _run(capsys: pytest.CaptureFixture[str], *argv: str) -> tuple[int, Any]:
    rc = main(list(argv))
    out = capsys.readouterr().out
    return rc, (json.loads(out) if out.strip() else None)


def test_derive_commands_are_offline(capsys: pytest.CaptureFixture[str]) -> None:
    alice_pk, _ = deterministic_ed25519_keypair(label="alice")

    rc, out = _run(capsys, "derive-vault", "7")
    assert rc == 0
    expected = derive_vault_address(DEFAULT_PROGRAM_ID, 7)
    assert (out["address"], out["bump"]) == (expected.hex, expected.bump)

    rc, out = _run(capsys, "derive-payment", "7", alice_pk)
    assert rc == 0
    assert out["address"] == derive_payment_address(DEFAULT_PROGRAM_ID, 7, bytes.fromhex(alice_pk)).hex


def test_fund_withdraw_and_inspect(capsys: pytest.CaptureFixture[str]) -> None:
    alice_pk, alice_seed = deterministic_ed25519_keypair(label="alice")

    rc, out = _run(capsys, "fund", "1", "500000", "--key", alice_seed)
    assert rc == 0
    assert out["status"] == "committed"
    assert out["receipt"]["vault"]["total_balance"] == 500_000 + DEFAULT_RENT_FLOOR

    rc, out = _run(capsys, "withdraw", "1", "200000", "--key", alice_seed)
    assert rc == 0
    assert out["receipt"]["record"]["amount"] == 300_000

    rc, out = _run(capsys, "show-record", "1", alice_pk)
    assert rc == 0
    assert out["record"]["amount"] == 300_000

    rc, out = _run(capsys, "list-records", "1")
    assert [r["payer"] for r in out] == [alice_pk]

    rc, out = _run(capsys, "show-vault", "1")
    assert out["vault"]["total_balance"] == 300_000 + DEFAULT_RENT_FLOOR

    rc, out = _run(capsys, "audit")
    assert rc == 0
    assert out[0]["ok"] is True


def test_rejections_exit_one(capsys: pytest.CaptureFixture[str]) -> None:
    _, alice_seed = deterministic_ed25519_keypair(label="alice")
    _, master_seed = deterministic_ed25519_keypair(label="master")

    rc, out = _run(capsys, "withdraw", "2", "1", "--key", alice_seed)
    assert rc == 1
    assert out["error"]["code"] == "record_not_found"

    _run(capsys, "fund", "2", "100", "--key", alice_seed)
    rc, out = _run(capsys, "withdraw-master", "2", "100", "--key", alice_seed)
    assert rc == 1
    assert out["error"]["code"] == "unauthorized"

    rc, out = _run(capsys, "withdraw-master", "2", "100", "--key", master_seed)
    assert rc == 0
    assert out["receipt"]["vault"]["total_balance"] == DEFAULT_RENT_FLOOR


def test_show_vault_for_unknown_property(capsys: pytest.CaptureFixture[str]) -> None:
    rc, out = _run(capsys, "show-vault", "42")
    assert rc == 0
    assert out["vault"] is None
    assert out["address"] == derive_vault_address(DEFAULT_PROGRAM_ID, 42).hex


def test_missing_master_authority_is_a_usage_error(
    capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("PROPVAULT_MASTER_AUTHORITY")
    rc = main(["show-vault", "1"])
    captured = capsys.readouterr()
    assert rc == 2
    assert "master_authority" in captured.err


def test_bad_key_is_a_usage_error(capsys: pytest.CaptureFixture[str]) -> None:
    rc = main(["fund", "1", "10", "--key", "abcd"])
    captured = capsys.readouterr()
    assert rc == 2
    assert "propvault:" in captured.err
