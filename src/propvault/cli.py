#!/usr/bin/env python3
"""Operator CLI for the escrow ledger.

Examples:
  propvault derive-vault 1
  propvault derive-payment 1 <payer-hex>
  propvault fund 1 500000 --key <seed-hex>
  propvault withdraw 1 200000 --key <seed-hex>
  propvault withdraw-master 1 100000 --key <master-seed-hex>
  propvault show-vault 1
  propvault audit

Config comes from --config, PROPVAULT_CONFIG_PATH, or PROPVAULT_* variables
(see propvault.runtime.engine_config). Mutating commands sign the envelope
with --key, verify it the way a transport would, then dispatch.

Exit codes: 0 committed / ok, 1 rejected / audit problems, 2 usage or
signature failure.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Any, List, Optional

from propvault.crypto.sig import public_key_hex, sign_envelope, verify_envelope
from propvault.ledger.address import derive_payment_address, derive_vault_address
from propvault.ledger.constants import DEFAULT_PROGRAM_ID
from propvault.ledger.types import as_identity
from propvault.runtime.audit import audit_ledger, audit_property
from propvault.runtime.balance_engine import BalanceEngine
from propvault.runtime.dispatch import OperationDispatcher
from propvault.runtime.engine_config import EngineConfig, load_engine_config
from propvault.runtime.errors import PropvaultError
from propvault.runtime.op_types import (
    OP_FUND_PROPERTY,
    OP_WITHDRAW_MASTER,
    OP_WITHDRAW_MY_PAYMENT,
    OperationEnvelope,
)
from propvault.runtime.sqlite_db import SqliteAccountStore, SqliteDB
from propvault.runtime.structured_logging import configure_structured_logging, log_event

_LOG = logging.getLogger("propvault.cli")

_OPS = {
    "fund": OP_FUND_PROPERTY,
    "withdraw": OP_WITHDRAW_MY_PAYMENT,
    "withdraw-master": OP_WITHDRAW_MASTER,
}


def _emit(obj: Any) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True))


def _program_id(args: argparse.Namespace) -> bytes:
    raw = args.program_id or os.environ.get("PROPVAULT_PROGRAM_ID")
    return as_identity(raw, field="program_id") if raw else DEFAULT_PROGRAM_ID


def _engine(cfg: EngineConfig) -> BalanceEngine:
    store = SqliteAccountStore(db=SqliteDB(path=cfg.db_path))
    return BalanceEngine(store=store, config=cfg)


def _cmd_derive(args: argparse.Namespace) -> int:
    program_id = _program_id(args)
    if args.cmd == "derive-vault":
        d = derive_vault_address(program_id, args.property_id)
    else:
        d = derive_payment_address(program_id, args.property_id, args.payer)
    _emit({"property_id": args.property_id, "program_id": program_id.hex(), **d.to_json()})
    return 0


def _cmd_op(args: argparse.Namespace, cfg: EngineConfig) -> int:
    caller = public_key_hex(args.key)
    payload = {"property_id": args.property_id, "amount": args.amount}
    env = sign_envelope(OperationEnvelope(op=_OPS[args.cmd], caller=caller, payload=payload), privkey=args.key)

    # Stand-in for the transport layer: reject before the ledger sees it.
    if not verify_envelope(env):
        log_event(_LOG, "signature_rejected", level=logging.WARNING, op=env.op, caller=caller)
        _emit({"status": "error", "error": "invalid_signature"})
        return 2

    outcome = OperationDispatcher(engine=_engine(cfg)).dispatch(env)
    _emit(outcome.to_json())
    return 0 if outcome.ok else 1


def _cmd_read(args: argparse.Namespace, cfg: EngineConfig) -> int:
    engine = _engine(cfg)
    if args.cmd == "show-vault":
        vault = engine.get_vault(args.property_id)
        _emit({"address": engine.vault_address(args.property_id).hex, "vault": None if vault is None else vault.to_json()})
        return 0
    if args.cmd == "show-record":
        rec = engine.get_payment_record(args.property_id, args.payer)
        _emit(
            {
                "address": engine.payment_address(args.property_id, args.payer).hex,
                "record": None if rec is None else rec.to_json(),
            }
        )
        return 0
    if args.cmd == "list-records":
        _emit([r.to_json() for r in engine.list_payment_records(args.property_id)])
        return 0

    # audit
    if args.property_id is not None:
        reports = [audit_property(engine.store, cfg, args.property_id)]
    else:
        reports = audit_ledger(engine.store, cfg)
    _emit(reports)
    return 0 if all(r["ok"] for r in reports) else 1


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="propvault", description="Property escrow ledger")
    ap.add_argument("--config", default=None, help="JSON or YAML engine config file")
    sub = ap.add_subparsers(dest="cmd", required=True)

    for name in ("derive-vault", "derive-payment"):
        p = sub.add_parser(name, help="derive an address offline")
        p.add_argument("property_id", type=int)
        if name == "derive-payment":
            p.add_argument("payer", help="payer identity (hex or base64)")
        p.add_argument("--program-id", default=None, help="override PROPVAULT_PROGRAM_ID")

    for name in _OPS:
        p = sub.add_parser(name, help=f"sign and dispatch {_OPS[name]}")
        p.add_argument("property_id", type=int)
        p.add_argument("amount", type=int)
        p.add_argument("--key", required=True, help="caller Ed25519 seed (hex or base64)")

    p = sub.add_parser("show-vault")
    p.add_argument("property_id", type=int)
    p = sub.add_parser("show-record")
    p.add_argument("property_id", type=int)
    p.add_argument("payer")
    p = sub.add_parser("list-records")
    p.add_argument("property_id", type=int)
    p = sub.add_parser("audit")
    p.add_argument("property_id", type=int, nargs="?", default=None)

    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        if args.cmd in {"derive-vault", "derive-payment"}:
            configure_structured_logging()
            return _cmd_derive(args)

        cfg = load_engine_config(config_path=args.config)
        configure_structured_logging(cfg.log_level)
        if args.cmd in _OPS:
            return _cmd_op(args, cfg)
        return _cmd_read(args, cfg)
    except PropvaultError as e:
        _emit({"status": "error", "error": e.to_json()})
        return 2
    except ValueError as e:
        print(f"propvault: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
