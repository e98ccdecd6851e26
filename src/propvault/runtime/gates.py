# src/propvault/runtime/gates.py
from __future__ import annotations

"""Pre-mutation authorization.

The gate is stateless: it looks at the caller, the operation and addresses
derived from the payload, never at stored accounts. Owner withdrawal is bound
structurally: the record a caller targets must be the one whose address is
derived from (property_id, caller), so naming someone else's record fails no
matter what that record contains.
"""

from typing import Any, Dict, Optional

from propvault.ledger.address import derive_payment_address
from propvault.ledger.types import as_identity
from propvault.runtime.engine_config import EngineConfig
from propvault.runtime.errors import InvalidIdentity, Unauthorized
from propvault.runtime.op_types import OP_FUND_PROPERTY, OP_WITHDRAW_MASTER, OP_WITHDRAW_MY_PAYMENT

Json = Dict[str, Any]


def _claimed_payer(payload: Json) -> Optional[bytes]:
    v = payload.get("payer")
    if v is None or (isinstance(v, str) and not v.strip()):
        return None
    return as_identity(v, field="payer")


def _claimed_record(payload: Json) -> Optional[bytes]:
    v = payload.get("payment_record")
    if v is None or (isinstance(v, str) and not v.strip()):
        return None
    try:
        return as_identity(v, field="payment_record")
    except InvalidIdentity as e:
        # A malformed address can never match a derived one.
        raise Unauthorized("record_address_mismatch", {"payment_record": str(v)}) from e


def _authorize_fund(caller: bytes, payload: Json) -> None:
    payer = _claimed_payer(payload)
    if payer is not None and payer != caller:
        raise Unauthorized("third_party_funding_forbidden", {"caller": caller.hex(), "payer": payer.hex()})


def _authorize_withdraw_my_payment(caller: bytes, property_id: int, payload: Json, cfg: EngineConfig) -> None:
    expected = derive_payment_address(cfg.program_id, property_id, caller)

    payer = _claimed_payer(payload)
    if payer is not None and payer != caller:
        claimed = derive_payment_address(cfg.program_id, property_id, payer)
        raise Unauthorized(
            "record_address_mismatch",
            {"caller": caller.hex(), "expected": expected.hex, "claimed": claimed.hex},
        )

    record = _claimed_record(payload)
    if record is not None and record != expected.address:
        raise Unauthorized(
            "record_address_mismatch",
            {"caller": caller.hex(), "expected": expected.hex, "claimed": record.hex()},
        )


def _authorize_withdraw_master(caller: bytes, cfg: EngineConfig) -> None:
    if caller != cfg.master_authority:
        raise Unauthorized("master_authority_required", {"caller": caller.hex()})


def authorize(op: str, *, caller: bytes, property_id: int, payload: Json, config: EngineConfig) -> None:
    """Raise Unauthorized unless `caller` may run `op` with this payload."""
    if op == OP_FUND_PROPERTY:
        _authorize_fund(caller, payload)
        return
    if op == OP_WITHDRAW_MY_PAYMENT:
        _authorize_withdraw_my_payment(caller, property_id, payload, config)
        return
    if op == OP_WITHDRAW_MASTER:
        _authorize_withdraw_master(caller, config)
        return
    raise Unauthorized("unknown_operation", {"op": op})


__all__ = ["authorize"]
