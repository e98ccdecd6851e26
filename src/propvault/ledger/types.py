"""propvault.ledger.types

Typed ledger records and the strict coercions used at the core boundary.

This module defines:
  - VaultAccount: pooled balance for one property (includes the rent floor)
  - PaymentRecord: one contributor's running balance for one property
  - canonical JSON encoding for both (fail closed on malformed blobs)
  - input coercion for property ids, amounts and 32-byte identities
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Dict, Union

from propvault.ledger.constants import KEY_LEN, KIND_PAYMENT, KIND_VAULT, MAX_U32, MAX_U64
from propvault.runtime.errors import InvalidAmount, InvalidIdentity, InvalidPropertyId

Json = Dict[str, Any]


def decode_bytes(s: str) -> bytes:
    s = s.strip()
    if not s:
        raise ValueError("empty string")
    # hex
    try:
        return bytes.fromhex(s)
    except ValueError:
        pass
    # base64 / base64url
    try:
        padding = "=" * (-len(s) % 4)
        s2 = (s + padding).replace("-", "+").replace("_", "/")
        return base64.b64decode(s2, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("not hex or base64") from e


def as_identity(v: Any, *, field: str = "identity") -> bytes:
    """Coerce a 32-byte identity given as bytes, hex or base64 text."""
    if isinstance(v, (bytes, bytearray, memoryview)):
        raw = bytes(v)
    elif isinstance(v, str):
        try:
            raw = decode_bytes(v)
        except ValueError as e:
            raise InvalidIdentity("identity_not_decodable", {"field": field}) from e
    else:
        raise InvalidIdentity("identity_wrong_type", {"field": field, "type": type(v).__name__})

    if len(raw) != KEY_LEN:
        raise InvalidIdentity("identity_wrong_length", {"field": field, "length": len(raw)})
    return raw


def as_property_id(v: Any) -> int:
    # bool is an int subclass; disallow it explicitly
    if isinstance(v, bool) or not isinstance(v, int):
        raise InvalidPropertyId("property_id_not_int", {"type": type(v).__name__})
    if v < 0 or v > MAX_U32:
        raise InvalidPropertyId("property_id_out_of_range", {"property_id": v})
    return v


def as_amount(v: Any) -> int:
    if isinstance(v, bool) or not isinstance(v, int):
        raise InvalidAmount("amount_not_int", {"type": type(v).__name__})
    if v < 0 or v > MAX_U64:
        raise InvalidAmount("amount_out_of_range", {"amount": v})
    return v


def _require_int(j: Json, key: str, *, hi: int) -> int:
    v = j.get(key)
    if isinstance(v, bool) or not isinstance(v, int) or v < 0 or v > hi:
        raise ValueError(f"record schema error: field '{key}' must be an int in [0, {hi}] (got {v!r})")
    return v


@dataclass(frozen=True)
class VaultAccount:
    property_id: int
    total_balance: int
    bump: int

    kind = KIND_VAULT

    def to_json(self) -> Json:
        return {
            "kind": KIND_VAULT,
            "property_id": self.property_id,
            "total_balance": self.total_balance,
            "bump": self.bump,
        }

    @staticmethod
    def from_json(j: Json) -> "VaultAccount":
        if not isinstance(j, dict) or j.get("kind") != KIND_VAULT:
            raise ValueError("record schema error: expected a vault record")
        return VaultAccount(
            property_id=_require_int(j, "property_id", hi=MAX_U32),
            total_balance=_require_int(j, "total_balance", hi=MAX_U64),
            bump=_require_int(j, "bump", hi=255),
        )


@dataclass(frozen=True)
class PaymentRecord:
    property_id: int
    payer: bytes
    amount: int
    withdrawn: bool
    bump: int

    kind = KIND_PAYMENT

    def to_json(self) -> Json:
        return {
            "kind": KIND_PAYMENT,
            "property_id": self.property_id,
            "payer": self.payer.hex(),
            "amount": self.amount,
            "withdrawn": self.withdrawn,
            "bump": self.bump,
        }

    @staticmethod
    def from_json(j: Json) -> "PaymentRecord":
        if not isinstance(j, dict) or j.get("kind") != KIND_PAYMENT:
            raise ValueError("record schema error: expected a payment record")
        payer_hex = j.get("payer")
        try:
            payer = bytes.fromhex(str(payer_hex))
        except ValueError as e:
            raise ValueError("record schema error: field 'payer' must be hex") from e
        if len(payer) != KEY_LEN:
            raise ValueError("record schema error: field 'payer' must be 32 bytes")
        withdrawn = j.get("withdrawn")
        if not isinstance(withdrawn, bool):
            raise ValueError("record schema error: field 'withdrawn' must be bool")
        return PaymentRecord(
            property_id=_require_int(j, "property_id", hi=MAX_U32),
            payer=payer,
            amount=_require_int(j, "amount", hi=MAX_U64),
            withdrawn=withdrawn,
            bump=_require_int(j, "bump", hi=255),
        )


Record = Union[VaultAccount, PaymentRecord]


def record_from_json(j: Json) -> Record:
    kind = j.get("kind") if isinstance(j, dict) else None
    if kind == KIND_VAULT:
        return VaultAccount.from_json(j)
    if kind == KIND_PAYMENT:
        return PaymentRecord.from_json(j)
    raise ValueError(f"record schema error: unknown kind {kind!r}")


def canon_record_json(rec: Record) -> str:
    """Canonical JSON encoding; keep this stable across hosts."""
    return json.dumps(rec.to_json(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def record_from_canon(raw: str) -> Record:
    return record_from_json(json.loads(raw))
