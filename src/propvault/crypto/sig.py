from __future__ import annotations

"""Signing boundary helpers.

The ledger core consumes an already-verified caller identity. These helpers
belong to the layer in front of it: build the canonical message for an
operation envelope, sign it, and check that the caller's key signed it. A
failed check is a transport failure, not a ledger rejection.
"""

import base64
import json
from typing import Any, Dict

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from propvault.ledger.types import decode_bytes
from propvault.runtime.op_types import OperationEnvelope

Json = Dict[str, Any]


def canonical_op_message(*, op: str, caller: str, payload: Json) -> bytes:
    obj: Json = {
        "op": str(op).strip().upper(),
        "caller": str(caller).strip(),
        "payload": payload if isinstance(payload, dict) else {},
    }
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def verify_ed25519_signature(*, message: bytes, sig: str, pubkey: str | bytes) -> bool:
    try:
        sig_b = decode_bytes(sig)
        pk_b = pubkey if isinstance(pubkey, bytes) else decode_bytes(pubkey)
        key = Ed25519PublicKey.from_public_bytes(pk_b)
        key.verify(sig_b, message)
        return True
    except (InvalidSignature, ValueError):
        return False


def _private_key(privkey: str) -> Ed25519PrivateKey:
    pk_b = decode_bytes(privkey)
    # 64-byte expanded keys carry the seed in the first half.
    if len(pk_b) == 64:
        pk_b = pk_b[:32]
    if len(pk_b) != 32:
        raise ValueError("ed25519 privkey must be 32-byte seed (or 64-byte expanded key)")
    return Ed25519PrivateKey.from_private_bytes(pk_b)


def public_key_hex(privkey: str) -> str:
    """Hex identity for an Ed25519 seed."""
    return _private_key(privkey).public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()


def sign_ed25519(*, message: bytes, privkey: str, encoding: str = "hex") -> str:
    """Sign a message with an Ed25519 private key.

    privkey: hex or base64/base64url string representing 32-byte seed or 64-byte private key.
    encoding: "hex" (default) or "b64".
    """
    sig_b = _private_key(privkey).sign(message)
    if encoding == "hex":
        return sig_b.hex()
    if encoding in {"b64", "base64"}:
        return base64.b64encode(sig_b).decode("ascii")
    raise ValueError("unsupported encoding")


def sign_envelope(env: OperationEnvelope, *, privkey: str, encoding: str = "hex") -> OperationEnvelope:
    """Return a copy of env with `sig` populated."""
    msg = canonical_op_message(op=env.op, caller=env.caller, payload=env.payload)
    return OperationEnvelope(
        op=env.op,
        caller=env.caller,
        payload=dict(env.payload),
        sig=sign_ed25519(message=msg, privkey=privkey, encoding=encoding),
    )


def verify_envelope(env: OperationEnvelope) -> bool:
    """True if env.sig is the caller's signature over the canonical message."""
    if not env.sig or not env.caller:
        return False
    msg = canonical_op_message(op=env.op, caller=env.caller, payload=env.payload)
    return verify_ed25519_signature(message=msg, sig=env.sig, pubkey=env.caller)


__all__ = [
    "canonical_op_message",
    "public_key_hex",
    "sign_ed25519",
    "sign_envelope",
    "verify_ed25519_signature",
    "verify_envelope",
]
