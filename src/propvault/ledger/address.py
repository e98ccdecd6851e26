# src/propvault/ledger/address.py
from __future__ import annotations

"""Deterministic account addresses.

An address is sha256(seeds || bump || program_id || marker). Candidates that
decode as a valid compressed Ed25519 point are skipped: such an address could
have a private key, so nobody but the ledger may own a derived address.

The bump is searched downward from 255; the first valid candidate wins. The
whole thing is a pure function of its inputs, so any caller can compute where
a vault or payment record lives without asking the store.
"""

import hashlib
from dataclasses import dataclass
from functools import lru_cache
from typing import Sequence, Tuple

from propvault.ledger.constants import (
    KEY_LEN,
    MAX_BUMP,
    MAX_SEED_LEN,
    MAX_SEEDS,
    PAYMENT_SEED,
    PDA_MARKER,
    VAULT_SEED,
)
from propvault.ledger.types import as_identity, as_property_id
from propvault.runtime.errors import AddressDerivationExhausted

# Curve25519 field prime and the Edwards d constant
_P = 2**255 - 19
_D = (-121665 * pow(121666, _P - 2, _P)) % _P


@dataclass(frozen=True)
class DerivedAddress:
    address: bytes
    bump: int

    @property
    def hex(self) -> str:
        return self.address.hex()

    def to_json(self) -> dict:
        return {"address": self.address.hex(), "bump": self.bump}


def is_on_curve(b: bytes) -> bool:
    """True if `b` decompresses to a point on the Ed25519 curve.

    Decoding ignores the sign bit and reduces y mod p, then checks that
    x^2 = (y^2 - 1) / (d*y^2 + 1) has a square root.
    """
    if len(b) != KEY_LEN:
        return False
    y = (int.from_bytes(b, "little") & ((1 << 255) - 1)) % _P
    y2 = y * y % _P
    u = (y2 - 1) % _P
    v = (_D * y2 + 1) % _P
    if u == 0:
        return True
    x2 = u * pow(v, _P - 2, _P) % _P
    return pow(x2, (_P - 1) // 2, _P) == 1


def _check_seeds(seeds: Sequence[bytes]) -> None:
    if len(seeds) > MAX_SEEDS:
        raise ValueError(f"at most {MAX_SEEDS} seeds allowed; got {len(seeds)}")
    for s in seeds:
        if len(s) > MAX_SEED_LEN:
            raise ValueError(f"seed longer than {MAX_SEED_LEN} bytes")


def create_address(seeds: Sequence[bytes], bump: int, program_id: bytes) -> bytes | None:
    """Return the candidate for one bump, or None if it lands on the curve."""
    _check_seeds(seeds)
    h = hashlib.sha256()
    for s in seeds:
        h.update(s)
    h.update(bytes([bump]))
    h.update(program_id)
    h.update(PDA_MARKER)
    out = h.digest()
    if is_on_curve(out):
        return None
    return out


@lru_cache(maxsize=4096)
def _find(seeds: Tuple[bytes, ...], program_id: bytes) -> DerivedAddress:
    for bump in range(MAX_BUMP, 0, -1):
        addr = create_address(seeds, bump, program_id)
        if addr is not None:
            return DerivedAddress(addr, bump)
    raise AddressDerivationExhausted("no_valid_bump", {"seeds": [s.hex() for s in seeds]})


def find_address(seeds: Sequence[bytes], program_id: bytes) -> DerivedAddress:
    if len(program_id) != KEY_LEN:
        raise ValueError("program_id must be 32 bytes")
    return _find(tuple(bytes(s) for s in seeds), bytes(program_id))


def property_seed(property_id: int) -> bytes:
    return as_property_id(property_id).to_bytes(4, "little")


def derive_vault_address(program_id: bytes, property_id: int) -> DerivedAddress:
    return find_address([VAULT_SEED, property_seed(property_id)], program_id)


def derive_payment_address(program_id: bytes, property_id: int, payer: bytes | str) -> DerivedAddress:
    return find_address([PAYMENT_SEED, property_seed(property_id), as_identity(payer, field="payer")], program_id)


__all__ = [
    "DerivedAddress",
    "create_address",
    "derive_payment_address",
    "derive_vault_address",
    "find_address",
    "is_on_curve",
]
