# src/propvault/ledger/constants.py
from __future__ import annotations

"""Ledger-wide constants.

Seed tags and the rent floor mirror the deployed escrow program so that
addresses derived here match the ones a wallet front-end computes offline.
"""

import hashlib

# Integer domains (wire types are u32 / u64)
MAX_U32: int = 2**32 - 1
MAX_U64: int = 2**64 - 1

# Identities and addresses are raw 32-byte keys
KEY_LEN: int = 32

# Address derivation
VAULT_SEED: bytes = b"property_vault"
PAYMENT_SEED: bytes = b"payment"
PDA_MARKER: bytes = b"ProgramDerivedAddress"
MAX_SEED_LEN: int = 32
MAX_SEEDS: int = 16
MAX_BUMP: int = 255

DEFAULT_PROGRAM_ID: bytes = hashlib.sha256(b"propvault:escrow:v1").digest()

# Rent exemption for a vault account: (128 + 45 bytes) * 3480 * 2 years
VAULT_ACCOUNT_SPACE: int = 8 + 4 + 1 + 32
RENT_LAMPORTS_PER_BYTE_YEAR: int = 3_480
RENT_EXEMPTION_YEARS: int = 2
DEFAULT_RENT_FLOOR: int = (128 + VAULT_ACCOUNT_SPACE) * RENT_LAMPORTS_PER_BYTE_YEAR * RENT_EXEMPTION_YEARS

# Record kinds
KIND_VAULT: str = "vault"
KIND_PAYMENT: str = "payment"
