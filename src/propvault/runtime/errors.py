from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional

Json = Dict[str, Any]


@dataclass
class PropvaultError(Exception):
    """Canonical error type for rejected escrow operations.

    Subclasses only pin `code`/`category`; every failure carries a short
    machine-readable `reason` plus optional `details`.
    """

    reason: str
    details: Optional[Json] = None

    code: ClassVar[str] = "propvault_error"
    category: ClassVar[str] = "error"
    retryable: ClassVar[bool] = False

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"

    def to_json(self) -> Json:
        return {
            "code": self.code,
            "category": self.category,
            "reason": self.reason,
            "retryable": self.retryable,
            "details": dict(self.details or {}),
        }


# --- validation: bad caller input, never retried -------------------------


class ValidationError(PropvaultError):
    category = "validation"


class InvalidAmount(ValidationError):
    code = "invalid_amount"


class AddressDerivationExhausted(ValidationError):
    code = "address_derivation_exhausted"


class InvalidPropertyId(ValidationError):
    code = "invalid_property_id"


class InvalidIdentity(ValidationError):
    code = "invalid_identity"


class InvalidOperation(ValidationError):
    code = "invalid_operation"


# --- authorization -------------------------------------------------------


class AuthorizationError(PropvaultError):
    category = "authorization"


class Unauthorized(AuthorizationError):
    code = "unauthorized"


# --- state: reflects current ledger contents -----------------------------


class StateError(PropvaultError):
    category = "state"
    retryable = True


class RecordNotFound(StateError):
    code = "record_not_found"


class AlreadyWithdrawn(StateError):
    code = "already_withdrawn"


class InsufficientFunds(StateError):
    code = "insufficient_funds"


class VaultInsufficientFunds(StateError):
    code = "vault_insufficient_funds"


__all__ = [
    "PropvaultError",
    "ValidationError",
    "InvalidAmount",
    "AddressDerivationExhausted",
    "InvalidPropertyId",
    "InvalidIdentity",
    "InvalidOperation",
    "AuthorizationError",
    "Unauthorized",
    "StateError",
    "RecordNotFound",
    "AlreadyWithdrawn",
    "InsufficientFunds",
    "VaultInsufficientFunds",
]
