from __future__ import annotations

"""Operation payload schemas.

Strict shape checks for the payload of each supported operation: required
keys, integer types and ranges, and no unknown keys. Pydantic errors are
mapped onto the ledger's own error types.

`amount` is a business value, not addressing. Its problems are carried on the
result instead of raised, so the dispatcher can authorize the caller first and
only then complain about the amount.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBytes, StrictInt, StrictStr, ValidationError

from propvault.ledger.constants import MAX_U32, MAX_U64
from propvault.runtime.errors import (
    InvalidAmount,
    InvalidIdentity,
    InvalidOperation,
    InvalidPropertyId,
    PropvaultError,
)
from propvault.runtime.op_types import OP_FUND_PROPERTY, OP_WITHDRAW_MASTER, OP_WITHDRAW_MY_PAYMENT

Json = Dict[str, Any]
IdentityText = Optional[Union[StrictStr, StrictBytes]]


class _StrictModel(BaseModel):
    """Strict model: reject unknown keys."""

    model_config = ConfigDict(extra="forbid")


class _PropertyOpPayload(_StrictModel):
    property_id: StrictInt = Field(..., ge=0, le=MAX_U32)
    amount: StrictInt = Field(..., ge=0, le=MAX_U64)


class FundPropertyPayload(_PropertyOpPayload):
    payer: IdentityText = None


class WithdrawMyPaymentPayload(_PropertyOpPayload):
    payer: IdentityText = None
    payment_record: IdentityText = None


class WithdrawMasterPayload(_PropertyOpPayload):
    pass


_SCHEMA_BY_OP: Dict[str, Type[_PropertyOpPayload]] = {
    OP_FUND_PROPERTY: FundPropertyPayload,
    OP_WITHDRAW_MY_PAYMENT: WithdrawMyPaymentPayload,
    OP_WITHDRAW_MASTER: WithdrawMasterPayload,
}

_RANGE_ERRORS = {"greater_than_equal", "less_than_equal"}


@dataclass(frozen=True)
class CheckedPayload:
    property_id: int
    amount: int = 0
    amount_error: Optional[PropvaultError] = None

    def require_amount(self) -> int:
        if self.amount_error is not None:
            raise self.amount_error
        return self.amount


def _map_error(err: Json) -> PropvaultError:
    loc = err.get("loc") or ()
    name = str(loc[0]) if loc else ""
    kind = str(err.get("type", ""))
    value = err.get("input")

    if kind == "extra_forbidden":
        return InvalidOperation("unknown_field", {"field": name})
    if kind == "missing":
        return InvalidOperation(f"missing_{name}", {"field": name})
    if name == "property_id":
        if kind in _RANGE_ERRORS:
            return InvalidPropertyId("property_id_out_of_range", {"property_id": value})
        return InvalidPropertyId("property_id_not_int", {"type": type(value).__name__})
    if name == "amount":
        if kind in _RANGE_ERRORS:
            return InvalidAmount("amount_out_of_range", {"amount": value})
        return InvalidAmount("amount_not_int", {"type": type(value).__name__})
    if name in {"payer", "payment_record"}:
        return InvalidIdentity("identity_wrong_type", {"field": name, "type": type(value).__name__})
    return InvalidOperation("payload_schema_mismatch", {"field": name, "type": kind})


def validate_op_payload(op: str, payload: Json) -> CheckedPayload:
    """Check `payload` against the schema for `op`.

    Raises the mapped error for the first problem outside `amount`. An
    `amount` problem is returned on the result; `require_amount()` raises it.
    """
    schema = _SCHEMA_BY_OP.get(op)
    if schema is None:
        raise InvalidOperation("op_not_supported", {"op": op})

    try:
        model = schema.model_validate(payload)
    except ValidationError as ve:
        errors = ve.errors()
        for err in errors:
            loc = err.get("loc") or ()
            if not loc or loc[0] != "amount":
                raise _map_error(err) from ve
        return CheckedPayload(property_id=payload["property_id"], amount_error=_map_error(errors[0]))

    return CheckedPayload(property_id=model.property_id, amount=model.amount)


__all__ = [
    "CheckedPayload",
    "FundPropertyPayload",
    "WithdrawMasterPayload",
    "WithdrawMyPaymentPayload",
    "validate_op_payload",
]
