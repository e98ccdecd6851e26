from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional

from propvault.runtime.errors import InvalidOperation

Json = Dict[str, Any]

OP_FUND_PROPERTY = "FUND_PROPERTY"
OP_WITHDRAW_MY_PAYMENT = "WITHDRAW_MY_PAYMENT"
OP_WITHDRAW_MASTER = "WITHDRAW_MASTER"

SUPPORTED_OPS = frozenset({OP_FUND_PROPERTY, OP_WITHDRAW_MY_PAYMENT, OP_WITHDRAW_MASTER})

STATUS_COMMITTED = "committed"
STATUS_REJECTED = "rejected"


@dataclass(frozen=True)
class OperationEnvelope:
    """One call into the ledger.

    `caller` is the identity the transport layer already verified. `sig` is
    carried for that layer only; the core never looks at it.
    """

    op: str
    caller: str
    payload: Dict[str, Any] = field(default_factory=dict)
    sig: str = ""

    @staticmethod
    def from_json(j: Any) -> "OperationEnvelope":
        if isinstance(j, OperationEnvelope):
            return j
        if not isinstance(j, dict):
            raise InvalidOperation("envelope_not_object", {"type": type(j).__name__})
        payload = j.get("payload")
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise InvalidOperation("payload_not_object", {"type": type(payload).__name__})
        return OperationEnvelope(
            op=str(j.get("op", "") or "").strip().upper(),
            caller=str(j.get("caller", "") or "").strip(),
            payload=dict(payload),
            sig=str(j.get("sig", "") or ""),
        )

    def to_json(self) -> Json:
        return {
            "op": self.op,
            "caller": self.caller,
            "payload": self.payload,
            "sig": self.sig,
        }


@dataclass(frozen=True)
class OpOutcome:
    status: str
    op: str
    receipt: Optional[Json] = None
    code: str = "ok"
    reason: str = "committed"
    category: Optional[str] = None
    details: Optional[Json] = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_COMMITTED

    def __iter__(self) -> Iterator[Any]:
        """Allow `ok, receipt_or_error = dispatcher.dispatch(...)` unpacking."""
        yield self.ok
        yield self.receipt if self.ok else self.error()

    def error(self) -> Optional[Json]:
        if self.ok:
            return None
        return {"code": self.code, "reason": self.reason, "category": self.category, "details": self.details or {}}

    @staticmethod
    def committed(op: str, receipt: Json) -> "OpOutcome":
        return OpOutcome(STATUS_COMMITTED, op, receipt)

    @staticmethod
    def rejected(
        op: str,
        code: str,
        reason: str,
        *,
        category: Optional[str] = None,
        details: Optional[Json] = None,
    ) -> "OpOutcome":
        return OpOutcome(STATUS_REJECTED, op, None, code, reason, category, details)

    def to_json(self) -> Json:
        out: Json = {"status": self.status, "op": self.op}
        if self.ok:
            out["receipt"] = self.receipt
        else:
            out["error"] = self.error()
        return out
