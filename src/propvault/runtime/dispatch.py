# src/propvault/runtime/dispatch.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from propvault.ledger.types import as_identity
from propvault.runtime.balance_engine import BalanceEngine
from propvault.runtime.errors import InvalidOperation, PropvaultError
from propvault.runtime.gates import authorize
from propvault.runtime.op_schema import validate_op_payload
from propvault.runtime.op_types import (
    OP_FUND_PROPERTY,
    OP_WITHDRAW_MY_PAYMENT,
    SUPPORTED_OPS,
    OperationEnvelope,
    OpOutcome,
)
from propvault.runtime.structured_logging import log_event

Json = Dict[str, Any]

_LOG = logging.getLogger("propvault.dispatch")


def _raw_field(env: Any, key: str) -> str:
    if isinstance(env, OperationEnvelope):
        return str(getattr(env, key))
    if isinstance(env, dict):
        return str(env.get(key, "") or "").strip()
    return ""


class OperationDispatcher:
    """Run one envelope through shape check -> authorize -> engine.

    Each call ends either Committed (receipt) or Rejected (the first failing
    condition). Business failures are returned, not raised; anything else is
    a host problem and propagates.
    """

    def __init__(self, *, engine: BalanceEngine) -> None:
        self._engine = engine

    @property
    def engine(self) -> BalanceEngine:
        return self._engine

    def dispatch(self, env: Any) -> OpOutcome:
        env_n: Optional[OperationEnvelope] = None
        try:
            env_n = OperationEnvelope.from_json(env)
            receipt = self._run(env_n)
        except PropvaultError as e:
            op = env_n.op if env_n is not None else _raw_field(env, "op").upper()
            caller = env_n.caller if env_n is not None else _raw_field(env, "caller")
            log_event(
                _LOG,
                "op_rejected",
                op=op,
                caller=caller,
                code=e.code,
                category=e.category,
                reason=e.reason,
            )
            return OpOutcome.rejected(op, e.code, e.reason, category=e.category, details=e.details)

        log_event(_LOG, "op_committed", op=env_n.op, caller=env_n.caller, property_id=receipt.get("property_id"))
        return OpOutcome.committed(env_n.op, receipt)

    def _run(self, env: OperationEnvelope) -> Json:
        op = env.op
        if not op:
            raise InvalidOperation("missing_op")
        if op not in SUPPORTED_OPS:
            raise InvalidOperation("op_not_supported", {"op": op})

        caller = as_identity(env.caller, field="caller")
        checked = validate_op_payload(op, env.payload)
        pid = checked.property_id

        authorize(op, caller=caller, property_id=pid, payload=env.payload, config=self._engine.config)

        amount = checked.require_amount()
        if op == OP_FUND_PROPERTY:
            return self._engine.fund_property(pid, caller, amount)
        if op == OP_WITHDRAW_MY_PAYMENT:
            return self._engine.withdraw_my_payment(pid, caller, amount)
        return self._engine.withdraw_master(pid, amount, caller)


__all__ = ["OperationDispatcher"]
