# src/propvault/runtime/audit.py
from __future__ import annotations

"""Conservation checks over stored accounts.

Read-only. Recomputes, per property, the vault balance above the rent floor
against the sum of contributor records. A master sweep legitimately leaves the
vault short of what contributors deposited, so a shortfall is reported as a
negative `vault_excess` rather than treated as corruption; `ok` covers only
conditions no sequence of operations can produce.
"""

from typing import Any, Dict, List, Optional

from propvault.ledger.address import derive_payment_address, derive_vault_address
from propvault.ledger.store import AccountStore
from propvault.ledger.types import PaymentRecord, VaultAccount, as_property_id
from propvault.runtime.engine_config import EngineConfig

Json = Dict[str, Any]


def _record_problems(cfg: EngineConfig, address: bytes, rec: PaymentRecord) -> List[str]:
    problems: List[str] = []
    if rec.amount == 0 and not rec.withdrawn:
        problems.append("drained_record_not_withdrawn")
    if rec.withdrawn and rec.amount != 0:
        problems.append("withdrawn_record_has_balance")
    if derive_payment_address(cfg.program_id, rec.property_id, rec.payer).address != address:
        problems.append("record_address_not_derived_from_payer")
    return problems


def _audit(
    cfg: EngineConfig,
    property_id: int,
    vault_entry: Optional[tuple],
    records: List[tuple],
) -> Json:
    problems: List[str] = []
    checks: List[Json] = []
    deposited = 0
    for addr, rec in sorted(records, key=lambda t: t[1].payer):
        rp = _record_problems(cfg, addr, rec)
        problems.extend(rp)
        deposited += rec.amount
        checks.append({"payer": rec.payer.hex(), "amount": rec.amount, "withdrawn": rec.withdrawn, "problems": rp})

    vault: Optional[VaultAccount] = None
    if vault_entry is not None:
        addr, vault = vault_entry
        if derive_vault_address(cfg.program_id, property_id).address != addr:
            problems.append("vault_address_not_derived")
    if vault is None:
        if records:
            problems.append("records_without_vault")
        above_floor = 0
    else:
        if vault.total_balance < cfg.rent_floor:
            problems.append("vault_below_rent_floor")
        above_floor = vault.total_balance - cfg.rent_floor

    return {
        "property_id": property_id,
        "ok": not problems,
        "vault_total_balance": None if vault is None else vault.total_balance,
        "deposited": deposited,
        "vault_excess": above_floor - deposited,
        "records": checks,
        "problems": problems,
    }


def audit_ledger(store: AccountStore, config: EngineConfig) -> List[Json]:
    vaults: Dict[int, tuple] = {}
    records: Dict[int, List[tuple]] = {}
    for addr, rec in store.items():
        if isinstance(rec, VaultAccount):
            vaults[rec.property_id] = (addr, rec)
        elif isinstance(rec, PaymentRecord):
            records.setdefault(rec.property_id, []).append((addr, rec))

    pids = sorted(set(vaults) | set(records))
    return [_audit(config, pid, vaults.get(pid), records.get(pid, [])) for pid in pids]


def audit_property(store: AccountStore, config: EngineConfig, property_id: int) -> Json:
    pid = as_property_id(property_id)
    for report in audit_ledger(store, config):
        if report["property_id"] == pid:
            return report
    return _audit(config, pid, None, [])


__all__ = ["audit_ledger", "audit_property"]
