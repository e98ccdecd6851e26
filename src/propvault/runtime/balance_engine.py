# src/propvault/runtime/balance_engine.py
from __future__ import annotations

"""Fund / self-withdraw / privileged-withdraw with conservation invariants.

Every operation reads the accounts it needs inside store.exclusive(), checks
all preconditions against those values, stages new immutable records and only
then writes them. The store has no multi-address transaction, so _commit()
compensates: if a later write fails, earlier writes are restored (or discarded
when the operation created them) before the failure propagates.

Invariants kept by the three mutations:
  - vault.total_balance >= rent_floor
  - vault.total_balance - rent_floor == sum(record.amount) for the property,
    until the master authority sweeps the vault
  - a record drained to zero by its owner is flagged withdrawn
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

from propvault.ledger.address import DerivedAddress, derive_payment_address, derive_vault_address
from propvault.ledger.constants import MAX_U64
from propvault.ledger.store import AccountStore
from propvault.ledger.types import PaymentRecord, Record, VaultAccount, as_amount, as_identity, as_property_id
from propvault.runtime.engine_config import EngineConfig
from propvault.runtime.errors import (
    AlreadyWithdrawn,
    InsufficientFunds,
    InvalidAmount,
    RecordNotFound,
    Unauthorized,
    VaultInsufficientFunds,
)
from propvault.runtime.structured_logging import log_event

Json = Dict[str, Any]
R = TypeVar("R", VaultAccount, PaymentRecord)

_LOG = logging.getLogger("propvault.engine")


@dataclass(frozen=True)
class _Write:
    address: bytes
    prior: Optional[Record]
    new: Record


def _transfer(src: bytes, dst: bytes, amount: int) -> Json:
    return {"from": src.hex(), "to": dst.hex(), "amount": int(amount)}


class BalanceEngine:
    def __init__(self, *, store: AccountStore, config: EngineConfig) -> None:
        self._store = store
        self._cfg = config

    @property
    def config(self) -> EngineConfig:
        return self._cfg

    @property
    def store(self) -> AccountStore:
        return self._store

    # --- addresses ------------------------------------------------------

    def vault_address(self, property_id: int) -> DerivedAddress:
        return derive_vault_address(self._cfg.program_id, property_id)

    def payment_address(self, property_id: int, payer: bytes | str) -> DerivedAddress:
        return derive_payment_address(self._cfg.program_id, property_id, payer)

    # --- reads ----------------------------------------------------------

    def _load(self, address: bytes, cls: Type[R]) -> Optional[R]:
        rec = self._store.get(address)
        if rec is None:
            return None
        if not isinstance(rec, cls):
            # Derived addresses never collide across kinds; this is corruption.
            raise ValueError(f"account {address.hex()} holds {type(rec).__name__}, expected {cls.__name__}")
        return rec

    def get_vault(self, property_id: int) -> Optional[VaultAccount]:
        return self._load(self.vault_address(property_id).address, VaultAccount)

    def get_payment_record(self, property_id: int, payer: bytes | str) -> Optional[PaymentRecord]:
        return self._load(self.payment_address(property_id, payer).address, PaymentRecord)

    def list_payment_records(self, property_id: int) -> List[PaymentRecord]:
        pid = as_property_id(property_id)
        out = [rec for _, rec in self._store.items() if isinstance(rec, PaymentRecord) and rec.property_id == pid]
        return sorted(out, key=lambda r: r.payer)

    def available(self, vault: Optional[VaultAccount]) -> int:
        """Withdrawable balance: everything above the rent floor."""
        if vault is None:
            return 0
        return max(0, vault.total_balance - self._cfg.rent_floor)

    # --- commit ---------------------------------------------------------

    def _commit(self, writes: Sequence[_Write]) -> None:
        done: List[_Write] = []
        try:
            for w in writes:
                self._store.put(w.address, w.new)
                done.append(w)
        except Exception as e:
            for w in reversed(done):
                if w.prior is None:
                    self._store.discard(w.address)
                else:
                    self._store.put(w.address, w.prior)
            log_event(
                _LOG,
                "commit_rolled_back",
                level=logging.WARNING,
                written=len(done),
                staged=len(writes),
                error=f"{type(e).__name__}: {e}",
            )
            raise

    # --- mutations ------------------------------------------------------

    def fund_property(self, property_id: int, payer: bytes | str, amount: int) -> Json:
        pid = as_property_id(property_id)
        payer_b = as_identity(payer, field="payer")
        amt = as_amount(amount)
        if amt == 0:
            raise InvalidAmount("amount_must_be_positive", {"amount": amt})

        va = self.vault_address(pid)
        ra = self.payment_address(pid, payer_b)

        with self._store.exclusive():
            vault_prior = self._load(va.address, VaultAccount)
            rec_prior = self._load(ra.address, PaymentRecord)

            rent_charged = 0
            vault = vault_prior
            if vault is None:
                # Rent floor is charged to whoever creates the vault, once.
                vault = VaultAccount(property_id=pid, total_balance=self._cfg.rent_floor, bump=va.bump)
                rent_charged = self._cfg.rent_floor

            rec = rec_prior
            reopened = False
            if rec is None:
                rec = PaymentRecord(property_id=pid, payer=payer_b, amount=0, withdrawn=False, bump=ra.bump)
            elif rec.payer != payer_b:
                raise Unauthorized("record_payer_mismatch", {"record": ra.hex})
            elif rec.withdrawn:
                if not self._cfg.reopen_after_withdrawal:
                    raise AlreadyWithdrawn("record_closed", {"record": ra.hex})
                reopened = True

            new_total = vault.total_balance + amt
            new_amount = rec.amount + amt
            if new_total > MAX_U64 or new_amount > MAX_U64:
                raise InvalidAmount("balance_overflow", {"amount": amt})

            new_vault = replace(vault, total_balance=new_total)
            new_rec = replace(rec, amount=new_amount, withdrawn=False)
            self._commit(
                [
                    _Write(va.address, vault_prior, new_vault),
                    _Write(ra.address, rec_prior, new_rec),
                ]
            )

        if vault_prior is None:
            log_event(_LOG, "vault_created", property_id=pid, vault=va.hex, rent_floor=rent_charged)
        if rec_prior is None:
            log_event(_LOG, "payment_record_created", property_id=pid, payer=payer_b.hex(), record=ra.hex)
        log_event(_LOG, "fund_committed", property_id=pid, payer=payer_b.hex(), amount=amt, reopened=reopened)

        return {
            "applied": "FUND_PROPERTY",
            "property_id": pid,
            "payer": payer_b.hex(),
            "amount": amt,
            "rent_charged": rent_charged,
            "vault_created": vault_prior is None,
            "record_created": rec_prior is None,
            "reopened": reopened,
            "vault_address": va.hex,
            "record_address": ra.hex,
            "vault": new_vault.to_json(),
            "record": new_rec.to_json(),
            "transfers": [_transfer(payer_b, va.address, amt + rent_charged)],
        }

    def withdraw_my_payment(self, property_id: int, payer: bytes | str, amount: int) -> Json:
        pid = as_property_id(property_id)
        payer_b = as_identity(payer, field="payer")
        amt = as_amount(amount)

        va = self.vault_address(pid)
        ra = self.payment_address(pid, payer_b)

        with self._store.exclusive():
            rec = self._load(ra.address, PaymentRecord)
            if rec is None:
                raise RecordNotFound("payment_record_not_found", {"property_id": pid, "record": ra.hex})
            if rec.payer != payer_b:
                raise Unauthorized("record_payer_mismatch", {"record": ra.hex})
            if rec.withdrawn:
                raise AlreadyWithdrawn("payment_already_withdrawn", {"record": ra.hex})
            if amt > rec.amount:
                raise InsufficientFunds("amount_exceeds_deposit", {"amount": amt, "deposited": rec.amount})

            vault = self._load(va.address, VaultAccount)
            available = self.available(vault)
            if vault is None or amt > available:
                raise VaultInsufficientFunds("amount_exceeds_vault", {"amount": amt, "available": available})

            remaining = rec.amount - amt
            new_vault = replace(vault, total_balance=vault.total_balance - amt)
            new_rec = replace(rec, amount=remaining, withdrawn=remaining == 0)
            self._commit(
                [
                    _Write(va.address, vault, new_vault),
                    _Write(ra.address, rec, new_rec),
                ]
            )

        log_event(
            _LOG,
            "withdraw_committed",
            property_id=pid,
            payer=payer_b.hex(),
            amount=amt,
            remaining=remaining,
            withdrawn=new_rec.withdrawn,
        )

        return {
            "applied": "WITHDRAW_MY_PAYMENT",
            "property_id": pid,
            "payer": payer_b.hex(),
            "amount": amt,
            "vault_address": va.hex,
            "record_address": ra.hex,
            "vault": new_vault.to_json(),
            "record": new_rec.to_json(),
            "transfers": [_transfer(va.address, payer_b, amt)],
        }

    def withdraw_master(self, property_id: int, amount: int, caller: bytes | str) -> Json:
        """Sweep funds from a vault to the master authority.

        Contributor records are neither read nor adjusted: the master
        authority is fully trusted and may take funds still owed to them.
        """
        pid = as_property_id(property_id)
        caller_b = as_identity(caller, field="caller")
        if caller_b != self._cfg.master_authority:
            raise Unauthorized("master_authority_required", {"caller": caller_b.hex()})
        amt = as_amount(amount)

        va = self.vault_address(pid)

        with self._store.exclusive():
            vault = self._load(va.address, VaultAccount)
            available = self.available(vault)
            if vault is None or amt > available:
                raise VaultInsufficientFunds("amount_exceeds_vault", {"amount": amt, "available": available})

            new_vault = replace(vault, total_balance=vault.total_balance - amt)
            self._commit([_Write(va.address, vault, new_vault)])

        log_event(
            _LOG,
            "master_withdraw_committed",
            property_id=pid,
            amount=amt,
            total_balance=new_vault.total_balance,
        )

        return {
            "applied": "WITHDRAW_MASTER",
            "property_id": pid,
            "amount": amt,
            "vault_address": va.hex,
            "vault": new_vault.to_json(),
            "transfers": [_transfer(va.address, caller_b, amt)],
        }


__all__ = ["BalanceEngine"]
