# photoai/ledger.py
"""
Ledger de créditos.

Expone LedgerStore con:
  - reserve(account_id, amount, job_id)  -> LedgerEntry   (retiene saldo)
  - settle(entry)                        -> bool          (cobra la reserva)
  - release(entry)                       -> bool          (devuelve la reserva)
  - grant(account_id, amount, note)      -> LedgerEntry   (abono de créditos)

Reglas:
  - El saldo se modifica SOLO con UPDATE condicionales (compare-and-set), así
    dos reservas concurrentes no pueden pasar si solo alcanza para una.
  - Una reserva pasa de 'reserved' a 'settled' o 'released' una única vez.
    Repetir la misma operación es un no-op; cruzarlas es InvalidState.
  - Los métodos hacen flush pero NO commit: la transacción es del llamador
    (controller / reconciler), para que job + ledger se confirmen juntos.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Tuple, Union

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from photoai import db
from photoai.errors import InsufficientCredit, InvalidState, NotFound
from photoai.models import Account, EntryReason, EntryStatus, LedgerEntry, utcnow

log = logging.getLogger(__name__)

EntryRef = Union[LedgerEntry, int]


def _entry_id(entry: EntryRef) -> int:
    return entry.id if isinstance(entry, LedgerEntry) else int(entry)


class LedgerStore:
    def __init__(self, session: Optional[Session] = None) -> None:
        self.session = session or db.session

    # ---------------------------------------------------------
    # Cuentas
    # ---------------------------------------------------------
    def open_account(self, account_id: str, initial_balance: int = 0) -> Account:
        """Crea la cuenta si no existe (idempotente). El saldo inicial queda auditado como abono."""
        account = self.session.get(Account, account_id)
        if account is not None:
            return account

        account = Account(id=account_id, balance=0)
        self.session.add(account)
        self.session.flush()
        if initial_balance > 0:
            self.grant(account_id, initial_balance, note="signup")
        return self._load_account(account_id)

    def balance(self, account_id: str) -> int:
        return int(self._load_account(account_id).balance)

    def grant(self, account_id: str, amount: int, note: Optional[str] = None) -> LedgerEntry:
        if amount <= 0:
            raise ValueError("amount debe ser > 0")

        res = self.session.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(balance=Account.balance + amount)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise NotFound(f"Cuenta {account_id} no existe")

        now = utcnow()
        entry = LedgerEntry(
            account_id=account_id,
            reason=EntryReason.grant,
            amount=amount,
            status=EntryStatus.settled,
            note=note,
            created_at=now,
            settled_at=now,
        )
        self.session.add(entry)
        self.session.flush()
        log.info("Abono de %s créditos a %s (%s)", amount, account_id, note or "-")
        return entry

    # ---------------------------------------------------------
    # Reservas
    # ---------------------------------------------------------
    def reserve(
        self,
        account_id: str,
        amount: int,
        job_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> LedgerEntry:
        if amount <= 0:
            raise ValueError("amount debe ser > 0")

        # compare-and-set: solo descuenta si el saldo alcanza
        res = self.session.execute(
            update(Account)
            .where(Account.id == account_id, Account.balance >= amount)
            .values(balance=Account.balance - amount)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            account = self.session.get(Account, account_id, populate_existing=True)
            if account is None:
                raise NotFound(f"Cuenta {account_id} no existe")
            raise InsufficientCredit(account_id, amount, int(account.balance))

        entry = LedgerEntry(
            account_id=account_id,
            job_id=job_id,
            reason=EntryReason.reservation,
            amount=-amount,
            status=EntryStatus.reserved,
            note=note,
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def settle(self, entry: EntryRef) -> bool:
        """
        reserved -> settled. Devuelve True si se aplicó, False si ya estaba cobrada.
        """
        entry_id = _entry_id(entry)
        res = self.session.execute(
            update(LedgerEntry)
            .where(LedgerEntry.id == entry_id, LedgerEntry.status == EntryStatus.reserved)
            .values(status=EntryStatus.settled, settled_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 1:
            self._load_entry(entry_id)
            return True

        current = self._load_entry(entry_id)
        if current.status == EntryStatus.settled:
            return False
        raise InvalidState(f"Entrada {entry_id} está '{current.status}', no se puede cobrar")

    def release(self, entry: EntryRef) -> bool:
        """
        reserved -> released y devuelve el importe al saldo (en la misma transacción).
        """
        entry_id = _entry_id(entry)
        current = self._load_entry(entry_id, for_update=True)

        res = self.session.execute(
            update(LedgerEntry)
            .where(LedgerEntry.id == entry_id, LedgerEntry.status == EntryStatus.reserved)
            .values(status=EntryStatus.released, released_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 1:
            self.session.execute(
                update(Account)
                .where(Account.id == current.account_id)
                .values(balance=Account.balance - current.amount)
                .execution_options(synchronize_session=False)
            )
            self._load_entry(entry_id)
            return True

        current = self._load_entry(entry_id)
        if current.status == EntryStatus.released:
            return False
        raise InvalidState(f"Entrada {entry_id} está '{current.status}', no se puede liberar")

    # ---------------------------------------------------------
    # Consultas
    # ---------------------------------------------------------
    def entry_for_job(self, job_id: str) -> Optional[LedgerEntry]:
        return self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.job_id == job_id)
            .execution_options(populate_existing=True)
        ).scalars().first()

    def entries(self, account_id: str, limit: int = 50) -> List[LedgerEntry]:
        return list(
            self.session.execute(
                select(LedgerEntry)
                .where(LedgerEntry.account_id == account_id)
                .order_by(LedgerEntry.id.desc())
                .limit(limit)
            ).scalars()
        )

    def audit(self, account_id: str) -> Tuple[int, int]:
        """
        (saldo_actual, saldo_esperado). El esperado es la suma de todas las
        entradas no liberadas: abonos (+) y reservas abiertas o cobradas (-).
        """
        balance = self.balance(account_id)
        expected = self.session.execute(
            select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(
                LedgerEntry.account_id == account_id,
                LedgerEntry.status != EntryStatus.released,
            )
        ).scalar_one()
        return balance, int(expected)

    # ---------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------
    def _load_account(self, account_id: str) -> Account:
        account = self.session.get(Account, account_id, populate_existing=True)
        if account is None:
            raise NotFound(f"Cuenta {account_id} no existe")
        return account

    def _load_entry(self, entry_id: int, for_update: bool = False) -> LedgerEntry:
        entry = self.session.get(
            LedgerEntry,
            entry_id,
            populate_existing=True,
            with_for_update=for_update or None,
        )
        if entry is None:
            raise NotFound(f"Entrada de ledger {entry_id} no existe")
        return entry
