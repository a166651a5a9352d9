# photoai/models.py
from __future__ import annotations

import datetime as dt
import uuid

from photoai import db  # instancia global de SQLAlchemy creada en photoai/__init__.py


def utcnow():
    return dt.datetime.utcnow()


def gen_job_id() -> str:
    """Genera un ID único de 32 caracteres hex para los jobs."""
    return uuid.uuid4().hex


# ---------------------------------------------------------
# Estados y tipos
# ---------------------------------------------------------
class JobKind:
    training = "training"
    generation = "generation"

    ALL = (training, generation)


class JobState:
    pending = "pending"
    submitted = "submitted"
    processing = "processing"
    succeeded = "succeeded"
    failed = "failed"
    cancelled = "cancelled"

    TERMINAL = (succeeded, failed, cancelled)


class EntryStatus:
    reserved = "reserved"
    settled = "settled"
    released = "released"


class EntryReason:
    reservation = "reservation"
    grant = "grant"


# ---------------------------------------------------------
# CUENTAS (saldo de créditos)
# ---------------------------------------------------------
class Account(db.Model):
    __tablename__ = "accounts"
    __table_args__ = (
        db.CheckConstraint("balance >= 0", name="balance_non_negative"),
    )

    # id externo del usuario (lo crea el registro, fuera de este núcleo)
    id = db.Column(db.String(255), primary_key=True)

    # saldo disponible (ya descontadas las reservas abiertas)
    balance = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Account id={self.id} balance={self.balance}>"


# ---------------------------------------------------------
# JOBS (entrenamiento / generación)
# ---------------------------------------------------------
class Job(db.Model):
    __tablename__ = "jobs"

    id = db.Column(db.String(64), primary_key=True, nullable=False, default=gen_job_id)
    account_id = db.Column(db.String(255), db.ForeignKey("accounts.id"), nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False)
    state = db.Column(db.String(16), nullable=False, default=JobState.pending, index=True)

    # referencia del vendor: se fija una sola vez (pending -> submitted)
    external_ref = db.Column(db.String(255), nullable=True, unique=True)

    # petición original (fotos de muestra, prompt, etc.)
    payload = db.Column(db.JSON, nullable=True)

    result_ref = db.Column(db.Text, nullable=True)
    failure_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.state in JobState.TERMINAL

    def to_dict(self, full: bool = False) -> dict:
        """
        full=True => incluye payload y timestamps
        """
        base = {
            "id": self.id,
            "kind": self.kind,
            "state": self.state,
            "result_ref": self.result_ref,
            "failure_reason": self.failure_reason,
        }
        if full:
            base["account_id"] = self.account_id
            base["external_ref"] = self.external_ref
            base["payload"] = self.payload
            base["created_at"] = self.created_at.isoformat() if self.created_at else None
            base["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return base

    def __repr__(self) -> str:
        return f"<Job id={self.id} account={self.account_id} kind={self.kind} state={self.state}>"


# ---------------------------------------------------------
# LEDGER (reservas / abonos; nunca se borra)
# ---------------------------------------------------------
class LedgerEntry(db.Model):
    __tablename__ = "ledger_entries"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    account_id = db.Column(db.String(255), db.ForeignKey("accounts.id"), nullable=False, index=True)

    # una sola reserva por job
    job_id = db.Column(db.String(64), nullable=True, unique=True)

    reason = db.Column(db.String(16), nullable=False, default=EntryReason.reservation)

    # negativo = reserva, positivo = abono
    amount = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=EntryStatus.reserved)
    note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    settled_at = db.Column(db.DateTime, nullable=True)
    released_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "reason": self.reason,
            "amount": self.amount,
            "status": self.status,
            "note": self.note,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "settled_at": self.settled_at.isoformat() if self.settled_at else None,
            "released_at": self.released_at.isoformat() if self.released_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry id={self.id} account={self.account_id} job={self.job_id} "
            f"amount={self.amount} status={self.status}>"
        )
