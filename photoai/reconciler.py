# photoai/reconciler.py
"""
Reconciliador de webhooks del vendor.

Cada señal se trata como "aplica este hecho si aún no está aplicado":
  - started   : submitted -> processing (no-op si ya está ahí o más allá)
  - succeeded : -> succeeded + cobra la reserva
  - failed    : -> failed + libera la reserva completa

Un job terminal solo acepta la repetición de su MISMO estado terminal
(no-op). Una señal terminal distinta se registra como anomalía y se ignora.
Job y ledger se confirman en una sola transacción.
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from photoai import db
from photoai.errors import AuthenticationError, InvalidState, InvalidTransition, NotFound
from photoai.job_store import JobStore
from photoai.ledger import LedgerStore
from photoai.models import Job, JobState
from photoai.signals import (
    FailedSignal,
    InboundSignal,
    Signal,
    StartedSignal,
    SucceededSignal,
    decode_signal,
    verify_signature,
)

log = logging.getLogger(__name__)

APPLIED = "applied"
DUPLICATE = "duplicate"
IGNORED = "ignored"


class WebhookReconciler:
    def __init__(
        self,
        secret: Optional[str],
        session: Optional[Session] = None,
        jobs: Optional[JobStore] = None,
        ledger: Optional[LedgerStore] = None,
    ) -> None:
        self.secret = secret
        self.session = session or db.session
        self.jobs = jobs or JobStore(self.session)
        self.ledger = ledger or LedgerStore(self.session)

    def handle(self, inbound: InboundSignal) -> str:
        # firma primero: nada se lee ni se escribe con una señal no autenticada
        try:
            verify_signature(inbound.body, inbound.signature, self.secret)
        except AuthenticationError as e:
            log.warning("[security] webhook rechazado: %s", e)
            raise

        return self.apply(decode_signal(inbound.body))

    def apply(self, signal: Signal) -> str:
        """Aplica una señal ya autenticada y decodificada (webhook o sweeper)."""
        try:
            outcome = self._apply(signal)
            self.session.commit()
        except NotFound:
            self.session.rollback()
            log.info("Señal %s para referencia desconocida %s: descartada",
                     type(signal).__name__, signal.external_ref)
            raise
        except Exception:
            self.session.rollback()
            raise

        log.info("Señal %s ref=%s -> %s", type(signal).__name__, signal.external_ref, outcome)
        return outcome

    # ---------------------------------------------------------
    # Internos
    # ---------------------------------------------------------
    def _apply(self, signal: Signal) -> str:
        job = self.jobs.get_by_external_ref(signal.external_ref)

        if isinstance(signal, StartedSignal):
            return self._on_started(job)
        if isinstance(signal, SucceededSignal):
            return self._on_terminal(job, JobState.succeeded, result_ref=signal.result_ref)
        if isinstance(signal, FailedSignal):
            return self._on_terminal(job, JobState.failed, failure_reason=signal.reason)
        raise TypeError(f"Señal no soportada: {signal!r}")

    def _on_started(self, job: Job) -> str:
        if job.state == JobState.processing:
            return DUPLICATE
        if job.state != JobState.submitted:
            return IGNORED

        try:
            self.jobs.transition(job.id, JobState.processing)
        except InvalidTransition as e:
            # otro hilo llegó antes (cancel o señal terminal)
            log.info("started tardío para job %s: %s", job.id, e)
            return IGNORED
        return APPLIED

    def _on_terminal(self, job: Job, target: str, **details) -> str:
        if job.state == target:
            self._close_entry(job, target)
            return DUPLICATE

        if job.is_terminal:
            log.warning(
                "[anomaly] job %s ya está '%s'; se ignora señal '%s'",
                job.id, job.state, target,
            )
            return IGNORED

        try:
            applied = self.jobs.transition(job.id, target, **details)
        except InvalidTransition as e:
            log.warning("[anomaly] %s; señal ignorada", e)
            return IGNORED

        self._close_entry(job, target)
        return APPLIED if applied else DUPLICATE

    def _close_entry(self, job: Job, target: str) -> None:
        entry = self.ledger.entry_for_job(job.id)
        if entry is None:
            log.warning("[anomaly] job %s sin reserva en el ledger", job.id)
            return

        try:
            if target == JobState.succeeded:
                self.ledger.settle(entry)
            else:
                self.ledger.release(entry)
        except InvalidState as e:
            log.warning("[anomaly] job %s: %s", job.id, e)
