# photoai/sweeper.py
"""
Barrido de jobs que no recibieron webhook.

  - sweep_stale_jobs   : submitted/processing viejos -> se consulta el estado
                         al vendor y se aplica como si fuera el webhook.
  - sweep_pending_jobs : pending viejos (el proceso murió entre la reserva y
                         la llamada al vendor) -> failed + liberar reserva.
"""
from __future__ import annotations

import datetime as dt
import logging
from typing import Dict

from photoai.errors import AdapterError, InvalidState, InvalidTransition, MalformedPayload, NotFound
from photoai.models import JobState, utcnow
from photoai.reconciler import WebhookReconciler
from photoai.signals import signal_from_vendor_status
from photoai.vendor_client import VendorClient

log = logging.getLogger(__name__)

STUCK_PENDING_REASON = "stuck_pending"


def sweep_stale_jobs(
    client: VendorClient,
    reconciler: WebhookReconciler,
    older_than_minutes: int,
    limit: int = 100,
) -> Dict[str, int]:
    cutoff = utcnow() - dt.timedelta(minutes=older_than_minutes)
    stale = reconciler.jobs.stale((JobState.submitted, JobState.processing), cutoff, limit=limit)
    # liberar la transacción de lectura antes de las llamadas HTTP
    refs = [(job.id, job.external_ref) for job in stale]
    reconciler.session.rollback()

    counts = {"checked": 0, "applied": 0, "errors": 0}
    for job_id, ref in refs:
        if not ref:
            continue
        counts["checked"] += 1
        try:
            signal = signal_from_vendor_status(ref, client.get_status(ref))
        except (AdapterError, MalformedPayload) as e:
            counts["errors"] += 1
            log.warning("sweep: no se pudo consultar job %s (ref=%s): %s", job_id, ref, e)
            continue

        if signal is None:
            continue
        try:
            if reconciler.apply(signal) == "applied":
                counts["applied"] += 1
        except NotFound:
            counts["errors"] += 1

    if counts["checked"]:
        log.info("sweep_stale_jobs: %s", counts)
    return counts


def sweep_pending_jobs(reconciler: WebhookReconciler, older_than_minutes: int, limit: int = 100) -> int:
    cutoff = utcnow() - dt.timedelta(minutes=older_than_minutes)
    stuck = [job.id for job in reconciler.jobs.stale((JobState.pending,), cutoff, limit=limit)]
    reconciler.session.rollback()

    failed = 0
    for job_id in stuck:
        try:
            applied = reconciler.jobs.transition(job_id, JobState.failed, failure_reason=STUCK_PENDING_REASON)
            if applied:
                entry = reconciler.ledger.entry_for_job(job_id)
                if entry is not None:
                    reconciler.ledger.release(entry)
            reconciler.session.commit()
        except (InvalidTransition, InvalidState) as e:
            reconciler.session.rollback()
            log.info("sweep: job %s ya no está pending: %s", job_id, e)
            continue
        except Exception:
            reconciler.session.rollback()
            raise

        if applied:
            failed += 1
            log.warning("Job %s atascado en pending: marcado failed y reserva liberada", job_id)
    return failed
