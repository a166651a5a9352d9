# photoai/job_store.py
"""
Persistencia de jobs y máquina de estados.

    pending -> submitted -> processing -> succeeded | failed
    pending | submitted -> cancelled
    pending -> failed                 (falla el vendor al enviar)
    submitted -> succeeded | failed   (el webhook "started" puede no llegar)

Cada transición es un UPDATE condicional sobre el estado de origen: la
primera que llega gana y las demás ven el estado ya cambiado. Repetir la
transición al estado actual es un no-op (así los webhooks duplicados no
rompen nada).
"""
from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from photoai import db
from photoai.errors import InvalidState, InvalidTransition, NotFound
from photoai.models import Job, JobKind, JobState, gen_job_id, utcnow

log = logging.getLogger(__name__)

# estado destino -> estados de origen permitidos
ALLOWED_FROM: Dict[str, tuple] = {
    JobState.submitted: (JobState.pending,),
    JobState.processing: (JobState.submitted,),
    JobState.succeeded: (JobState.submitted, JobState.processing),
    JobState.failed: (JobState.pending, JobState.submitted, JobState.processing),
    JobState.cancelled: (JobState.pending, JobState.submitted),
}

DETAIL_FIELDS = ("result_ref", "failure_reason")


class JobStore:
    def __init__(self, session: Optional[Session] = None) -> None:
        self.session = session or db.session

    def create(
        self,
        account_id: str,
        kind: str,
        payload: Optional[Dict[str, Any]] = None,
        job_id: Optional[str] = None,
    ) -> Job:
        if kind not in JobKind.ALL:
            raise ValueError(f"kind desconocido: {kind}")

        job = Job(
            id=job_id or gen_job_id(),
            account_id=account_id,
            kind=kind,
            state=JobState.pending,
            payload=payload,
        )
        self.session.add(job)
        self.session.flush()
        return job

    def get(self, job_id: str) -> Job:
        job = self.session.get(Job, job_id, populate_existing=True)
        if job is None:
            raise NotFound(f"Job {job_id} no existe")
        return job

    def get_by_external_ref(self, external_ref: str) -> Job:
        job = self.session.execute(
            select(Job)
            .where(Job.external_ref == external_ref)
            .execution_options(populate_existing=True)
        ).scalars().first()
        if job is None:
            raise NotFound(f"No hay job con referencia externa {external_ref}")
        return job

    def attach_external_ref(self, job_id: str, external_ref: str) -> bool:
        """
        Fija la referencia del vendor y pasa a 'submitted'. Solo desde 'pending'.
        """
        res = self.session.execute(
            update(Job)
            .where(
                Job.id == job_id,
                Job.state == JobState.pending,
                Job.external_ref.is_(None),
            )
            .values(external_ref=external_ref, state=JobState.submitted, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        job = self.get(job_id)
        if res.rowcount == 1:
            return True

        if job.state == JobState.submitted and job.external_ref == external_ref:
            return False
        raise InvalidState(
            f"Job {job_id}: no se puede fijar la referencia externa "
            f"(estado={job.state}, ref={job.external_ref})"
        )

    def transition(self, job_id: str, new_state: str, **details: Any) -> bool:
        """
        Aplica la transición. True si se aplicó, False si el job ya estaba en
        ``new_state`` (repetición idempotente). InvalidTransition en otro caso.
        """
        sources = ALLOWED_FROM.get(new_state)
        if sources is None:
            raise ValueError(f"Estado destino desconocido: {new_state}")

        values: Dict[str, Any] = {"state": new_state, "updated_at": utcnow()}
        for key in DETAIL_FIELDS:
            if details.get(key) is not None:
                values[key] = details[key]

        res = self.session.execute(
            update(Job)
            .where(Job.id == job_id, Job.state.in_(sources))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        job = self.get(job_id)
        if res.rowcount == 1:
            log.info("Job %s -> %s", job_id, new_state)
            return True

        if job.state == new_state:
            return False
        raise InvalidTransition(job_id, job.state, new_state)

    def stale(self, states: Iterable[str], older_than: dt.datetime, limit: int = 100) -> List[Job]:
        return list(
            self.session.execute(
                select(Job)
                .where(Job.state.in_(list(states)), Job.updated_at < older_than)
                .order_by(Job.updated_at)
                .limit(limit)
            ).scalars()
        )

    def list_for_account(self, account_id: str, limit: int = 50) -> List[Job]:
        return list(
            self.session.execute(
                select(Job)
                .where(Job.account_id == account_id)
                .order_by(Job.created_at.desc())
                .limit(limit)
            ).scalars()
        )
