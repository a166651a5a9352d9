# photoai/controller.py
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from photoai import db
from photoai.errors import AdapterError, InvalidState, InvalidTransition
from photoai.job_store import JobStore
from photoai.ledger import LedgerStore
from photoai.models import Job, JobKind, JobState, gen_job_id
from photoai.vendor_client import GenerationAdapter, TrainingAdapter, VendorClient

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobSnapshot:
    id: str
    kind: str
    state: str
    result_ref: Optional[str] = None
    failure_reason: Optional[str] = None

    @classmethod
    def of(cls, job: Job) -> "JobSnapshot":
        return cls(
            id=job.id,
            kind=job.kind,
            state=job.state,
            result_ref=job.result_ref,
            failure_reason=job.failure_reason,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class JobController:
    """
    Orquesta el ciclo de vida: reserva crédito, crea el job, llama al vendor
    y expone el estado. Los cambios posteriores llegan por el reconciliador.
    """

    def __init__(
        self,
        training: TrainingAdapter,
        generation: GenerationAdapter,
        costs: Mapping[str, int],
        session: Optional[Session] = None,
        jobs: Optional[JobStore] = None,
        ledger: Optional[LedgerStore] = None,
    ) -> None:
        self.session = session or db.session
        self.jobs = jobs or JobStore(self.session)
        self.ledger = ledger or LedgerStore(self.session)
        self.costs = dict(costs)
        for kind, cost in self.costs.items():
            if cost < 1:
                raise ValueError(f"costo inválido para {kind}: {cost} (debe ser >= 1)")
        self._calls = {
            JobKind.training: training.train,
            JobKind.generation: generation.generate,
        }

    @classmethod
    def from_config(cls, cfg: Optional[Mapping[str, Any]] = None) -> "JobController":
        cfg = cfg if cfg is not None else current_app.config
        client = VendorClient.from_config(cfg)
        return cls(
            training=TrainingAdapter(client),
            generation=GenerationAdapter(client),
            costs={
                JobKind.training: int(cfg.get("TRAINING_CREDIT_COST", 1)),
                JobKind.generation: int(cfg.get("GENERATION_CREDIT_COST", 1)),
            },
        )

    # ---------------------------------------------------------
    # submit
    # ---------------------------------------------------------
    def submit(self, account_id: str, kind: str, payload: Dict[str, Any]) -> Job:
        """
        1) reserva crédito (sin job si no alcanza)
        2) crea el job en 'pending' (misma transacción que la reserva)
        3) llama al vendor; si falla, libera la reserva y marca 'failed'
           ANTES de propagar el error
        4) fija la referencia externa -> 'submitted' (si falla, misma compensación)
        """
        if kind not in JobKind.ALL:
            raise ValueError(f"kind desconocido: {kind}")
        cost = self.costs[kind]
        job_id = gen_job_id()

        try:
            entry = self.ledger.reserve(account_id, cost, job_id=job_id, note=kind)
            entry_id = entry.id
            self.jobs.create(account_id, kind, payload=payload, job_id=job_id)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        log.info("Job %s (%s) creado para %s, reserva=%s", job_id, kind, account_id, cost)

        try:
            external_ref = self._calls[kind](payload)
        except Exception as e:
            err = e if isinstance(e, AdapterError) else AdapterError(str(e))
            self._compensate(job_id, entry_id, f"AdapterError: {err}")
            raise err from e

        try:
            self.jobs.attach_external_ref(job_id, external_ref)
            self.session.commit()
        except InvalidState as e:
            # cancelado mientras esperábamos al vendor: la reserva ya se liberó
            self.session.rollback()
            log.warning("[anomaly] job %s cambió durante el envío (ref=%s): %s", job_id, external_ref, e)
        except IntegrityError as e:
            # el vendor devolvió una ref que ya tiene otro job
            self.session.rollback()
            err = AdapterError(f"referencia externa duplicada: {external_ref}")
            self._compensate(job_id, entry_id, f"AdapterError: {err}")
            raise err from e
        except Exception as e:
            self.session.rollback()
            self._compensate(job_id, entry_id, f"{type(e).__name__}: {e}")
            raise

        return self.jobs.get(job_id)

    def _compensate(self, job_id: str, entry_id: int, reason: str) -> None:
        log.warning("Envío falló para job %s: %s. Liberando reserva.", job_id, reason)
        try:
            self.ledger.release(entry_id)
            try:
                self.jobs.transition(job_id, JobState.failed, failure_reason=reason)
            except InvalidTransition as e:
                log.warning("[anomaly] %s", e)
            self.session.commit()
        except Exception:
            self.session.rollback()
            log.exception("No se pudo compensar el job %s", job_id)
            raise

    # ---------------------------------------------------------
    # status / cancel
    # ---------------------------------------------------------
    def status(self, job_id: str) -> JobSnapshot:
        return JobSnapshot.of(self.jobs.get(job_id))

    def cancel(self, job_id: str) -> JobSnapshot:
        """
        pending|submitted -> cancelled + libera la reserva. Si un webhook
        terminal llegó antes, InvalidTransition (el estado terminal no se pisa).
        """
        try:
            applied = self.jobs.transition(job_id, JobState.cancelled)
            if applied:
                entry = self.ledger.entry_for_job(job_id)
                if entry is not None:
                    self.ledger.release(entry)
            self.session.commit()
        except InvalidTransition as e:
            self.session.rollback()
            log.info("cancel rechazado: %s", e)
            raise
        except Exception:
            self.session.rollback()
            raise

        return self.status(job_id)
