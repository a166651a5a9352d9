# photoai/routes/jobs.py
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from photoai import db
from photoai.controller import JobController
from photoai.errors import AdapterError, InsufficientCredit, InvalidTransition, NotFound
from photoai.job_store import JobStore
from photoai.ledger import LedgerStore
from photoai.models import JobKind
from photoai.routes import get_account_id

bp = Blueprint("jobs", __name__, url_prefix="/api/jobs")


def _error(code: str, message: str, status: int):
    return jsonify({"ok": False, "error": code, "message": message}), status


def _ensure_account(account_id: str) -> None:
    """Crea la cuenta al vuelo (con créditos de bienvenida) si aún no existe."""
    try:
        LedgerStore().open_account(account_id, int(current_app.config.get("SIGNUP_CREDITS", 0)))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def _owned_job(job_id: str, account_id: str):
    try:
        job = JobStore().get(job_id)
    except NotFound:
        return None
    return job if job.account_id == account_id else None


@bp.post("")
def submit_job():
    account_id = get_account_id()
    if not account_id:
        return _error("UNAUTHORIZED", "Usuario no resuelto.", 401)

    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        return _error("INVALID_REQUEST", "El cuerpo debe ser un objeto JSON.", 400)

    kind = data.get("kind")
    kind = kind.strip().lower() if isinstance(kind, str) else ""
    payload = data.get("payload") or {}

    if kind not in JobKind.ALL:
        return _error("INVALID_KIND", f"kind debe ser uno de {', '.join(JobKind.ALL)}.", 400)
    if not isinstance(payload, dict):
        return _error("INVALID_PAYLOAD", "payload debe ser un objeto JSON.", 400)

    _ensure_account(account_id)

    try:
        job = JobController.from_config().submit(account_id, kind, payload)
    except InsufficientCredit as e:
        return _error(e.code, str(e), 402)
    except AdapterError as e:
        current_app.logger.error("submit_job: vendor falló: %s", e)
        return _error(e.code, str(e), 502)

    return jsonify({"ok": True, "job_id": job.id, "state": job.state}), 201


@bp.get("")
def list_jobs():
    account_id = get_account_id()
    if not account_id:
        return _error("UNAUTHORIZED", "Usuario no resuelto.", 401)

    limit = request.args.get("limit", default=50, type=int)
    jobs = JobStore().list_for_account(account_id, limit=max(1, min(limit, 200)))
    return jsonify({"ok": True, "items": [j.to_dict(full=True) for j in jobs]})


@bp.get("/<job_id>")
def job_status(job_id: str):
    account_id = get_account_id()
    job = _owned_job(job_id, account_id) if account_id else None
    if not job:
        return _error("NOT_FOUND", "Job no encontrado.", 404)

    snapshot = JobController.from_config().status(job.id)
    return jsonify({"ok": True, **snapshot.to_dict()})


@bp.post("/<job_id>/cancel")
def cancel_job(job_id: str):
    account_id = get_account_id()
    job = _owned_job(job_id, account_id) if account_id else None
    if not job:
        return _error("NOT_FOUND", "Job no encontrado.", 404)

    try:
        snapshot = JobController.from_config().cancel(job.id)
    except InvalidTransition as e:
        return _error(e.code, f"El job ya está '{e.current}' y no se puede cancelar.", 409)

    return jsonify({"ok": True, **snapshot.to_dict()})
