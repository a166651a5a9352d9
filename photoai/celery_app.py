# photoai/celery_app.py
# -*- coding: utf-8 -*-
import logging
import os

from celery import Celery

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

# -----------------------------------------------------------------------------
# Celery (EAGER por defecto si no hay broker)
# -----------------------------------------------------------------------------
_broker = os.getenv("CELERY_BROKER_URL", "memory://")
_backend = os.getenv("CELERY_RESULT_BACKEND")

celery_app = Celery("photoai", broker=_broker, backend=_backend)

if _broker.startswith("memory"):
    # Ejecuta en el mismo proceso (desarrollo / tests)
    celery_app.conf.update(task_always_eager=True, task_ignore_result=True)
    logger.info("[celery] EAGER mode ON (memory broker): tasks run in-process")
else:
    logger.info("[celery] BROKER=%s BACKEND=%s", _broker, _backend)

celery_app.conf.beat_schedule = {
    "sweep-stale-jobs": {
        "task": "photoai.sweep_stale_jobs",
        "schedule": float(os.getenv("SWEEP_INTERVAL_SECONDS", "300")),
    },
    "sweep-pending-jobs": {
        "task": "photoai.sweep_pending_jobs",
        "schedule": float(os.getenv("SWEEP_INTERVAL_SECONDS", "300")),
    },
}

# -----------------------------------------------------------------------------
# App Flask: creación perezosa (contexto para db.session)
# -----------------------------------------------------------------------------
_flask_app = None


def _get_flask_app():
    global _flask_app
    if _flask_app is None:
        from photoai import create_app
        _flask_app = create_app()
    return _flask_app


# -----------------------------------------------------------------------------
# Tareas
# -----------------------------------------------------------------------------
@celery_app.task(name="photoai.sweep_stale_jobs")
def sweep_stale_jobs_task():
    from photoai.reconciler import WebhookReconciler
    from photoai.sweeper import sweep_stale_jobs
    from photoai.vendor_client import VendorClient

    app = _get_flask_app()
    with app.app_context():
        cfg = app.config
        return sweep_stale_jobs(
            VendorClient.from_config(cfg),
            WebhookReconciler(cfg.get("VENDOR_WEBHOOK_SECRET")),
            older_than_minutes=int(cfg.get("STALE_JOB_MINUTES", 30)),
        )


@celery_app.task(name="photoai.sweep_pending_jobs")
def sweep_pending_jobs_task():
    from photoai.reconciler import WebhookReconciler
    from photoai.sweeper import sweep_pending_jobs

    app = _get_flask_app()
    with app.app_context():
        cfg = app.config
        return sweep_pending_jobs(
            WebhookReconciler(cfg.get("VENDOR_WEBHOOK_SECRET")),
            older_than_minutes=int(cfg.get("PENDING_JOB_MINUTES", 10)),
        )
