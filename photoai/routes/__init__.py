# photoai/routes/__init__.py
from __future__ import annotations

import os
from typing import Optional

from flask import request, session


def get_account_id() -> Optional[str]:
    """
    Obtiene el account_id de manera consistente:

    1. session["user_id"] o session["uid"]
    2. Header 'X-User-Id' (si lo envía el frontend)
    3. Fallback: DEV_USER_ID (modo dev)

    La autenticación real la hace la capa web; aquí solo se lee.
    """
    raw = (
        session.get("user_id")
        or session.get("uid")
        or request.headers.get("X-User-Id")
        or os.getenv("DEV_USER_ID", "")
    )
    s = str(raw).strip() if raw else ""
    return s or None


def register_routes(app):
    # Importa y registra blueprints aquí para evitar imports circulares

    from photoai.routes.jobs import bp as jobs_bp
    app.register_blueprint(jobs_bp)

    from photoai.routes.credits import bp as credits_bp
    app.register_blueprint(credits_bp)

    from photoai.routes.webhooks import bp as webhooks_bp
    app.register_blueprint(webhooks_bp)
