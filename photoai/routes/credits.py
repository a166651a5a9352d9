# photoai/routes/credits.py
from __future__ import annotations

import hmac

from flask import Blueprint, current_app, jsonify, request

from photoai import db
from photoai.ledger import LedgerStore
from photoai.routes import get_account_id

bp = Blueprint("credits", __name__, url_prefix="/api/credits")


# ---------------------------------------------------------
# GET /api/credits/balance
#   {"ok": true, "account_id": ..., "balance": ...}
# ---------------------------------------------------------
@bp.get("/balance")
def credit_balance():
    account_id = get_account_id()
    if not account_id:
        return jsonify({"ok": False, "error": "UNAUTHORIZED"}), 401

    ledger = LedgerStore()
    try:
        ledger.open_account(account_id, int(current_app.config.get("SIGNUP_CREDITS", 0)))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    balance = ledger.balance(account_id)
    current_app.logger.info("CREDIT_BALANCE uid=%s balance=%s", account_id, balance)
    return jsonify({"ok": True, "account_id": account_id, "balance": balance})


@bp.get("/entries")
def credit_entries():
    """
    Historial del ledger del usuario (más reciente primero).
    """
    account_id = get_account_id()
    if not account_id:
        return jsonify({"ok": False, "error": "UNAUTHORIZED"}), 401

    limit = request.args.get("limit", default=50, type=int)
    rows = LedgerStore().entries(account_id, limit=max(1, min(limit, 200)))
    return jsonify({"ok": True, "items": [r.to_dict() for r in rows]})


def _parse_amount(raw) -> int:
    """Importe entero; 0 si no lo es (1.9 o True no se truncan ni se convierten)."""
    if isinstance(raw, bool):
        return 0
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip())
    return 0


# ---------------------------------------------------------
# POST /api/credits/grant   (interno: lo llama la capa de pagos)
#   Header X-Admin-Token; body {"account_id": "...", "amount": 10, "note": "..."}
# ---------------------------------------------------------
@bp.post("/grant")
def credit_grant():
    expected = current_app.config.get("ADMIN_TOKEN")
    token = request.headers.get("X-Admin-Token") or ""
    if not expected or not hmac.compare_digest(token, expected):
        current_app.logger.warning("[security] grant rechazado desde %s", request.remote_addr)
        return jsonify({"ok": False, "error": "UNAUTHORIZED"}), 401

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    account_id = str(data.get("account_id") or "").strip()
    amount = _parse_amount(data.get("amount"))

    if not account_id or amount <= 0:
        return (
            jsonify({"ok": False, "error": "INVALID_REQUEST",
                     "message": "Se requiere account_id y amount > 0."}),
            400,
        )

    ledger = LedgerStore()
    try:
        ledger.open_account(account_id)
        entry = ledger.grant(account_id, amount, note=str(data.get("note") or "grant"))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return jsonify({
        "ok": True,
        "account_id": account_id,
        "entry_id": entry.id,
        "balance": ledger.balance(account_id),
    })
