# photoai/routes/webhooks.py
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from photoai.errors import AuthenticationError, MalformedPayload, NotFound
from photoai.reconciler import WebhookReconciler
from photoai.signals import SIGNATURE_HEADER, InboundSignal

bp = Blueprint("webhooks", __name__, url_prefix="/webhooks")


@bp.post("/vendor")
def vendor_webhook():
    """
    Ingreso de señales del vendor.

    Responde 2xx SOLO cuando la señal quedó aplicada (o era un no-op), así
    el reintento del vendor ante un no-2xx cubre los fallos transitorios.
      - firma inválida      -> 401 (no se toca nada)
      - cuerpo malformado   -> 400
      - referencia ajena    -> 200 NOT_FOUND (se descarta, no tiene sentido reintentar)
      - error inesperado    -> 500 (el vendor reintenta)
    """
    inbound = InboundSignal(
        body=request.get_data(cache=False),
        signature=request.headers.get(SIGNATURE_HEADER),
    )
    reconciler = WebhookReconciler(current_app.config.get("VENDOR_WEBHOOK_SECRET"))

    try:
        outcome = reconciler.handle(inbound)
    except AuthenticationError:
        return jsonify({"ok": False, "error": "UNAUTHORIZED"}), 401
    except MalformedPayload as e:
        current_app.logger.warning("vendor_webhook: payload malformado: %s", e)
        return jsonify({"ok": False, "error": e.code}), 400
    except NotFound:
        return jsonify({"ok": True, "outcome": "dropped", "error": "NOT_FOUND"}), 200
    except Exception as e:
        current_app.logger.exception("vendor_webhook error: %s", e)
        return jsonify({"ok": False, "error": "SERVER_ERROR"}), 500

    return jsonify({"ok": True, "outcome": outcome}), 200
