# photoai/signals.py
"""
Señales del vendor (webhooks) como un conjunto cerrado de variantes.

Formato del cuerpo (JSON):
    {"event": "started",   "id": "<ref>"}
    {"event": "succeeded", "id": "<ref>", "result": "<url o id de modelo>"}
    {"event": "failed",    "id": "<ref>", "error": "<motivo>"}

La autenticidad se valida ANTES de decodificar: HMAC-SHA256 del cuerpo crudo
con el secreto compartido, en hex, en la cabecera X-Vendor-Signature.
"""
from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from photoai.errors import AuthenticationError, MalformedPayload

SIGNATURE_HEADER = "X-Vendor-Signature"


@dataclass(frozen=True)
class StartedSignal:
    external_ref: str


@dataclass(frozen=True)
class SucceededSignal:
    external_ref: str
    result_ref: str


@dataclass(frozen=True)
class FailedSignal:
    external_ref: str
    reason: str


Signal = Union[StartedSignal, SucceededSignal, FailedSignal]


@dataclass(frozen=True)
class InboundSignal:
    """Cuerpo crudo + token de autenticidad, tal como llega al endpoint."""

    body: bytes
    signature: Optional[str]


def sign(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: Optional[str], secret: Optional[str]) -> None:
    if not secret:
        raise AuthenticationError("VENDOR_WEBHOOK_SECRET no configurado")
    if not signature:
        raise AuthenticationError("Falta la firma del webhook")

    expected = sign(body, secret)
    if not hmac.compare_digest(signature.strip().lower(), expected):
        raise AuthenticationError("Firma del webhook inválida")


def _required_str(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MalformedPayload(f"Campo '{key}' ausente o inválido")
    return value.strip()


def decode_signal(body: bytes) -> Signal:
    try:
        data = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedPayload(f"Cuerpo no es JSON válido: {e}") from e

    if not isinstance(data, dict):
        raise MalformedPayload("El cuerpo debe ser un objeto JSON")
    return signal_from_dict(data)


def signal_from_dict(data: Dict[str, Any]) -> Signal:
    event = data.get("event")
    ref = _required_str(data, "id")

    if event == "started":
        return StartedSignal(external_ref=ref)
    if event == "succeeded":
        return SucceededSignal(external_ref=ref, result_ref=_required_str(data, "result"))
    if event == "failed":
        reason = data.get("error")
        if not isinstance(reason, str) or not reason.strip():
            reason = "vendor_failed"
        return FailedSignal(external_ref=ref, reason=reason.strip())

    raise MalformedPayload(f"Evento desconocido: {event!r}")


# Estados que reporta GET /v1/jobs/<ref> (lo usa el sweeper)
_VENDOR_STATUS_EVENT = {
    "running": "started",
    "processing": "started",
    "succeeded": "succeeded",
    "completed": "succeeded",
    "failed": "failed",
    "canceled": "failed",
    "cancelled": "failed",
}


def signal_from_vendor_status(external_ref: str, data: Dict[str, Any]) -> Optional[Signal]:
    """
    Convierte la respuesta de estado del vendor en una señal equivalente al
    webhook. None si el vendor aún no empezó (queued / desconocido).
    """
    status = str(data.get("status") or "").strip().lower()
    event = _VENDOR_STATUS_EVENT.get(status)
    if event is None:
        return None

    return signal_from_dict(
        {
            "event": event,
            "id": external_ref,
            "result": data.get("result"),
            "error": data.get("error") or (f"vendor_{status}" if event == "failed" else None),
        }
    )
