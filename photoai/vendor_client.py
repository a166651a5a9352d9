# photoai/vendor_client.py
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import httpx

from photoai.errors import AdapterError

WEBHOOK_PATH = "/webhooks/vendor"


class VendorClient:
    """
    Cliente sencillo para la API REST del vendor de IA (entrenamiento y
    generación). Todas las fallas (red, HTTP >= 400, respuesta sin id) se
    convierten en AdapterError.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        callback_url: Optional[str] = None,
        timeout: float = 20.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.callback_url = callback_url
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any], transport: Optional[httpx.BaseTransport] = None) -> "VendorClient":
        base = (cfg.get("APP_BASE_URL") or "").rstrip("/")
        return cls(
            base_url=cfg.get("VENDOR_BASE_URL", "https://api.vendor.example"),
            api_key=cfg.get("VENDOR_API_KEY"),
            callback_url=f"{base}{WEBHOOK_PATH}" if base else None,
            timeout=float(cfg.get("VENDOR_TIMEOUT_SECONDS", 20.0)),
            # VENDOR_TRANSPORT: solo para tests (httpx.MockTransport)
            transport=transport or cfg.get("VENDOR_TRANSPORT"),
        )

    # ───────────────────────────────
    # HTTP
    # ───────────────────────────────
    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                resp = client.request(
                    method,
                    f"{self.base_url}{path}",
                    json=json,
                    headers=self._headers(),
                )
        except httpx.HTTPError as e:
            raise AdapterError(f"Vendor no disponible: {e}") from e

        if resp.status_code >= 400:
            raise AdapterError(f"Vendor respondió {resp.status_code}: {resp.text[:300]}")

        try:
            data = resp.json()
        except ValueError as e:
            raise AdapterError("Respuesta del vendor no es JSON") from e
        if not isinstance(data, dict):
            raise AdapterError("Respuesta del vendor con formato inesperado")
        return data

    def create(self, path: str, payload: Dict[str, Any]) -> str:
        body: Dict[str, Any] = {"input": payload}
        if self.callback_url:
            body["webhook"] = self.callback_url

        data = self._request("POST", path, json=body)
        ref = data.get("id")
        if not ref:
            raise AdapterError("El vendor no devolvió id de job")
        return str(ref)

    # (usado por el sweeper) estado actual de un job en el vendor
    def get_status(self, external_ref: str) -> Dict[str, Any]:
        return self._request("GET", f"/v1/jobs/{external_ref}")


class TrainingAdapter:
    def __init__(self, client: VendorClient) -> None:
        self.client = client

    def train(self, payload: Dict[str, Any]) -> str:
        return self.client.create("/v1/trainings", payload)


class GenerationAdapter:
    def __init__(self, client: VendorClient) -> None:
        self.client = client

    def generate(self, payload: Dict[str, Any]) -> str:
        return self.client.create("/v1/generations", payload)
