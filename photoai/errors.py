# photoai/errors.py
"""
Taxonomía de errores del ciclo de vida de jobs.

Cada excepción lleva un ``code`` estable que los blueprints devuelven en el
JSON de error (mismo estilo que "NO_CREDITS" / "NOT_FOUND").
"""
from __future__ import annotations


class JobLifecycleError(Exception):
    code = "SERVER_ERROR"


class InsufficientCredit(JobLifecycleError):
    code = "INSUFFICIENT_CREDIT"

    def __init__(self, account_id: str, requested: int, available: int | None = None) -> None:
        self.account_id = account_id
        self.requested = requested
        self.available = available
        msg = f"Créditos insuficientes: se requieren {requested}"
        if available is not None:
            msg += f", disponibles {available}"
        super().__init__(msg)


class AdapterError(JobLifecycleError):
    code = "ADAPTER_ERROR"


class AuthenticationError(JobLifecycleError):
    code = "AUTHENTICATION_ERROR"


class NotFound(JobLifecycleError):
    code = "NOT_FOUND"


class InvalidState(JobLifecycleError):
    code = "INVALID_STATE"


class InvalidTransition(JobLifecycleError):
    code = "INVALID_TRANSITION"

    def __init__(self, job_id: str, current: str, target: str) -> None:
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(f"Job {job_id}: transición inválida {current} -> {target}")


class MalformedPayload(JobLifecycleError):
    code = "MALFORMED_PAYLOAD"
