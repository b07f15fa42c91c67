"""
===============================================================================
TARJETA CRC — enhancer/context.py (Contexto por request / corrida)
===============================================================================

Responsabilidades:
  - Mantener contexto “run-scoped” usando ContextVars (async-safe).
  - Permitir correlación de logs/métricas sin pasar parámetros por todo el stack.
  - Proveer helpers mínimos: set_*(), get_context_dict(), clear_context().

Colaboradores:
  - enhancer.crosscutting.logger: enriquece logs leyendo get_context_dict().
  - enhancer.application.pipeline: setea run_id / content_identity por corrida.
  - enhancer.interfaces.api: setea request_id por request HTTP.

Restricciones:
  - Solo tipos primitivos (str) para serialización segura.
  - Defaults vacíos ("") para evitar None y simplificar JSON.
===============================================================================
"""

from __future__ import annotations

from contextvars import ContextVar
from typing import Final

# Identificador de request HTTP (si la corrida vino por la API).
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Identificador de corrida del pipeline (uuid4 hex).
run_id_var: ContextVar[str] = ContextVar("run_id", default="")

# Identidad de contenido procesada en la corrida.
content_identity_var: ContextVar[str] = ContextVar("content_identity", default="")

_CTX_REQUEST_ID: Final[str] = "request_id"
_CTX_RUN_ID: Final[str] = "run_id"
_CTX_CONTENT_IDENTITY: Final[str] = "content_identity"


def set_request_context(*, request_id: str = "") -> None:
    """Setea el request_id (string vacío = no disponible)."""
    request_id_var.set(request_id or "")


def set_run_context(*, run_id: str = "", content_identity: str = "") -> None:
    """Setea el contexto de la corrida del pipeline."""
    run_id_var.set(run_id or "")
    content_identity_var.set(content_identity or "")


def get_context_dict() -> dict[str, str]:
    """
    Devuelve solo las claves con valor (para no ensuciar los logs).
    """
    values = {
        _CTX_REQUEST_ID: request_id_var.get(),
        _CTX_RUN_ID: run_id_var.get(),
        _CTX_CONTENT_IDENTITY: content_identity_var.get(),
    }
    return {k: v for k, v in values.items() if v}


def clear_context() -> None:
    """Limpia todo el contexto (fin de request / corrida)."""
    request_id_var.set("")
    run_id_var.set("")
    content_identity_var.set("")
