# enhancer/crosscutting/exceptions.py
"""
===============================================================================
MÓDULO: Excepciones tipadas del pipeline de mejora (errores internos)
===============================================================================

Objetivo
--------
Tener excepciones internas coherentes, con:
- error_code estable
- error_id para correlación con logs
- message “humana” (sin filtrar credenciales)

-------------------------------------------------------------------------------
CRC (Component Card)
-------------------------------------------------------------------------------
Componente:
  EnhancerError + subclases

Responsabilidades:
  - Estandarizar errores internos que luego se mapean a HTTP
  - Separar fallas de proveedor por clase de recuperación:
      * TransientAPIError   -> reintentar la misma credencial
      * RateLimitedError    -> marcar credencial agotada y rotar
      * FatalAPIError       -> no reintentar
  - Generar error_id para rastreo

Colaboradores:
  - application/dispatch.py (decide retry / rotación por tipo)
  - application/pipeline.py (ChunkFailed / RunFailed)
  - interfaces/api/main.py (mapea a status HTTP)
===============================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence
from uuid import uuid4


@dataclass(frozen=True)
class ErrorResponse:
    """Estructura mínima para responder errores de forma consistente."""

    error_code: str
    message: str
    error_id: str

    def to_dict(self) -> dict:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "error_id": self.error_id,
        }


class EnhancerError(Exception):
    """
    ----------------------------------------------------------------------------
    CRC (Class Card)
    ----------------------------------------------------------------------------
    Clase:
      EnhancerError

    Responsabilidades:
      - Base para errores internos del sistema
      - Proveer error_code + error_id + message

    Colaboradores:
      - interfaces/api/main.py
    ----------------------------------------------------------------------------
    """

    error_code: str = "ENHANCER_ERROR"

    def __init__(
        self,
        message: str,
        error_id: str | None = None,
        original_error: Exception | None = None,
    ):
        self.message = message
        self.error_id = error_id or str(uuid4())
        self.original_error = original_error
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            error_code=self.error_code, message=self.message, error_id=self.error_id
        )


class SplitError(EnhancerError):
    """Entrada no divisible (p.ej. no es texto). No fatal para la corrida."""

    error_code: str = "SPLIT_ERROR"


class CacheIOError(EnhancerError):
    """Fallo de lectura/escritura en el store de chunks."""

    error_code: str = "CACHE_IO_ERROR"


class EnhancementAPIError(EnhancerError):
    """Base de errores del proveedor generativo."""

    error_code: str = "ENHANCEMENT_API_ERROR"


class TransientAPIError(EnhancementAPIError):
    """Timeout, 5xx, red caída o respuesta vacía: reintentable."""

    error_code: str = "TRANSIENT_API_ERROR"


class RateLimitedError(EnhancementAPIError):
    """Cuota agotada para la credencial (HTTP 429)."""

    error_code: str = "RATE_LIMITED"

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        error_id: str | None = None,
        original_error: Exception | None = None,
    ):
        super().__init__(message, error_id=error_id, original_error=original_error)
        self.retry_after = retry_after


class FatalAPIError(EnhancementAPIError):
    """Request inválido / credencial rechazada: nunca se reintenta."""

    error_code: str = "FATAL_API_ERROR"


class ContentBlockedError(FatalAPIError):
    """El proveedor bloqueó el contenido por políticas de seguridad."""

    error_code: str = "CONTENT_BLOCKED"


class NoCredentialsError(FatalAPIError):
    """El pool no tiene ninguna credencial utilizable."""

    error_code: str = "NO_CREDENTIALS"


class AllCredentialsExhausted(EnhancerError):
    """
    Todas las credenciales quedaron agotadas (rate limit) en esta corrida.

    remaining_indices lo completa el orquestador: chunks que no se procesaron.
    retry_after: la espera más corta que sugirió el proveedor (segundos).
    """

    error_code: str = "ALL_CREDENTIALS_EXHAUSTED"

    def __init__(
        self,
        message: str,
        remaining_indices: Sequence[int] = (),
        retry_after: float | None = None,
        error_id: str | None = None,
        original_error: Exception | None = None,
    ):
        super().__init__(message, error_id=error_id, original_error=original_error)
        self.remaining_indices = tuple(remaining_indices)
        self.retry_after = retry_after


class ChunkNotFoundError(EnhancerError):
    """No hay texto cacheado ni provisto para el chunk pedido."""

    error_code: str = "CHUNK_NOT_FOUND"


class RunInProgressError(EnhancerError):
    """Ya hay una corrida activa para esa identidad de contenido."""

    error_code: str = "RUN_IN_PROGRESS"
