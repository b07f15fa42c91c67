"""enhancer.infrastructure.services.retry

Name: Error classification + Retry policy (Exponential Backoff + Jitter)

Qué es
------
Utilidad de **resiliencia** para llamadas al proveedor generativo.
Implementa:
  - Clasificación de errores en tres clases de recuperación:
      * rate limited (rotar credencial)
      * transient   (reintentar la misma credencial)
      * fatal       (fail-fast)
  - Un `tenacity.Retrying` con **exponential backoff + jitter** por credencial
  - Logging estructurado de cada reintento (sin exponer la credencial)

CRC (Component Card)
--------------------
Component: retry helper
Responsibilities:
  - Traducir excepciones de SDK/red a EnhancementAPIError tipados
  - Proveer el motor de retry estándar (tenacity) con backoff+jitter
  - Loguear intentos con contexto útil
Collaborators:
  - tenacity (motor de retry)
  - crosscutting.config.get_settings (attempts / delays)
  - application/dispatch.py (consume la política)
Constraints:
  - Reintentar SOLO TransientAPIError
  - 429 nunca se reintenta sobre la misma credencial: se rota
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from ...crosscutting.config import get_settings
from ...crosscutting.exceptions import (
    EnhancementAPIError,
    FatalAPIError,
    RateLimitedError,
    TransientAPIError,
)
from ...crosscutting.logger import logger

# ---------------------------------------------------------------------------
# HTTP code policies
# ---------------------------------------------------------------------------

RATE_LIMIT_HTTP_CODE: int = 429

# R: HTTP status codes que indican fallas transitorias (reintentables)
TRANSIENT_HTTP_CODES: frozenset[int] = frozenset(
    {
        408,  # Request Timeout
        500,  # Internal Server Error
        502,  # Bad Gateway
        503,  # Service Unavailable
        504,  # Gateway Timeout
    }
)

_RATE_LIMIT_PATTERNS = (
    "rate limit",
    "too many requests",
    "quota exceeded",
    "resource_exhausted",
    "resourceexhausted",
)

_TRANSIENT_NAME_PATTERNS = (
    "timeout",
    "timedout",
    "connection",
    "connect",
    "temporary",
    "unavailable",
    "deadline",
    "aborted",
)

_TRANSIENT_MESSAGE_PATTERNS = (
    "temporarily unavailable",
    "service unavailable",
    "connection reset",
    "connection refused",
    "network is unreachable",
    "timed out",
    "deadline exceeded",
)


def get_http_status_code(exception: BaseException) -> int | None:
    """R: Extrae un status code HTTP desde distintos tipos de exception.

    Soporta (best-effort):
      - google.genai.errors.APIError (atributo `code`)
      - httpx.HTTPStatusError (exception.response.status_code)
      - excepciones de SDKs que expongan `status_code`
    """
    code = getattr(exception, "code", None)
    # R: En algunos SDKs `code` puede ser gRPC status; filtramos a códigos HTTP.
    if isinstance(code, int) and code >= 100:
        return code

    resp = getattr(exception, "response", None)
    status_code = getattr(resp, "status_code", None)
    if isinstance(status_code, int):
        return status_code

    status_code = getattr(exception, "status_code", None)
    if isinstance(status_code, int):
        return status_code

    return None


def _retry_delay_from_details(details: Any) -> Any:
    """google.rpc.RetryInfo dentro de `details` (p.ej. {"retryDelay": "52s"})."""
    if not isinstance(details, dict):
        return None
    error = details.get("error", details)
    items = error.get("details") if isinstance(error, dict) else None
    for item in items if isinstance(items, list) else ():
        if isinstance(item, dict) and "retryDelay" in item:
            return item["retryDelay"]
    return None


def get_retry_after(exception: BaseException) -> float | None:
    """R: Espera sugerida por el proveedor (Retry-After o RetryInfo), en segundos.

    None si no viene o es inválida.
    """
    headers = getattr(getattr(exception, "response", None), "headers", None)
    raw = headers.get("Retry-After") if isinstance(headers, Mapping) else None
    if raw is None:
        raw = _retry_delay_from_details(getattr(exception, "details", None))
    if raw is None:
        return None
    try:
        seconds = float(str(raw).strip().rstrip("s"))
    except (ValueError, TypeError):
        return None
    return seconds if seconds >= 0 else None


def is_rate_limit_error(exception: BaseException) -> bool:
    if get_http_status_code(exception) == RATE_LIMIT_HTTP_CODE:
        return True
    text = f"{type(exception).__name__} {exception}".lower()
    return any(p in text for p in _RATE_LIMIT_PATTERNS)


def is_transient_error(exception: BaseException) -> bool:
    """R: Decide si un error es transitorio (reintentar) o permanente.

    Reglas (en orden):
      1) Status code HTTP: 408/5xx → True; resto de 4xx → False.
      2) Timeouts / errores de conexión built-in → True.
      3) Heurística por nombre de clase y por mensaje.
      4) Default: False (no reintentar lo desconocido).
    """
    status_code = get_http_status_code(exception)
    if status_code is not None:
        return status_code in TRANSIENT_HTTP_CODES or status_code >= 500

    if isinstance(exception, (TimeoutError, ConnectionError)):
        return True

    exception_name = type(exception).__name__.lower()
    if any(p in exception_name for p in _TRANSIENT_NAME_PATTERNS):
        return True

    message = str(exception).lower()
    return any(p in message for p in _TRANSIENT_MESSAGE_PATTERNS)


def classify_provider_error(exception: BaseException) -> EnhancementAPIError:
    """
    Traduce una excepción del SDK/red a la jerarquía del pipeline.

    Las excepciones ya tipadas se devuelven tal cual.
    """
    if isinstance(exception, EnhancementAPIError):
        return exception

    original = exception if isinstance(exception, Exception) else None

    if is_rate_limit_error(exception):
        return RateLimitedError(
            "Provider rate limit reached",
            retry_after=get_retry_after(exception),
            original_error=original,
        )
    if is_transient_error(exception):
        return TransientAPIError(
            f"Transient provider error: {type(exception).__name__}",
            original_error=original,
        )
    return FatalAPIError(
        f"Provider rejected the request: {type(exception).__name__}",
        original_error=original,
    )


def _log_retry(retry_state: RetryCallState) -> None:
    """R: Loguea cada intento antes de dormir (before_sleep)."""
    wait_time = (
        retry_state.next_action.sleep if retry_state.next_action is not None else 0
    )

    exc: Optional[BaseException] = None
    if retry_state.outcome is not None:
        exc = retry_state.outcome.exception()

    # R: la credencial se identifica por label, nunca por valor
    credential = retry_state.kwargs.get("credential")
    logger.warning(
        "Retrying provider call",
        extra={
            "attempt": retry_state.attempt_number,
            "wait_seconds": round(float(wait_time), 2),
            "credential_label": getattr(credential, "label", None),
            "error": str(exc) if exc else None,
            "error_type": type(exc).__name__ if exc else None,
        },
    )


def create_retrying(
    max_attempts: int | None = None,
    base_delay: float | None = None,
    max_delay: float | None = None,
    *,
    sleep: Callable[[float], None] | None = None,
) -> Retrying:
    """R: Crea un `tenacity.Retrying` con exponential backoff + jitter.

    Config:
      - stop: `stop_after_attempt(max_attempts)`
      - wait: `wait_exponential_jitter(initial=base_delay, max=max_delay)`
      - retry: solo TransientAPIError
      - before_sleep: `_log_retry`
      - reraise: True (propaga la última excepción)
      - sleep: inyectable (tests sin esperas reales)
    """
    if None in (max_attempts, base_delay, max_delay):
        settings = get_settings()

    _max_attempts = (
        settings.retry_max_attempts if max_attempts is None else max_attempts
    )
    _base_delay = (
        settings.retry_base_delay_seconds if base_delay is None else float(base_delay)
    )
    _max_delay = (
        settings.retry_max_delay_seconds if max_delay is None else float(max_delay)
    )

    if _max_attempts <= 0:
        raise ValueError("max_attempts must be > 0")
    if _base_delay < 0:
        raise ValueError("base_delay must be >= 0")
    if _max_delay <= 0:
        raise ValueError("max_delay must be > 0")

    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep

    return Retrying(
        stop=stop_after_attempt(_max_attempts),
        wait=wait_exponential_jitter(
            initial=_base_delay, max=_max_delay, jitter=_base_delay
        ),
        retry=retry_if_exception_type(TransientAPIError),
        before_sleep=_log_retry,
        reraise=True,
        **kwargs,
    )
