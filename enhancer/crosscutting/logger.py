# enhancer/crosscutting/logger.py
"""
===============================================================================
MÓDULO: Logger estructurado (JSON) con contexto de corrida
===============================================================================

Objetivo
--------
Un log por evento del pipeline, en una línea JSON, con:
- request_id / run_id / content_identity tomados del contexto
- las API keys fuera del log (solo viaja el label de la credencial)
- el texto de los capítulos fuera del log (se reporta su tamaño)

-------------------------------------------------------------------------------
CRC (Component Card)
-------------------------------------------------------------------------------
Componente:
  JSONFormatter + setup_logger()

Responsabilidades:
  - Formatear logs como JSON
  - Enriquecer con el contexto de request / corrida
  - Enmascarar credenciales y resumir campos de texto de chunks

Colaboradores:
  - enhancer/context.py (ContextVars)
  - crosscutting/config.py (log_level / log_json)
===============================================================================
"""

from __future__ import annotations

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any

# Atributos estándar del LogRecord: todo lo demás vino por `extra=`.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None))
) | {"message", "taskName"}

# Claves que pueden transportar una API key de Gemini
_SECRET_KEYS: frozenset[str] = frozenset(
    {"api_key", "apikey", "key", "authorization", "google_api_key", "backup_api_keys"}
)

# Campos con texto de capítulo: nunca se vuelcan, solo su largo
_CHAPTER_TEXT_KEYS: frozenset[str] = frozenset(
    {
        "text",
        "original_text",
        "enhanced_text",
        "prompt",
        "system_instruction",
        "summary",
    }
)

MAX_VALUE_CHARS = 2_000


def _scrub(value: Any, key: str | None = None, depth: int = 0) -> Any:
    """R: Valor seguro para el log (credenciales, texto de capítulos, tamaño)."""
    name = (key or "").lower()
    if name in _SECRET_KEYS:
        return "***REDACTED***"
    if name in _CHAPTER_TEXT_KEYS and isinstance(value, str):
        return f"<{len(value)} chars>"

    if isinstance(value, str):
        if len(value) <= MAX_VALUE_CHARS:
            return value
        return value[:MAX_VALUE_CHARS] + "…(truncated)"
    if depth >= 3:
        return repr(value)[:MAX_VALUE_CHARS]
    if isinstance(value, dict):
        return {str(k): _scrub(v, str(k), depth + 1) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_scrub(v, key, depth + 1) for v in value]
    if value is None or isinstance(value, (bool, int, float)):
        return value
    return str(value)


class JSONFormatter(logging.Formatter):
    """LogRecord -> una línea JSON con el contexto de la corrida."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
        }

        from ..context import get_context_dict

        payload.update(get_context_dict())
        payload.update(
            (k, _scrub(v, k))
            for k, v in record.__dict__.items()
            if k not in _RECORD_ATTRS
        )

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc, tb = record.exc_info
            payload["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc),
                "stacktrace": traceback.format_exception(exc_type, exc, tb),
            }

        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger(name: str = "enhancer") -> logging.Logger:
    """
    Logger del servicio; idempotente ante reimports.

    Nivel y formato salen de Settings. Si Settings todavía no carga (p.ej.
    falta GOOGLE_API_KEY), se usa INFO + JSON para poder reportarlo.
    """
    log = logging.getLogger(name)

    try:
        from .config import get_settings

        settings = get_settings()
        level, use_json = settings.log_level.upper(), settings.log_json
    except Exception:
        level, use_json = "INFO", True

    log.setLevel(getattr(logging, level, logging.INFO))
    if not log.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            JSONFormatter() if use_json else logging.Formatter("%(levelname)s %(message)s")
        )
        log.addHandler(handler)
    return log


logger = setup_logger()
