"""
===============================================================================
MÓDULO: Content Identity — identidad estable de un capítulo a partir de su URL
===============================================================================

Responsabilidades:
  - Canonicalizar la URL de origen (trim, esquema/host en minúsculas, sin
    fragmento, sin barra final en el path).
  - Computar SHA-256 sobre la URL canónica.

Colaboradores:
  - interfaces/api: deriva la identidad cuando el cliente envía source_url
  - infrastructure/cache: usa la identidad como prefijo de las claves

Decisiones de diseño:
  - Funciones puras (sin IO, sin side effects).
  - Query string se conserva: distintos capítulos suelen diferir solo ahí.
  - Misma URL = misma identidad aunque el contenido de la página cambie
    (ver DESIGN.md, Open Questions).
===============================================================================
"""

from __future__ import annotations

import hashlib
import re
from urllib.parse import urlsplit, urlunsplit

_IDENTITY_RE = re.compile(r"^[0-9a-f]{64}$")


def canonical_url(url: str) -> str:
    """
    Normaliza una URL para que variantes triviales compartan identidad.

    Raises:
        ValueError: si la URL está vacía
    """
    raw = (url or "").strip()
    if not raw:
        raise ValueError("source url must not be empty")

    parts = urlsplit(raw)
    path = parts.path
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"

    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), path, parts.query, "")
    )


def content_identity(url: str) -> str:
    """SHA-256 hex (64 chars) de la URL canónica."""
    return hashlib.sha256(canonical_url(url).encode("utf-8")).hexdigest()


def is_valid_identity(value: str) -> bool:
    return bool(_IDENTITY_RE.match(value or ""))
