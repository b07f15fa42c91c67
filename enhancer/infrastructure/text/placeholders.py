"""
===============================================================================
CRC CARD — infrastructure/text/placeholders.py
===============================================================================

Componente:
  Preservación de elementos multimedia durante la llamada al proveedor

Responsabilidades:
  - Reemplazar <img>, <iframe>, <video>, <audio>, <source> y los recuadros
    de estadísticas (div.game-stats-box) por marcadores estables.
  - Restaurar los elementos originales en la salida del modelo.

Colaboradores:
  - application/pipeline.py (protect antes de enviar, restore al recibir)

Notas:
  - El modelo reescribe texto, no markup: los elementos viajan como
    [PRESERVED_ELEMENT_n] y se reinsertan tal cual.
===============================================================================
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final

_MEDIA_RE: Final[re.Pattern[str]] = re.compile(
    r"<img[^>]+>|<iframe[^>]+>|<video[^>]+>|<audio[^>]+>|<source[^>]+>"
    r'|<div class="game-stats-box">[\s\S]*?</div>',
    re.IGNORECASE,
)
_PLACEHOLDER_RE: Final[re.Pattern[str]] = re.compile(r"\[PRESERVED_ELEMENT_(\d+)\]")


def placeholder(index: int) -> str:
    return f"[PRESERVED_ELEMENT_{index}]"


@dataclass(frozen=True)
class ProtectedText:
    text: str
    elements: tuple[str, ...] = ()

    def restore(self, output: str) -> str:
        return restore_elements(output, self.elements)


def protect_elements(content: str) -> ProtectedText:
    """Sustituye elementos multimedia por marcadores numerados."""
    elements: list[str] = []

    def _swap(match: re.Match[str]) -> str:
        elements.append(match.group(0))
        return placeholder(len(elements) - 1)

    return ProtectedText(text=_MEDIA_RE.sub(_swap, content), elements=tuple(elements))


def restore_elements(output: str, elements: tuple[str, ...]) -> str:
    """
    Reinserta los elementos preservados.

    Marcadores con índice desconocido quedan como están.
    """
    if not elements:
        return output

    def _swap(match: re.Match[str]) -> str:
        idx = int(match.group(1))
        return elements[idx] if idx < len(elements) else match.group(0)

    return _PLACEHOLDER_RE.sub(_swap, output)
