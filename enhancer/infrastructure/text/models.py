"""
===============================================================================
CRC CARD — infrastructure/text/models.py
===============================================================================

Modelo:
  Paragraph (unidad indivisible del splitter)

Responsabilidades:
  - Representar un párrafo (o palabra, en texto plano) con su peso en palabras.
  - Guardar offsets para poder recortar el texto original sin reconstruirlo.

Colaboradores:
  - infrastructure/text/splitter.py
===============================================================================
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Paragraph:
    """
    Unidad que nunca se parte entre dos chunks.

    Notas:
      - En contenido estructurado es un bloque (<p>, <div>, ...) o texto suelto.
      - En texto plano es una palabra (word_count == 1).
      - start/end son offsets en caracteres sobre el texto original.
      - Un bloque sin palabras (p.ej. solo una imagen) pesa 0 pero se conserva.
    """

    content: str
    word_count: int
    start: int
    end: int
