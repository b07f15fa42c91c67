"""
===============================================================================
CRC CARD — infrastructure/text/splitter.py
===============================================================================

Componente:
  Splitter de contenido por párrafos (word-based, con cola balanceada)

Responsabilidades:
  - Partir un capítulo en chunks acotados para el proveedor generativo.
  - Nunca partir un párrafo: los cortes caen entre unidades.
  - Balancear siempre los dos últimos chunks.
  - Exponer:
      * split_content(...) -> list[TextChunk] (función pura)
      * ParagraphSplitter (servicio inyectable)

Reglas de tamaño (W = palabras totales, S = target):
  (a) W <= S      -> 1 chunk (texto original sin espacios extremos)
  (b) S < W < 2S  -> 2 chunks en el corte que minimiza la diferencia
  (c) W >= 2S     -> acumular hasta que la siguiente unidad exceda S; si la
                     cola restante es < 2S se cierra y se aplica (b) a la cola

Colaboradores:
  - infrastructure/text/models.py (Paragraph)
  - domain/services.py (TextChunk, ContentSplitter)
===============================================================================
"""

from __future__ import annotations

import re
from typing import Final, Sequence

from ...crosscutting.config import DEFAULT_CHUNK_SIZE_WORDS, MIN_CHUNK_WORDS
from ...crosscutting.exceptions import SplitError
from ...crosscutting.logger import logger
from ...domain.services import TextChunk
from .models import Paragraph

_TAG_RE: Final[re.Pattern[str]] = re.compile(r"<[^>]*>")
_STRUCTURED_RE: Final[re.Pattern[str]] = re.compile(
    r"<p\b[^>]*>|<div\b[^>]*>|<br\s*/?>|<span\b[^>]*>", re.IGNORECASE
)
_BLOCK_RE: Final[re.Pattern[str]] = re.compile(
    r"<(p|div|h[1-6]|li|blockquote|pre|section|article)\b[^>]*>[\s\S]*?</\1>"
    r"|<br\s*/?>",
    re.IGNORECASE,
)
_WORD_RE: Final[re.Pattern[str]] = re.compile(r"\S+")
_BLANK_LINE_RE: Final[re.Pattern[str]] = re.compile(r"\n\s*\n")

_PARAGRAPH_JOINER: Final[str] = "\n\n"

Range = tuple[int, int]


def validate_chunk_size(value: object) -> int:
    """
    Normaliza el target de palabras por chunk.

    Valores inválidos o menores al mínimo se llevan a MIN_CHUNK_WORDS.
    """
    try:
        size = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return MIN_CHUNK_WORDS
    return max(MIN_CHUNK_WORDS, size)


def count_words(text: str) -> int:
    """Cuenta palabras ignorando tags HTML."""
    if not text or not isinstance(text, str):
        return 0
    return len(_TAG_RE.sub(" ", text).split())


def is_structured(text: str) -> bool:
    """Heurística: ¿el contenido trae marcado de párrafos?"""
    return bool(text) and _STRUCTURED_RE.search(text) is not None


def extract_paragraphs(text: str) -> list[Paragraph]:
    """
    Descompone contenido estructurado en párrafos.

    - Cada bloque (<p>, <div>, <h1-6>, <li>, ...) es un párrafo completo.
    - <br> separa párrafos y se descarta.
    - Texto suelto entre bloques es su propio párrafo.
    """
    paragraphs: list[Paragraph] = []
    last = 0

    def _loose(start: int, end: int) -> None:
        segment = text[start:end]
        stripped = segment.strip()
        if not stripped:
            return
        offset = start + segment.index(stripped)
        paragraphs.append(
            Paragraph(
                content=stripped,
                word_count=count_words(stripped),
                start=offset,
                end=offset + len(stripped),
            )
        )

    for match in _BLOCK_RE.finditer(text):
        if match.start() > last:
            _loose(last, match.start())

        block = match.group(0)
        if not block.lower().startswith("<br"):
            paragraphs.append(
                Paragraph(
                    content=block,
                    word_count=count_words(block),
                    start=match.start(),
                    end=match.end(),
                )
            )
        last = match.end()

    if last < len(text):
        _loose(last, len(text))

    return paragraphs


def _extract_words(text: str) -> list[Paragraph]:
    return [
        Paragraph(content=m.group(0), word_count=1, start=m.start(), end=m.end())
        for m in _WORD_RE.finditer(text)
    ]


def _balanced_cut(weights: Sequence[int], start: int, end: int) -> list[Range]:
    """
    Parte [start, end) en dos rangos minimizando la diferencia de palabras.

    Empates: se prefiere la primera parte más grande. Con una sola unidad no
    hay corte posible y se devuelve un único rango.
    """
    if end - start < 2:
        return [(start, end)]

    total = sum(weights[start:end])
    best_cut = start + 1
    best_diff: int | None = None
    prefix = 0

    for cut in range(start + 1, end):
        prefix += weights[cut - 1]
        diff = abs(2 * prefix - total)
        if best_diff is None or diff <= best_diff:
            best_cut, best_diff = cut, diff

    return [(start, best_cut), (best_cut, end)]


def plan_ranges(weights: Sequence[int], target_words: int) -> list[Range]:
    """
    Calcula los rangos [start, end) de unidades que forman cada chunk.

    Es el “motor” real: trabaja solo con pesos, sin texto.
    """
    n = len(weights)
    if n == 0:
        return []

    total = sum(weights)
    if total <= target_words:
        return [(0, n)]
    if total < 2 * target_words:
        return _balanced_cut(weights, 0, n)

    suffix = [0] * (n + 1)
    for i in range(n - 1, -1, -1):
        suffix[i] = suffix[i + 1] + weights[i]

    ranges: list[Range] = []
    start = 0
    current = 0

    for i, weight in enumerate(weights):
        if i > start and current + weight > target_words:
            if suffix[i] < 2 * target_words:
                if n - i >= 2:
                    ranges.append((start, i))
                    ranges.extend(_balanced_cut(weights, i, n))
                else:
                    # R: cola de una sola unidad -> se balancea con el chunk actual
                    ranges.extend(_balanced_cut(weights, start, n))
                return ranges

            ranges.append((start, i))
            start, current = i, 0

        current += weight

    ranges.append((start, n))
    return ranges


def _count_blocks(content: str) -> int:
    return len([b for b in _BLANK_LINE_RE.split(content) if b.strip()]) or 1


def split_content(
    text: str, target_words: int = DEFAULT_CHUNK_SIZE_WORDS
) -> list[TextChunk]:
    """
    Parte el contenido en chunks ordenados (index 0..n-1).

    Raises:
        SplitError: si text no es un string
    """
    if not isinstance(text, str):
        raise SplitError(f"content must be a string, got {type(text).__name__}")

    if not text.strip():
        return []

    target = validate_chunk_size(target_words)
    structured = is_structured(text)
    units = extract_paragraphs(text) if structured else _extract_words(text)
    if not units:
        return []

    weights = [u.word_count for u in units]
    ranges = plan_ranges(weights, target)

    chunks: list[TextChunk] = []
    for index, (start, end) in enumerate(ranges):
        group = units[start:end]
        if len(ranges) == 1:
            content = text.strip()
        elif structured:
            content = _PARAGRAPH_JOINER.join(u.content for u in group)
        else:
            content = text[group[0].start : group[-1].end]

        chunks.append(
            TextChunk(
                index=index,
                content=content,
                word_count=sum(weights[start:end]),
                paragraph_count=len(group) if structured else _count_blocks(content),
            )
        )

    logger.debug(
        "Content split",
        extra={
            "structured": structured,
            "units": len(units),
            "total_words": sum(weights),
            "target_words": target,
            "chunks": len(chunks),
        },
    )
    return chunks


class ParagraphSplitter:
    """
    Servicio de splitting (implementa domain.services.ContentSplitter).

    Diseño:
      - Normaliza el target al construir.
      - `split()` delega a `split_content`.
    """

    def __init__(self, target_words: int = DEFAULT_CHUNK_SIZE_WORDS):
        self.target_words = validate_chunk_size(target_words)

    def split(self, text: str) -> list[TextChunk]:
        return split_content(text, self.target_words)
