"""
===============================================================================
TARJETA CRC — domain/entities.py
===============================================================================

Módulo:
    Entidades del Dominio (Chunk, ChunkSetMetadata, SummaryGroup, ModelInfo)

Responsabilidades:
    - Definir estructuras centrales del pipeline (sin infraestructura).
    - Serializar/deserializar a dict plano para los stores (JSON).
    - Mantener invariantes simples (índices dentro de total_chunks).

Colaboradores:
    - infrastructure/cache: persiste Chunk y ChunkSetMetadata.
    - application/pipeline: construye chunks mejorados.
    - application/summary_grouping: produce SummaryGroup.
    - interfaces/api: serializa estos objetos como respuesta.

Principios:
    - Sin dependencias a Redis/FastAPI/SDKs.
    - Inmutables (frozen): las actualizaciones crean copias con replace().
===============================================================================
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def _utcnow() -> datetime:
    """Fecha/hora UTC (helper interno)."""
    return datetime.now(timezone.utc)


def _parse_dt(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


# ---------------------------------------------------------------------------
# Chunk
# ---------------------------------------------------------------------------


class ChunkStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    CACHED = "cached"


@dataclass(frozen=True)
class ModelInfo:
    """Modelo que produjo el texto mejorado."""

    name: str
    provider: str = "gemini"

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "provider": self.provider}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["ModelInfo"]:
        if not data:
            return None
        return cls(name=str(data.get("name", "")), provider=str(data.get("provider", "")))


@dataclass(frozen=True)
class Chunk:
    """
    Unidad de trabajo cacheable.

    Invariantes:
      - index es 0-based y contiguo dentro de su identidad.
      - enhanced_text es None hasta que el proveedor respondió.
    """

    content_identity: str
    index: int
    original_text: str
    word_count: int
    enhanced_text: Optional[str] = None
    status: ChunkStatus = ChunkStatus.PENDING
    model_info: Optional[ModelInfo] = None
    cached_at: Optional[datetime] = None

    def with_status(self, status: ChunkStatus) -> "Chunk":
        return replace(self, status=status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content_identity": self.content_identity,
            "index": self.index,
            "original_text": self.original_text,
            "word_count": self.word_count,
            "enhanced_text": self.enhanced_text,
            "status": self.status.value,
            "model_info": self.model_info.to_dict() if self.model_info else None,
            "cached_at": self.cached_at.isoformat() if self.cached_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chunk":
        return cls(
            content_identity=str(data["content_identity"]),
            index=int(data["index"]),
            original_text=str(data.get("original_text", "")),
            word_count=int(data.get("word_count", 0)),
            enhanced_text=data.get("enhanced_text"),
            status=ChunkStatus(data.get("status", ChunkStatus.PENDING.value)),
            model_info=ModelInfo.from_dict(data.get("model_info")),
            cached_at=_parse_dt(data.get("cached_at")),
        )


# ---------------------------------------------------------------------------
# Metadata del conjunto de chunks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChunkSetMetadata:
    """
    Índice de chunks cacheados para una identidad.

    Es la única fuente de verdad sobre qué chunks existen.
    """

    content_identity: str
    total_chunks: Optional[int] = None
    indices: frozenset[int] = field(default_factory=frozenset)
    last_updated: datetime = field(default_factory=_utcnow)
    model_info: Optional[ModelInfo] = None

    def __post_init__(self) -> None:
        if self.total_chunks is not None and any(
            i < 0 or i >= self.total_chunks for i in self.indices
        ):
            raise ValueError("chunk indices must fall inside [0, total_chunks)")

    @property
    def is_complete(self) -> bool:
        return self.total_chunks is not None and self.indices == frozenset(
            range(self.total_chunks)
        )

    def with_index(
        self,
        index: int,
        *,
        total_chunks: Optional[int] = None,
        model_info: Optional[ModelInfo] = None,
    ) -> "ChunkSetMetadata":
        return ChunkSetMetadata(
            content_identity=self.content_identity,
            total_chunks=total_chunks if total_chunks is not None else self.total_chunks,
            indices=self.indices | {index},
            last_updated=_utcnow(),
            model_info=model_info or self.model_info,
        )

    def without_index(self, index: int) -> "ChunkSetMetadata":
        return replace(self, indices=self.indices - {index}, last_updated=_utcnow())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content_identity": self.content_identity,
            "total_chunks": self.total_chunks,
            "indices": sorted(self.indices),
            "last_updated": self.last_updated.isoformat(),
            "model_info": self.model_info.to_dict() if self.model_info else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChunkSetMetadata":
        total = data.get("total_chunks")
        return cls(
            content_identity=str(data["content_identity"]),
            total_chunks=int(total) if total is not None else None,
            indices=frozenset(int(i) for i in data.get("indices", [])),
            last_updated=_parse_dt(data.get("last_updated")) or _utcnow(),
            model_info=ModelInfo.from_dict(data.get("model_info")),
        )


# ---------------------------------------------------------------------------
# Summary groups
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SummaryGroup:
    """Rango contiguo [start_index, end_index] de chunks a resumir juntos."""

    start_index: int
    end_index: int
    chunk_indices: tuple[int, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_index": self.start_index,
            "end_index": self.end_index,
            "chunk_indices": list(self.chunk_indices),
        }
