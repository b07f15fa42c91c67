"""
============================================================
TARJETA CRC — infrastructure/cache/chunk_cache.py
============================================================
Module: Chunk Cache (Facade)

Responsibilities:
  - Persistir chunks mejorados por (content_identity, index).
  - Mantener ChunkSetMetadata como única fuente de verdad de qué existe.
  - Degradar lecturas ante fallas (None / []) y envolver fallas de escritura
    en CacheIOError.
  - Migrar una sola vez registros legacy (pre-chunking).
  - Guardar el cursor de rotación de credenciales entre corridas.

Collaborators:
  - domain/cache.py (ChunkStorePort) + infrastructure/cache/stores.py
  - domain/entities.py (Chunk, ChunkSetMetadata)
  - crosscutting/metrics.py (hits / misses)

Policy / Design Notes:
  - Orden de escritura: primero el registro, después la metadata; un
    registro sin índice en metadata es invisible para get_all().
  - delete_all: registros primero, metadata al final.
============================================================
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from threading import Lock
from typing import Final, Optional

from ...crosscutting.exceptions import CacheIOError
from ...crosscutting.logger import logger
from ...crosscutting.metrics import record_chunk_cache_hit, record_chunk_cache_miss
from ...domain.cache import ChunkStorePort, StoredValue
from ...domain.entities import Chunk, ChunkSetMetadata, ModelInfo

_MIGRATION_MARKER_KEY: Final[str] = "migration:legacy_sweep"
_ROTATION_CURSOR_KEY: Final[str] = "rotation:cursor"
_LEGACY_FLAGS: Final[tuple[str, ...]] = ("is_chunked", "isChunked")


def record_key(identity: str, index: int) -> str:
    return f"chunk:{identity}:{index}"


def metadata_key(identity: str) -> str:
    return f"chunkmeta:{identity}"


def _is_legacy(value: StoredValue) -> bool:
    return any(value.get(flag) is True for flag in _LEGACY_FLAGS)


class ChunkCache:
    """
    Fachada del cache de chunks.

    Importante:
      - Las lecturas nunca lanzan: un fallo se ve como miss.
      - Las escrituras lanzan CacheIOError para que el orquestador decida.
    """

    def __init__(self, store: ChunkStorePort) -> None:
        self._store = store
        self._migrated = False
        self._migration_lock = Lock()

    @property
    def store(self) -> ChunkStorePort:
        return self._store

    # --------------------------------------------------------
    # Migración legacy
    # --------------------------------------------------------
    def migrate_legacy(self) -> int:
        """
        Borra registros de la versión previa (objetos con is_chunked=True).

        Se ejecuta una vez por instancia y una vez por store (marker).
        Devuelve cuántos registros se borraron.
        """
        with self._migration_lock:
            if self._migrated:
                return 0

            try:
                if self._store.get(_MIGRATION_MARKER_KEY) is not None:
                    self._migrated = True
                    return 0

                removed = 0
                for key, value in self._store.scan(""):
                    if _is_legacy(value):
                        self._store.delete(key)
                        removed += 1

                self._store.set(
                    _MIGRATION_MARKER_KEY,
                    {"completed_at": datetime.now(timezone.utc).isoformat()},
                )
            except Exception as exc:
                # R: se reintenta en el próximo uso
                logger.warning(
                    "Legacy chunk cache migration failed",
                    extra={"error": str(exc)},
                )
                return 0

            self._migrated = True
            if removed:
                logger.info(
                    "Legacy chunk cache entries removed", extra={"removed": removed}
                )
            return removed

    def _ensure_migrated(self) -> None:
        if not self._migrated:
            self.migrate_legacy()

    # --------------------------------------------------------
    # Escrituras
    # --------------------------------------------------------
    def put(
        self,
        identity: str,
        index: int,
        chunk: Chunk,
        *,
        total_chunks: Optional[int] = None,
    ) -> None:
        """
        Upsert del chunk + alta del índice en metadata (idempotente).

        Raises:
            ValueError: index fuera de [0, total_chunks)
            CacheIOError: si el store falla
        """
        if index < 0 or (total_chunks is not None and index >= total_chunks):
            raise ValueError(f"index {index} out of range for {total_chunks} chunks")

        self._ensure_migrated()

        stored = replace(
            chunk,
            content_identity=identity,
            index=index,
            cached_at=chunk.cached_at or datetime.now(timezone.utc),
        )

        def _add_index(current: Optional[StoredValue]) -> StoredValue:
            meta = (
                ChunkSetMetadata.from_dict(current)
                if current
                else ChunkSetMetadata(content_identity=identity)
            )
            return meta.with_index(
                index, total_chunks=total_chunks, model_info=stored.model_info
            ).to_dict()

        try:
            self._store.set(record_key(identity, index), stored.to_dict())
            self._store.update(metadata_key(identity), _add_index)
        except Exception as exc:
            raise CacheIOError(
                f"Failed to store chunk {index}", original_error=exc
            ) from exc

    def delete(self, identity: str, index: int) -> None:
        """Borra un chunk y su índice; total_chunks no cambia."""
        self._ensure_migrated()

        def _drop_index(current: Optional[StoredValue]) -> Optional[StoredValue]:
            if not current:
                return None
            return ChunkSetMetadata.from_dict(current).without_index(index).to_dict()

        try:
            self._store.delete(record_key(identity, index))
            self._store.update(metadata_key(identity), _drop_index)
        except Exception as exc:
            raise CacheIOError(
                f"Failed to delete chunk {index}", original_error=exc
            ) from exc

    def delete_all(self, identity: str) -> None:
        """Borra todos los chunks de la identidad; la metadata se borra al final."""
        self._ensure_migrated()
        try:
            raw = self._store.get(metadata_key(identity))
            indices = ChunkSetMetadata.from_dict(raw).indices if raw else frozenset()
            for index in sorted(indices):
                self._store.delete(record_key(identity, index))

            # Registros huérfanos (escritos sin llegar a la metadata)
            for key, _ in self._store.scan(f"chunk:{identity}:"):
                self._store.delete(key)

            self._store.delete(metadata_key(identity))
        except Exception as exc:
            raise CacheIOError(
                "Failed to delete cached chunks", original_error=exc
            ) from exc

    # --------------------------------------------------------
    # Lecturas (degradan)
    # --------------------------------------------------------
    def get(self, identity: str, index: int) -> Optional[Chunk]:
        self._ensure_migrated()
        try:
            raw = self._store.get(record_key(identity, index))
            chunk = Chunk.from_dict(raw) if raw else None
        except Exception as exc:
            logger.warning(
                "Chunk cache read failed",
                extra={"index": index, "error": str(exc)},
            )
            chunk = None

        if chunk is None:
            record_chunk_cache_miss()
        else:
            record_chunk_cache_hit()
        return chunk

    def get_all(self, identity: str) -> list[Chunk]:
        """Chunks listados en metadata, ordenados por índice (huecos omitidos)."""
        self._ensure_migrated()
        try:
            meta = self._read_metadata(identity)
            if meta is None:
                return []
            chunks: list[Chunk] = []
            for index in sorted(meta.indices):
                raw = self._store.get(record_key(identity, index))
                if raw:
                    chunks.append(Chunk.from_dict(raw))
            return chunks
        except Exception as exc:
            logger.warning("Chunk cache scan failed", extra={"error": str(exc)})
            return []

    def metadata(self, identity: str) -> Optional[ChunkSetMetadata]:
        self._ensure_migrated()
        try:
            return self._read_metadata(identity)
        except Exception as exc:
            logger.warning(
                "Chunk metadata read failed", extra={"error": str(exc)}
            )
            return None

    def has_chunks(self, identity: str) -> bool:
        meta = self.metadata(identity)
        return bool(meta and meta.indices)

    def chunk_count(self, identity: str) -> int:
        meta = self.metadata(identity)
        return len(meta.indices) if meta else 0

    def model_info(self, identity: str) -> Optional[ModelInfo]:
        meta = self.metadata(identity)
        return meta.model_info if meta else None

    def _read_metadata(self, identity: str) -> Optional[ChunkSetMetadata]:
        raw = self._store.get(metadata_key(identity))
        return ChunkSetMetadata.from_dict(raw) if raw else None

    # --------------------------------------------------------
    # Cursor de rotación (persistido entre corridas)
    # --------------------------------------------------------
    def load_rotation_cursor(self) -> int:
        try:
            raw = self._store.get(_ROTATION_CURSOR_KEY)
        except Exception as exc:
            logger.warning("Rotation cursor read failed", extra={"error": str(exc)})
            return 0
        return int(raw.get("cursor", 0)) if raw else 0

    def save_rotation_cursor(self, cursor: int) -> None:
        try:
            self._store.set(_ROTATION_CURSOR_KEY, {"cursor": int(cursor)})
        except Exception as exc:
            raise CacheIOError(
                "Failed to persist rotation cursor", original_error=exc
            ) from exc
