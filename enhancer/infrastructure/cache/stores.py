"""
============================================================
TARJETA CRC — infrastructure/cache/stores.py
============================================================
Module: Chunk Stores (Backends key-value)

Responsibilities:
  - Implementar ChunkStorePort en memoria y en Redis.
  - Serializar escrituras a una misma key (last writer wins) sin bloquear
    escrituras a keys distintas.
  - Ofrecer update() atómico para read-modify-write de metadata.
  - Seleccionar backend según settings (auto / memory / redis) y degradar
    a memoria si Redis no responde.

Collaborators:
  - domain/cache.py (ChunkStorePort)
  - infrastructure/cache/chunk_cache.py (facade)
  - Redis vía redis-py (WATCH/MULTI, SCAN)

Policy / Design Notes:
  - Los stores NO silencian errores: la facade decide degradar o envolver.
  - En memoria: lock por key (se libera al terminar) + lock global corto
    para el mapa de locks.
  - En Redis: valores JSON bajo un namespace; SCAN en vez de KEYS.
============================================================
"""

from __future__ import annotations

import copy
import json
from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterator, Optional

import redis

from ...crosscutting.logger import logger
from ...domain.cache import ChunkStorePort, Mutator, StoredValue


# ============================================================
# In-memory store (lock por key)
# ============================================================
class InMemoryChunkStore:
    """
    Store en memoria del proceso.

    Nota:
      - Ideal para dev/tests y para un único proceso.
      - Devuelve copias: mutar un valor leído no altera el store.
    """

    def __init__(self) -> None:
        self._data: Dict[str, StoredValue] = {}
        # key -> [lock, usuarios]; la entrada vive solo mientras alguien la usa
        self._locks: Dict[str, list] = {}
        self._locks_guard = Lock()

    @contextmanager
    def _locked(self, key: str) -> Iterator[None]:
        with self._locks_guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def get(self, key: str) -> Optional[StoredValue]:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    def set(self, key: str, value: StoredValue) -> None:
        with self._locked(key):
            self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        with self._locked(key):
            self._data.pop(key, None)

    def update(self, key: str, fn: Mutator) -> Optional[StoredValue]:
        with self._locked(key):
            current = self._data.get(key)
            updated = fn(copy.deepcopy(current) if current is not None else None)
            if updated is None:
                self._data.pop(key, None)
            else:
                self._data[key] = copy.deepcopy(updated)
            return updated

    def scan(self, prefix: str = "") -> Iterator[tuple[str, StoredValue]]:
        # R: snapshot para que borrar durante la iteración sea seguro
        for key in [k for k in list(self._data) if k.startswith(prefix)]:
            value = self.get(key)
            if value is not None:
                yield key, value


# ============================================================
# Redis store (JSON + namespace + WATCH/MULTI)
# ============================================================
class RedisChunkStore:
    """
    Store Redis para chunks.

    Ventajas:
      - Persistente a reinicios del proceso
      - Compartible entre múltiples workers
    """

    def __init__(
        self,
        *,
        redis_url: str = "",
        namespace: str = "enhancer:",
        client: Optional["redis.Redis"] = None,
    ) -> None:
        if client is None and not redis_url:
            raise ValueError("redis_url is required")

        self._client = client or redis.from_url(redis_url, decode_responses=True)
        self._namespace = namespace

    @property
    def client(self) -> "redis.Redis":
        return self._client

    def _k(self, key: str) -> str:
        """Compone clave namespaced."""
        return f"{self._namespace}{key}"

    @staticmethod
    def _decode(raw: Optional[str]) -> Optional[StoredValue]:
        if raw is None:
            return None
        value = json.loads(raw)
        return value if isinstance(value, dict) else None

    def get(self, key: str) -> Optional[StoredValue]:
        return self._decode(self._client.get(self._k(key)))

    def set(self, key: str, value: StoredValue) -> None:
        self._client.set(self._k(key), json.dumps(value, ensure_ascii=False))

    def delete(self, key: str) -> None:
        self._client.delete(self._k(key))

    def update(self, key: str, fn: Mutator) -> Optional[StoredValue]:
        """
        Read-modify-write optimista (WATCH/MULTI).

        redis-py reintenta la transacción si la key cambió entre WATCH y EXEC.
        """
        full_key = self._k(key)

        def _tx(pipe: "redis.client.Pipeline") -> Optional[StoredValue]:
            current = self._decode(pipe.get(full_key))
            updated = fn(current)
            pipe.multi()
            if updated is None:
                pipe.delete(full_key)
            else:
                pipe.set(full_key, json.dumps(updated, ensure_ascii=False))
            return updated

        return self._client.transaction(_tx, full_key, value_from_callable=True)

    def scan(self, prefix: str = "") -> Iterator[tuple[str, StoredValue]]:
        offset = len(self._namespace)
        for full_key in self._client.scan_iter(match=f"{self._k(prefix)}*"):
            try:
                value = self._decode(self._client.get(full_key))
            except json.JSONDecodeError:
                continue
            if value is not None:
                yield full_key[offset:], value


# ============================================================
# Factory (auto / memory / redis)
# ============================================================
def create_chunk_store(
    backend: str = "auto", *, redis_url: str = "", namespace: str = "enhancer:"
) -> ChunkStorePort:
    """
    Factory de store.

    Política:
      - memory => in-memory siempre
      - redis / auto => Redis si REDIS_URL responde al ping; si no, memoria
    """
    forced = (backend or "auto").strip().lower()
    url = (redis_url or "").strip()

    def try_redis() -> Optional[RedisChunkStore]:
        if not url:
            return None
        try:
            store = RedisChunkStore(redis_url=url, namespace=namespace)
            # Healthcheck temprano: si no responde, caemos a memoria
            store.client.ping()
            return store
        except (redis.RedisError, ValueError) as exc:
            logger.warning(
                "Redis chunk store unavailable, using memory",
                extra={"error": str(exc), "requested_backend": forced},
            )
            return None

    if forced == "memory":
        return InMemoryChunkStore()

    return try_redis() or InMemoryChunkStore()
