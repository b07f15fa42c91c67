"""
===============================================================================
TARJETA CRC — domain/cache.py
===============================================================================

Módulo:
    Puerto de almacenamiento de chunks (Dominio)

Responsabilidades:
    - Definir el contrato (Protocol) key-value que usa el cache de chunks.
    - Habilitar Inversión de Dependencias:
        * infrastructure/cache/chunk_cache.py depende de esta interfaz
        * infrastructure/cache/stores.py implementa memoria / Redis
    - Ofrecer update() atómico por key para read-modify-write de metadata.

Colaboradores:
    - infrastructure/cache/stores.py: InMemoryChunkStore, RedisChunkStore
    - infrastructure/cache/chunk_cache.py: facade con semántica de chunks

Restricciones / Reglas:
    - Este módulo ES dominio: no importa Redis.
    - Values: dicts JSON-serializables.
    - Errores de backend se propagan; la facade decide degradar o envolver.
===============================================================================
"""

from __future__ import annotations

from typing import Any, Callable, Iterator, Optional, Protocol

StoredValue = dict[str, Any]
Mutator = Callable[[Optional[StoredValue]], Optional[StoredValue]]


class ChunkStorePort(Protocol):
    """
    Store key-value con escritura serializada por key.

    Semántica:
      - get(key) retorna None si no existe
      - set(key, value) guarda o sobreescribe (last writer wins)
      - update(key, fn) aplica fn(actual) -> nuevo de forma atómica para esa key;
        si fn devuelve None la key se borra
      - scan(prefix) itera (key, value) cuyo nombre empieza con prefix
    """

    def get(self, key: str) -> Optional[StoredValue]: ...

    def set(self, key: str, value: StoredValue) -> None: ...

    def delete(self, key: str) -> None: ...

    def update(self, key: str, fn: Mutator) -> Optional[StoredValue]: ...

    def scan(self, prefix: str = "") -> Iterator[tuple[str, StoredValue]]: ...
