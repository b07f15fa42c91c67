"""Chunk cache (facade + store backends)"""

from .chunk_cache import ChunkCache, metadata_key, record_key
from .stores import InMemoryChunkStore, RedisChunkStore, create_chunk_store

__all__ = [
    "ChunkCache",
    "InMemoryChunkStore",
    "RedisChunkStore",
    "create_chunk_store",
    "metadata_key",
    "record_key",
]
