"""
Name: Chunk Store Backend Tests

Responsibilities:
  - In-memory store: copies on read/write, atomic update, prefix scan,
    per-key locks that do not outlive their callers
  - Redis store: JSON values under a namespace, WATCH/MULTI update, SCAN
  - Factory: memory when forced or when Redis is unreachable
"""

import json
import threading
from unittest.mock import MagicMock, patch

import pytest
import redis

from enhancer.infrastructure.cache import (
    InMemoryChunkStore,
    RedisChunkStore,
    create_chunk_store,
)

pytestmark = pytest.mark.unit


class TestInMemoryChunkStore:
    def test_values_are_copied(self):
        store = InMemoryChunkStore()
        value = {"items": [1]}
        store.set("k", value)

        value["items"].append(2)
        read = store.get("k")
        read["items"].append(3)

        assert store.get("k") == {"items": [1]}

    def test_update_applies_mutator_and_none_deletes(self):
        store = InMemoryChunkStore()

        store.update("k", lambda current: {"n": (current or {}).get("n", 0) + 1})
        store.update("k", lambda current: {"n": current["n"] + 1})
        assert store.get("k") == {"n": 2}

        store.update("k", lambda current: None)
        assert store.get("k") is None

    def test_scan_filters_by_prefix_and_allows_deletes(self):
        store = InMemoryChunkStore()
        store.set("chunk:a:0", {"i": 0})
        store.set("chunk:a:1", {"i": 1})
        store.set("chunkmeta:a", {"m": True})

        for key, _ in store.scan("chunk:a:"):
            store.delete(key)

        assert [k for k, _ in store.scan("")] == ["chunkmeta:a"]

    def test_key_locks_are_released_after_use(self):
        store = InMemoryChunkStore()

        for i in range(50):
            store.set(f"chunk:a:{i}", {"i": i})
            store.update("chunkmeta:a", lambda current: {"n": i})
        store.delete("chunk:a:0")

        assert store._locks == {}

    def test_concurrent_updates_on_one_key_are_serialized(self):
        store = InMemoryChunkStore()

        def _bump():
            for _ in range(200):
                store.update("n", lambda current: {"n": (current or {}).get("n", 0) + 1})

        threads = [threading.Thread(target=_bump) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert store.get("n") == {"n": 800}
        assert store._locks == {}


class TestRedisChunkStore:
    def _store(self):
        client = MagicMock()
        return RedisChunkStore(client=client, namespace="test:"), client

    def test_requires_url_or_client(self):
        with pytest.raises(ValueError):
            RedisChunkStore()

    def test_get_and_set_use_namespaced_json(self):
        store, client = self._store()
        client.get.return_value = json.dumps({"a": 1})

        store.set("chunk:x:0", {"a": "á"})
        value = store.get("chunk:x:0")

        client.set.assert_called_once_with("test:chunk:x:0", '{"a": "á"}')
        client.get.assert_called_once_with("test:chunk:x:0")
        assert value == {"a": 1}

    def test_get_missing_key_returns_none(self):
        store, client = self._store()
        client.get.return_value = None

        assert store.get("nope") is None

    def test_update_runs_in_transaction(self):
        store, client = self._store()
        pipe = MagicMock()
        pipe.get.return_value = json.dumps({"n": 1})

        def _transaction(func, *keys, value_from_callable=False):
            assert keys == ("test:meta",)
            assert value_from_callable
            return func(pipe)

        client.transaction.side_effect = _transaction

        result = store.update("meta", lambda current: {"n": current["n"] + 1})

        assert result == {"n": 2}
        pipe.multi.assert_called_once()
        pipe.set.assert_called_once_with("test:meta", json.dumps({"n": 2}))

    def test_update_returning_none_deletes_key(self):
        store, client = self._store()
        pipe = MagicMock()
        pipe.get.return_value = None
        client.transaction.side_effect = lambda func, *keys, **kw: func(pipe)

        assert store.update("meta", lambda current: None) is None
        pipe.delete.assert_called_once_with("test:meta")

    def test_scan_strips_namespace_and_skips_bad_json(self):
        store, client = self._store()
        client.scan_iter.return_value = iter(["test:chunk:a:0", "test:chunk:a:1"])
        client.get.side_effect = [json.dumps({"i": 0}), "not json"]

        items = list(store.scan("chunk:a:"))

        client.scan_iter.assert_called_once_with(match="test:chunk:a:*")
        assert items == [("chunk:a:0", {"i": 0})]


class TestCreateChunkStore:
    def test_memory_backend_is_forced(self):
        assert isinstance(
            create_chunk_store("memory", redis_url="redis://x:6379"),
            InMemoryChunkStore,
        )

    def test_auto_without_url_falls_back_to_memory(self):
        assert isinstance(create_chunk_store("auto"), InMemoryChunkStore)

    def test_unreachable_redis_falls_back_to_memory(self):
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("refused")

        with patch(
            "enhancer.infrastructure.cache.stores.redis.from_url", return_value=client
        ):
            store = create_chunk_store("redis", redis_url="redis://x:6379")

        assert isinstance(store, InMemoryChunkStore)

    def test_reachable_redis_is_used(self):
        client = MagicMock()

        with patch(
            "enhancer.infrastructure.cache.stores.redis.from_url", return_value=client
        ):
            store = create_chunk_store("auto", redis_url="redis://x:6379")

        assert isinstance(store, RedisChunkStore)
        assert store.client is client
