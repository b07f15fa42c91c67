"""
Name: Domain Entity + Credential Tests

Responsibilities:
  - Chunk / metadata serialization for the stores
  - Metadata invariants (indices inside total_chunks, completeness)
  - Credentials never expose their value
"""

from datetime import datetime, timezone

import pytest

from enhancer.domain.credentials import Credential, CredentialPool, RotationStrategy
from enhancer.domain.entities import (
    Chunk,
    ChunkSetMetadata,
    ChunkStatus,
    ModelInfo,
)

pytestmark = pytest.mark.unit

IDENTITY = "ef" * 32


class TestChunk:
    def test_dict_round_trip(self):
        chunk = Chunk(
            content_identity=IDENTITY,
            index=2,
            original_text="raw",
            word_count=1,
            enhanced_text="better",
            status=ChunkStatus.COMPLETED,
            model_info=ModelInfo(name="gemini-2.5-flash"),
            cached_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )

        assert Chunk.from_dict(chunk.to_dict()) == chunk

    def test_defaults_for_partial_payload(self):
        chunk = Chunk.from_dict({"content_identity": IDENTITY, "index": "1"})

        assert chunk.index == 1
        assert chunk.status is ChunkStatus.PENDING
        assert chunk.enhanced_text is None
        assert chunk.model_info is None


class TestChunkSetMetadata:
    def test_indices_outside_total_are_rejected(self):
        with pytest.raises(ValueError):
            ChunkSetMetadata(IDENTITY, total_chunks=2, indices=frozenset({2}))

    def test_completeness(self):
        meta = ChunkSetMetadata(IDENTITY, total_chunks=2, indices=frozenset({0}))

        assert not meta.is_complete
        assert meta.with_index(1).is_complete
        assert not ChunkSetMetadata(IDENTITY).is_complete

    def test_without_index_keeps_total(self):
        meta = ChunkSetMetadata(IDENTITY, total_chunks=3, indices=frozenset({0, 1}))

        updated = meta.without_index(0)

        assert updated.indices == frozenset({1})
        assert updated.total_chunks == 3

    def test_dict_round_trip_sorts_indices(self):
        meta = ChunkSetMetadata(IDENTITY, total_chunks=4, indices=frozenset({3, 0}))

        data = meta.to_dict()

        assert data["indices"] == [0, 3]
        assert ChunkSetMetadata.from_dict(data).indices == meta.indices


class TestCredentials:
    def test_value_never_in_repr(self):
        credential = Credential("AIza-very-secret", 1)

        assert "secret" not in repr(credential)
        assert "secret" not in str(credential)
        assert credential.label == "credential#1"

    def test_pool_from_keys_orders_primary_first_and_drops_blanks(self):
        pool = CredentialPool.from_keys(" p ", ["", "b1", "  ", "b2"])

        assert [c.value for c in pool.credentials] == ["p", "b1", "b2"]
        assert [c.ordinal for c in pool.credentials] == [0, 1, 2]
        assert pool.strategy is RotationStrategy.FAILOVER

    def test_pool_without_keys_is_empty(self):
        pool = CredentialPool.from_keys(None, [])

        assert pool.is_empty
        assert len(pool) == 0

    def test_at_wraps_and_with_cursor_copies(self):
        pool = CredentialPool.from_keys("a", ["b"], strategy="round-robin", cursor=-3)

        assert pool.cursor == 0
        assert pool.at(3).value == "b"
        assert pool.with_cursor(1).cursor == 1
        assert pool.cursor == 0
