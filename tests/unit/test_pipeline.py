"""
Name: Enhancement Pipeline Tests

Responsibilities:
  - Event stream order: started, per-chunk result + progress, one terminal event
  - Cache reuse: full sets cost zero calls, holes are the only calls made
  - Failure isolation: a failed chunk never aborts its siblings
  - Store outages: enhanced chunks are still delivered, lost metadata is relisted
  - Run-level failures, cancellation and one-run-per-identity
  - Single-chunk reprocessing without re-splitting

Notes:
  - The pipeline fixture targets 100 words per chunk, so 150 words split
    into two balanced chunks of 75 and 250 words into 100/75/75.
"""

import json
import threading

import pytest

from enhancer.application import pipeline as pipeline_module
from enhancer.application.dispatch import RotatingDispatcher
from enhancer.application.pipeline import (
    Cancelled,
    ChunkFailed,
    ChunkReady,
    Completed,
    CompletedWithErrors,
    EnhancementOptions,
    EnhancementPipeline,
    PipelineState,
    RunFailed,
    RunStarted,
    clean_history,
)
from enhancer.crosscutting.exceptions import (
    AllCredentialsExhausted,
    ChunkNotFoundError,
    FatalAPIError,
    RateLimitedError,
    RunInProgressError,
)
from enhancer.domain.credentials import CredentialPool
from enhancer.domain.entities import Chunk, ChunkStatus
from enhancer.domain.services import ConversationTurn, TextChunk
from enhancer.infrastructure.cache import ChunkCache, InMemoryChunkStore
from enhancer.infrastructure.services.llm import FakeEnhancementClient
from enhancer.infrastructure.text.placeholders import placeholder

pytestmark = pytest.mark.unit


def _words(n: int, prefix: str = "w") -> str:
    return " ".join(f"{prefix}{i}" for i in range(n))


def _kinds(events) -> list[str]:
    return [e.kind for e in events]


class _FlakyMetadataStore(InMemoryChunkStore):
    """Metadata updates fail the first `failures` times; records always land."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures

    def update(self, key, fn):
        if key.startswith("chunkmeta:") and self.failures > 0:
            self.failures -= 1
            raise ConnectionError("store unavailable")
        return super().update(key, fn)


@pytest.fixture
def options(make_pool) -> EnhancementOptions:
    return EnhancementOptions(pool=make_pool(2))


class TestEventStream:
    def test_two_chunk_run_emits_ordered_events(self, pipeline, options, identity, fake_client):
        events = list(pipeline.process(identity, _words(150), options))

        assert _kinds(events) == [
            "started",
            "chunk_ready",
            "progress",
            "chunk_ready",
            "progress",
            "completed",
        ]
        assert isinstance(events[0], RunStarted)
        assert events[0].total_chunks == 2
        ready = [e for e in events if isinstance(e, ChunkReady)]
        assert [e.index for e in ready] == [0, 1]
        assert not any(e.from_cache for e in ready)
        assert fake_client.call_count == 2
        assert pipeline.state(identity) is PipelineState.DONE

    def test_progress_counts_up_to_total(self, pipeline, options, identity):
        events = list(pipeline.process(identity, _words(250), options))

        progress = [(e.processed, e.total) for e in events if e.kind == "progress"]
        assert progress == [(1, 3), (2, 3), (3, 3)]

    def test_delay_is_applied_between_provider_calls_only(
        self, pipeline, options, identity, sleeps
    ):
        list(pipeline.process(identity, _words(250), options))

        assert sleeps == [1.0, 1.0]

    def test_empty_text_completes_with_zero_chunks(self, pipeline, options, identity, fake_client):
        events = list(pipeline.process(identity, "   ", options))

        assert _kinds(events) == ["started", "completed"]
        assert events[-1].total_chunks == 0
        assert fake_client.call_count == 0

    def test_enhanced_chunks_are_cached_with_total(self, pipeline, options, identity, cache):
        list(pipeline.process(identity, _words(150), options))

        meta = cache.metadata(identity)
        assert meta.total_chunks == 2
        assert meta.is_complete
        assert cache.get(identity, 0).status is ChunkStatus.COMPLETED

    def test_terminal_event_never_serializes_credentials(
        self, pipeline, options, identity
    ):
        events = list(pipeline.process(identity, _words(150), options))

        payload = json.dumps([e.to_dict() for e in events])
        assert "key-0" not in payload
        assert "key-1" not in payload
        assert events[-1].to_dict()["cursor"] == 0


class TestCacheReuse:
    def test_fully_cached_set_makes_no_calls(self, pipeline, options, identity, fake_client):
        first = list(pipeline.process(identity, _words(150), options))
        second = list(pipeline.process(identity, _words(150), options))

        assert fake_client.call_count == 2
        ready = [e for e in second if isinstance(e, ChunkReady)]
        assert all(e.from_cache for e in ready)
        assert [e.chunk.enhanced_text for e in ready] == [
            e.chunk.enhanced_text for e in first if isinstance(e, ChunkReady)
        ]
        assert all(e.chunk.status is ChunkStatus.CACHED for e in ready)
        assert isinstance(second[-1], Completed)

    def test_only_missing_chunks_are_sent(self, pipeline, options, identity, cache, fake_client):
        list(pipeline.process(identity, _words(250), options))
        cache.delete(identity, 1)

        events = list(pipeline.process(identity, _words(250), options))

        assert fake_client.call_count == 4
        ready = {e.index: e.from_cache for e in events if isinstance(e, ChunkReady)}
        assert ready == {0: True, 1: False, 2: True}

    def test_mismatched_total_invalidates_cache(self, pipeline, options, identity, cache, fake_client):
        stale = Chunk(
            content_identity=identity,
            index=0,
            original_text="old",
            word_count=1,
            enhanced_text="stale",
            status=ChunkStatus.COMPLETED,
        )
        for index in range(5):
            cache.put(identity, index, stale, total_chunks=5)

        events = list(pipeline.process(identity, _words(150), options))

        assert fake_client.call_count == 2
        assert all(
            not e.from_cache for e in events if isinstance(e, ChunkReady)
        )
        assert cache.metadata(identity).total_chunks == 2
        assert cache.get(identity, 4) is None


@pytest.fixture
def pipeline_on(dispatcher, prompt_builder, sleeps):
    """R: Builds a pipeline over a specific store."""

    def _build(store) -> EnhancementPipeline:
        return EnhancementPipeline(
            ChunkCache(store),
            dispatcher,
            prompt_builder,
            chunk_size_words=100,
            chunk_delay_seconds=0.0,
            sleep=sleeps.append,
        )

    return _build


class TestCacheWriteFailures:
    def test_store_outage_still_delivers_enhanced_chunks(
        self, pipeline_on, options, identity, fake_client
    ):
        pipeline = pipeline_on(_FlakyMetadataStore(failures=100))

        events = list(pipeline.process(identity, _words(150), options))

        assert _kinds(events) == [
            "started",
            "chunk_ready",
            "progress",
            "chunk_ready",
            "progress",
            "completed",
        ]
        ready = [e for e in events if isinstance(e, ChunkReady)]
        assert all(not e.from_cache for e in ready)
        assert all(e.chunk.enhanced_text for e in ready)
        assert fake_client.call_count == 2

    def test_record_missing_from_metadata_is_relisted(
        self, pipeline_on, options, identity, fake_client
    ):
        store = _FlakyMetadataStore(failures=1)
        pipeline = pipeline_on(store)
        list(pipeline.process(identity, _words(150), options))
        assert pipeline.cache.metadata(identity).indices == frozenset({1})

        second = list(pipeline.process(identity, _words(150), options))

        assert fake_client.call_count == 2
        assert all(e.from_cache for e in second if isinstance(e, ChunkReady))
        meta = pipeline.cache.metadata(identity)
        assert meta.indices == frozenset({0, 1})
        assert meta.is_complete
        assert [c.index for c in pipeline.cache.get_all(identity)] == [0, 1]
        assert pipeline.cache.chunk_count(identity) == 2

    def test_relisted_set_is_served_whole_on_next_run(
        self, pipeline_on, options, identity, fake_client
    ):
        pipeline = pipeline_on(_FlakyMetadataStore(failures=1))
        list(pipeline.process(identity, _words(150), options))
        list(pipeline.process(identity, _words(150), options))

        third = list(pipeline.process(identity, _words(150), options))

        assert fake_client.call_count == 2
        assert isinstance(third[-1], Completed)

    def test_reprocess_returns_chunk_when_store_is_down(
        self, pipeline_on, options, identity, fake_client
    ):
        pipeline = pipeline_on(_FlakyMetadataStore(failures=100))
        fake_client.queue("rewritten")

        outcome = pipeline.reprocess_chunk(
            identity, 0, options, original_text="some chapter words"
        )

        assert outcome.chunk.enhanced_text == "rewritten"


class TestFailures:
    def test_failed_chunk_does_not_abort_siblings(self, pipeline, options, identity, cache, fake_client):
        fake_client.queue(FatalAPIError("blocked"))

        events = list(pipeline.process(identity, _words(150), options))

        failed = [e for e in events if isinstance(e, ChunkFailed)]
        assert [(e.index, e.error_code) for e in failed] == [(0, "FATAL_API_ERROR")]
        assert isinstance(events[-1], CompletedWithErrors)
        assert events[-1].failed_indices == (0,)
        assert cache.get(identity, 0) is None
        assert cache.get(identity, 1) is not None

    def test_rerun_after_failure_only_sends_failed_chunk(
        self, pipeline, options, identity, fake_client
    ):
        fake_client.queue(FatalAPIError("blocked"))
        list(pipeline.process(identity, _words(150), options))

        events = list(pipeline.process(identity, _words(150), options))

        assert fake_client.call_count == 3
        assert isinstance(events[-1], Completed)

    def test_all_credentials_exhausted_stops_the_run(
        self, pipeline, options, identity, fake_client
    ):
        fake_client.queue("first chunk", RateLimitedError("429"), RateLimitedError("429"))

        events = list(pipeline.process(identity, _words(250), options))

        terminal = events[-1]
        assert isinstance(terminal, RunFailed)
        assert terminal.error_code == "ALL_CREDENTIALS_EXHAUSTED"
        assert terminal.remaining_indices == (1, 2)
        assert fake_client.call_count == 3
        assert pipeline.state(identity) is PipelineState.FAILED

    def test_empty_pool_fails_the_run(self, pipeline, identity, fake_client):
        events = list(
            pipeline.process(identity, _words(150), EnhancementOptions(pool=CredentialPool()))
        )

        assert isinstance(events[-1], RunFailed)
        assert events[-1].error_code == "NO_CREDENTIALS"
        assert events[-1].remaining_indices == (0, 1)
        assert fake_client.call_count == 0


class TestCancellation:
    def test_cancel_event_stops_before_next_chunk(self, pipeline, make_pool, identity, fake_client):
        cancel = threading.Event()
        options = EnhancementOptions(pool=make_pool(1), cancel_event=cancel)
        events = pipeline.process(identity, _words(250), options)

        seen = []
        for event in events:
            seen.append(event)
            if isinstance(event, ChunkReady):
                cancel.set()

        assert isinstance(seen[-1], Cancelled)
        assert seen[-1].remaining_indices == (1, 2)
        assert fake_client.call_count == 1
        assert pipeline.state(identity) is PipelineState.CANCELLED

    def test_closing_the_stream_cancels_and_releases_the_run(
        self, pipeline, options, identity
    ):
        events = pipeline.process(identity, _words(250), options)
        next(events)
        next(events)

        events.close()

        assert pipeline.state(identity) is PipelineState.CANCELLED
        assert not pipeline.is_running(identity)

    def test_closing_after_terminal_event_keeps_done_state(
        self, pipeline, options, identity
    ):
        events = pipeline.process(identity, _words(90), options)
        for event in events:
            if isinstance(event, Completed):
                break

        events.close()

        assert pipeline.state(identity) is PipelineState.DONE


class TestConcurrency:
    def test_second_run_for_same_identity_is_rejected(self, pipeline, options, identity):
        first = pipeline.process(identity, _words(150), options)
        next(first)

        with pytest.raises(RunInProgressError):
            next(pipeline.process(identity, _words(150), options))

        assert pipeline.is_running(identity)
        first.close()
        assert list(pipeline.process(identity, _words(150), options))

    def test_distinct_identities_run_independently(self, pipeline, options, identity):
        first = pipeline.process(identity, _words(150), options)
        next(first)

        other = list(pipeline.process("cd" * 32, _words(150), options))

        assert isinstance(other[-1], Completed)
        first.close()

    def test_finished_run_states_are_bounded(
        self, pipeline, options, monkeypatch
    ):
        monkeypatch.setattr(pipeline_module, "MAX_TRACKED_STATES", 2)
        identities = [c * 64 for c in "abc"]

        for ident in identities:
            list(pipeline.process(ident, _words(90), options))

        assert pipeline.state(identities[0]) is PipelineState.IDLE
        assert pipeline.state(identities[1]) is PipelineState.DONE
        assert pipeline.state(identities[2]) is PipelineState.DONE
        assert not any(pipeline.is_running(i) for i in identities)


class TestProviderRequests:
    def test_history_carries_previous_chunks(self, pipeline, options, identity, fake_client):
        list(pipeline.process(identity, _words(250), options))

        histories = [call.request.history for call in fake_client.calls]
        assert [len(h) for h in histories] == [0, 2, 4]
        assert [t.role for t in histories[2]] == ["user", "model", "user", "model"]

    def test_instructions_include_part_note_and_options(
        self, pipeline, make_pool, identity, fake_client
    ):
        options = EnhancementOptions(
            pool=make_pool(1),
            title="Chapter 7",
            site_prompt="Cultivation novel",
            use_emoji=True,
        )

        list(pipeline.process(identity, _words(150), options))

        instruction = fake_client.calls[1].request.system_instruction
        assert "part 2 of 2 parts" in instruction
        assert "emojis" in instruction
        assert "Cultivation novel" in instruction
        assert instruction.endswith("### Title:\nChapter 7")

    def test_media_elements_never_reach_the_provider(
        self, pipeline, options, identity, fake_client
    ):
        text = f'{_words(20)} <img src="map.png"> {_words(20, "x")}'
        fake_client.queue(f"rewritten {placeholder(0)} end")

        events = list(pipeline.process(identity, text, options))

        assert "<img" not in fake_client.calls[0].request.prompt
        assert placeholder(0) in fake_client.calls[0].request.prompt
        ready = next(e for e in events if isinstance(e, ChunkReady))
        assert ready.chunk.enhanced_text == 'rewritten <img src="map.png"> end'

    def test_round_robin_cursor_is_returned(self, pipeline, make_pool, identity):
        options = EnhancementOptions(pool=make_pool(3, "round-robin", cursor=1))

        events = list(pipeline.process(identity, _words(150), options))

        assert events[-1].pool.cursor == 1


class TestReprocess:
    def test_reprocess_overwrites_only_that_chunk(
        self, pipeline, options, identity, cache, fake_client
    ):
        list(pipeline.process(identity, _words(150), options))
        before = cache.get(identity, 0).enhanced_text
        fake_client.queue("rewritten second chunk")

        outcome = pipeline.reprocess_chunk(identity, 1, options)

        assert outcome.chunk.enhanced_text == "rewritten second chunk"
        assert cache.get(identity, 1).enhanced_text == "rewritten second chunk"
        assert cache.get(identity, 0).enhanced_text == before
        assert cache.metadata(identity).total_chunks == 2
        assert fake_client.call_count == 3

    def test_reprocess_out_of_range_index(self, pipeline, options, identity):
        list(pipeline.process(identity, _words(150), options))

        with pytest.raises(ChunkNotFoundError):
            pipeline.reprocess_chunk(identity, 2, options)

    def test_reprocess_without_any_text_fails(self, pipeline, options, identity):
        with pytest.raises(ChunkNotFoundError):
            pipeline.reprocess_chunk(identity, 0, options)

    def test_reprocess_with_provided_text_on_empty_cache(
        self, pipeline, options, identity, cache
    ):
        outcome = pipeline.reprocess_chunk(
            identity, 3, options, original_text="fresh words here"
        )

        assert outcome.chunk.original_text == "fresh words here"
        assert cache.metadata(identity).total_chunks is None
        assert cache.metadata(identity).indices == frozenset({3})

    def test_reprocess_with_exhausted_credentials_names_the_chunk(
        self, pipeline, make_pool, identity, fake_client
    ):
        fake_client.queue(RateLimitedError("429", retry_after=20.0))

        with pytest.raises(AllCredentialsExhausted) as exc_info:
            pipeline.reprocess_chunk(
                identity, 4, EnhancementOptions(pool=make_pool(1)), original_text="text"
            )

        assert exc_info.value.remaining_indices == (4,)
        assert exc_info.value.retry_after == 20.0
        assert not pipeline.is_running(identity)

    def test_reprocess_is_rejected_during_a_run(self, pipeline, options, identity):
        run = pipeline.process(identity, _words(150), options)
        next(run)

        with pytest.raises(RunInProgressError):
            pipeline.reprocess_chunk(identity, 0, options, original_text="x")

        run.close()


class TestCleanHistory:
    def test_drops_empty_and_repeated_roles(self):
        turns = [
            ConversationTurn("user", "a"),
            ConversationTurn("user", "dup"),
            ConversationTurn("model", " "),
            ConversationTurn("model", "b"),
        ]

        assert clean_history(turns, 4) == (
            ConversationTurn("user", "a"),
            ConversationTurn("model", "b"),
        )

    def test_trailing_user_turn_is_removed(self):
        turns = [ConversationTurn("user", "a"), ConversationTurn("model", "b"), ConversationTurn("user", "c")]

        assert [t.text for t in clean_history(turns, 4)] == ["a", "b"]

    def test_window_starts_with_user(self):
        turns = [
            ConversationTurn("user", "a"),
            ConversationTurn("model", "b"),
            ConversationTurn("user", "c"),
            ConversationTurn("model", "d"),
        ]

        assert [t.text for t in clean_history(turns, 3)] == ["c", "d"]
        assert clean_history(turns, 0) == ()


def test_custom_splitter_factory_is_used(cache, prompt_builder, make_pool, identity):
    client = FakeEnhancementClient()
    dispatcher = RotatingDispatcher(client, max_attempts=1, base_delay=0.0, max_delay=1.0)
    targets = []

    class _OneChunk:
        def __init__(self, target):
            targets.append(target)

        def split(self, text):
            return [TextChunk(index=0, content=text, word_count=1)]

    pipeline = EnhancementPipeline(
        cache, dispatcher, prompt_builder, splitter_factory=_OneChunk, sleep=lambda _: None
    )

    events = list(
        pipeline.process(
            identity, "anything", EnhancementOptions(pool=make_pool(1), chunk_size_words=500)
        )
    )

    assert targets == [500]
    assert isinstance(events[-1], Completed)
