"""
Name: Enhancement API Controllers

Responsibilities:
  - Expose HTTP endpoints for chapter enhancement, cache inspection and summaries
  - Delegate business logic to the pipeline / use cases
  - Validate requests and serialize responses using Pydantic models
  - Persist the round-robin cursor returned by every run
  - Stream pipeline events via Server-Sent Events

Collaborators:
  - application.pipeline: EnhancementPipeline
  - application.summaries: SummarizeGroupUseCase, combine_summaries
  - application.summary_grouping: groups_for
  - container: Dependency providers
  - streaming: SSE handler

Constraints:
  - Endpoints are sync (def): FastAPI runs them in the threadpool
  - The first pipeline event is pulled before streaming so a concurrent run
    answers 409 instead of an empty stream
"""

from __future__ import annotations

from itertools import chain

from fastapi import APIRouter, Query

from ...application.content_identity import content_identity, is_valid_identity
from ...application.pipeline import EnhancementOptions, PipelineEvent
from ...application.summaries import (
    SummarizeGroupInput,
    combine_summaries,
)
from ...application.summary_grouping import groups_for
from ...container import (
    get_chunk_cache,
    get_credential_pool,
    get_dispatcher,
    get_enhancement_pipeline,
    get_prompt_builder,
    get_summarize_group_use_case,
)
from ...crosscutting.config import get_settings
from ...crosscutting.exceptions import CacheIOError, ChunkNotFoundError
from ...crosscutting.logger import logger
from ...domain.credentials import CredentialPool, RotationStrategy
from ...infrastructure.text.splitter import validate_chunk_size
from .errors import not_found, validation_error
from .schemas import (
    CacheStatusRes,
    ChunkRes,
    DeleteRes,
    EnhanceReq,
    ReprocessReq,
    ReprocessRes,
    SummarizeReq,
    SummaryGroupRes,
    SummaryGroupsRes,
    SummaryRes,
)
from .streaming import stream_events

# R: Create API router for enhancement endpoints
router = APIRouter(tags=["enhancements"])


def _resolve_identity(identity: str | None, source_url: str | None) -> str:
    if identity:
        value = identity.strip().lower()
        if not is_valid_identity(value):
            raise validation_error("content_identity must be a SHA-256 hex digest")
        return value
    try:
        return content_identity(source_url or "")
    except ValueError as exc:
        raise validation_error(str(exc)) from exc


def _persist_cursor(pool: CredentialPool) -> None:
    """R: Only round-robin cares about the cursor between runs."""
    if pool.strategy is not RotationStrategy.ROUND_ROBIN:
        return
    try:
        get_chunk_cache().save_rotation_cursor(pool.cursor)
    except CacheIOError as exc:
        logger.warning("Rotation cursor not persisted", extra={"error": exc.message})


def _options(
    pool: CredentialPool,
    *,
    title: str,
    site_prompt: str,
    permanent_prompt: str | None,
    use_emoji: bool | None,
    chunk_size_words: int | None = None,
) -> EnhancementOptions:
    settings = get_settings()
    return EnhancementOptions(
        pool=pool,
        title=title,
        site_prompt=site_prompt,
        permanent_prompt=(
            permanent_prompt if permanent_prompt is not None else settings.permanent_prompt
        ),
        use_emoji=use_emoji if use_emoji is not None else settings.use_emoji,
        chunk_size_words=(
            validate_chunk_size(chunk_size_words) if chunk_size_words else None
        ),
    )


@router.post("/enhancements")
def enhance(req: EnhanceReq):
    """
    R: Run the pipeline for a chapter and stream its events (SSE).

    Raises:
        409: a run for the same identity is already in progress
        422: invalid identity / source_url
    """
    identity = _resolve_identity(req.content_identity, req.source_url)
    options = _options(
        get_credential_pool(),
        title=req.title,
        site_prompt=req.site_prompt,
        permanent_prompt=req.permanent_prompt,
        use_emoji=req.use_emoji,
        chunk_size_words=req.chunk_size_words,
    )

    events = get_enhancement_pipeline().process(identity, req.text, options)
    first = next(events)

    def _on_terminal(event: PipelineEvent) -> None:
        _persist_cursor(event.pool)

    response = stream_events(chain([first], events), on_terminal=_on_terminal)
    response.headers["X-Content-Identity"] = identity
    return response


@router.post(
    "/enhancements/{identity}/chunks/{index}/reprocess", response_model=ReprocessRes
)
def reprocess_chunk(identity: str, index: int, req: ReprocessReq | None = None):
    """R: Resend one chunk and overwrite its cache entry (siblings untouched)."""
    identity = _resolve_identity(identity, None)
    req = req or ReprocessReq()
    options = _options(
        get_credential_pool(),
        title=req.title,
        site_prompt=req.site_prompt,
        permanent_prompt=req.permanent_prompt,
        use_emoji=req.use_emoji,
    )
    outcome = get_enhancement_pipeline().reprocess_chunk(
        identity, index, options, original_text=req.original_text
    )
    _persist_cursor(outcome.pool)
    return ReprocessRes(chunk=ChunkRes.from_chunk(outcome.chunk))


@router.get("/enhancements/{identity}/cache", response_model=CacheStatusRes)
def get_cache_status(identity: str):
    """R: Resume vs. start fresh: what is cached for this identity."""
    identity = _resolve_identity(identity, None)
    cache = get_chunk_cache()
    meta = cache.metadata(identity)
    return CacheStatusRes(
        content_identity=identity,
        has_chunks=cache.has_chunks(identity),
        chunk_count=cache.chunk_count(identity),
        total_chunks=meta.total_chunks if meta else None,
        state=get_enhancement_pipeline().state(identity).value,
        chunks=[ChunkRes.from_chunk(c) for c in cache.get_all(identity)],
    )


@router.delete("/enhancements/{identity}/cache", response_model=DeleteRes)
def delete_cache(identity: str):
    identity = _resolve_identity(identity, None)
    get_chunk_cache().delete_all(identity)
    return DeleteRes(deleted=True)


@router.delete(
    "/enhancements/{identity}/cache/chunks/{index}", response_model=DeleteRes
)
def delete_cached_chunk(identity: str, index: int):
    identity = _resolve_identity(identity, None)
    cache = get_chunk_cache()
    meta = cache.metadata(identity)
    if meta is None or index not in meta.indices:
        raise not_found("Chunk", str(index))
    cache.delete(identity, index)
    return DeleteRes(deleted=True)


@router.get("/enhancements/{identity}/summary-groups", response_model=SummaryGroupsRes)
def get_summary_groups(identity: str, group_size: int | None = Query(None, ge=1)):
    identity = _resolve_identity(identity, None)
    meta = get_chunk_cache().metadata(identity)
    if meta is None or meta.total_chunks is None:
        raise not_found("Chunk set", identity)

    size = group_size or get_settings().chunk_summary_count
    groups = groups_for(meta.total_chunks, size)
    return SummaryGroupsRes(
        total_chunks=meta.total_chunks,
        group_size=size,
        groups=[SummaryGroupRes(**g.to_dict()) for g in groups],
    )


@router.post("/enhancements/{identity}/summaries", response_model=SummaryRes)
def summarize(identity: str, req: SummarizeReq | None = None):
    """
    R: Summarize cached chunks group by group, then combine the partials.

    With start_index only that group is summarized (no combine step).
    """
    identity = _resolve_identity(identity, None)
    req = req or SummarizeReq()
    settings = get_settings()

    meta = get_chunk_cache().metadata(identity)
    if meta is None or not meta.indices:
        raise not_found("Chunk set", identity)

    total_chunks = meta.total_chunks or (max(meta.indices) + 1)
    groups = groups_for(total_chunks, req.group_size or settings.chunk_summary_count)
    if req.start_index is not None:
        groups = [g for g in groups if g.start_index == req.start_index]
        if not groups:
            raise not_found("Summary group", str(req.start_index))

    use_case = get_summarize_group_use_case()
    pool = get_credential_pool()
    partials: list[str] = []
    for part, group in enumerate(groups, 1):
        try:
            result = use_case.execute(
                SummarizeGroupInput(
                    identity=identity,
                    chunk_indices=group.chunk_indices,
                    pool=pool,
                    title=req.title,
                    short=req.short,
                    part=part,
                    total=len(groups),
                    permanent_prompt=settings.permanent_prompt,
                )
            )
        except ChunkNotFoundError:
            logger.info("Summary group skipped: nothing cached", extra={"part": part})
            continue
        pool = result.pool
        partials.append(result.summary)

    if not partials:
        raise not_found("Enhanced chunks", identity)

    combined = combine_summaries(
        get_dispatcher(),
        get_prompt_builder(),
        partials,
        pool,
        title=req.title,
        permanent_prompt=settings.permanent_prompt,
    )
    _persist_cursor(combined.pool)
    return SummaryRes(
        summary=combined.summary, partial_summaries=partials, groups=len(groups)
    )
