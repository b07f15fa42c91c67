"""
Name: API Schemas (request/response models)

Responsibilities:
  - Validate request bodies (Pydantic v2)
  - Serialize cached chunks, summary groups and summaries

Notes:
  - The identity is either provided (64-hex SHA-256) or derived from source_url
  - Chunk size below the floor is clamped by the splitter, not rejected here
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from ...domain.entities import Chunk


class EnhanceReq(BaseModel):
    text: str = Field(..., description="Chapter content (plain text or HTML)")
    source_url: Optional[str] = Field(
        None, description="Page URL; the content identity is derived from it"
    )
    content_identity: Optional[str] = Field(
        None, description="Explicit identity (SHA-256 hex), wins over source_url"
    )
    title: str = Field("", max_length=500)
    site_prompt: str = ""
    permanent_prompt: Optional[str] = None
    use_emoji: Optional[bool] = None
    chunk_size_words: Optional[int] = Field(None, ge=1)

    @model_validator(mode="after")
    def identity_source_present(self):
        if not (self.content_identity or (self.source_url or "").strip()):
            raise ValueError("source_url or content_identity is required")
        return self


class ReprocessReq(BaseModel):
    original_text: Optional[str] = None
    title: str = Field("", max_length=500)
    site_prompt: str = ""
    permanent_prompt: Optional[str] = None
    use_emoji: Optional[bool] = None


class SummarizeReq(BaseModel):
    title: str = Field("", max_length=500)
    short: bool = False
    group_size: Optional[int] = Field(None, ge=1)
    start_index: Optional[int] = Field(
        None, ge=0, description="Summarize only the group starting at this index"
    )


class ModelInfoRes(BaseModel):
    name: str
    provider: str


class ChunkRes(BaseModel):
    index: int
    original_text: str
    word_count: int
    enhanced_text: str | None
    status: str
    model_info: ModelInfoRes | None
    cached_at: datetime | None

    @classmethod
    def from_chunk(cls, chunk: Chunk) -> "ChunkRes":
        return cls(
            index=chunk.index,
            original_text=chunk.original_text,
            word_count=chunk.word_count,
            enhanced_text=chunk.enhanced_text,
            status=chunk.status.value,
            model_info=(
                ModelInfoRes(**chunk.model_info.to_dict()) if chunk.model_info else None
            ),
            cached_at=chunk.cached_at,
        )


class CacheStatusRes(BaseModel):
    content_identity: str
    has_chunks: bool
    chunk_count: int
    total_chunks: int | None
    state: str
    chunks: list[ChunkRes]


class ReprocessRes(BaseModel):
    chunk: ChunkRes


class SummaryGroupRes(BaseModel):
    start_index: int
    end_index: int
    chunk_indices: list[int]


class SummaryGroupsRes(BaseModel):
    total_chunks: int
    group_size: int
    groups: list[SummaryGroupRes]


class SummaryRes(BaseModel):
    summary: str
    partial_summaries: list[str]
    groups: int


class DeleteRes(BaseModel):
    deleted: bool
