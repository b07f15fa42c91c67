"""
Name: Summarize Group Use Case

Responsibilities:
  - Summarize a contiguous group of already-enhanced chunks (long or short)
  - Combine partial summaries into a single final summary
  - Dispatch with credential rotation (same pool semantics as enhancement)

Collaborators:
  - infrastructure.cache.ChunkCache: source of enhanced chunks
  - application.dispatch.RotatingDispatcher: provider calls with rotation
  - application.prompt_builder.PromptBuilder: summary / combine instructions

Constraints:
  - Never re-splits or re-enhances: only cached chunks are summarized
  - Output caps: 2048 tokens (long) / 512 tokens (short), temperature 0.5
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final, Optional, Sequence

from ..crosscutting.exceptions import ChunkNotFoundError
from ..crosscutting.logger import logger
from ..domain.credentials import CredentialPool
from ..domain.services import EnhancementRequest
from ..infrastructure.cache.chunk_cache import ChunkCache
from .dispatch import RotatingDispatcher, RotationState
from .prompt_builder import PromptBuilder

SUMMARY_TEMPERATURE: Final[float] = 0.5
LONG_SUMMARY_MAX_TOKENS: Final[int] = 2048
SHORT_SUMMARY_MAX_TOKENS: Final[int] = 512


@dataclass
class SummarizeGroupInput:
    """
    R: Input data for SummarizeGroup use case.

    Attributes:
        identity: content identity of the chapter
        chunk_indices: indices of the group (see summary_grouping.groups_for)
        pool: credentials for this call (returned with the updated cursor)
        short: short summary instead of a detailed one
        part / total: position of the group when the chapter has several
    """

    identity: str
    chunk_indices: Sequence[int]
    pool: CredentialPool
    title: str = ""
    short: bool = False
    part: Optional[int] = None
    total: Optional[int] = None
    permanent_prompt: str = ""


@dataclass(frozen=True)
class SummaryResult:
    summary: str
    chunk_indices: tuple[int, ...]
    model_name: str
    pool: CredentialPool = field(repr=False)


class SummarizeGroupUseCase:
    """R: Summarize cached chunks of one group."""

    def __init__(
        self,
        cache: ChunkCache,
        dispatcher: RotatingDispatcher,
        prompts: PromptBuilder,
    ):
        self.cache = cache
        self.dispatcher = dispatcher
        self.prompts = prompts

    def execute(self, input_data: SummarizeGroupInput) -> SummaryResult:
        """
        Raises:
            ChunkNotFoundError: none of the group's chunks are cached
            EnhancementAPIError / AllCredentialsExhausted: provider failures
        """
        wanted = set(input_data.chunk_indices)
        chunks = [
            c
            for c in self.cache.get_all(input_data.identity)
            if c.index in wanted and c.enhanced_text
        ]
        if not chunks:
            raise ChunkNotFoundError("No enhanced chunks cached for this group")

        content = "\n\n".join(c.enhanced_text or "" for c in chunks)
        request = EnhancementRequest(
            prompt=self.prompts.summary_message(content),
            system_instruction=self.prompts.summary_instructions(
                title=input_data.title,
                short=input_data.short,
                part=input_data.part,
                total=input_data.total,
                permanent_prompt=input_data.permanent_prompt,
            ),
            temperature=SUMMARY_TEMPERATURE,
            max_output_tokens=(
                SHORT_SUMMARY_MAX_TOKENS if input_data.short else LONG_SUMMARY_MAX_TOKENS
            ),
            check_retention=False,
        )

        rotation = RotationState(input_data.pool)
        result = self.dispatcher.dispatch(request, rotation)

        logger.info(
            "Group summarized",
            extra={
                "chunks": len(chunks),
                "short": input_data.short,
                "missing": len(wanted) - len(chunks),
            },
        )
        return SummaryResult(
            summary=result.response.text.strip(),
            chunk_indices=tuple(c.index for c in chunks),
            model_name=result.response.model_name,
            pool=rotation.finish(),
        )


def combine_summaries(
    dispatcher: RotatingDispatcher,
    prompts: PromptBuilder,
    summaries: Sequence[str],
    pool: CredentialPool,
    *,
    title: str = "",
    permanent_prompt: str = "",
) -> SummaryResult:
    """
    Une resúmenes parciales en uno solo.

    Un único resumen se devuelve tal cual (sin llamada al proveedor).
    """
    parts = [s.strip() for s in summaries if s and s.strip()]
    if not parts:
        raise ValueError("summaries must not be empty")
    if len(parts) == 1:
        return SummaryResult(
            summary=parts[0], chunk_indices=(), model_name="", pool=pool
        )

    request = EnhancementRequest(
        prompt=prompts.combine_message(parts),
        system_instruction=prompts.combine_instructions(
            title=title, permanent_prompt=permanent_prompt
        ),
        temperature=SUMMARY_TEMPERATURE,
        max_output_tokens=LONG_SUMMARY_MAX_TOKENS,
        check_retention=False,
    )
    rotation = RotationState(pool)
    result = dispatcher.dispatch(request, rotation)
    logger.info("Partial summaries combined", extra={"parts": len(parts)})
    return SummaryResult(
        summary=result.response.text.strip(),
        chunk_indices=(),
        model_name=result.response.model_name,
        pool=rotation.finish(),
    )
