"""
Name: Dependency Injection Container

Responsibilities:
  - Wire up dependencies for the application
  - Provide factory functions for the pipeline and use cases
  - Manage singleton instances of the chunk store, cache and provider client
  - Enable dependency injection in FastAPI endpoints

Collaborators:
  - infrastructure.cache: create_chunk_store, ChunkCache
  - infrastructure.services.llm: GeminiEnhancementClient, FakeEnhancementClient
  - application: RotatingDispatcher, EnhancementPipeline, SummarizeGroupUseCase

Constraints:
  - Manual DI (no library like dependency-injector)
  - Singletons via functools.lru_cache
  - Environment-based configuration

Notes:
  - This is the composition root (where dependencies are wired)
  - Tests reset singletons with `get_xxx.cache_clear()`
"""

from functools import lru_cache

from .application.dispatch import RotatingDispatcher
from .application.pipeline import EnhancementPipeline
from .application.prompt_builder import PromptBuilder
from .application.summaries import SummarizeGroupUseCase
from .crosscutting.config import get_settings
from .domain.cache import ChunkStorePort
from .domain.credentials import CredentialPool
from .domain.services import EnhancementClient
from .infrastructure.cache import ChunkCache, create_chunk_store
from .infrastructure.prompts import get_prompt_loader
from .infrastructure.services.llm import (
    FakeEnhancementClient,
    GeminiEnhancementClient,
)


@lru_cache
def get_chunk_store() -> ChunkStorePort:
    """R: Store backend (Redis si está disponible, si no memoria)."""
    settings = get_settings()
    return create_chunk_store(
        settings.chunk_cache_backend,
        redis_url=settings.redis_url,
        namespace=settings.cache_namespace,
    )


@lru_cache
def get_chunk_cache() -> ChunkCache:
    return ChunkCache(get_chunk_store())


@lru_cache
def get_enhancement_client() -> EnhancementClient:
    """
    R: Get singleton instance of the provider client.

    Returns:
        Gemini or Fake implementation of EnhancementClient
    """
    settings = get_settings()
    if settings.fake_llm:
        return FakeEnhancementClient()
    return GeminiEnhancementClient(
        model_id=settings.model_id,
        temperature=settings.temperature,
        top_p=settings.top_p,
        top_k=settings.top_k,
        max_output_tokens=settings.max_output_tokens,
    )


@lru_cache
def get_dispatcher() -> RotatingDispatcher:
    settings = get_settings()
    return RotatingDispatcher(
        get_enhancement_client(),
        min_retention_ratio=settings.min_retention_ratio,
        min_retention_words=settings.min_retention_words,
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay_seconds,
        max_delay=settings.retry_max_delay_seconds,
    )


@lru_cache
def get_prompt_builder() -> PromptBuilder:
    return PromptBuilder(get_prompt_loader())


@lru_cache
def get_enhancement_pipeline() -> EnhancementPipeline:
    """R: Get singleton pipeline (keeps per-identity run locks and states)."""
    settings = get_settings()
    return EnhancementPipeline(
        get_chunk_cache(),
        get_dispatcher(),
        get_prompt_builder(),
        chunk_size_words=settings.chunk_size_words,
        history_messages=settings.history_messages,
        chunk_delay_seconds=settings.chunk_delay_seconds,
    )


def get_summarize_group_use_case() -> SummarizeGroupUseCase:
    return SummarizeGroupUseCase(
        get_chunk_cache(), get_dispatcher(), get_prompt_builder()
    )


def get_credential_pool() -> CredentialPool:
    """
    R: Pool armado desde settings + cursor persistido.

    El cursor solo se usa en round-robin; failover siempre arranca en 0.
    """
    settings = get_settings()
    keys = settings.get_api_keys()
    if not keys and settings.fake_llm:
        keys = ["fake-key"]
    return CredentialPool.from_keys(
        keys[0] if keys else None,
        keys[1:],
        strategy=settings.api_key_rotation,
        cursor=get_chunk_cache().load_rotation_cursor(),
    )
