"""
Name: Pytest Configuration and Shared Fixtures

Responsibilities:
  - Provide reusable test fixtures
  - Replace external dependencies (Redis, Gemini) with in-process doubles
  - Configure test environment

Collaborators:
  - pytest: Test framework
  - unittest.mock: Mocking library
  - enhancer.infrastructure: in-memory store + fake provider client

Notes:
  - Fixtures are auto-discovered by pytest
  - Environment is set BEFORE importing enhancer (settings are lru_cached)
"""

import os
import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("FAKE_LLM", "1")
os.environ.setdefault("CHUNK_CACHE_BACKEND", "memory")
os.environ.setdefault("CHUNK_DELAY_SECONDS", "0")
os.environ.setdefault("RETRY_BASE_DELAY_SECONDS", "0")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from enhancer.crosscutting import config as app_config  # noqa: E402

app_config.Settings.model_config["env_file"] = None

from enhancer.application.dispatch import RotatingDispatcher  # noqa: E402
from enhancer.application.pipeline import EnhancementPipeline  # noqa: E402
from enhancer.application.prompt_builder import PromptBuilder  # noqa: E402
from enhancer.domain.credentials import CredentialPool  # noqa: E402
from enhancer.infrastructure.cache import ChunkCache, InMemoryChunkStore  # noqa: E402
from enhancer.infrastructure.prompts import PromptLoader  # noqa: E402
from enhancer.infrastructure.services.llm import FakeEnhancementClient  # noqa: E402

IDENTITY = "ab" * 32


def pytest_configure(config) -> None:
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )


# ============================================================================
# Infrastructure doubles
# ============================================================================


@pytest.fixture
def identity() -> str:
    """R: A valid 64-hex content identity."""
    return IDENTITY


@pytest.fixture
def store() -> InMemoryChunkStore:
    return InMemoryChunkStore()


@pytest.fixture
def cache(store: InMemoryChunkStore) -> ChunkCache:
    return ChunkCache(store)


@pytest.fixture
def fake_client() -> FakeEnhancementClient:
    """
    R: Deterministic provider client.

    Script outcomes with `fake_client.queue(...)` or per-credential errors
    via `FakeEnhancementClient(per_credential={...})`.
    """
    return FakeEnhancementClient()


@pytest.fixture
def sleeps() -> list:
    """R: Records every sleep request instead of waiting."""
    return []


@pytest.fixture
def dispatcher(fake_client: FakeEnhancementClient, sleeps: list) -> RotatingDispatcher:
    return RotatingDispatcher(
        fake_client,
        max_attempts=3,
        base_delay=0.0,
        max_delay=1.0,
        sleep=sleeps.append,
    )


@pytest.fixture
def prompt_builder() -> PromptBuilder:
    return PromptBuilder(PromptLoader())


@pytest.fixture
def pipeline(
    cache: ChunkCache,
    dispatcher: RotatingDispatcher,
    prompt_builder: PromptBuilder,
    sleeps: list,
) -> EnhancementPipeline:
    return EnhancementPipeline(
        cache,
        dispatcher,
        prompt_builder,
        chunk_size_words=100,
        history_messages=4,
        chunk_delay_seconds=1.0,
        sleep=sleeps.append,
    )


@pytest.fixture
def make_pool():
    """R: Factory for credential pools with N keys."""

    def _make(n: int = 1, strategy: str = "failover", cursor: int = 0) -> CredentialPool:
        keys = [f"key-{i}" for i in range(n)]
        return CredentialPool.from_keys(
            keys[0] if keys else None, keys[1:], strategy=strategy, cursor=cursor
        )

    return _make
