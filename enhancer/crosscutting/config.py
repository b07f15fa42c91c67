"""
Name: Application Configuration (Settings)

Responsibilities:
  - Centralized, typed configuration using pydantic-settings
  - Validate environment variables at startup
  - Provide defaults that match the chunking/enhancement behavior

Collaborators:
  - container.py: reads settings to build cache, dispatcher and pipeline
  - infrastructure/services/retry.py: retry attempts/delays
  - interfaces/api/main.py: CORS and startup validation

Constraints:
  - No business logic — pure configuration

Notes:
  - Singleton via lru_cache
  - Minimums (chunk size, group size) are enforced here and again in the
    splitter/grouping helpers, so direct callers get the same floors
"""

from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_CHUNK_WORDS = 100
DEFAULT_CHUNK_SIZE_WORDS = 3200
DEFAULT_CHUNK_SUMMARY_COUNT = 2

_ROTATION_STRATEGIES = {"failover", "round-robin"}
_CACHE_BACKENDS = {"auto", "memory", "redis"}


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        google_api_key: Primary Gemini API key
        backup_api_keys: Comma-separated backup keys (tried in order)
        api_key_rotation: failover | round-robin
        model_id: Gemini model used for enhancement and summaries
        chunk_size_words: Target words per chunk (min 100, default 3200)
        chunk_summary_count: Chunks per summary group (min 1, default 2)
        chunk_delay_seconds: Pause between consecutive API calls
        history_messages: Conversation turns carried between chunks
        min_retention_ratio: Minimum output/input word ratio accepted
        min_retention_words: Inputs shorter than this skip the ratio guard
        chunk_cache_backend: auto | memory | redis
        redis_url: Redis connection string (optional)
        cache_namespace: Key prefix for the chunk store
        fake_llm: Use the deterministic fake client (tests/CI)
    """

    # CORS configuration
    allowed_origins: str = "http://localhost:3000"

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Provider credentials
    google_api_key: str = ""
    backup_api_keys: str = ""
    api_key_rotation: str = "failover"

    # Model / generation
    model_id: str = "gemini-2.5-flash"
    temperature: float = 0.7
    top_p: float = 0.95
    top_k: int = 40
    max_output_tokens: int = 8192

    # Chunking
    chunk_size_words: int = DEFAULT_CHUNK_SIZE_WORDS
    chunk_summary_count: int = DEFAULT_CHUNK_SUMMARY_COUNT
    chunk_delay_seconds: float = 1.0
    history_messages: int = 4

    # Output guard
    min_retention_ratio: float = 0.7
    min_retention_words: int = 200

    # Prompts
    prompt_version: str = "v1"
    prompt_lang: str = "en"
    permanent_prompt: str = ""
    use_emoji: bool = False

    # Chunk cache
    chunk_cache_backend: str = "auto"
    redis_url: str = ""
    cache_namespace: str = "enhancer:"

    # Testing/CI
    fake_llm: bool = False

    # Retry/Resilience
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0

    @field_validator("chunk_size_words")
    @classmethod
    def chunk_size_has_floor(cls, v: int) -> int:
        if v < MIN_CHUNK_WORDS:
            raise ValueError(f"chunk_size_words must be >= {MIN_CHUNK_WORDS}")
        return v

    @field_validator("chunk_summary_count")
    @classmethod
    def chunk_summary_count_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("chunk_summary_count must be >= 1")
        return v

    @field_validator("api_key_rotation")
    @classmethod
    def api_key_rotation_valid(cls, v: str) -> str:
        strategy = (v or "failover").strip().lower()
        if strategy not in _ROTATION_STRATEGIES:
            raise ValueError("api_key_rotation must be failover or round-robin")
        return strategy

    @field_validator("chunk_cache_backend")
    @classmethod
    def chunk_cache_backend_valid(cls, v: str) -> str:
        backend = (v or "auto").strip().lower()
        if backend not in _CACHE_BACKENDS:
            raise ValueError("chunk_cache_backend must be auto, memory, or redis")
        return backend

    @field_validator("min_retention_ratio")
    @classmethod
    def min_retention_ratio_valid(cls, v: float) -> float:
        if v < 0 or v > 1:
            raise ValueError("min_retention_ratio must be between 0 and 1")
        return v

    @field_validator("chunk_delay_seconds", "retry_base_delay_seconds")
    @classmethod
    def delays_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("delays must be >= 0")
        return v

    @field_validator("retry_max_attempts")
    @classmethod
    def retry_attempts_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("retry_max_attempts must be > 0")
        return v

    @model_validator(mode="after")
    def validate_ai_requirements(self):
        if not self.fake_llm and not self.get_api_keys():
            raise ValueError("GOOGLE_API_KEY is required unless FAKE_LLM=1")
        return self

    def get_api_keys(self) -> list[str]:
        """Primary key first, then backups; blanks dropped."""
        keys = [self.google_api_key, *self.backup_api_keys.split(",")]
        return [k.strip() for k in keys if k and k.strip()]

    def get_allowed_origins_list(self) -> list[str]:
        """Parse comma-separated origins into a list."""
        return [
            origin.strip()
            for origin in self.allowed_origins.split(",")
            if origin.strip()
        ]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore unknown env vars
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get singleton Settings instance.

    Raises:
        ValidationError: If required env vars are missing or invalid
    """
    return Settings()
