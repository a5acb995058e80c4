# =============================================================================
# Application Configuration — Pydantic Settings
# =============================================================================
#
# All runtime knobs live here and are loaded from (highest priority first):
#   1. Environment variables (e.g., `CHUNK_SIZE=1024`)
#   2. Values from the .env file
#   3. Default values defined below
#
# USAGE:
#   from earnings_qa.config import settings
#   print(settings.chunk_size)
# =============================================================================

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Defaults target local development: in-process Chroma, Redis on
    localhost for Celery, and the Amazon investor-relations site as the
    report source.
    """

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    app_name: str = "Quarterly Earnings Q&A"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # Redis / Celery
    # -------------------------------------------------------------------------
    #   db 0 = Celery broker (task queue)
    #   db 1 = Celery result backend (ingestion job status)
    # -------------------------------------------------------------------------
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/1"

    # -------------------------------------------------------------------------
    # API Keys — External Services
    # -------------------------------------------------------------------------
    # No defaults: a missing key surfaces as a configuration error (503)
    # the first time a provider is constructed.
    # -------------------------------------------------------------------------
    anthropic_api_key: str = ""
    openai_api_key: str = ""

    # -------------------------------------------------------------------------
    # Embedding Configuration
    # -------------------------------------------------------------------------
    # embedding_provider:
    #   - "openai":  OpenAI-compatible embeddings API (OpenAI, DashScope, ...)
    #   - "hashing": deterministic offline embedder (dev / tests, no network)
    # -------------------------------------------------------------------------
    embedding_provider: str = "openai"
    embedding_model: str = "text-embedding-3-small"
    embedding_base_url: str | None = None
    embedding_dimensions: int = 1536
    embedding_batch_size: int = 100  # Texts per embeddings API call

    # -------------------------------------------------------------------------
    # LLM Configuration — Multi-Provider
    # -------------------------------------------------------------------------
    #   - "anthropic": Claude via native Anthropic SDK
    #   - "openai_compatible": any OpenAI-compatible chat completions API
    #
    # Example configs:
    #   OpenAI:      provider=openai_compatible, model=gpt-4o-mini
    #   DeepSeek V3: provider=openai_compatible, base_url=https://api.deepseek.com/v1, model=deepseek-chat
    #   Claude:      provider=anthropic, model=claude-sonnet-4-6
    # -------------------------------------------------------------------------
    llm_provider: str = "openai_compatible"  # "anthropic" or "openai_compatible"
    llm_base_url: str | None = None
    llm_api_key: str | None = None  # Overrides provider-specific key if set
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.7
    llm_max_tokens: int = 2048

    # -------------------------------------------------------------------------
    # Vector Store Configuration
    # -------------------------------------------------------------------------
    #   - "chroma": ChromaDB (HTTP client when CHROMA_URL is set, otherwise
    #     in-process; persisted to CHROMA_PERSIST_DIR when set)
    #   - "memory": process-local store, lost on restart
    # -------------------------------------------------------------------------
    vectorstore_type: str = "chroma"
    collection_name: str = "amazon"
    chroma_url: str | None = None
    chroma_persist_dir: str | None = None

    # -------------------------------------------------------------------------
    # Report Source
    # -------------------------------------------------------------------------
    # The URL template receives {year} and {quarter} ("First" ... "Fourth").
    # fetch_min_interval_seconds is the minimum spacing between two fetch
    # *starts* against the upstream site.
    # -------------------------------------------------------------------------
    source_url_template: str = (
        "https://ir.aboutamazon.com/news-release/news-release-details/"
        "{year}/Amazon.com-Announces-{quarter}-Quarter-Results/"
    )
    source_quarters: list[str] = ["First", "Second", "Third", "Fourth"]
    source_content_selector: str = ".q4default"
    fetch_timeout_seconds: float = 30.0
    fetch_min_interval_seconds: float = 0.25
    fetch_user_agent: str = "earnings-qa/0.1"

    # -------------------------------------------------------------------------
    # Chunking Configuration
    # -------------------------------------------------------------------------
    # Measured in cl100k_base tokens (tiktoken), the same tokenizer the
    # embedding model uses.
    # -------------------------------------------------------------------------
    chunk_size: int = 2000
    chunk_overlap: int = 200

    # -------------------------------------------------------------------------
    # Indexing Configuration
    # -------------------------------------------------------------------------
    # Passages are embedded and upserted in fixed-size batches with a pause
    # between batches to stay under embedding/storage rate limits.
    # -------------------------------------------------------------------------
    index_batch_size: int = 100
    index_batch_delay_seconds: float = 1.0

    # -------------------------------------------------------------------------
    # Retrieval & Reasoning
    # -------------------------------------------------------------------------
    # retrieval_top_k: passages handed to the reasoner per question.
    # reasoning_breadth: candidate thoughts produced by the generate stage.
    # -------------------------------------------------------------------------
    retrieval_top_k: int = 4
    reasoning_breadth: int = 3
    reasoning_evaluation_temperature: float = 0.0
    reasoning_max_tokens: int = 1024

    # -------------------------------------------------------------------------
    # Pydantic Settings Configuration
    # -------------------------------------------------------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Create and cache a Settings instance.

    In tests, override with FastAPI's dependency_overrides:
        app.dependency_overrides[get_settings] = lambda: Settings(debug=True)
    """
    return Settings()


settings = Settings()
