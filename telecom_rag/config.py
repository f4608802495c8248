from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Settings for telecom-rag.

    All settings can be configured via environment variables or .env file.
    """

    # Read from .env and ignore unknown vars
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # LLM / embedding provider (OpenAI-compatible API)
    openai_api_key: str = Field(alias="OPENAI_API_KEY")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        alias="OPENAI_BASE_URL",
        description="Base URL of the OpenAI-compatible provider",
    )
    openai_embedding_model: str = Field(
        default="text-embedding-3-small",
        alias="OPENAI_EMBEDDING_MODEL",
    )
    openai_embedding_fallback_model: str = Field(
        default="text-embedding-ada-002",
        alias="OPENAI_EMBEDDING_FALLBACK_MODEL",
        description="Used once per call when the primary embedding model is not found",
    )
    openai_chat_model: str = Field(
        default="gpt-4o-mini",
        alias="OPENAI_CHAT_MODEL",
    )
    refiner_model: str | None = Field(
        default=None,
        alias="REFINER_MODEL",
        description="Model for the ghost prompt (defaults to OPENAI_CHAT_MODEL)",
    )
    chat_temperature: float = Field(default=0.2, alias="CHAT_TEMPERATURE")
    refiner_temperature: float = Field(default=0.1, alias="REFINER_TEMPERATURE")
    llm_timeout_seconds: float = Field(
        default=120.0,
        alias="LLM_TIMEOUT_SECONDS",
        description="HTTP timeout for the streaming chat connection",
    )
    embedding_batch_size: int = Field(default=100, alias="EMBEDDING_BATCH_SIZE")

    # Qdrant settings
    qdrant_url: str = Field(
        default="http://localhost:6333",
        alias="QDRANT_URL",
    )
    qdrant_api_key: str | None = Field(
        default=None,
        alias="QDRANT_API_KEY",
    )
    qdrant_collection: str = Field(
        default="telecom_documents",
        alias="QDRANT_COLLECTION",
    )

    # Ingestion settings (line-based chunker)
    chunk_size: int = Field(default=500, alias="CHUNK_SIZE")
    chunk_overlap: int = Field(default=50, alias="CHUNK_OVERLAP")

    # Retrieval and reranking settings
    initial_retrieval_count: int = Field(
        default=20,
        alias="INITIAL_RETRIEVAL_COUNT",
        description="Number of candidates over-fetched from vector search",
    )
    semantic_weight: float = Field(default=0.6, alias="SEMANTIC_WEIGHT")
    keyword_weight: float = Field(default=0.4, alias="KEYWORD_WEIGHT")
    rerank_base_threshold: float = Field(
        default=0.27,
        alias="RERANK_BASE_THRESHOLD",
        description="Fixed score floor used when the top score is weak",
    )
    rerank_threshold_ratio: float = Field(
        default=0.9,
        alias="RERANK_THRESHOLD_RATIO",
        description="Fraction of the top score required when the top score is strong",
    )
    rerank_min_results: int = Field(default=2, alias="RERANK_MIN_RESULTS")
    rerank_max_results: int = Field(default=5, alias="RERANK_MAX_RESULTS")
    keyword_boost_enabled: bool = Field(
        default=False,
        alias="KEYWORD_BOOST_ENABLED",
        description="Multiply hybrid scores by a priority-keyword boost (max 1.5x)",
    )
    search_relevance_threshold: float = Field(
        default=0.40,
        alias="SEARCH_RELEVANCE_THRESHOLD",
        description="Minimum vector score for hits returned by /api/search",
    )

    # Similarity cache
    cache_similarity_threshold: float = Field(default=0.95, alias="CACHE_SIMILARITY_THRESHOLD")
    cache_capacity: int = Field(
        default=1000,
        alias="CACHE_CAPACITY",
        description="Maximum cached queries before least-recently-used eviction",
    )
    cache_warm_delay_seconds: float = Field(default=0.1, alias="CACHE_WARM_DELAY_SECONDS")
    cache_questions_path: str = Field(
        default="data/common_questions.json",
        alias="CACHE_QUESTIONS_PATH",
    )

    # Query log ring buffer
    query_log_capacity: int = Field(default=100, alias="QUERY_LOG_CAPACITY")

    # Answer assembly budgets
    source_preview_chars: int = Field(
        default=240,
        alias="SOURCE_PREVIEW_CHARS",
        description="Characters of chunk text shown per source in the response",
    )
    context_token_budget: int = Field(
        default=3500,
        alias="CONTEXT_TOKEN_BUDGET",
        description="Estimated tokens (chars/4) of context sent to the model",
    )

    # API Security
    api_key: str | None = Field(
        default=None,
        alias="API_KEY",
        description="API key for operator endpoints (cache warm/clear)",
    )
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:8000"],
        alias="CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins",
    )
    rate_limit_ask: str = Field(
        default="30/minute",
        alias="RATE_LIMIT_ASK",
        description="Rate limit for chat endpoints (e.g., 30/minute)",
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Error reporting
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")
    sentry_environment: str = Field(default="dev", alias="SENTRY_ENVIRONMENT")
    sentry_traces_sample_rate: float = Field(default=0.0, alias="SENTRY_TRACES_SAMPLE_RATE")

    # ---- Compatibility properties ----

    @property
    def embedding_model(self) -> str:
        return self.openai_embedding_model

    @property
    def chat_model(self) -> str:
        return self.openai_chat_model

    @property
    def ghost_prompt_model(self) -> str:
        return self.refiner_model or self.openai_chat_model


settings = Settings()
