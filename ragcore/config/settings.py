"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ─────────────────────────────────────────────────
#
# pydantic-settings reads configuration from two sources (priority order):
#
#   1. **Environment variables** -- e.g. OPENAI_API_KEY=sk-abc123
#   2. **.env file** -- key=value lines in the project root .env file
#
# Field ``max_tokens`` maps to env var ``MAX_TOKENS`` automatically.
#
# Tunables (chunking, embedding, retrieval options) default to ``None``,
# meaning "not set here": :func:`ragcore.config.loader.load_config` only
# lays values that are set over ``config/config.yaml``, so the YAML file
# keeps the defaults and the environment overrides individual keys.
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """ragcore settings.

    Environment variables override defaults.  Loaded from .env when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Embedding providers ===
    # Empty key = "not configured"; main.py then falls back to fastembed.
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible APIs (TogetherAI, etc.)
    openai_embedding_model: str = ""  # Override embedding model
    embedding_provider: str = ""  # "openai" | "fastembed"; empty = pick by available keys
    fastembed_model: str = ""

    # === Storage ===
    vector_store: str = ""  # "chromadb" | "memory"
    chromadb_persist_dir: str = ""
    chromadb_collection_prefix: str = ""
    cache_db_path: str = ""
    registry_db_path: str = ""
    documents_dir: str = ""

    # === Chunking ===
    chunk_strategy: str | None = None
    max_tokens: int | None = None
    min_tokens: int | None = None
    overlap_tokens: int | None = None
    similarity_threshold: float | None = None

    # === Embedding ===
    embedding_types: list[str] | None = None
    embedding_batch_size: int | None = None
    requests_per_second: float | None = None
    cache_ttl_seconds: int | None = None
    cache_max_entries: int | None = None

    # === Retrieval ===
    max_retrieved_chunks: int | None = None
    retrieval_strategy: str | None = None
    expansion_max_count: int | None = None
    dedup_threshold: float | None = None

    # === Ingestion ===
    max_workers: int | None = None
    quality_gate_min_score: float | None = None

    # === App Config ===
    app_env: str = "development"
    log_level: str = "INFO"

    def get_available_embedding_providers(self) -> list[str]:
        """Return embedding provider names usable with the current settings."""
        providers: list[str] = []
        if self.openai_api_key:
            providers.append("openai")
        providers.append("fastembed")
        return providers
