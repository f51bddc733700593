"""YAML configuration loader with environment variable overrides.

# ─── CONFIGURATION HIERARCHY ───────────────────────────────────────────
#
# Configuration is loaded in layers (later layers override earlier):
#
#   1. config/config.yaml  -- static defaults checked into the repo
#   2. .env file           -- local developer overrides (not committed)
#   3. Environment vars    -- set at deploy time
#
# load_config() reads the YAML file first, then deep-merges the values
# set through Settings on top.  The build_*_config() helpers turn the
# merged dict into the validated pydantic models the services take.
# ──────────────────────────────────────────────────────────────────────
"""

from pathlib import Path
from typing import Any

import pydantic
import yaml

from ragcore.config.settings import Settings
from ragcore.models.chunk import ChunkingConfig
from ragcore.models.embedding import EmbeddingConfig
from ragcore.models.quality import ValidationConfig
from ragcore.models.retrieval import RetrievalConfig
from ragcore.utils.errors import ConfigurationError

# Settings field -> (config section, key)
_ENV_KEY_MAP: dict[str, tuple[str, str]] = {
    "embedding_provider": ("embedding", "provider"),
    "openai_embedding_model": ("embedding", "openai_model"),
    "fastembed_model": ("embedding", "fastembed_model"),
    "vector_store": ("vector_store", "provider"),
    "chromadb_persist_dir": ("vector_store", "persist_dir"),
    "chromadb_collection_prefix": ("vector_store", "collection_prefix"),
    "cache_db_path": ("cache", "db_path"),
    "registry_db_path": ("registry", "db_path"),
    "documents_dir": ("ingestion", "documents_dir"),
    "chunk_strategy": ("chunking", "strategy"),
    "max_tokens": ("chunking", "max_tokens"),
    "min_tokens": ("chunking", "min_tokens"),
    "overlap_tokens": ("chunking", "overlap_tokens"),
    "similarity_threshold": ("chunking", "similarity_threshold"),
    "embedding_types": ("embedding", "embedding_types"),
    "embedding_batch_size": ("embedding", "batch_size"),
    "requests_per_second": ("embedding", "requests_per_second"),
    "cache_ttl_seconds": ("cache", "ttl_seconds"),
    "cache_max_entries": ("cache", "max_entries"),
    "max_retrieved_chunks": ("retrieval", "max_retrieved_chunks"),
    "retrieval_strategy": ("retrieval", "retrieval_strategy"),
    "expansion_max_count": ("retrieval", "expansion_max_count"),
    "dedup_threshold": ("retrieval", "dedup_threshold"),
    "max_workers": ("ingestion", "max_workers"),
    "quality_gate_min_score": ("validation", "quality_gate_min_score"),
}

# Keys under a section that are not fields of that section's model.
_NON_MODEL_KEYS: dict[str, set[str]] = {
    "embedding": {"provider", "openai_model", "fastembed_model"},
    "validation": {"quality_gate_min_score"},
}


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Args:
        path: Path to the YAML configuration file.
        settings: Settings to overlay; a fresh ``Settings()`` when omitted.

    Returns:
        Fully resolved configuration dictionary.
    """
    config_path = Path(path)
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    settings = settings or Settings()
    env_overrides: dict[str, Any] = {
        "app": {"env": settings.app_env},
        "logging": {"level": settings.log_level},
        "embedding": {
            "openai_api_key": settings.openai_api_key,
            "openai_base_url": settings.openai_base_url,
            "available_providers": settings.get_available_embedding_providers(),
        },
    }
    for field_name, (section, key) in _ENV_KEY_MAP.items():
        value = getattr(settings, field_name)
        if value is None or value == "":
            continue
        env_overrides.setdefault(section, {})[key] = value

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def _section(config: dict, name: str) -> dict:
    section = config.get(name) or {}
    skip = _NON_MODEL_KEYS.get(name, set())
    return {k: v for k, v in section.items() if k not in skip and v is not None}


def _build(model: type[pydantic.BaseModel], config: dict, name: str) -> Any:
    try:
        return model.model_validate(_section(config, name))
    except pydantic.ValidationError as exc:
        raise ConfigurationError(message=f"Invalid '{name}' configuration: {exc}") from exc


def build_chunking_config(config: dict) -> ChunkingConfig:
    return _build(ChunkingConfig, config, "chunking")


def build_embedding_config(config: dict) -> EmbeddingConfig:
    data = _section(config, "embedding")
    data.pop("openai_api_key", None)
    data.pop("openai_base_url", None)
    data.pop("available_providers", None)
    try:
        return EmbeddingConfig.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ConfigurationError(message=f"Invalid 'embedding' configuration: {exc}") from exc


def build_retrieval_config(config: dict) -> RetrievalConfig:
    return _build(RetrievalConfig, config, "retrieval")


def build_validation_config(config: dict) -> ValidationConfig:
    return _build(ValidationConfig, config, "validation")
