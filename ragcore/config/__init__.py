"""Configuration module -- exports Settings, load_config and the build helpers."""

from ragcore.config.loader import (
    build_chunking_config,
    build_embedding_config,
    build_retrieval_config,
    build_validation_config,
    load_config,
)
from ragcore.config.settings import Settings

__all__ = [
    "Settings",
    "build_chunking_config",
    "build_embedding_config",
    "build_retrieval_config",
    "build_validation_config",
    "load_config",
]
