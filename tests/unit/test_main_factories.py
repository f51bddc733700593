"""Unit tests for factory functions in ragcore/main.py.

Tests embedding provider selection, vector store selection, cache wiring
and build_orchestrator assembly with injected fakes, so no API keys,
downloads or network calls are required.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from ragcore.config.settings import Settings
from ragcore.models.chunk import EmbeddingType
from ragcore.pipeline.orchestrator import IngestionOrchestrator
from ragcore.providers.cache.memory_cache_backend import MemoryCacheBackend
from ragcore.providers.vector_store.memory_vector_store import MemoryVectorStoreProvider
from ragcore.utils.errors import ConfigurationError


def _settings(**overrides) -> Settings:
    defaults = {
        "openai_api_key": "",
        "openai_base_url": "",
        "openai_embedding_model": "",
        "fastembed_model": "",
        "app_env": "test",
    }
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


# ======================================================================
# _build_embedding_provider
# ======================================================================


class TestBuildEmbeddingProvider:
    def test_openai_when_key_set(self) -> None:
        from ragcore.main import _build_embedding_provider
        from ragcore.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        provider = _build_embedding_provider(_settings(openai_api_key="sk-test"), {})
        assert isinstance(provider, OpenAIEmbeddingProvider)
        assert provider.get_dimension() == 1536

    def test_explicit_fastembed_wins_over_key(self) -> None:
        from ragcore.main import _build_embedding_provider
        from ragcore.providers.embedding.fastembed_embedding_provider import FastEmbedEmbeddingProvider

        with patch.object(FastEmbedEmbeddingProvider, "is_available", return_value=True):
            provider = _build_embedding_provider(
                _settings(openai_api_key="sk-test"), {"embedding": {"provider": "fastembed"}}
            )
        assert isinstance(provider, FastEmbedEmbeddingProvider)
        assert provider.get_model_name() == "BAAI/bge-small-en-v1.5"

    def test_fastembed_fallback_without_key(self) -> None:
        from ragcore.main import _build_embedding_provider
        from ragcore.providers.embedding.fastembed_embedding_provider import FastEmbedEmbeddingProvider

        with patch.object(FastEmbedEmbeddingProvider, "is_available", return_value=True):
            provider = _build_embedding_provider(_settings(fastembed_model="BAAI/bge-base-en-v1.5"), {})
        assert provider.get_dimension() == 768

    def test_no_provider_available(self) -> None:
        from ragcore.main import _build_embedding_provider
        from ragcore.providers.embedding.fastembed_embedding_provider import FastEmbedEmbeddingProvider

        with patch.object(FastEmbedEmbeddingProvider, "is_available", return_value=False):
            with pytest.raises(ConfigurationError, match="No embedding provider"):
                _build_embedding_provider(_settings(), {})

    def test_openai_requested_without_key(self) -> None:
        from ragcore.main import _build_embedding_provider

        with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
            _build_embedding_provider(_settings(), {"embedding": {"provider": "openai"}})

    def test_unknown_provider(self) -> None:
        from ragcore.main import _build_embedding_provider

        with pytest.raises(ConfigurationError, match="Unknown embedding provider"):
            _build_embedding_provider(_settings(), {"embedding": {"provider": "word2vec"}})


# ======================================================================
# _build_vector_store / _build_cache
# ======================================================================


class TestBuildVectorStore:
    def test_memory(self) -> None:
        from ragcore.main import _build_vector_store

        assert isinstance(_build_vector_store({"vector_store": {"provider": "memory"}}), MemoryVectorStoreProvider)

    def test_chromadb(self, tmp_path) -> None:
        from ragcore.main import _build_vector_store
        from ragcore.providers.vector_store.chromadb_provider import ChromaDBProvider

        store = _build_vector_store(
            {"vector_store": {"provider": "chromadb", "persist_dir": str(tmp_path / "chroma")}}
        )
        assert isinstance(store, ChromaDBProvider)

    def test_unknown(self) -> None:
        from ragcore.main import _build_vector_store

        with pytest.raises(ConfigurationError, match="Unknown vector store"):
            _build_vector_store({"vector_store": {"provider": "pinecone"}})


class TestBuildCache:
    def test_sqlite_backend_from_db_path(self, tmp_path) -> None:
        from ragcore.main import _build_cache
        from ragcore.providers.cache.sqlite_cache_backend import SQLiteCacheBackend

        cache = _build_cache({"cache": {"db_path": str(tmp_path / "cache.db"), "max_entries": 10}})
        assert isinstance(cache._backend, SQLiteCacheBackend)

    def test_injected_backend_wins(self, tmp_path) -> None:
        from ragcore.main import _build_cache

        backend = MemoryCacheBackend()
        cache = _build_cache({"cache": {"db_path": str(tmp_path / "cache.db")}}, backend)
        assert cache._backend is backend

    def test_memory_only_without_db_path(self) -> None:
        from ragcore.main import _build_cache

        assert _build_cache({})._backend is None


# ======================================================================
# build_orchestrator
# ======================================================================


class TestBuildOrchestrator:
    def test_assembles_with_overrides(self, tmp_path, test_config, embedding_provider) -> None:
        from ragcore.main import build_orchestrator

        config = dict(test_config)
        config["registry"] = {"db_path": str(tmp_path / "registry.db")}
        config["ingestion"] = {"documents_dir": str(tmp_path / "docs"), "max_workers": 3}
        config["retrieval"] = {"embedding_types": ["content", "semantic"]}
        config["embedding"] = dict(test_config["embedding"], embedding_types=["content", "contextual"])

        orchestrator = build_orchestrator(
            _settings(),
            config,
            embedding_provider=embedding_provider,
            vector_store=MemoryVectorStoreProvider(),
            cache_backend=MemoryCacheBackend(),
        )

        assert isinstance(orchestrator, IngestionOrchestrator)
        assert orchestrator.max_workers == 3
        # Retrieval only searches types that ingestion produces.
        assert orchestrator.retrieval_config.embedding_types == [EmbeddingType.CONTENT]
        assert orchestrator._validator.config.expected_dimension == 256
        assert orchestrator._validator.config.expected_embedding_types == [
            EmbeddingType.CONTENT,
            EmbeddingType.CONTEXTUAL,
        ]

    def test_quality_gate_from_config(self, test_config, embedding_provider, tmp_path) -> None:
        from ragcore.main import build_orchestrator

        config = dict(test_config, validation={"quality_gate_min_score": 75})
        config["registry"] = {"db_path": str(tmp_path / "registry.db")}
        orchestrator = build_orchestrator(
            _settings(),
            config,
            embedding_provider=embedding_provider,
            vector_store=MemoryVectorStoreProvider(),
        )
        assert orchestrator._quality_gate == 75.0

    def test_invalid_section_raises(self, test_config, embedding_provider) -> None:
        from ragcore.main import build_orchestrator

        config = dict(test_config, chunking={"max_tokens": -1})
        with pytest.raises(ConfigurationError):
            build_orchestrator(
                _settings(),
                config,
                embedding_provider=embedding_provider,
                vector_store=MemoryVectorStoreProvider(),
            )
