"""Dependency wiring for the ragcore ingestion and retrieval core.

Loads configuration from ``.env`` and ``config/config.yaml``, configures
structured logging, and assembles an :class:`IngestionOrchestrator` from
the configured providers.  The CLI and any serving layer call
:func:`build_orchestrator` and then use the orchestrator as an async
context manager:

    async with build_orchestrator() as orchestrator:
        await orchestrator.ingest("guides/fund_setup.md")
        result = await orchestrator.retrieve_context("fund rollforward settings")
"""

from __future__ import annotations

from typing import Any

import structlog

from ragcore.config.loader import (
    build_chunking_config,
    build_embedding_config,
    build_retrieval_config,
    build_validation_config,
    load_config,
)
from ragcore.config.settings import Settings
from ragcore.interfaces.cache_backend import ICacheBackend
from ragcore.interfaces.document_loader import IDocumentLoader
from ragcore.interfaces.embedding_provider import IEmbeddingProvider
from ragcore.interfaces.source_registry import ISourceRegistry
from ragcore.interfaces.vector_store_provider import IVectorStoreProvider
from ragcore.pipeline.job_tracker import JobTracker
from ragcore.pipeline.orchestrator import IngestionOrchestrator
from ragcore.providers.cache.sqlite_cache_backend import SQLiteCacheBackend
from ragcore.providers.loader.text_file_loader import TextFileLoader
from ragcore.providers.registry.sqlite_source_registry import SQLiteSourceRegistry
from ragcore.providers.vector_store.memory_vector_store import MemoryVectorStoreProvider
from ragcore.services.chunking.hierarchical_chunker import HierarchicalSemanticChunker
from ragcore.services.embedding.embedding_cache import EmbeddingCache
from ragcore.services.embedding.multi_scale_generator import MultiScaleEmbeddingGenerator
from ragcore.services.retrieval.contextual_retriever import AdvancedContextualRetriever
from ragcore.services.validation.quality_validator import QualityValidator
from ragcore.utils.errors import ConfigurationError
from ragcore.utils.logging import configure_logging, get_logger

_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _build_embedding_provider(app_settings: Settings, config: dict[str, Any]) -> IEmbeddingProvider:
    """Select the embedding provider.

    An explicit ``embedding.provider`` wins; otherwise OpenAI is used when
    an API key is set, falling back to local fastembed.
    """
    requested = (config.get("embedding", {}).get("provider") or "").lower()
    available = app_settings.get_available_embedding_providers()

    if requested and requested not in ("openai", "fastembed"):
        raise ConfigurationError(f"Unknown embedding provider '{requested}'")
    if requested == "openai" and "openai" not in available:
        raise ConfigurationError("embedding.provider is 'openai' but OPENAI_API_KEY is not set")

    if requested == "openai" or (not requested and "openai" in available):
        from ragcore.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

        return OpenAIEmbeddingProvider(settings=app_settings)

    from ragcore.providers.embedding.fastembed_embedding_provider import FastEmbedEmbeddingProvider

    provider = FastEmbedEmbeddingProvider(model_name=app_settings.fastembed_model or None)
    if not provider.is_available():
        raise ConfigurationError(
            "No embedding provider available.  Set OPENAI_API_KEY or install the "
            "'local' extra (pip install ragcore[local]) for fastembed."
        )
    return provider


def _build_vector_store(config: dict[str, Any]) -> IVectorStoreProvider:
    section = config.get("vector_store", {})
    name = (section.get("provider") or "chromadb").lower()
    if name == "memory":
        return MemoryVectorStoreProvider()
    if name == "chromadb":
        from ragcore.providers.vector_store.chromadb_provider import ChromaDBProvider

        return ChromaDBProvider(
            persist_directory=section.get("persist_dir") or "./data/chromadb",
            collection_prefix=section.get("collection_prefix") or "ragcore",
        )
    raise ConfigurationError(f"Unknown vector store provider '{name}'")


def _build_cache(config: dict[str, Any], backend: ICacheBackend | None = None) -> EmbeddingCache:
    section = config.get("cache", {})
    if backend is None and section.get("db_path"):
        backend = SQLiteCacheBackend(db_path=section["db_path"])
    return EmbeddingCache(
        backend=backend,
        max_entries=int(section.get("max_entries") or 10_000),
        ttl_seconds=section.get("ttl_seconds"),
    )


def _build_registry(config: dict[str, Any]) -> ISourceRegistry:
    return SQLiteSourceRegistry(db_path=config.get("registry", {}).get("db_path") or "data/registry.db")


def _build_loader(config: dict[str, Any]) -> IDocumentLoader:
    return TextFileLoader(config.get("ingestion", {}).get("documents_dir") or "./data/documents")


# ---------------------------------------------------------------------------
# Full assembly
# ---------------------------------------------------------------------------


def build_orchestrator(
    app_settings: Settings | None = None,
    config: dict[str, Any] | None = None,
    *,
    embedding_provider: IEmbeddingProvider | None = None,
    vector_store: IVectorStoreProvider | None = None,
    cache_backend: ICacheBackend | None = None,
    registry: ISourceRegistry | None = None,
    loader: IDocumentLoader | None = None,
    tracker: JobTracker | None = None,
) -> IngestionOrchestrator:
    """Wire every component from settings and YAML config.

    Keyword overrides replace the configured provider of the same role,
    which is how tests run the real pipeline against in-memory fakes.

    Raises
    ------
    ConfigurationError
        If a configured provider is unknown or unavailable, or a config
        section fails validation.
    """
    app_settings = app_settings or Settings()
    config = config if config is not None else load_config(settings=app_settings)

    chunking_config = build_chunking_config(config)
    embedding_config = build_embedding_config(config)
    retrieval_config = build_retrieval_config(config)

    provider = embedding_provider or _build_embedding_provider(app_settings, config)
    store = vector_store or _build_vector_store(config)

    generator = MultiScaleEmbeddingGenerator(
        provider=provider,
        cache=_build_cache(config, cache_backend),
        config=embedding_config,
    )
    validation_config = build_validation_config(config).model_copy(
        update={
            "expected_embedding_types": list(embedding_config.embedding_types),
            "expected_dimension": provider.get_dimension(),
        }
    )
    validator = QualityValidator(store=store, config=validation_config)
    retriever = AdvancedContextualRetriever(
        store=store,
        generator=generator,
        config=retrieval_config.model_copy(
            update={
                "embedding_types": [
                    t for t in retrieval_config.embedding_types if t in embedding_config.embedding_types
                ]
                or list(embedding_config.embedding_types)
            }
        ),
    )

    ingestion = config.get("ingestion", {})
    gate = (config.get("validation") or {}).get("quality_gate_min_score")
    orchestrator = IngestionOrchestrator(
        loader=loader or _build_loader(config),
        chunker=HierarchicalSemanticChunker(chunking_config),
        generator=generator,
        store=store,
        registry=registry or _build_registry(config),
        validator=validator,
        retriever=retriever,
        tracker=tracker,
        max_workers=ingestion.get("max_workers"),
        quality_gate_min_score=float(gate) if gate is not None else None,
    )

    _logger.info(
        "orchestrator_built",
        embedding_provider=provider.get_provider_name(),
        embedding_model=provider.get_model_name(),
        vector_store=store.get_provider_name(),
        embedding_types=[t.value for t in embedding_config.embedding_types],
        chunk_strategy=chunking_config.strategy.value,
    )
    return orchestrator


def setup_logging(app_settings: Settings | None = None) -> None:
    app_settings = app_settings or Settings()
    configure_logging(
        log_level=app_settings.log_level,
        json_output=(app_settings.app_env == "production"),
    )
