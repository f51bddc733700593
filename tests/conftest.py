"""Shared pytest fixtures for the ragcore test suite."""

from __future__ import annotations

import hashlib
import math
import re
from pathlib import Path
from typing import Any

import pytest

from ragcore.interfaces.embedding_provider import IEmbeddingProvider
from ragcore.main import build_orchestrator
from ragcore.pipeline.orchestrator import IngestionOrchestrator
from ragcore.providers.cache.memory_cache_backend import MemoryCacheBackend
from ragcore.providers.loader.text_file_loader import TextFileLoader
from ragcore.providers.registry.sqlite_source_registry import SQLiteSourceRegistry
from ragcore.providers.vector_store.memory_vector_store import MemoryVectorStoreProvider
from ragcore.utils.errors import ProviderError
from ragcore.utils.text import STOP_WORDS

_TOKEN_RE = re.compile(r"[a-z0-9]+")


# ---------------------------------------------------------------------------
# Deterministic embedding provider
# ---------------------------------------------------------------------------


class HashingEmbeddingProvider(IEmbeddingProvider):
    """Bag-of-words feature hashing: texts sharing words get similar vectors.

    ``poison`` marks texts (by substring) that always come back as NaN
    vectors.  ``errors`` is a queue of exceptions raised by successive
    ``embed`` calls before normal behaviour resumes.
    """

    def __init__(self, dimension: int = 256, model: str = "hashing-test-v1") -> None:
        self._dimension = dimension
        self._model = model
        self.poison: set[str] = set()
        self.errors: list[Exception] = []
        self.calls: list[list[str]] = []

    def vector_for(self, text: str) -> list[float]:
        vector = [0.0] * self._dimension
        words = [w for w in _TOKEN_RE.findall(text.lower()) if len(w) > 2 and w not in STOP_WORDS]
        for word in words or [text.lower() or "empty"]:
            digest = hashlib.sha256(word.encode("utf-8")).digest()
            index = int.from_bytes(digest[:4], "big") % self._dimension
            vector[index] += 1.0
        norm = math.sqrt(sum(x * x for x in vector))
        return [x / norm for x in vector]

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.errors:
            raise self.errors.pop(0)
        vectors = []
        for text in texts:
            if any(marker in text for marker in self.poison):
                vectors.append([float("nan")] * self._dimension)
            else:
                vectors.append(self.vector_for(text))
        return vectors

    async def embed_single(self, text: str) -> list[float]:
        return (await self.embed([text]))[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return "hashing"

    def is_available(self) -> bool:
        return True


@pytest.fixture
def embedding_provider() -> HashingEmbeddingProvider:
    return HashingEmbeddingProvider()


@pytest.fixture
def failing_error() -> ProviderError:
    return ProviderError(message="upstream 503", provider_name="hashing", retryable=True)


# ---------------------------------------------------------------------------
# Sample documents
# ---------------------------------------------------------------------------

FUND_SETUP_GUIDE = """\
# Fund Setup Guide

## Creating a Fund

Open the administration console and choose the option to create a new fund.
Enter the legal name, the base currency and the launch date of the fund.
Assign the fund administrator and the custodian before saving the record.

Share classes are defined after the fund record exists. Each share class
carries its own currency, minimum subscription amount and distribution policy.

## Rollforward Settings

The rollforward settings control how the fund carries balances into the next
period. Enable rollforward for each fund before the first period close.
Rollforward settings copy capital balances, accruals and unsettled trades.

When rollforward settings are missing, the period close for the fund stops
with an error. Review the rollforward settings page after every fund change.

## Fee Accruals

Management fee accruals are calculated daily on the net asset value.
Performance fee accruals use the high water mark recorded at launch.
Accrual schedules are reviewed by the auditor at year end.
"""

OPERATIONS_NOTES = """\
Custody reconciliation runs every morning against the custodian statement.
Breaks above the tolerance are escalated to the operations desk.

Cash forecasting combines pending subscriptions, redemptions and expenses.
The treasury team reviews the forecast before the noon cutoff.

Investor reporting packs are assembled from the monthly valuation.
Each pack includes the statement, the commentary and the holdings list.
"""


@pytest.fixture
def documents_dir(tmp_path: Path) -> Path:
    root = tmp_path / "documents"
    (root / "guides").mkdir(parents=True)
    (root / "notes").mkdir(parents=True)
    (root / "guides" / "fund_setup.md").write_text(FUND_SETUP_GUIDE, encoding="utf-8")
    (root / "notes" / "operations.txt").write_text(OPERATIONS_NOTES, encoding="utf-8")
    return root


@pytest.fixture
def fund_setup_text() -> str:
    return FUND_SETUP_GUIDE


# ---------------------------------------------------------------------------
# Orchestrator wiring against in-memory providers
# ---------------------------------------------------------------------------


@pytest.fixture
def test_config() -> dict[str, Any]:
    """Small chunks, no rate limiting and no backoff delays."""
    return {
        "chunking": {
            "strategy": "semantic",
            "max_tokens": 60,
            "min_tokens": 15,
            "overlap_tokens": 5,
            "similarity_threshold": 0.5,
        },
        "embedding": {
            "embedding_types": ["content", "contextual", "hierarchical", "semantic"],
            "batch_size": 16,
            "max_attempts": 3,
            "backoff_base_seconds": 0.0,
            "backoff_max_seconds": 0.0,
            "requests_per_second": 0,
        },
        "cache": {"max_entries": 1000},
        "retrieval": {"max_retrieved_chunks": 5},
        "validation": {},
        "ingestion": {"max_workers": 2},
    }


@pytest.fixture
def vector_store() -> MemoryVectorStoreProvider:
    return MemoryVectorStoreProvider()


@pytest.fixture
def orchestrator(
    tmp_path: Path,
    documents_dir: Path,
    test_config: dict[str, Any],
    embedding_provider: HashingEmbeddingProvider,
    vector_store: MemoryVectorStoreProvider,
) -> IngestionOrchestrator:
    """Orchestrator over the sample documents; use it as ``async with``."""
    return build_orchestrator(
        config=test_config,
        embedding_provider=embedding_provider,
        vector_store=vector_store,
        cache_backend=MemoryCacheBackend(),
        registry=SQLiteSourceRegistry(db_path=tmp_path / "registry.db"),
        loader=TextFileLoader(documents_dir),
    )
