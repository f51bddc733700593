"""Abstract base class for document loaders.

A loader turns a ``source_id`` into raw text plus structure metadata.  Text
extraction quality (PDF, OCR) is the loader's concern; the ingestion core
only relies on the shape of :class:`~ragcore.models.chunk.LoadedDocument`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ragcore.models.chunk import LoadedDocument


# Concrete implementation: TextFileLoader (ragcore/providers/loader/)
class IDocumentLoader(ABC):
    """Contract for document loaders feeding the ingestion orchestrator."""

    @abstractmethod
    async def load(self, source_id: str) -> LoadedDocument:
        """Load one source document.

        Raises
        ------
        ragcore.utils.errors.ValidationError
            If *source_id* does not name a loadable document.
        """

    @abstractmethod
    async def list_sources(self) -> list[str]:
        """Return the IDs of every document this loader can supply."""
