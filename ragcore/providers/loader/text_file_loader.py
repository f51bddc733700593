"""Plain-text and Markdown document loader.

Serves every ``.txt`` / ``.md`` / ``.markdown`` file under a documents
directory.  The ``source_id`` of a file is its POSIX path relative to that
directory (``guides/fund_setup.md``).

Light structure recovery happens here so the chunker sees clean text:

- setext headings (a line underlined with ``===`` or ``---``) are reported
  as ``structural_hints`` and the underline is dropped;
- form feeds delimit pages for ``total_pages``.
"""

from __future__ import annotations

import asyncio
import re
from pathlib import Path

import structlog

from ragcore.interfaces.document_loader import IDocumentLoader
from ragcore.models.chunk import DocumentMetadata, LoadedDocument
from ragcore.utils.errors import ValidationError

logger = structlog.get_logger(logger_name=__name__)

SUPPORTED_SUFFIXES = frozenset({".txt", ".md", ".markdown"})

_UNDERLINE_RE = re.compile(r"^\s*(=+|-+)\s*$")


def extract_setext_headings(text: str) -> tuple[str, list[str]]:
    """Return *text* without setext underlines, plus the underlined titles."""
    lines = text.splitlines()
    kept: list[str] = []
    hints: list[str] = []
    for line in lines:
        previous = kept[-1].strip() if kept else ""
        marker = _UNDERLINE_RE.match(line)
        if marker and len(marker.group(1)) >= 3 and previous:
            hints.append(previous)
            continue
        kept.append(line)
    return "\n".join(kept), hints


class TextFileLoader(IDocumentLoader):
    """Loads UTF-8 text documents from a directory tree."""

    def __init__(self, documents_dir: str | Path = "./data/documents") -> None:
        self._root = Path(documents_dir)

    @property
    def documents_dir(self) -> Path:
        return self._root

    def _resolve(self, source_id: str) -> Path:
        if not source_id or not source_id.strip():
            raise ValidationError("source_id must be a non-empty string", provider_name="text_loader")
        root = self._root.resolve()
        path = (root / source_id).resolve()
        if root not in path.parents:
            raise ValidationError(f"source_id escapes the documents directory: {source_id}", "text_loader")
        if path.suffix.lower() not in SUPPORTED_SUFFIXES:
            raise ValidationError(f"Unsupported document type: {source_id}", "text_loader")
        if not path.is_file():
            raise ValidationError(f"Unknown source: {source_id}", "text_loader")
        return path

    async def load(self, source_id: str) -> LoadedDocument:
        path = self._resolve(source_id)
        raw = await asyncio.to_thread(path.read_text, encoding="utf-8", errors="replace")
        pages = raw.count("\f") + 1 if raw.strip() else 0
        text, hints = extract_setext_headings(raw.replace("\f", "\n\n"))
        logger.debug(
            "document_loaded",
            source_id=source_id,
            characters=len(text),
            pages=pages,
            headings=len(hints),
        )
        return LoadedDocument(
            source_id=source_id,
            text=text,
            metadata=DocumentMetadata(
                filename=path.name,
                total_pages=pages,
                structural_hints=hints,
            ),
        )

    async def list_sources(self) -> list[str]:
        if not self._root.is_dir():
            return []

        def _scan() -> list[str]:
            return sorted(
                p.relative_to(self._root).as_posix()
                for p in self._root.rglob("*")
                if p.is_file() and p.suffix.lower() in SUPPORTED_SUFFIXES
            )

        return await asyncio.to_thread(_scan)
