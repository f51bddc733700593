"""Hierarchical semantic chunking of one document into a chunk forest.

Splits source text into :class:`~ragcore.models.chunk.Chunk` objects at up to
four scales (document, section, paragraph, sentence) and links them into a
forest of parent/child/sibling relations.

The algorithm runs in four steps:

1. **Segment** -- :func:`~ragcore.services.chunking.segmenter.segment` turns
   the text into sentence/list/heading units grouped into paragraphs and
   sections.
2. **Score** -- each pair of adjacent units gets a similarity from the
   configured strategy.  A similarity below ``similarity_threshold`` marks a
   semantic boundary.
3. **Group** -- units are packed greedily into primary chunks until
   ``max_tokens`` is reached or a boundary is hit.  A boundary is ignored
   while the chunk is still below ``min_tokens``, so only the final
   remainder of a document can be short.  Every chunk after the first
   starts with ``overlap_tokens`` of the previous chunk's tail.
4. **Build the forest** -- structural parents (document root, sections, and
   paragraphs for the sentence strategy) are laid out top-down, IDs are
   assigned to every draft in one pass, and only then are
   ``parent_chunk_id`` / ``child_chunk_ids`` / ``sibling_chunk_ids`` wired in
   a second pass over the assigned IDs.

Scoring
-------
``quality_score = 0.5 * length + 0.3 * boundary + 0.2 * structure``

* *length* -- 1.0 inside ``[min_tokens, max_tokens]``, otherwise the ratio
  to the nearest bound.
* *boundary* -- mean confidence of the chunk's start and end boundaries
  (``1 - similarity`` at the split point; 1.0 at document edges).
* *structure* -- 0.4 base, +0.4 when the chunk sits under or contains a
  heading, +0.2 when it contains list items.

Chunks shorter than ``min_tokens`` are capped at
:data:`TOO_SHORT_QUALITY_CEILING`.  ``coherence_score`` is the mean
semantic similarity of adjacent units inside the chunk (1.0 for a single
unit).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import pydantic
import structlog

from ragcore.models.chunk import (
    BoundaryKind,
    Chunk,
    ChunkingConfig,
    ChunkStrategy,
    DocumentMetadata,
    ScaleType,
    SemanticBoundary,
)
from ragcore.models.forest import ChunkForest
from ragcore.services.chunking.segmenter import Segmentation, Unit, segment
from ragcore.utils.text import content_words, jaccard, sha256_hex

logger = structlog.get_logger(logger_name=__name__)

TOO_SHORT_QUALITY_CEILING = 0.4

_LENGTH_WEIGHT = 0.5
_BOUNDARY_WEIGHT = 0.3
_STRUCTURE_WEIGHT = 0.2

_PRIMARY_SCALE: dict[ChunkStrategy, ScaleType] = {
    ChunkStrategy.SEMANTIC: ScaleType.PARAGRAPH,
    ChunkStrategy.PARAGRAPH: ScaleType.PARAGRAPH,
    ChunkStrategy.SENTENCE: ScaleType.SENTENCE,
    ChunkStrategy.SECTION: ScaleType.SECTION,
}


# ---------------------------------------------------------------------------
# Internal drafts
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class _Piece:
    """A word window of one unit; units longer than a chunk are split into several."""

    unit: Unit
    start: int
    stop: int

    @property
    def words(self) -> tuple[str, ...]:
        return self.unit.words[self.start : self.stop]

    @property
    def token_count(self) -> int:
        return self.stop - self.start


@dataclass
class _Group:
    prefix: list[str]
    start_confidence: float
    pieces: list[_Piece] = field(default_factory=list)
    end_confidence: float = 1.0
    suppressed: list[SemanticBoundary] = field(default_factory=list)

    @property
    def content_tokens(self) -> int:
        return sum(p.token_count for p in self.pieces)

    @property
    def total_tokens(self) -> int:
        return len(self.prefix) + self.content_tokens

    @property
    def anchor(self) -> Unit:
        return self.pieces[0].unit

    def words(self) -> list[str]:
        out = list(self.prefix)
        for piece in self.pieces:
            out.extend(piece.words)
        return out


@dataclass(eq=False)
class _Draft:
    """A chunk before IDs exist.  Parent/children are draft references only."""

    scale: ScaleType
    content: str
    token_count: int
    quality: float
    coherence: float
    boundaries: list[SemanticBoundary]
    hierarchy_path: list[str]
    parent: _Draft | None = None
    children: list[_Draft] = field(default_factory=list)
    chunk_id: str = ""
    sequence_order: int = -1
    level: int = 0


# ---------------------------------------------------------------------------
# Chunker
# ---------------------------------------------------------------------------

class HierarchicalSemanticChunker:
    """Splits documents into a forest of quality-scored chunks.

    Parameters
    ----------
    config:
        Default :class:`ChunkingConfig`, used when :meth:`chunk` is called
        without one.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self._config = config or ChunkingConfig()

    @property
    def config(self) -> ChunkingConfig:
        return self._config

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(
        self,
        source_id: str,
        document_text: str,
        metadata: DocumentMetadata | Mapping[str, Any] | None = None,
        config: ChunkingConfig | Mapping[str, Any] | None = None,
        version_id: int = 1,
    ) -> ChunkForest:
        """Chunk one document.

        Parameters
        ----------
        source_id:
            Owning source; copied into every chunk and part of every ID.
        document_text:
            Raw document text.
        metadata:
            Loader metadata.  Malformed metadata is replaced by defaults
            with a warning; it never aborts chunking.
        config:
            Overrides the chunker's default config for this call.  Invalid
            or inconsistent values are defaulted/clamped with a warning.
        version_id:
            Source version recorded on every chunk.

        Returns
        -------
        ChunkForest
            Empty for empty or whitespace-only text.
        """
        cfg = self._resolve_config(config)
        meta = self._resolve_metadata(metadata, source_id)

        if not document_text or not document_text.strip():
            logger.info("chunking_empty_document", source_id=source_id)
            return ChunkForest()

        seg = segment(document_text, meta.structural_hints)
        if not seg.units:
            logger.info("chunking_empty_document", source_id=source_id)
            return ChunkForest()

        pieces = self._split_oversized(seg.units, cfg)
        similarities = [1.0] + [
            1.0
            if pieces[i].unit is pieces[i - 1].unit
            else self._similarity(seg, pieces[i - 1].unit, pieces[i].unit, cfg.strategy)
            for i in range(1, len(pieces))
        ]
        groups = self._group(pieces, similarities, cfg)

        title = meta.filename or source_id
        roots = self._build_drafts(seg, groups, cfg, title)
        ordered = self._assign_ids(source_id, roots)
        chunks = self._wire_relations(source_id, version_id, ordered, cfg)

        forest = ChunkForest(chunks)
        logger.debug(
            "chunking_complete",
            source_id=source_id,
            strategy=cfg.strategy.value,
            num_chunks=len(forest),
            primary_chunks=len(groups),
            avg_tokens=sum(c.token_count for c in chunks) // max(1, len(chunks)),
        )
        return forest

    # ------------------------------------------------------------------
    # Config / metadata resolution
    # ------------------------------------------------------------------

    def _resolve_config(self, config: ChunkingConfig | Mapping[str, Any] | None) -> ChunkingConfig:
        if config is None:
            cfg = self._config
        elif isinstance(config, ChunkingConfig):
            cfg = config
        else:
            try:
                cfg = ChunkingConfig.model_validate(dict(config))
            except (pydantic.ValidationError, TypeError, ValueError) as exc:
                logger.warning("chunking_config_invalid", error=str(exc))
                cfg = self._config
        return self._clamp_config(cfg)

    @staticmethod
    def _clamp_config(cfg: ChunkingConfig) -> ChunkingConfig:
        """Make max/min/overlap mutually consistent so every chunk can fit."""
        overlap = cfg.overlap_tokens
        min_tokens = cfg.min_tokens
        if overlap >= cfg.max_tokens:
            overlap = cfg.max_tokens // 4
        if min_tokens > cfg.max_tokens - overlap:
            min_tokens = cfg.max_tokens - overlap
        if overlap != cfg.overlap_tokens or min_tokens != cfg.min_tokens:
            logger.warning(
                "chunking_config_clamped",
                max_tokens=cfg.max_tokens,
                overlap_tokens=overlap,
                min_tokens=min_tokens,
            )
            return cfg.model_copy(update={"overlap_tokens": overlap, "min_tokens": min_tokens})
        return cfg

    @staticmethod
    def _resolve_metadata(
        metadata: DocumentMetadata | Mapping[str, Any] | None,
        source_id: str,
    ) -> DocumentMetadata:
        if metadata is None:
            return DocumentMetadata()
        if isinstance(metadata, DocumentMetadata):
            return metadata
        try:
            return DocumentMetadata.model_validate(dict(metadata))
        except (pydantic.ValidationError, TypeError, ValueError) as exc:
            logger.warning("chunking_metadata_invalid", source_id=source_id, error=str(exc))
            return DocumentMetadata()

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def _similarity(self, seg: Segmentation, a: Unit, b: Unit, strategy: ChunkStrategy) -> float:
        """Adjacent-unit similarity under *strategy*, in [0, 1]."""
        if strategy is ChunkStrategy.SENTENCE or a.section_index != b.section_index:
            return 0.0
        if strategy is ChunkStrategy.SECTION:
            return 1.0
        same_paragraph = a.paragraph_index == b.paragraph_index
        if strategy is ChunkStrategy.PARAGRAPH:
            return 1.0 if same_paragraph else 0.0
        return self._semantic_similarity(seg, a, b)

    @staticmethod
    def _semantic_similarity(seg: Segmentation, a: Unit, b: Unit) -> float:
        # Within a paragraph: [0.5, 1.0]; across paragraphs: [0.0, 0.5].
        if a.section_index != b.section_index:
            return 0.0
        if a.paragraph_index == b.paragraph_index:
            return 0.5 + 0.5 * jaccard(content_words(a.text), content_words(b.text))
        return 0.5 * jaccard(
            seg.paragraph_words(a.paragraph_index),
            seg.paragraph_words(b.paragraph_index),
        )

    def _coherence(self, seg: Segmentation, units: list[Unit]) -> float:
        distinct: list[Unit] = []
        for unit in units:
            if not distinct or distinct[-1] is not unit:
                distinct.append(unit)
        if len(distinct) < 2:
            return 1.0
        scores = [
            self._semantic_similarity(seg, distinct[i - 1], distinct[i])
            for i in range(1, len(distinct))
        ]
        return _clamp(sum(scores) / len(scores))

    @staticmethod
    def _quality(
        token_count: int,
        lower: int,
        upper: int,
        boundary_confidence: float,
        has_heading: bool,
        has_list: bool,
        min_tokens: int,
    ) -> float:
        if token_count < lower:
            length = token_count / lower if lower else 1.0
        elif token_count > upper:
            length = upper / token_count
        else:
            length = 1.0
        structure = 0.4 + (0.4 if has_heading else 0.0) + (0.2 if has_list else 0.0)
        score = (
            _LENGTH_WEIGHT * length
            + _BOUNDARY_WEIGHT * boundary_confidence
            + _STRUCTURE_WEIGHT * structure
        )
        if token_count < min_tokens:
            score = min(score, TOO_SHORT_QUALITY_CEILING)
        return round(_clamp(score), 4)

    # ------------------------------------------------------------------
    # Grouping
    # ------------------------------------------------------------------

    @staticmethod
    def _split_oversized(units: list[Unit], cfg: ChunkingConfig) -> list[_Piece]:
        """Split units longer than ``max_tokens - overlap_tokens`` into word windows."""
        window = max(1, cfg.max_tokens - cfg.overlap_tokens)
        pieces: list[_Piece] = []
        for unit in units:
            for start in range(0, unit.token_count, window):
                pieces.append(_Piece(unit, start, min(start + window, unit.token_count)))
        return pieces

    @staticmethod
    def _group(pieces: list[_Piece], similarities: list[float], cfg: ChunkingConfig) -> list[_Group]:
        groups: list[_Group] = []
        current: _Group | None = None
        prefix: list[str] = []
        start_confidence = 1.0

        def close(group: _Group, confidence: float) -> None:
            nonlocal prefix, start_confidence
            group.end_confidence = confidence
            groups.append(group)
            words = group.words()
            prefix = words[-cfg.overlap_tokens :] if cfg.overlap_tokens else []
            start_confidence = confidence

        for piece, similarity in zip(pieces, similarities):
            if current is not None:
                confidence = _clamp(1.0 - similarity)
                if current.total_tokens + piece.token_count > cfg.max_tokens:
                    if current.content_tokens < cfg.min_tokens:
                        # Fill the chunk to max_tokens with the head of this piece.
                        room = cfg.max_tokens - current.total_tokens
                        current.pieces.append(_Piece(piece.unit, piece.start, piece.start + room))
                        piece = _Piece(piece.unit, piece.start + room, piece.stop)
                        confidence = 0.0
                    close(current, confidence)
                    current = None
                elif similarity < cfg.similarity_threshold:
                    if current.content_tokens >= cfg.min_tokens:
                        close(current, confidence)
                        current = None
                    else:
                        current.suppressed.append(
                            SemanticBoundary(
                                position=current.total_tokens,
                                confidence=confidence,
                                kind=BoundaryKind.SUPPRESSED,
                            )
                        )
            if current is None:
                current = _Group(prefix=list(prefix), start_confidence=start_confidence)
            current.pieces.append(piece)

        if current is not None:
            current.end_confidence = 1.0
            groups.append(current)
        return groups

    # ------------------------------------------------------------------
    # Forest construction
    # ------------------------------------------------------------------

    def _build_drafts(
        self,
        seg: Segmentation,
        groups: list[_Group],
        cfg: ChunkingConfig,
        title: str,
    ) -> list[_Draft]:
        """Lay out structural and primary drafts top-down; return the roots."""
        primary_scale = _PRIMARY_SCALE[cfg.strategy]
        multi_section = len(seg.sections) >= 2
        roots: list[_Draft] = []

        def attach(child: _Draft, parent: _Draft | None) -> None:
            child.parent = parent
            if parent is None:
                roots.append(child)
            else:
                parent.children.append(child)

        doc_draft: _Draft | None = None
        if multi_section and len(seg.units) > 0:
            total = sum(u.token_count for u in seg.units)
            if total <= cfg.document_max_tokens:
                doc_draft = self._structural_draft(seg, seg.units, ScaleType.DOCUMENT, [title], cfg)

        by_section: dict[int, list[_Group]] = {}
        for group in groups:
            by_section.setdefault(group.anchor.section_index, []).append(group)

        for section in seg.sections:
            section_groups = by_section.get(section.index, [])
            if not section_groups:
                continue
            path = [title, *section.path]
            parent = doc_draft
            if (
                multi_section
                and primary_scale in (ScaleType.PARAGRAPH, ScaleType.SENTENCE)
                and len(section_groups) >= 2
            ):
                section_units = [u for u in seg.units if u.section_index == section.index]
                section_draft = self._structural_draft(seg, section_units, ScaleType.SECTION, path, cfg)
                attach(section_draft, parent)
                parent = section_draft

            if primary_scale is ScaleType.SENTENCE:
                by_paragraph: dict[int, list[_Group]] = {}
                for group in section_groups:
                    by_paragraph.setdefault(group.anchor.paragraph_index, []).append(group)
                for paragraph_index in section.paragraph_indices:
                    paragraph_groups = by_paragraph.get(paragraph_index, [])
                    owner = parent
                    if len(paragraph_groups) >= 2:
                        para_units = [seg.units[i] for i in seg.paragraphs[paragraph_index].unit_indices]
                        owner = self._structural_draft(seg, para_units, ScaleType.PARAGRAPH, path, cfg)
                        attach(owner, parent)
                    for group in paragraph_groups:
                        attach(self._primary_draft(seg, group, primary_scale, path, cfg), owner)
            else:
                for group in section_groups:
                    attach(self._primary_draft(seg, group, primary_scale, path, cfg), parent)

        if doc_draft is not None:
            if len(doc_draft.children) >= 2:
                return [doc_draft]
            for child in doc_draft.children:
                child.parent = None
            return list(doc_draft.children)
        return roots

    def _primary_draft(
        self,
        seg: Segmentation,
        group: _Group,
        scale: ScaleType,
        path: list[str],
        cfg: ChunkingConfig,
    ) -> _Draft:
        content = self._render(seg, group.pieces, group.prefix)
        token_count = group.total_tokens
        units = [p.unit for p in group.pieces]
        section = seg.sections[group.anchor.section_index]
        boundaries = [
            SemanticBoundary(position=0, confidence=group.start_confidence, kind=BoundaryKind.START),
            *group.suppressed,
            SemanticBoundary(position=token_count, confidence=group.end_confidence, kind=BoundaryKind.END),
        ]
        quality = self._quality(
            token_count,
            cfg.min_tokens,
            cfg.max_tokens,
            (group.start_confidence + group.end_confidence) / 2,
            has_heading=section.heading is not None or any(u.is_heading for u in units),
            has_list=any(u.is_list_item for u in units),
            min_tokens=cfg.min_tokens,
        )
        return _Draft(
            scale=scale,
            content=content,
            token_count=token_count,
            quality=quality,
            coherence=self._coherence(seg, units),
            boundaries=boundaries,
            hierarchy_path=list(path),
        )

    def _structural_draft(
        self,
        seg: Segmentation,
        units: list[Unit],
        scale: ScaleType,
        path: list[str],
        cfg: ChunkingConfig,
    ) -> _Draft:
        pieces = [_Piece(u, 0, u.token_count) for u in units]
        content = self._render(seg, pieces, [])
        token_count = sum(u.token_count for u in units)
        quality = self._quality(
            token_count,
            cfg.min_tokens,
            cfg.document_max_tokens,
            1.0,
            has_heading=any(u.is_heading for u in units),
            has_list=any(u.is_list_item for u in units),
            min_tokens=cfg.min_tokens,
        )
        return _Draft(
            scale=scale,
            content=content,
            token_count=token_count,
            quality=quality,
            coherence=self._coherence(seg, units),
            boundaries=[
                SemanticBoundary(position=0, confidence=1.0, kind=BoundaryKind.START),
                SemanticBoundary(position=token_count, confidence=1.0, kind=BoundaryKind.END),
            ],
            hierarchy_path=list(path),
        )

    @staticmethod
    def _render(seg: Segmentation, pieces: list[_Piece], prefix: list[str]) -> str:
        """Join pieces: a blank line between paragraphs, a space within one."""
        parts: list[str] = []
        if prefix:
            parts.append(" ".join(prefix))
        previous: _Piece | None = None
        for piece in pieces:
            text = " ".join(piece.words)
            if not parts:
                parts.append(text)
            else:
                if previous is None:
                    first_of_paragraph = (
                        piece.start == 0
                        and seg.paragraphs[piece.unit.paragraph_index].unit_indices[0] == piece.unit.index
                    )
                    separator = "\n\n" if first_of_paragraph else " "
                else:
                    separator = (
                        " "
                        if previous.unit.paragraph_index == piece.unit.paragraph_index
                        else "\n\n"
                    )
                parts.append(separator + text)
            previous = piece
        return "".join(parts)

    # ------------------------------------------------------------------
    # Two-phase ID assignment and relation wiring
    # ------------------------------------------------------------------

    @staticmethod
    def _assign_ids(source_id: str, roots: list[_Draft]) -> list[_Draft]:
        """Phase 1: pre-order traversal assigning sequence, level and ID to every draft."""
        ordered: list[_Draft] = []
        stack: list[tuple[_Draft, int]] = [(root, 0) for root in reversed(roots)]
        while stack:
            draft, level = stack.pop()
            draft.sequence_order = len(ordered)
            draft.level = level
            content_hash = sha256_hex(draft.content)
            draft.chunk_id = sha256_hex(
                f"{source_id}\x1f{draft.scale.value}\x1f{draft.sequence_order}\x1f{content_hash}"
            )[:32]
            ordered.append(draft)
            stack.extend((child, level + 1) for child in reversed(draft.children))
        return ordered

    @staticmethod
    def _wire_relations(
        source_id: str,
        version_id: int,
        ordered: list[_Draft],
        cfg: ChunkingConfig,
    ) -> list[Chunk]:
        """Phase 2: resolve draft references to the IDs assigned in phase 1."""
        sibling_groups: dict[tuple[int, ScaleType], list[_Draft]] = {}
        for draft in ordered:
            key = (id(draft.parent) if draft.parent is not None else 0, draft.scale)
            sibling_groups.setdefault(key, []).append(draft)

        siblings: dict[str, list[str]] = {}
        window = cfg.sibling_window
        for members in sibling_groups.values():
            for i, draft in enumerate(members):
                lo, hi = max(0, i - window), min(len(members), i + window + 1)
                siblings[draft.chunk_id] = [members[j].chunk_id for j in range(lo, hi) if j != i]

        return [
            Chunk(
                chunk_id=draft.chunk_id,
                source_id=source_id,
                version_id=version_id,
                sequence_order=draft.sequence_order,
                scale_type=draft.scale,
                hierarchy_level=draft.level,
                parent_chunk_id=draft.parent.chunk_id if draft.parent is not None else None,
                child_chunk_ids=[child.chunk_id for child in draft.children],
                sibling_chunk_ids=siblings[draft.chunk_id],
                hierarchy_path=draft.hierarchy_path,
                content=draft.content,
                token_count=draft.token_count,
                quality_score=draft.quality,
                coherence_score=draft.coherence,
                semantic_boundaries=draft.boundaries,
                content_hash=sha256_hex(draft.content),
            )
            for draft in ordered
        ]


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))
