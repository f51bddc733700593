"""Chunk data models for the ragcore knowledge base.

Defines Pydantic v2 models for the chunk forest produced by the
:class:`~ragcore.services.chunking.hierarchical_chunker.HierarchicalSemanticChunker`
and the configuration/metadata that drive chunking.  All domain records are
frozen: a new version of a chunk (e.g. with embeddings attached) is created
with ``model_copy(update={...})``.

Chunk lifecycle:
    1. CHUNKING: the chunker turns one document into a forest of chunks at
       document/section/paragraph/sentence scale.  IDs are assigned first,
       parent/child/sibling relations are wired in a second pass.
    2. EMBEDDING: the multi-scale embedding generator attaches up to four
       vectors per chunk (content, contextual, hierarchical, semantic).
    3. STORAGE: chunks are upserted into the vector store; relations are
       plain ID lists so the store never holds object references.
    4. RE-INGESTION: a new version replaces the whole chunk set of a source.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ScaleType(str, Enum):
    """Granularity at which a chunk was produced, coarsest first."""

    DOCUMENT = "document"
    SECTION = "section"
    PARAGRAPH = "paragraph"
    SENTENCE = "sentence"


class EmbeddingType(str, Enum):
    """Distinct vector views of the same chunk."""

    CONTENT = "content"            # raw chunk text
    CONTEXTUAL = "contextual"      # text with a parent/sibling window
    HIERARCHICAL = "hierarchical"  # text with its heading breadcrumb
    SEMANTIC = "semantic"          # text with domain keywords boosted


class ChunkStrategy(str, Enum):
    """Adjacent-unit scoring function used to place chunk boundaries."""

    SEMANTIC = "semantic"
    PARAGRAPH = "paragraph"
    SENTENCE = "sentence"
    SECTION = "section"


class BoundaryKind(str, Enum):
    START = "start"
    END = "end"
    # A boundary candidate not used because the chunk was still below min_tokens.
    SUPPRESSED = "suppressed"


# ---------------------------------------------------------------------------
# SemanticBoundary
# ---------------------------------------------------------------------------
class SemanticBoundary(BaseModel):
    """A boundary marker inside or at the edge of a chunk."""

    model_config = ConfigDict(frozen=True)

    position: int = Field(ge=0, description="Token offset within the chunk content.")
    confidence: float = Field(
        ge=0.0,
        le=1.0,
        description="How strongly the text changes topic at this point (1 - similarity).",
    )
    kind: BoundaryKind = Field(description="Start, end or suppressed boundary.")


# ---------------------------------------------------------------------------
# Chunk -- the atomic retrieval unit.
# ---------------------------------------------------------------------------
class Chunk(BaseModel):
    """A bounded span of source text with relations, scores and embeddings.

    Relations are ID lists rather than object references, so a set of chunks
    is an arena indexed by ``chunk_id`` and forest validation is a pure
    function over IDs (see :func:`ragcore.models.forest.validate_forest`).
    """

    model_config = ConfigDict(frozen=True)

    chunk_id: str = Field(description="Stable, content-derived identifier.")
    source_id: str = Field(min_length=1, description="Owning source document.")
    version_id: int = Field(default=1, ge=1, description="Source version this chunk belongs to.")
    sequence_order: int = Field(ge=0, description="Pre-order position within the source forest.")
    scale_type: ScaleType
    hierarchy_level: int = Field(default=0, ge=0, description="Depth in the forest; 0 is a root.")
    parent_chunk_id: str | None = Field(default=None, description="Weak reference to the parent.")
    child_chunk_ids: list[str] = Field(default_factory=list)
    sibling_chunk_ids: list[str] = Field(default_factory=list)
    hierarchy_path: list[str] = Field(
        default_factory=list,
        description="Heading breadcrumb from the document root to this chunk.",
    )
    content: str
    token_count: int = Field(default=0, ge=0)
    quality_score: float = Field(default=0.0, ge=0.0, le=1.0)
    coherence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    semantic_boundaries: list[SemanticBoundary] = Field(default_factory=list)
    embeddings: dict[EmbeddingType, list[float]] = Field(default_factory=dict)
    content_hash: str = Field(description="sha256 of the chunk content.")
    ingested_at: datetime | None = Field(
        default=None,
        description="Set by the orchestrator at upsert time; used by date-range filters.",
    )

    def has_embedding(self, embedding_type: EmbeddingType) -> bool:
        return embedding_type in self.embeddings

    def missing_embeddings(self, expected: list[EmbeddingType]) -> list[EmbeddingType]:
        return [t for t in expected if t not in self.embeddings]

    def structure_key(self) -> tuple:
        """Everything that defines the chunk's place in the forest and its text.

        Two ingestions of the same document with the same config produce
        chunk sets with equal structure keys; embeddings and ``ingested_at``
        are deliberately left out.
        """
        return (
            self.chunk_id,
            self.source_id,
            self.sequence_order,
            self.scale_type,
            self.hierarchy_level,
            self.parent_chunk_id,
            tuple(self.child_chunk_ids),
            tuple(self.sibling_chunk_ids),
            self.content,
            self.content_hash,
        )


# ---------------------------------------------------------------------------
# Chunking configuration and loader metadata
# ---------------------------------------------------------------------------
class ChunkingConfig(BaseModel):
    """Tunable parameters of the hierarchical chunker."""

    model_config = ConfigDict(frozen=True)

    strategy: ChunkStrategy = ChunkStrategy.SEMANTIC
    max_tokens: int = Field(default=512, ge=1)
    min_tokens: int = Field(default=50, ge=0)
    overlap_tokens: int = Field(default=50, ge=0)
    similarity_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    document_max_tokens: int = Field(
        default=8000,
        ge=1,
        description="Largest document that still gets a document-scale root chunk.",
    )
    sibling_window: int = Field(default=2, ge=1)


class DocumentMetadata(BaseModel):
    """Structure metadata supplied by the document loader."""

    model_config = ConfigDict(frozen=True)

    filename: str = ""
    total_pages: int = Field(default=0, ge=0)
    structural_hints: list[str] = Field(
        default_factory=list,
        description="Lines the loader knows to be headings (e.g. from a PDF outline).",
    )


class LoadedDocument(BaseModel):
    """Raw text plus metadata for one source document."""

    model_config = ConfigDict(frozen=True)

    source_id: str = Field(min_length=1)
    text: str
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
