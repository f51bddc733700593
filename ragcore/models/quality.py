"""Quality validation models.

A :class:`ValidationReport` grades a source (or the whole corpus) on six
weighted categories and itemizes every :class:`QualityViolation` with a
remediation the operator can act on.  Reports are read-only snapshots;
validation never changes stored data.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ragcore.models.chunk import EmbeddingType
from ragcore.models.embedding import ALL_EMBEDDING_TYPES


class QualityGrade(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    VERY_POOR = "very_poor"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Remediation(str, Enum):
    RECHUNK = "re-chunk"
    REEMBED = "re-embed"
    MERGE_NEAR_DUPLICATES = "merge near-duplicates"
    REMOVE_DUPLICATE = "remove duplicate"
    REINGEST = "re-ingest"


class ViolationKind(str, Enum):
    EMPTY_CHUNK = "empty_chunk"
    NEAR_EMPTY_CHUNK = "near_empty_chunk"
    EXACT_DUPLICATE = "exact_duplicate"
    NEAR_DUPLICATE = "near_duplicate"
    MISSING_EMBEDDING = "missing_embedding"
    INVALID_EMBEDDING = "invalid_embedding"
    SCORE_OUT_OF_RANGE = "score_out_of_range"
    BROKEN_RELATION = "broken_relation"


class QualityCategory(str, Enum):
    CONTENT = "content"
    DUPLICATES = "duplicates"
    COMPLETENESS = "completeness"
    VALIDITY = "validity"
    SCORE_RANGES = "score_ranges"
    STRUCTURE = "structure"


CATEGORY_WEIGHTS: dict[QualityCategory, float] = {
    QualityCategory.CONTENT: 0.25,
    QualityCategory.DUPLICATES: 0.20,
    QualityCategory.COMPLETENESS: 0.20,
    QualityCategory.VALIDITY: 0.15,
    QualityCategory.SCORE_RANGES: 0.10,
    QualityCategory.STRUCTURE: 0.10,
}


class ValidationConfig(BaseModel):
    """Thresholds used by the quality validator."""

    model_config = ConfigDict(frozen=True)

    expected_embedding_types: list[EmbeddingType] = Field(
        default_factory=lambda: list(ALL_EMBEDDING_TYPES)
    )
    expected_dimension: int | None = Field(
        default=None,
        description="Vector length every embedding must have; None accepts any consistent length.",
    )
    near_empty_tokens: int = Field(default=5, ge=0)
    near_duplicate_threshold: float = Field(default=0.9, ge=0.0, le=1.0)
    norm_tolerance: float = Field(
        default=0.1,
        ge=0.0,
        description="Allowed |norm - 1| for providers that return unit vectors.",
    )
    expect_unit_norm: bool = False
    store_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Deadline for each vector-store read made by validate().",
    )


class QualityViolation(BaseModel):
    """One itemized finding of a validation run."""

    model_config = ConfigDict(frozen=True)

    kind: ViolationKind
    category: QualityCategory
    severity: Severity
    chunk_ids: list[str] = Field(default_factory=list)
    message: str
    remediation: Remediation


class ValidationReport(BaseModel):
    """Graded outcome of validating a source or the whole corpus."""

    model_config = ConfigDict(frozen=True)

    scope: str = Field(description='A source_id, or "all" for the whole corpus.')
    total_chunks: int = Field(default=0, ge=0)
    category_scores: dict[QualityCategory, float] = Field(default_factory=dict)
    overall_score: float = Field(default=100.0, ge=0.0, le=100.0)
    grade: QualityGrade = QualityGrade.EXCELLENT
    violations: list[QualityViolation] = Field(default_factory=list)
    validated_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def violations_of(self, kind: ViolationKind) -> list[QualityViolation]:
        return [v for v in self.violations if v.kind == kind]

    @property
    def remediations(self) -> list[Remediation]:
        """Distinct remediations in order of first appearance."""
        seen: dict[Remediation, None] = {}
        for violation in self.violations:
            seen.setdefault(violation.remediation, None)
        return list(seen)
