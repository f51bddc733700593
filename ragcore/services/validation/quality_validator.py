"""Offline quality audit of stored chunks and their embeddings.

The validator reads a source (or the whole corpus) from the vector store
and grades it on six categories.  It only reports: nothing is written
back, and a bad report never blocks ingestion unless the orchestrator is
configured with a hard quality gate.

─── CATEGORIES ───────────────────────────────────────────────────────

    content        0.25   empty and near-empty chunks
    duplicates     0.20   exact content-hash matches and rapidfuzz
                          near-duplicates among chunks of the same scale
    completeness   0.20   every expected embedding type present
    validity       0.15   dimension, finite values, non-zero norm and
                          (optionally) unit magnitude
    score_ranges   0.10   quality and coherence scores within [0, 1]
    structure      0.10   forest consistency via ``validate_forest``

Each category scores ``1 - affected / checked`` where *checked* is the
number of chunks (or chunk-type pairs for the embedding categories).
The overall score is the weighted sum scaled to 0-100:

    >= 90 excellent | >= 80 good | >= 70 fair | >= 60 poor | else very poor
"""

from __future__ import annotations

import math
from collections import Counter, defaultdict

import numpy as np
import structlog
from rapidfuzz import fuzz, process

from ragcore.interfaces.vector_store_provider import IVectorStoreProvider
from ragcore.models.chunk import Chunk, EmbeddingType, ScaleType
from ragcore.models.forest import validate_forest
from ragcore.models.quality import (
    CATEGORY_WEIGHTS,
    QualityCategory,
    QualityGrade,
    QualityViolation,
    Remediation,
    Severity,
    ValidationConfig,
    ValidationReport,
    ViolationKind,
)
from ragcore.services.embedding.multi_scale_generator import check_vector
from ragcore.utils.concurrency import with_timeout
from ragcore.utils.errors import ConfigurationError, StoreUnavailableError

logger = structlog.get_logger(logger_name=__name__)

_GRADE_FLOORS: tuple[tuple[float, QualityGrade], ...] = (
    (90.0, QualityGrade.EXCELLENT),
    (80.0, QualityGrade.GOOD),
    (70.0, QualityGrade.FAIR),
    (60.0, QualityGrade.POOR),
)


def grade_for(score: float) -> QualityGrade:
    for floor, grade in _GRADE_FLOORS:
        if score >= floor:
            return grade
    return QualityGrade.VERY_POOR


class QualityValidator:
    """Grades chunk and embedding quality for a source or the corpus.

    Parameters
    ----------
    store:
        Vector store to read chunks from.
    config:
        Thresholds and expectations (embedding types, dimension, norms).
    """

    def __init__(
        self,
        store: IVectorStoreProvider | None = None,
        config: ValidationConfig | None = None,
    ) -> None:
        self._store = store
        self._config = config or ValidationConfig()

    @property
    def config(self) -> ValidationConfig:
        return self._config

    async def validate(self, source_id: str | None = None) -> ValidationReport:
        """Validate one source, or every stored chunk when *source_id* is ``None``."""
        if self._store is None:
            raise ConfigurationError("QualityValidator.validate requires a vector store")
        read = self._store.list_chunks() if source_id is None else self._store.get_source_chunks(source_id)
        timeout = self._config.store_timeout_seconds
        provider = self._store.get_provider_name()
        chunks = await with_timeout(
            read,
            timeout,
            lambda: StoreUnavailableError(
                message=f"Vector store did not answer within {timeout}s", provider_name=provider
            ),
        )
        return self.validate_chunks(chunks, scope=source_id or "all")

    def validate_chunks(self, chunks: list[Chunk], scope: str = "all") -> ValidationReport:
        """Grade an in-memory chunk set.  Pure: *chunks* are not modified."""
        chunks = sorted(chunks, key=lambda c: (c.source_id, c.sequence_order, c.chunk_id))
        total = len(chunks)
        if total == 0:
            logger.warning("quality_validation_empty_scope", scope=scope)
            return ValidationReport(
                scope=scope,
                total_chunks=0,
                category_scores={category: 0.0 for category in CATEGORY_WEIGHTS},
                overall_score=0.0,
                grade=QualityGrade.VERY_POOR,
            )

        expected_types = list(self._config.expected_embedding_types)
        violations: list[QualityViolation] = []
        scores: dict[QualityCategory, float] = {}

        found, affected = self._check_content(chunks)
        violations.extend(found)
        scores[QualityCategory.CONTENT] = 1.0 - affected / total

        found, affected = self._check_duplicates(chunks)
        violations.extend(found)
        scores[QualityCategory.DUPLICATES] = 1.0 - affected / total

        pairs = total * len(expected_types)
        found, missing = self._check_completeness(chunks, expected_types)
        violations.extend(found)
        scores[QualityCategory.COMPLETENESS] = 1.0 - missing / pairs if pairs else 1.0

        found, invalid, present = self._check_validity(chunks)
        violations.extend(found)
        scores[QualityCategory.VALIDITY] = 1.0 - invalid / present if present else 1.0

        found, affected = self._check_score_ranges(chunks)
        violations.extend(found)
        scores[QualityCategory.SCORE_RANGES] = 1.0 - affected / total

        found, affected = self._check_structure(chunks)
        violations.extend(found)
        scores[QualityCategory.STRUCTURE] = 1.0 - affected / total

        scores = {category: max(0.0, min(1.0, s)) for category, s in scores.items()}
        overall = round(100.0 * sum(CATEGORY_WEIGHTS[c] * s for c, s in scores.items()), 2)
        overall = max(0.0, min(100.0, overall))
        report = ValidationReport(
            scope=scope,
            total_chunks=total,
            category_scores=scores,
            overall_score=overall,
            grade=grade_for(overall),
            violations=violations,
        )

        logger.info(
            "quality_validation_complete",
            scope=scope,
            total_chunks=total,
            overall_score=overall,
            grade=report.grade.value,
            violations=dict(Counter(v.kind.value for v in violations)),
        )
        return report

    # ------------------------------------------------------------------
    # Checks.  Each returns its violations plus the count of affected items.
    # ------------------------------------------------------------------

    def _check_content(self, chunks: list[Chunk]) -> tuple[list[QualityViolation], int]:
        violations = []
        for chunk in chunks:
            tokens = len(chunk.content.split())
            if tokens == 0:
                violations.append(
                    QualityViolation(
                        kind=ViolationKind.EMPTY_CHUNK,
                        category=QualityCategory.CONTENT,
                        severity=Severity.HIGH,
                        chunk_ids=[chunk.chunk_id],
                        message=f"Chunk {chunk.chunk_id} of {chunk.source_id} has no content",
                        remediation=Remediation.RECHUNK,
                    )
                )
            elif tokens < self._config.near_empty_tokens:
                violations.append(
                    QualityViolation(
                        kind=ViolationKind.NEAR_EMPTY_CHUNK,
                        category=QualityCategory.CONTENT,
                        severity=Severity.LOW,
                        chunk_ids=[chunk.chunk_id],
                        message=(
                            f"Chunk {chunk.chunk_id} of {chunk.source_id} has only {tokens} tokens "
                            f"(< {self._config.near_empty_tokens})"
                        ),
                        remediation=Remediation.RECHUNK,
                    )
                )
        return violations, len(violations)

    def _check_duplicates(self, chunks: list[Chunk]) -> tuple[list[QualityViolation], int]:
        violations = []
        redundant: set[str] = set()
        by_scale: dict[ScaleType, list[Chunk]] = defaultdict(list)
        for chunk in chunks:
            if chunk.content.strip():
                by_scale[chunk.scale_type].append(chunk)

        for scale, group in by_scale.items():
            by_hash: dict[str, list[Chunk]] = defaultdict(list)
            for chunk in group:
                by_hash[chunk.content_hash].append(chunk)
            for copies in by_hash.values():
                if len(copies) < 2:
                    continue
                ids = [c.chunk_id for c in copies]
                redundant.update(ids[1:])
                violations.append(
                    QualityViolation(
                        kind=ViolationKind.EXACT_DUPLICATE,
                        category=QualityCategory.DUPLICATES,
                        severity=Severity.MEDIUM,
                        chunk_ids=ids,
                        message=f"{len(ids)} {scale.value} chunks share identical content",
                        remediation=Remediation.REMOVE_DUPLICATE,
                    )
                )

            # One representative per hash; exact copies are already reported.
            distinct = list({c.content_hash: c for c in reversed(group)}.values())[::-1]
            if len(distinct) < 2:
                continue
            cutoff = self._config.near_duplicate_threshold * 100.0
            texts = [c.content.lower() for c in distinct]
            matrix = process.cdist(texts, texts, scorer=fuzz.token_sort_ratio, score_cutoff=cutoff)
            rows, cols = np.nonzero(np.triu(matrix, k=1) > cutoff)
            for i, j in zip(rows.tolist(), cols.tolist()):
                first, second = distinct[i], distinct[j]
                redundant.add(second.chunk_id)
                violations.append(
                    QualityViolation(
                        kind=ViolationKind.NEAR_DUPLICATE,
                        category=QualityCategory.DUPLICATES,
                        severity=Severity.LOW,
                        chunk_ids=[first.chunk_id, second.chunk_id],
                        message=(
                            f"{scale.value} chunks {first.chunk_id} and {second.chunk_id} are "
                            f"{matrix[i][j]:.0f}% similar"
                        ),
                        remediation=Remediation.MERGE_NEAR_DUPLICATES,
                    )
                )
        return violations, len(redundant)

    def _check_completeness(
        self,
        chunks: list[Chunk],
        expected: list[EmbeddingType],
    ) -> tuple[list[QualityViolation], int]:
        violations = []
        missing_pairs = 0
        for chunk in chunks:
            missing = chunk.missing_embeddings(expected)
            if not missing:
                continue
            missing_pairs += len(missing)
            violations.append(
                QualityViolation(
                    kind=ViolationKind.MISSING_EMBEDDING,
                    category=QualityCategory.COMPLETENESS,
                    severity=Severity.HIGH,
                    chunk_ids=[chunk.chunk_id],
                    message=f"Chunk {chunk.chunk_id} is missing {', '.join(t.value for t in missing)} embeddings",
                    remediation=Remediation.REEMBED,
                )
            )
        return violations, missing_pairs

    def _expected_dimensions(self, chunks: list[Chunk]) -> dict[EmbeddingType, int]:
        """Configured dimension, else the most common vector length per type."""
        counts: dict[EmbeddingType, Counter[int]] = defaultdict(Counter)
        for chunk in chunks:
            for embedding_type, vector in chunk.embeddings.items():
                counts[embedding_type][len(vector)] += 1
        dims = {}
        for embedding_type, counter in counts.items():
            if self._config.expected_dimension is not None:
                dims[embedding_type] = self._config.expected_dimension
            else:
                # Ties go to the larger length for a stable choice.
                dims[embedding_type] = max(counter.items(), key=lambda kv: (kv[1], kv[0]))[0]
        return dims

    def _check_validity(self, chunks: list[Chunk]) -> tuple[list[QualityViolation], int, int]:
        violations = []
        dims = self._expected_dimensions(chunks)
        invalid = 0
        present = 0
        for chunk in chunks:
            for embedding_type in sorted(chunk.embeddings, key=lambda t: t.value):
                vector = chunk.embeddings[embedding_type]
                present += 1
                reason = check_vector(vector, dims.get(embedding_type))
                severity = Severity.CRITICAL
                if reason is None and self._config.expect_unit_norm:
                    norm = float(np.linalg.norm(np.asarray(vector, dtype=np.float64)))
                    if abs(norm - 1.0) > self._config.norm_tolerance:
                        reason = f"norm {norm:.3f} outside 1 +/- {self._config.norm_tolerance}"
                        severity = Severity.MEDIUM
                if reason is None:
                    continue
                invalid += 1
                violations.append(
                    QualityViolation(
                        kind=ViolationKind.INVALID_EMBEDDING,
                        category=QualityCategory.VALIDITY,
                        severity=severity,
                        chunk_ids=[chunk.chunk_id],
                        message=f"{embedding_type.value} embedding of {chunk.chunk_id}: {reason}",
                        remediation=Remediation.REEMBED,
                    )
                )
        return violations, invalid, present

    def _check_score_ranges(self, chunks: list[Chunk]) -> tuple[list[QualityViolation], int]:
        violations = []
        for chunk in chunks:
            bad = [
                f"{name}={value!r}"
                for name, value in (
                    ("quality_score", chunk.quality_score),
                    ("coherence_score", chunk.coherence_score),
                )
                if not (isinstance(value, (int, float)) and math.isfinite(value) and 0.0 <= value <= 1.0)
            ]
            bad.extend(
                f"boundary confidence={b.confidence!r}"
                for b in chunk.semantic_boundaries
                if not (math.isfinite(b.confidence) and 0.0 <= b.confidence <= 1.0)
            )
            if bad:
                violations.append(
                    QualityViolation(
                        kind=ViolationKind.SCORE_OUT_OF_RANGE,
                        category=QualityCategory.SCORE_RANGES,
                        severity=Severity.MEDIUM,
                        chunk_ids=[chunk.chunk_id],
                        message=f"Chunk {chunk.chunk_id} has out-of-range scores: {', '.join(bad)}",
                        remediation=Remediation.RECHUNK,
                    )
                )
        return violations, len(violations)

    def _check_structure(self, chunks: list[Chunk]) -> tuple[list[QualityViolation], int]:
        issues = validate_forest(chunks)
        by_chunk: dict[str, list[str]] = defaultdict(list)
        for issue in issues:
            by_chunk[issue.chunk_id].append(issue.problem)
        violations = [
            QualityViolation(
                kind=ViolationKind.BROKEN_RELATION,
                category=QualityCategory.STRUCTURE,
                severity=Severity.HIGH,
                chunk_ids=[chunk_id],
                message=f"Chunk {chunk_id}: {'; '.join(problems)}",
                remediation=Remediation.REINGEST,
            )
            for chunk_id, problems in by_chunk.items()
        ]
        return violations, len(by_chunk)
