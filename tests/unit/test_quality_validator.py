"""Unit tests for QualityValidator: category checks, scoring and grading."""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest

from ragcore.models.chunk import Chunk, EmbeddingType, ScaleType
from ragcore.models.quality import (
    CATEGORY_WEIGHTS,
    QualityCategory,
    QualityGrade,
    Remediation,
    Severity,
    ValidationConfig,
    ViolationKind,
)
from ragcore.providers.vector_store.memory_vector_store import MemoryVectorStoreProvider
from ragcore.services.validation.quality_validator import QualityValidator, grade_for
from ragcore.utils.errors import ConfigurationError, StoreUnavailableError
from ragcore.utils.text import sha256_hex

_TEXTS = [
    "Open the administration console and choose the option to create a new fund.",
    "Management fee accruals are calculated daily on the net asset value.",
    "Custody reconciliation runs every morning against the custodian statement.",
    "Investor reporting packs are assembled from the monthly valuation.",
]

_UNIT = [1.0, 0.0, 0.0, 0.0]


def _root(
    chunk_id: str,
    content: str,
    sequence_order: int = 0,
    source_id: str = "guide",
    scale_type: ScaleType = ScaleType.PARAGRAPH,
    embeddings: dict | None = None,
) -> Chunk:
    return Chunk(
        chunk_id=chunk_id,
        source_id=source_id,
        sequence_order=sequence_order,
        scale_type=scale_type,
        content=content,
        token_count=len(content.split()),
        quality_score=0.7,
        coherence_score=0.6,
        content_hash=sha256_hex(content),
        embeddings=embeddings if embeddings is not None else {t: list(_UNIT) for t in EmbeddingType},
    )


def _clean_set() -> list[Chunk]:
    return [_root(f"c{i}", text, i) for i, text in enumerate(_TEXTS)]


class TestGrading:
    @pytest.mark.parametrize(
        "score, grade",
        [
            (100.0, QualityGrade.EXCELLENT),
            (90.0, QualityGrade.EXCELLENT),
            (89.99, QualityGrade.GOOD),
            (80.0, QualityGrade.GOOD),
            (70.0, QualityGrade.FAIR),
            (60.0, QualityGrade.POOR),
            (59.9, QualityGrade.VERY_POOR),
            (0.0, QualityGrade.VERY_POOR),
        ],
    )
    def test_grade_floors(self, score: float, grade: QualityGrade) -> None:
        assert grade_for(score) is grade

    def test_weights_sum_to_one(self) -> None:
        assert sum(CATEGORY_WEIGHTS.values()) == pytest.approx(1.0)


class TestValidateChunks:
    def test_clean_set_is_excellent(self) -> None:
        report = QualityValidator().validate_chunks(_clean_set(), scope="guide")

        assert report.overall_score == 100.0
        assert report.grade is QualityGrade.EXCELLENT
        assert report.violations == []
        assert report.total_chunks == 4
        assert set(report.category_scores) == set(QualityCategory)

    def test_empty_scope_is_very_poor(self) -> None:
        report = QualityValidator().validate_chunks([], scope="nothing")

        assert report.total_chunks == 0
        assert report.overall_score == 0.0
        assert report.grade is QualityGrade.VERY_POOR

    def test_nan_embedding_is_critical(self) -> None:
        chunks = _clean_set()
        broken = dict(chunks[1].embeddings)
        broken[EmbeddingType.CONTENT] = [float("nan"), 0.0, 0.0, 0.0]
        chunks[1] = chunks[1].model_copy(update={"embeddings": broken})

        report = QualityValidator().validate_chunks(chunks)

        found = report.violations_of(ViolationKind.INVALID_EMBEDDING)
        assert len(found) == 1
        assert found[0].severity is Severity.CRITICAL
        assert found[0].chunk_ids == ["c1"]
        assert found[0].remediation is Remediation.REEMBED
        assert report.category_scores[QualityCategory.VALIDITY] == pytest.approx(1 - 1 / 16)

    def test_missing_embedding_lowers_completeness(self) -> None:
        chunks = _clean_set()
        partial = {t: list(_UNIT) for t in EmbeddingType if t is not EmbeddingType.SEMANTIC}
        chunks[2] = chunks[2].model_copy(update={"embeddings": partial})

        report = QualityValidator().validate_chunks(chunks)

        found = report.violations_of(ViolationKind.MISSING_EMBEDDING)
        assert [v.chunk_ids for v in found] == [["c2"]]
        assert "semantic" in found[0].message
        assert report.category_scores[QualityCategory.COMPLETENESS] == pytest.approx(0.9375)
        assert report.overall_score == pytest.approx(98.75)
        assert Remediation.REEMBED in report.remediations

    def test_exact_duplicates(self) -> None:
        chunks = _clean_set() + [_root("dup", _TEXTS[0], 4)]

        report = QualityValidator().validate_chunks(chunks)

        found = report.violations_of(ViolationKind.EXACT_DUPLICATE)
        assert len(found) == 1
        assert set(found[0].chunk_ids) == {"c0", "dup"}
        assert report.category_scores[QualityCategory.DUPLICATES] == pytest.approx(1 - 1 / 5)

    def test_near_duplicates_same_scale_only(self) -> None:
        base = "The fund administrator approves the period close every single month."
        variant = "The fund administrator approves the period close every single month end."
        same_scale = _clean_set() + [_root("n1", base, 4), _root("n2", variant, 5)]
        report = QualityValidator().validate_chunks(same_scale)
        assert len(report.violations_of(ViolationKind.NEAR_DUPLICATE)) == 1

        cross_scale = _clean_set() + [
            _root("n1", base, 4),
            _root("n2", variant, 5, scale_type=ScaleType.SECTION),
        ]
        report = QualityValidator().validate_chunks(cross_scale)
        assert report.violations_of(ViolationKind.NEAR_DUPLICATE) == []

    def test_empty_and_near_empty_content(self) -> None:
        chunks = _clean_set() + [_root("empty", "", 4), _root("tiny", "Too short.", 5)]

        report = QualityValidator().validate_chunks(chunks)

        empty = report.violations_of(ViolationKind.EMPTY_CHUNK)
        tiny = report.violations_of(ViolationKind.NEAR_EMPTY_CHUNK)
        assert [v.chunk_ids for v in empty] == [["empty"]]
        assert empty[0].severity is Severity.HIGH
        assert [v.chunk_ids for v in tiny] == [["tiny"]]
        assert tiny[0].remediation is Remediation.RECHUNK

    def test_out_of_range_scores(self) -> None:
        chunks = _clean_set()
        chunks[0] = chunks[0].model_copy(update={"quality_score": 1.5})

        report = QualityValidator().validate_chunks(chunks)

        found = report.violations_of(ViolationKind.SCORE_OUT_OF_RANGE)
        assert len(found) == 1
        assert "quality_score=1.5" in found[0].message
        assert report.category_scores[QualityCategory.SCORE_RANGES] == pytest.approx(0.75)

    def test_broken_parent_link(self) -> None:
        orphan = _root("orphan", "Orphaned paragraph whose parent was never stored.", 4).model_copy(
            update={"parent_chunk_id": "ghost", "hierarchy_level": 1}
        )

        report = QualityValidator().validate_chunks(_clean_set() + [orphan])

        found = report.violations_of(ViolationKind.BROKEN_RELATION)
        assert len(found) == 1
        assert found[0].chunk_ids == ["orphan"]
        assert found[0].remediation is Remediation.REINGEST

    def test_expected_dimension(self) -> None:
        chunks = _clean_set()
        short = dict(chunks[3].embeddings)
        short[EmbeddingType.HIERARCHICAL] = [1.0, 0.0, 0.0]
        chunks[3] = chunks[3].model_copy(update={"embeddings": short})

        report = QualityValidator(config=ValidationConfig(expected_dimension=4)).validate_chunks(chunks)

        found = report.violations_of(ViolationKind.INVALID_EMBEDDING)
        assert len(found) == 1
        assert "dimension" in found[0].message

    def test_unit_norm_check_is_optional(self) -> None:
        chunks = _clean_set()
        scaled = dict(chunks[0].embeddings)
        scaled[EmbeddingType.CONTENT] = [2.0, 0.0, 0.0, 0.0]
        chunks[0] = chunks[0].model_copy(update={"embeddings": scaled})

        assert QualityValidator().validate_chunks(chunks).violations == []
        report = QualityValidator(config=ValidationConfig(expect_unit_norm=True)).validate_chunks(chunks)
        found = report.violations_of(ViolationKind.INVALID_EMBEDDING)
        assert len(found) == 1
        assert found[0].severity is Severity.MEDIUM

    def test_validation_does_not_modify_chunks(self) -> None:
        chunks = _clean_set() + [_root("empty", "", 4)]
        before = [c.model_dump() for c in chunks]

        QualityValidator().validate_chunks(chunks)

        assert [c.model_dump() for c in chunks] == before


class TestValidateFromStore:
    @pytest.mark.asyncio
    async def test_validate_single_source(self) -> None:
        store = MemoryVectorStoreProvider()
        await store.upsert_chunks(_clean_set())
        await store.upsert_chunks([_root("x1", "", 0, source_id="other")])
        validator = QualityValidator(store=store)

        guide = await validator.validate("guide")
        corpus = await validator.validate()

        assert guide.scope == "guide"
        assert guide.total_chunks == 4
        assert guide.violations == []
        assert corpus.scope == "all"
        assert corpus.total_chunks == 5
        assert corpus.violations_of(ViolationKind.EMPTY_CHUNK)

    @pytest.mark.asyncio
    async def test_unknown_source_grades_very_poor(self) -> None:
        validator = QualityValidator(store=MemoryVectorStoreProvider())
        report = await validator.validate("missing")
        assert report.grade is QualityGrade.VERY_POOR

    @pytest.mark.asyncio
    async def test_requires_store(self) -> None:
        with pytest.raises(ConfigurationError):
            await QualityValidator().validate("guide")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("method", "source_id"), [("list_chunks", None), ("get_source_chunks", "guide")])
    async def test_hung_store_raises_store_unavailable(self, method: str, source_id: str | None) -> None:
        async def _hang(*_args) -> list[Chunk]:
            await asyncio.sleep(3600)
            return []

        store = MemoryVectorStoreProvider()
        validator = QualityValidator(store=store, config=ValidationConfig(store_timeout_seconds=0.05))

        with patch.object(store, method, side_effect=_hang):
            with pytest.raises(StoreUnavailableError, match="did not answer within 0.05s"):
                await validator.validate(source_id)
