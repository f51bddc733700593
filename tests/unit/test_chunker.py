"""Unit tests for the HierarchicalSemanticChunker and document segmentation."""

from __future__ import annotations

import pytest

from ragcore.models.chunk import ChunkingConfig, ChunkStrategy, DocumentMetadata, ScaleType
from ragcore.models.forest import validate_forest
from ragcore.services.chunking.hierarchical_chunker import (
    TOO_SHORT_QUALITY_CEILING,
    HierarchicalSemanticChunker,
)
from ragcore.services.chunking.segmenter import detect_heading, segment, split_sentences

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _paragraph(tag: str, sentences: int = 4, words_per_sentence: int = 10) -> str:
    """A paragraph of unique words, so adjacent paragraphs share no vocabulary."""
    out = []
    for s in range(sentences):
        words = [f"{tag}w{s}x{i}" for i in range(words_per_sentence)]
        out.append(" ".join(words) + ".")
    return " ".join(out)


def _three_paragraphs() -> str:
    return "\n\n".join(_paragraph(tag) for tag in ("alpha", "beta", "gamma"))


def _config(**overrides) -> ChunkingConfig:
    values = {"max_tokens": 50, "min_tokens": 20, "overlap_tokens": 10}
    values.update(overrides)
    return ChunkingConfig(**values)


# ---------------------------------------------------------------------------
# Segmentation
# ---------------------------------------------------------------------------


class TestSegmentation:
    def test_split_sentences_respects_abbreviations(self) -> None:
        sentences = split_sentences("Dr. Smith signed the memo. The fund closed e.g. on Friday.")
        assert sentences == ["Dr. Smith signed the memo.", "The fund closed e.g. on Friday."]

    def test_markdown_heading_detected_with_level(self) -> None:
        assert detect_heading("## Rollforward Settings") == ("Rollforward Settings", 2)

    def test_sentence_is_not_a_heading(self) -> None:
        assert detect_heading("The fund closes at the end of the month.") is None

    def test_structural_hint_marks_heading(self) -> None:
        hints = frozenset({"fee schedule"})
        assert detect_heading("Fee Schedule", hints) == ("Fee Schedule", 1)

    def test_sections_follow_headings(self, fund_setup_text: str) -> None:
        seg = segment(fund_setup_text)
        headings = [s.heading for s in seg.sections]
        assert headings == ["Fund Setup Guide", "Creating a Fund", "Rollforward Settings", "Fee Accruals"]
        assert seg.sections[2].path == ["Fund Setup Guide", "Rollforward Settings"]

    def test_list_items_become_units(self) -> None:
        seg = segment("Checklist\n\n- open the period\n- post accruals\n- close the period")
        list_units = [u for u in seg.units if u.is_list_item]
        assert [u.text for u in list_units] == ["- open the period", "- post accruals", "- close the period"]

    def test_blank_text_has_no_units(self) -> None:
        assert segment("   \n\n  ").units == []


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------


class TestChunkBoundaries:
    def test_three_paragraphs_make_three_overlapping_chunks(self) -> None:
        chunker = HierarchicalSemanticChunker(_config())
        forest = chunker.chunk("doc-1", _three_paragraphs())

        chunks = forest.chunks
        assert len(chunks) == 3
        assert all(c.scale_type is ScaleType.PARAGRAPH for c in chunks)
        assert all(c.token_count <= 50 for c in chunks)
        assert [c.token_count for c in chunks] == [40, 50, 50]

        first_tail = chunks[0].content.split()[-10:]
        assert chunks[1].content.split()[:10] == first_tail
        assert "betaw0x0" in chunks[1].content
        assert "gammaw0x0" in chunks[2].content

    def test_chunks_respect_max_tokens(self) -> None:
        text = "\n\n".join(_paragraph(f"p{i}", sentences=6) for i in range(5))
        forest = HierarchicalSemanticChunker(_config(max_tokens=35, min_tokens=10, overlap_tokens=5)).chunk(
            "doc-2", text
        )
        assert len(forest) > 1
        assert all(c.token_count <= 35 for c in forest)

    def test_boundaries_below_min_tokens_are_suppressed(self) -> None:
        text = "\n\n".join(_paragraph(tag, sentences=1, words_per_sentence=5) for tag in ("a", "b", "c"))
        forest = HierarchicalSemanticChunker(_config()).chunk("doc-3", text)

        assert len(forest) == 1
        chunk = forest.chunks[0]
        assert chunk.token_count == 15
        assert any(b.kind.value == "suppressed" for b in chunk.semantic_boundaries)

    def test_only_last_chunk_may_be_short(self) -> None:
        text = "\n\n".join(_paragraph(f"q{i}") for i in range(4)) + "\n\n" + _paragraph(
            "tail", sentences=1, words_per_sentence=3
        )
        chunks = HierarchicalSemanticChunker(_config()).chunk("doc-4", text).chunks
        assert len(chunks) >= 2
        for index, chunk in enumerate(chunks[:-1]):
            overlap = 0 if index == 0 else 10
            assert chunk.token_count - overlap >= 20

    def test_too_short_chunk_quality_is_capped(self) -> None:
        forest = HierarchicalSemanticChunker(_config()).chunk("doc-5", "Only a few words here.")
        assert len(forest) == 1
        assert forest.chunks[0].quality_score <= TOO_SHORT_QUALITY_CEILING

    def test_oversized_sentence_is_split(self) -> None:
        sentence = " ".join(f"word{i}" for i in range(120)) + "."
        forest = HierarchicalSemanticChunker(_config()).chunk("doc-6", sentence)
        assert len(forest) >= 3
        assert all(c.token_count <= 50 for c in forest)

    def test_scores_within_unit_interval(self, fund_setup_text: str) -> None:
        forest = HierarchicalSemanticChunker(_config()).chunk("guide", fund_setup_text)
        for chunk in forest:
            assert 0.0 <= chunk.quality_score <= 1.0
            assert 0.0 <= chunk.coherence_score <= 1.0
            assert all(0.0 <= b.confidence <= 1.0 for b in chunk.semantic_boundaries)


class TestForestStructure:
    def test_forest_is_valid(self, fund_setup_text: str) -> None:
        forest = HierarchicalSemanticChunker(_config()).chunk("guide", fund_setup_text)
        assert validate_forest(forest.chunks) == []
        assert forest.validate() == []

    def test_multi_section_document_gets_document_root(self, fund_setup_text: str) -> None:
        forest = HierarchicalSemanticChunker(_config()).chunk("guide", fund_setup_text)
        roots = forest.roots()
        assert len(roots) == 1
        assert roots[0].scale_type is ScaleType.DOCUMENT
        assert roots[0].hierarchy_level == 0
        assert all(c.hierarchy_level >= 1 for c in forest if c is not roots[0])

    def test_sequence_order_is_preorder(self, fund_setup_text: str) -> None:
        forest = HierarchicalSemanticChunker(_config()).chunk("guide", fund_setup_text)
        orders = [c.sequence_order for c in forest]
        assert orders == list(range(len(forest)))
        for chunk in forest:
            for child_id in chunk.child_chunk_ids:
                assert forest.get(child_id).sequence_order > chunk.sequence_order

    def test_hierarchy_path_uses_filename_as_title(self, fund_setup_text: str) -> None:
        forest = HierarchicalSemanticChunker(_config()).chunk(
            "guides/fund_setup.md",
            fund_setup_text,
            metadata=DocumentMetadata(filename="fund_setup.md"),
        )
        assert all(c.hierarchy_path[0] == "fund_setup.md" for c in forest)

    def test_chunks_carry_source_and_version(self, fund_setup_text: str) -> None:
        forest = HierarchicalSemanticChunker(_config()).chunk("guide", fund_setup_text, version_id=4)
        assert {c.source_id for c in forest} == {"guide"}
        assert {c.version_id for c in forest} == {4}


class TestDeterminismAndEdgeCases:
    def test_same_input_same_forest(self, fund_setup_text: str) -> None:
        chunker = HierarchicalSemanticChunker(_config())
        first = [c.structure_key() for c in chunker.chunk("guide", fund_setup_text)]
        second = [c.structure_key() for c in chunker.chunk("guide", fund_setup_text)]
        assert first == second

    def test_ids_differ_between_sources(self) -> None:
        chunker = HierarchicalSemanticChunker(_config())
        a = {c.chunk_id for c in chunker.chunk("a", _three_paragraphs())}
        b = {c.chunk_id for c in chunker.chunk("b", _three_paragraphs())}
        assert a.isdisjoint(b)

    @pytest.mark.parametrize("text", ["", "   ", "\n\n\t\n"])
    def test_empty_document_gives_empty_forest(self, text: str) -> None:
        assert len(HierarchicalSemanticChunker().chunk("empty", text)) == 0

    def test_malformed_metadata_is_defaulted(self) -> None:
        forest = HierarchicalSemanticChunker(_config()).chunk(
            "doc", _three_paragraphs(), metadata={"total_pages": "many"}
        )
        assert len(forest) == 3

    def test_invalid_config_mapping_falls_back_to_default(self) -> None:
        chunker = HierarchicalSemanticChunker(_config())
        forest = chunker.chunk("doc", _three_paragraphs(), config={"max_tokens": -5})
        assert len(forest) == 3

    def test_overlap_larger_than_max_is_clamped(self) -> None:
        cfg = ChunkingConfig(max_tokens=40, min_tokens=10, overlap_tokens=80)
        forest = HierarchicalSemanticChunker(cfg).chunk("doc", _three_paragraphs())
        assert len(forest) > 0
        assert all(c.token_count <= 40 for c in forest)

    def test_section_strategy_keeps_sections_whole(self, fund_setup_text: str) -> None:
        cfg = _config(strategy=ChunkStrategy.SECTION, max_tokens=200, min_tokens=5, overlap_tokens=0)
        forest = HierarchicalSemanticChunker(cfg).chunk("guide", fund_setup_text)
        section_chunks = forest.by_scale(ScaleType.SECTION)
        assert any("Rollforward Settings" in c.content for c in section_chunks)
        assert validate_forest(forest.chunks) == []
