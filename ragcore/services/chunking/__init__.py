"""Hierarchical semantic chunking: segmentation plus forest construction."""

from ragcore.services.chunking.hierarchical_chunker import (
    TOO_SHORT_QUALITY_CEILING,
    HierarchicalSemanticChunker,
)
from ragcore.services.chunking.segmenter import detect_heading, segment, split_sentences

__all__ = [
    "HierarchicalSemanticChunker",
    "TOO_SHORT_QUALITY_CEILING",
    "detect_heading",
    "segment",
    "split_sentences",
]
