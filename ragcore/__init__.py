"""ragcore: hierarchical chunking, multi-scale embedding and contextual
retrieval for a documentation knowledge base."""

__version__ = "0.1.0"
