"""Command-line interface for the ragcore ingestion and retrieval core.

Run with ``python -m ragcore.cli <command>``:

- ``ingest``   -- ingest sources from the documents directory
- ``retrieve`` -- print the context set for a query
- ``validate`` -- grade stored chunks of a source or the whole corpus
- ``jobs``     -- list recent ingestion jobs or show one
- ``repair``   -- re-embed chunks with missing embeddings
- ``delete``   -- remove a source and its chunks
- ``stats``    -- show pipeline, cache and retrieval statistics
"""
