"""Building blocks for chunk-level deduplicating backup: hash-file traces, file reading, indexing, rewriting and restore caching."""

__version__ = "0.1.0"