"""Node and edge storage, layer search and tuning helpers for an HNSW graph kept in SQLite tables."""

__version__ = "0.1.0"
__all__ = ["edges", "nodes", "pragmas", "rebuild", "search", "timing"]