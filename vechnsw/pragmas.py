"""SQLite pragma presets tuned for HNSW workloads."""

from __future__ import annotations

import sqlite3

_COMMON_PRAGMAS = (
    # 64 MB page cache (a negative value is in KiB).
    "PRAGMA cache_size = -64000",
    "PRAGMA temp_store = MEMORY",
)

_DISK_PRAGMAS = (
    "PRAGMA journal_mode = WAL",
    # NORMAL is safe with WAL and much faster than FULL.
    "PRAGMA synchronous = NORMAL",
    *_COMMON_PRAGMAS,
    # 256 MB of memory-mapped I/O.
    "PRAGMA mmap_size = 268435456",
)


def is_memory_database(db: sqlite3.Connection) -> bool:
    """Tell whether the main database of ``db`` lives in memory.

    Returns False if the database list cannot be read.
    """
    try:
        row = db.execute("PRAGMA database_list").fetchone()
    except sqlite3.Error:
        return False
    if row is None:
        return False
    file = row[2] or ""
    return file == "" or file == ":memory:"


def _apply(db: sqlite3.Connection, statements: tuple[str, ...]) -> None:
    for statement in statements:
        db.execute(statement).fetchall()


def set_inmemory_pragmas(db: sqlite3.Connection) -> None:
    """Apply the minimal pragmas that help in-memory databases."""
    _apply(db, _COMMON_PRAGMAS)


def set_performance_pragmas(db: sqlite3.Connection) -> None:
    """Apply pragmas tuned for disk databases.

    In-memory databases only receive the in-memory preset, since WAL and
    memory mapping would only add overhead there.
    """
    if is_memory_database(db):
        set_inmemory_pragmas(db)
        return
    _apply(db, _DISK_PRAGMAS)