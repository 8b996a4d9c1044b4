"""Node storage for the HNSW graph kept in a SQLite shadow table.

Each indexed vector column owns a table named ``<table>_<column>_hnsw_nodes``
with the columns ``rowid``, ``level`` and ``vector``. Nodes are read on demand
so that the graph never has to be held in memory as a whole.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass

# SQLite's classic limit on bound parameters per statement.
_MAX_ROWIDS_PER_BATCH = 999


@dataclass(frozen=True)
class HnswNode:
    """One node of the graph: its rowid, top level and stored vector bytes."""

    rowid: int
    level: int
    vector: bytes


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def nodes_table_name(table_name: str, column_name: str) -> str:
    """Return the name of the node table for a vector column."""
    return f"{table_name}_{column_name}_hnsw_nodes"


def _row_to_node(row: tuple) -> HnswNode:
    rowid, level, vector = row
    return HnswNode(rowid=rowid, level=level, vector=bytes(vector or b""))


def _chunks(items: Sequence[int], size: int) -> Iterator[Sequence[int]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def fetch_node_data(
    db: sqlite3.Connection, table_name: str, column_name: str, rowid: int
) -> HnswNode | None:
    """Return the node stored under ``rowid``, or None if there is none."""
    table = _quote(nodes_table_name(table_name, column_name))
    row = db.execute(
        f"SELECT rowid, level, vector FROM {table} WHERE rowid = ?", (rowid,)
    ).fetchone()
    return None if row is None else _row_to_node(row)


def fetch_node_level(
    db: sqlite3.Connection, table_name: str, column_name: str, rowid: int
) -> int | None:
    """Return only the level of a node, or None if it does not exist."""
    table = _quote(nodes_table_name(table_name, column_name))
    row = db.execute(f"SELECT level FROM {table} WHERE rowid = ?", (rowid,)).fetchone()
    return None if row is None else row[0]


def insert_node(
    db: sqlite3.Connection,
    table_name: str,
    column_name: str,
    rowid: int,
    level: int,
    vector: bytes,
) -> None:
    """Insert a node, replacing any node already stored under ``rowid``."""
    table = _quote(nodes_table_name(table_name, column_name))
    db.execute(
        f"INSERT OR REPLACE INTO {table} (rowid, level, vector) VALUES (?, ?, ?)",
        (rowid, level, bytes(vector)),
    )


def fetch_nodes_batch(
    db: sqlite3.Connection,
    table_name: str,
    column_name: str,
    rowids: Iterable[int],
) -> list[HnswNode]:
    """Fetch every existing node among ``rowids``; missing rowids are skipped."""
    wanted = list(rowids)
    if not wanted:
        return []
    table = _quote(nodes_table_name(table_name, column_name))
    nodes: list[HnswNode] = []
    for chunk in _chunks(wanted, _MAX_ROWIDS_PER_BATCH):
        placeholders = ",".join("?" * len(chunk))
        cursor = db.execute(
            f"SELECT rowid, level, vector FROM {table} WHERE rowid IN ({placeholders})",
            tuple(chunk),
        )
        nodes.extend(_row_to_node(row) for row in cursor)
    return nodes


def get_nodes_at_level(
    db: sqlite3.Connection, table_name: str, column_name: str, level: int
) -> list[int]:
    """Return, in rowid order, the rowids of all nodes present at ``level``.

    A node whose top level is L is present on every level from 0 to L.
    """
    table = _quote(nodes_table_name(table_name, column_name))
    cursor = db.execute(
        f"SELECT rowid FROM {table} WHERE level >= ? ORDER BY rowid", (level,)
    )
    return [row[0] for row in cursor]


def count_nodes(db: sqlite3.Connection, table_name: str, column_name: str) -> int:
    """Return the number of nodes in the index."""
    table = _quote(nodes_table_name(table_name, column_name))
    return db.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]