"""Edge storage for the HNSW graph kept in a SQLite shadow table.

Each indexed vector column owns a table named ``<table>_<column>_hnsw_edges``
with the columns ``from_rowid``, ``to_rowid``, ``level`` and ``distance``.
An edge is directed and belongs to one level of the graph.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Iterator, Sequence
from typing import TypeVar

from vechnsw.nodes import HnswNode, nodes_table_name

# SQLite's classic limit is 999 bound parameters per statement.
_MAX_EDGES_PER_BATCH = 249  # four parameters per edge
_MAX_TO_ROWIDS_PER_BATCH = 997  # two parameters are taken by from_rowid and level

_T = TypeVar("_T")

Edge = tuple[int, int, int, float]


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _chunks(items: Sequence[_T], size: int) -> Iterator[Sequence[_T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def edges_table_name(table_name: str, column_name: str) -> str:
    """Return the name of the edge table for a vector column."""
    return f"{table_name}_{column_name}_hnsw_edges"


def fetch_neighbors(
    db: sqlite3.Connection,
    table_name: str,
    column_name: str,
    from_rowid: int,
    level: int,
) -> list[int]:
    """Return the rowids that ``from_rowid`` points to at ``level``."""
    table = _quote(edges_table_name(table_name, column_name))
    cursor = db.execute(
        f"SELECT to_rowid FROM {table} WHERE from_rowid = ? AND level = ?",
        (from_rowid, level),
    )
    return [row[0] for row in cursor]


def fetch_neighbors_with_distances(
    db: sqlite3.Connection,
    table_name: str,
    column_name: str,
    from_rowid: int,
    level: int,
) -> list[tuple[int, float]]:
    """Return ``(to_rowid, distance)`` pairs for the edges of a node at ``level``.

    Raises ValueError if an edge has no stored distance.
    """
    table = _quote(edges_table_name(table_name, column_name))
    cursor = db.execute(
        f"SELECT to_rowid, distance FROM {table} WHERE from_rowid = ? AND level = ?",
        (from_rowid, level),
    )
    neighbors: list[tuple[int, float]] = []
    for to_rowid, distance in cursor:
        if distance is None:
            raise ValueError(
                f"edge {from_rowid} -> {to_rowid} at level {level} has no distance"
            )
        neighbors.append((to_rowid, float(distance)))
    return neighbors


def insert_edge(
    db: sqlite3.Connection,
    table_name: str,
    column_name: str,
    from_rowid: int,
    to_rowid: int,
    level: int,
) -> None:
    """Add one directed edge; an edge that already exists is left as it is."""
    table = _quote(edges_table_name(table_name, column_name))
    db.execute(
        f"INSERT OR IGNORE INTO {table} (from_rowid, to_rowid, level) VALUES (?, ?, ?)",
        (from_rowid, to_rowid, level),
    )


def insert_edges_batch(
    db: sqlite3.Connection,
    table_name: str,
    column_name: str,
    edges: Iterable[Edge],
) -> None:
    """Add many edges given as ``(from_rowid, to_rowid, level, distance)``.

    Edges are written with multi-row inserts; existing edges are kept.
    """
    pending = list(edges)
    if not pending:
        return
    table = _quote(edges_table_name(table_name, column_name))
    for chunk in _chunks(pending, _MAX_EDGES_PER_BATCH):
        placeholders = ",".join(["(?,?,?,?)"] * len(chunk))
        params: list[int | float] = []
        for from_rowid, to_rowid, level, distance in chunk:
            params.extend((from_rowid, to_rowid, level, float(distance)))
        db.execute(
            f"INSERT OR IGNORE INTO {table} (from_rowid, to_rowid, level, distance) "
            f"VALUES {placeholders}",
            params,
        )


def delete_edges_batch(
    db: sqlite3.Connection,
    table_name: str,
    column_name: str,
    from_rowid: int,
    level: int,
    to_rowids: Iterable[int],
) -> None:
    """Remove the edges from ``from_rowid`` at ``level`` to each of ``to_rowids``."""
    targets = list(to_rowids)
    if not targets:
        return
    table = _quote(edges_table_name(table_name, column_name))
    for chunk in _chunks(targets, _MAX_TO_ROWIDS_PER_BATCH):
        placeholders = ",".join("?" * len(chunk))
        db.execute(
            f"DELETE FROM {table} WHERE from_rowid = ? AND level = ? "
            f"AND to_rowid IN ({placeholders})",
            (from_rowid, level, *chunk),
        )


def delete_edges_from_level(
    db: sqlite3.Connection,
    table_name: str,
    column_name: str,
    from_rowid: int,
    level: int,
) -> None:
    """Remove every outgoing edge of ``from_rowid`` at ``level``."""
    table = _quote(edges_table_name(table_name, column_name))
    db.execute(
        f"DELETE FROM {table} WHERE from_rowid = ? AND level = ?",
        (from_rowid, level),
    )


def fetch_neighbor_nodes_joined(
    db: sqlite3.Connection,
    table_name: str,
    column_name: str,
    from_rowid: int,
    level: int,
) -> list[HnswNode]:
    """Return the neighbour nodes of ``from_rowid`` at ``level`` in one query.

    Edges pointing to nodes that do not exist are left out.
    """
    edges = _quote(edges_table_name(table_name, column_name))
    nodes = _quote(nodes_table_name(table_name, column_name))
    cursor = db.execute(
        f"SELECT n.rowid, n.level, n.vector FROM {edges} e "
        f"JOIN {nodes} n ON e.to_rowid = n.rowid "
        f"WHERE e.from_rowid = ? AND e.level = ?",
        (from_rowid, level),
    )
    return [
        HnswNode(rowid=rowid, level=node_level, vector=bytes(vector or b""))
        for rowid, node_level, vector in cursor
    ]