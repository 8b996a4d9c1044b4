"""Maintenance operations on the HNSW shadow tables."""

from __future__ import annotations

import sqlite3

from vechnsw.edges import edges_table_name
from vechnsw.nodes import nodes_table_name


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def clear_hnsw_tables(db: sqlite3.Connection, table_name: str, column_name: str) -> None:
    """Delete every node and edge of the index on one vector column.

    The tables themselves are kept, so prepared statements stay valid.
    """
    for name in (
        nodes_table_name(table_name, column_name),
        edges_table_name(table_name, column_name),
    ):
        db.execute(f"DELETE FROM {_quote(name)}")