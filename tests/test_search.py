import heapq
import math
import sqlite3
import struct

import pytest

from vechnsw import timing
from vechnsw.edges import insert_edge
from vechnsw.nodes import insert_node
from vechnsw.search import (
    HybridVisited,
    MaxCandidate,
    MinCandidate,
    SearchContext,
    print_search_timing_stats,
    reset_search_timing_stats,
    search_hnsw,
    search_layer,
)

TABLE = "test_table"
COLUMN = "embedding"


def pack(values):
    return struct.pack(f"<{len(values)}f", *values)


def l2(query, blob):
    stored = struct.unpack(f"<{len(blob) // 4}f", blob)
    return math.sqrt(sum((a - b) ** 2 for a, b in zip(query, stored)))


@pytest.fixture
def db():
    conn = sqlite3.connect(":memory:")
    conn.execute(
        f"CREATE TABLE {TABLE}_{COLUMN}_hnsw_nodes "
        "(rowid INTEGER PRIMARY KEY, level INTEGER NOT NULL, vector BLOB NOT NULL)"
    )
    conn.execute(
        f"CREATE TABLE {TABLE}_{COLUMN}_hnsw_edges "
        "(from_rowid INTEGER, to_rowid INTEGER, level INTEGER, distance REAL, "
        "PRIMARY KEY (from_rowid, to_rowid, level))"
    )
    yield conn
    conn.close()


@pytest.fixture
def line_graph(db):
    """Five points on the x axis; node 5 also lives on level 1, linked to node 1."""
    for rowid in range(1, 6):
        level = 1 if rowid in (1, 5) else 0
        insert_node(db, TABLE, COLUMN, rowid, level, pack([float(rowid), 0.0, 0.0]))
    for a in range(1, 6):
        for b in range(1, 6):
            if a != b:
                insert_edge(db, TABLE, COLUMN, a, b, 0)
    insert_edge(db, TABLE, COLUMN, 5, 1, 1)
    insert_edge(db, TABLE, COLUMN, 1, 5, 1)
    return db


def context(db, query, **kwargs):
    return SearchContext(
        db=db, table_name=TABLE, column_name=COLUMN, query=query, distance=l2, **kwargs
    )


@pytest.fixture
def timing_on():
    timing.set_timing_enabled(True)
    reset_search_timing_stats()
    yield
    reset_search_timing_stats()
    timing.set_timing_enabled(False)


def test_search_empty_index(db):
    ctx = context(db, [1.0, 2.0, 3.0])
    assert search_hnsw(ctx, -1, -1, 5) == []


def test_search_single_node(db):
    insert_node(db, TABLE, COLUMN, 1, 0, pack([1.0, 2.0, 3.0]))
    ctx = context(db, [1.0, 2.0, 3.0], num_nodes=1)
    results = search_hnsw(ctx, 1, 0, 1)
    assert len(results) == 1
    assert results[0][0] == 1
    assert results[0][1] < 0.001


def test_search_candidate_ordering():
    min_heap = []
    for candidate in (MinCandidate(1, 0.5), MinCandidate(2, 0.3), MinCandidate(3, 0.7)):
        heapq.heappush(min_heap, candidate)
    first = heapq.heappop(min_heap)
    assert first.rowid == 2
    assert abs(first.distance - 0.3) < 0.001
    second = heapq.heappop(min_heap)
    assert second.rowid == 1
    assert abs(second.distance - 0.5) < 0.001

    max_heap = []
    for candidate in (MaxCandidate(1, 0.5), MaxCandidate(2, 0.3), MaxCandidate(3, 0.7)):
        heapq.heappush(max_heap, candidate)
    first = heapq.heappop(max_heap)
    assert first.rowid == 3
    assert abs(first.distance - 0.7) < 0.001
    second = heapq.heappop(max_heap)
    assert second.rowid == 1
    assert abs(second.distance - 0.5) < 0.001


def test_hybrid_visited_dense_and_overflow():
    visited = HybridVisited(10)
    assert visited.add(3) is True
    assert visited.add(3) is False
    assert 3 in visited
    assert 4 not in visited
    for outlier in (0, -7, 1000):
        assert outlier not in visited
        assert visited.add(outlier) is True
        assert visited.add(outlier) is False
        assert outlier in visited


def test_multilevel_search_returns_nearest_in_order(line_graph):
    ctx = context(line_graph, [1.0, 0.0, 0.0], num_nodes=5)
    results = search_hnsw(ctx, 5, 1, 3)
    assert [rowid for rowid, _ in results] == [1, 2, 3]
    assert [round(dist, 6) for _, dist in results] == [0.0, 1.0, 2.0]


def test_ef_search_never_below_k(line_graph):
    ctx = context(line_graph, [3.0, 0.0, 0.0])
    results = search_hnsw(ctx, 1, 0, 5, ef_search=1)
    assert len(results) == 5
    assert results[0][0] == 3
    distances = [dist for _, dist in results]
    assert distances == sorted(distances)


def test_convert_distance_applied_to_output(line_graph):
    ctx = context(line_graph, [2.0, 0.0, 0.0], convert_distance=lambda d: d * 10)
    results = search_hnsw(ctx, 1, 0, 2)
    assert results[0] == (2, 0.0)
    assert results[1][1] == pytest.approx(10.0)


def test_search_layer_limits_results_to_ef(line_graph):
    ctx = context(line_graph, [5.0, 0.0, 0.0])
    results = search_layer(ctx, 1, 2, 0)
    assert [rowid for rowid, _ in results] == [5, 4]


def test_search_layer_uses_only_given_level(line_graph):
    ctx = context(line_graph, [3.0, 0.0, 0.0])
    results = search_layer(ctx, 5, 10, 1)
    assert sorted(rowid for rowid, _ in results) == [1, 5]


def test_missing_entry_node_raises(db):
    ctx = context(db, [1.0, 0.0, 0.0])
    with pytest.raises(ValueError, match="Entry point node 42 not found"):
        search_hnsw(ctx, 42, 0, 1)


def test_invalid_ef_raises(line_graph):
    ctx = context(line_graph, [1.0, 0.0, 0.0])
    with pytest.raises(ValueError):
        search_layer(ctx, 1, 0, 0)


def test_timing_stats_printed_and_reset(line_graph, timing_on, capsys):
    ctx = context(line_graph, [1.0, 0.0, 0.0])
    search_hnsw(ctx, 1, 0, 3)
    print_search_timing_stats()
    err = capsys.readouterr().err
    assert "=== SEARCH_LAYER BREAKDOWN ===" in err
    assert "neighbors:      4" in err
    assert "Batch size distribution (1 fetches):" in err

    reset_search_timing_stats()
    print_search_timing_stats()
    err = capsys.readouterr().err
    assert "loop_iters:     0" in err
    assert "Batch size distribution" not in err


def test_timing_stats_silent_when_disabled(line_graph, capsys):
    timing.set_timing_enabled(False)
    ctx = context(line_graph, [1.0, 0.0, 0.0])
    search_hnsw(ctx, 1, 0, 3)
    print_search_timing_stats()
    assert capsys.readouterr().err == ""