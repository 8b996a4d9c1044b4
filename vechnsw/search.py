"""Approximate nearest-neighbour search over the stored HNSW graph.

Nodes and edges are read from the shadow tables as the search needs them,
so only the visited set and two small heaps are kept in memory.
"""

from __future__ import annotations

import heapq
import sqlite3
import sys
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from vechnsw.edges import fetch_neighbors
from vechnsw.nodes import HnswNode, fetch_node_data, fetch_nodes_batch
from vechnsw.timing import timing_enabled

# Below this many unvisited neighbours, single-row lookups beat one IN query.
_SMALL_BATCH = 4

_BATCH_BUCKETS = (
    ("1-4", 4),
    ("5-16", 16),
    ("17-32", 32),
    ("33-64", 64),
    ("65+", None),
)

_STAT_NAMES = (
    "fetch_edges",
    "fetch_nodes",
    "distance",
    "visited",
    "loop_iterations",
    "neighbors_fetched",
    "distances_computed",
    "batch_fetch_calls",
)

_stats_lock = threading.Lock()
_stats: dict[str, int] = dict.fromkeys(_STAT_NAMES, 0)
_batch_sizes: dict[str, int] = {label: 0 for label, _ in _BATCH_BUCKETS}


def _record(name: str, amount: int) -> None:
    with _stats_lock:
        _stats[name] += amount


def _record_batch(size: int) -> None:
    label = next(
        label for label, upper in _BATCH_BUCKETS if upper is None or size <= upper
    )
    with _stats_lock:
        _stats["batch_fetch_calls"] += 1
        _batch_sizes[label] += 1


def print_search_timing_stats() -> None:
    """Write the search counters to standard error when timing is on."""
    if not timing_enabled():
        return
    with _stats_lock:
        stats = dict(_stats)
        batches = dict(_batch_sizes)
    lines = [
        "",
        "=== SEARCH_LAYER BREAKDOWN ===",
        f"  fetch_edges:    {stats['fetch_edges'] // 1000}ms",
        f"  fetch_nodes:    {stats['fetch_nodes'] // 1000}ms",
        f"  visited_check:  {stats['visited'] // 1000}ms",
        f"  loop_iters:     {stats['loop_iterations']}",
        f"  neighbors:      {stats['neighbors_fetched']}",
        f"  distances:      {stats['distances_computed']}",
    ]
    total = stats["batch_fetch_calls"]
    if total > 0:
        lines.append("")
        lines.append(f"  Batch size distribution ({total} fetches):")
        for label, _ in _BATCH_BUCKETS:
            count = batches[label]
            lines.append(
                f"    {label + ':':<8}{count} ({count / total * 100.0:.1f}%)"
            )
    print("\n".join(lines), file=sys.stderr)


def reset_search_timing_stats() -> None:
    """Set every search counter back to zero."""
    with _stats_lock:
        for name in _STAT_NAMES:
            _stats[name] = 0
        for label in _batch_sizes:
            _batch_sizes[label] = 0


class HybridVisited:
    """Set of visited rowids.

    Rowids in ``[1, capacity)`` live in a flat byte array; anything else
    (zero, negative or large rowids) falls back to a hash set.
    """

    def __init__(self, capacity: int) -> None:
        self._bits = bytearray(max(int(capacity), 0))
        self._overflow: set[int] = set()

    def _dense(self, rowid: int) -> bool:
        return 0 < rowid < len(self._bits)

    def __contains__(self, rowid: object) -> bool:
        if not isinstance(rowid, int):
            return False
        if self._dense(rowid):
            return bool(self._bits[rowid])
        return rowid in self._overflow

    def add(self, rowid: int) -> bool:
        """Mark ``rowid`` visited; return True if it was not visited before."""
        if self._dense(rowid):
            if self._bits[rowid]:
                return False
            self._bits[rowid] = 1
            return True
        if rowid in self._overflow:
            return False
        self._overflow.add(rowid)
        return True


@dataclass(frozen=True)
class MinCandidate:
    """Candidate to explore; on a heap the closest comes out first."""

    rowid: int
    distance: float

    def __lt__(self, other: MinCandidate) -> bool:
        return self.distance < other.distance


@dataclass(frozen=True)
class MaxCandidate:
    """Current result; on a heap the farthest comes out first."""

    rowid: int
    distance: float

    def __lt__(self, other: MaxCandidate) -> bool:
        return self.distance > other.distance


@dataclass
class SearchContext:
    """Everything a search needs besides where to start.

    ``distance`` is called as ``distance(query, stored_vector_bytes)`` and
    gives the metric the index was built with. ``convert_distance``, when
    given, maps that internal distance to the one reported to callers;
    without it distances are reported unchanged. ``num_nodes`` sizes the
    dense part of the visited set.
    """

    db: sqlite3.Connection
    table_name: str
    column_name: str
    query: Any
    distance: Callable[[Any, bytes], float]
    num_nodes: int = 0
    convert_distance: Callable[[float], float] | None = None


def _fetch_one(ctx: SearchContext, rowid: int) -> HnswNode | None:
    return fetch_node_data(ctx.db, ctx.table_name, ctx.column_name, rowid)


def _fetch_many(ctx: SearchContext, rowids: list[int]) -> list[HnswNode]:
    if len(rowids) <= _SMALL_BATCH:
        return [node for node in map(lambda r: _fetch_one(ctx, r), rowids) if node]
    return fetch_nodes_batch(ctx.db, ctx.table_name, ctx.column_name, rowids)


def search_layer(
    ctx: SearchContext, entry_rowid: int, ef: int, level: int
) -> list[tuple[int, float]]:
    """Search one layer from ``entry_rowid`` keeping the ``ef`` best nodes.

    Returns ``(rowid, distance)`` pairs in internal distance, closest first.
    Raises ValueError if ``ef`` is below 1 or the entry node does not exist.
    """
    if ef < 1:
        raise ValueError(f"ef must be at least 1, got {ef}")
    timed = timing_enabled()

    visited = HybridVisited(max(ctx.num_nodes + 1, ef * 10))
    entry = _fetch_one(ctx, entry_rowid)
    if entry is None:
        raise ValueError(f"Entry point node {entry_rowid} not found")

    entry_distance = float(ctx.distance(ctx.query, entry.vector))
    candidates = [MinCandidate(entry_rowid, entry_distance)]
    results = [MaxCandidate(entry_rowid, entry_distance)]
    visited.add(entry_rowid)

    while candidates:
        candidate = heapq.heappop(candidates)
        if candidate.distance > results[0].distance:
            break
        if timed:
            _record("loop_iterations", 1)

        start = time.perf_counter_ns() if timed else 0
        neighbors = fetch_neighbors(
            ctx.db, ctx.table_name, ctx.column_name, candidate.rowid, level
        )
        if timed:
            _record("fetch_edges", (time.perf_counter_ns() - start) // 1000)
            start = time.perf_counter_ns()

        # Mark visited before the costly node fetch.
        unvisited = [rowid for rowid in neighbors if visited.add(rowid)]
        if timed:
            _record("visited", (time.perf_counter_ns() - start) // 1000)
        if not unvisited:
            continue

        if timed:
            _record("neighbors_fetched", len(unvisited))
            _record_batch(len(unvisited))
            start = time.perf_counter_ns()
        neighbor_nodes = _fetch_many(ctx, unvisited)
        if timed:
            _record("fetch_nodes", (time.perf_counter_ns() - start) // 1000)
            start = time.perf_counter_ns()

        for node in neighbor_nodes:
            node_distance = float(ctx.distance(ctx.query, node.vector))
            if len(results) < ef or node_distance < results[0].distance:
                heapq.heappush(candidates, MinCandidate(node.rowid, node_distance))
                heapq.heappush(results, MaxCandidate(node.rowid, node_distance))
                while len(results) > ef:
                    heapq.heappop(results)
        if timed:
            _record("distance", (time.perf_counter_ns() - start) // 1000)
            _record("distances_computed", len(neighbor_nodes))

    return sorted(
        ((result.rowid, result.distance) for result in results),
        key=lambda pair: pair[1],
    )


def search_hnsw(
    ctx: SearchContext,
    entry_rowid: int,
    entry_level: int,
    k: int,
    ef_search: int | None = None,
) -> list[tuple[int, float]]:
    """Return up to ``k`` nearest ``(rowid, distance)`` pairs, closest first.

    The search descends greedily from ``entry_level`` to level 1 and then
    explores level 0 with a candidate list of ``max(ef_search, k)``; without
    ``ef_search`` the list holds ``k``. An entry rowid of -1 marks an empty
    index. Distances are passed through ``ctx.convert_distance`` if set.
    """
    if k < 0:
        raise ValueError(f"k must not be negative, got {k}")
    if entry_rowid == -1 or k == 0:
        return []
    ef = max(ef_search if ef_search is not None else k, k)

    current = entry_rowid
    for level in range(entry_level, 0, -1):
        layer = search_layer(ctx, current, 1, level)
        if layer:
            current = layer[0][0]

    results = search_layer(ctx, current, ef, 0)[:k]
    convert = ctx.convert_distance
    if convert is None:
        return results
    return [(rowid, convert(dist)) for rowid, dist in results]