# vechnsw

Storage and search for an HNSW (Hierarchical Navigable Small World) graph
whose nodes and edges live in ordinary SQLite tables. During a search, nodes
and edges are read from the database as they are needed. Only a visited set
and two small heaps are held in memory.

The package uses only the Python standard library (`sqlite3`).

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Storage layout

For a table `T` and a vector column `C`, the graph lives in two tables. Your
application creates both.

* `T_C_hnsw_nodes` holds one row per node: `rowid`, `level` (the node's top
  level) and `vector` (raw bytes).
* `T_C_hnsw_edges` holds directed edges: `from_rowid`, `to_rowid`, `level` and
  `distance`. `insert_edge` and `insert_edges_batch` use `INSERT OR IGNORE`.
  They skip duplicates only if the table has a uniqueness constraint on
  `(from_rowid, to_rowid, level)`.

`vechnsw.nodes.nodes_table_name` and `vechnsw.edges.edges_table_name` return
these names.

## Modules

### `vechnsw.nodes`

* `HnswNode` is a frozen dataclass with `rowid`, `level` and `vector`.
* `insert_node` uses insert-or-replace.
* `fetch_node_data` and `fetch_node_level` return `None` for a missing rowid.
* `fetch_nodes_batch` fetches in chunks of 999 rowids and skips missing ones.
* `get_nodes_at_level` returns the rowids of nodes with `level >= n`, in rowid
  order.
* `count_nodes` returns the number of nodes.

### `vechnsw.edges`

* `insert_edge` adds one edge without a distance.
* `insert_edges_batch` takes `(from, to, level, distance)` tuples and writes
  them with multi-row inserts of 249 edges each.
* `fetch_neighbors` returns the target rowids.
* `fetch_neighbors_with_distances` raises `ValueError` if an edge has no
  distance.
* `fetch_neighbor_nodes_joined` returns the neighbour `HnswNode`s in a single
  JOIN.
* `delete_edges_batch` removes the edges to the given targets.
* `delete_edges_from_level` removes all outgoing edges of a node at one level.

### `vechnsw.rebuild`

`clear_hnsw_tables` deletes every row from both tables and keeps the tables
themselves.

### `vechnsw.search`

* `SearchContext` holds:
  * the connection, table name and column name;
  * a query object;
  * a `distance(query, stored_bytes)` callable;
  * `num_nodes`, which sizes the visited set;
  * an optional `convert_distance` applied to the distances returned.
* `search_layer(ctx, entry_rowid, ef, level)` runs a beam search on one level
  and returns `(rowid, distance)` pairs, closest first.
  * It raises `ValueError` if `ef < 1`.
  * It raises `ValueError` if the entry node does not exist.
* `search_hnsw(ctx, entry_rowid, entry_level, k, ef_search=None)` searches the
  whole graph.
  * It descends greedily (`ef=1`) from `entry_level` to level 1, then searches
    level 0 with `ef = max(ef_search, k)`. Without `ef_search`, `ef = k`.
  * It returns at most `k` results.
  * An `entry_rowid` of `-1` means an empty index and gives `[]`.
* `HybridVisited` is the visited set. Rowids in `[1, capacity)` live in a byte
  array and other rowids in a Python set.
* `MinCandidate` and `MaxCandidate` give the heap ordering.
* `print_search_timing_stats` and `reset_search_timing_stats` report and reset
  per-search counters. The counters are collected only while timing is on.

### `vechnsw.pragmas`

* `set_performance_pragmas` sets different pragmas depending on the database.
  * For file databases it sets WAL journal mode, `synchronous = NORMAL`, a
    64 MB cache, in-memory temp storage and 256 MB of mmap.
  * For in-memory databases it applies only `set_inmemory_pragmas`, which sets
    the cache size and temp storage.
* `is_memory_database` tells which case applies.

### `vechnsw.timing`

* Timing is off by default. Turn it on with `set_timing_enabled(True)` and
  check it with `timing_enabled()`.
* The `add_*_time` functions accumulate microseconds while timing is on. They
  raise `ValueError` for negative values either way.
* `timing_snapshot` returns the counters and `reset_timers` clears them.
* `print_timing_summary` writes the counters in milliseconds to stderr.
* `Timer` is a context manager. When timing is on, it prints
  `[TIMING] <name>: <n>μs` to stderr.

## Example

```python
import sqlite3
import struct

from vechnsw import edges, nodes
from vechnsw.search import SearchContext, search_hnsw

db = sqlite3.connect(":memory:")
db.execute("CREATE TABLE docs_embedding_hnsw_nodes "
           "(rowid INTEGER PRIMARY KEY, level INTEGER, vector BLOB)")
db.execute("CREATE TABLE docs_embedding_hnsw_edges "
           "(from_rowid INTEGER, to_rowid INTEGER, level INTEGER, distance REAL, "
           "PRIMARY KEY (from_rowid, to_rowid, level))")

def pack(*values):
    return struct.pack(f"<{len(values)}f", *values)

nodes.insert_node(db, "docs", "embedding", 1, 0, pack(1.0, 0.0))
nodes.insert_node(db, "docs", "embedding", 2, 0, pack(0.0, 1.0))
edges.insert_edge(db, "docs", "embedding", 1, 2, 0)
edges.insert_edge(db, "docs", "embedding", 2, 1, 0)

def l2(query, blob):
    stored = struct.unpack(f"<{len(blob) // 4}f", blob)
    return sum((a - b) ** 2 for a, b in zip(query, stored)) ** 0.5

ctx = SearchContext(db, "docs", "embedding", query=(0.0, 0.9),
                    distance=l2, num_nodes=2)
print(search_hnsw(ctx, entry_rowid=1, entry_level=0, k=2))
# closest first: rowid 2, then rowid 1
```

## What this package does not do

* It does not create the node and edge tables.
* It does not build the graph. It has no level assignment, no neighbour
  selection and no pruning.
* `clear_hnsw_tables` empties the index but does not refill it.
* There are no built-in distance functions. You supply `distance` in
  `SearchContext`.
* There are no SQL functions, virtual tables and no command-line tool.