"""Opt-in timing counters for profiling index operations.

Timing is off by default. While it is off every function here does nothing,
so instrumented code pays almost no cost. Turn it on with
``set_timing_enabled(True)``.
"""

from __future__ import annotations

import sys
import threading
import time
from types import TracebackType

_COUNTER_NAMES = (
    "search_layer",
    "prune",
    "fetch_node",
    "fetch_neighbors",
    "insert_edge",
    "distance_calc",
)

_lock = threading.Lock()
_enabled = False
_counters: dict[str, int] = dict.fromkeys(_COUNTER_NAMES, 0)


def set_timing_enabled(enabled: bool) -> None:
    """Switch timing collection on or off."""
    global _enabled
    _enabled = bool(enabled)


def timing_enabled() -> bool:
    """Tell whether timing collection is switched on."""
    return _enabled


class Timer:
    """Context manager that reports how long its block took.

    With timing on, leaving the block writes ``[TIMING] <name>: <n>μs`` to
    standard error. With timing off it does nothing and reports zero.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.elapsed_micros = 0
        self._start: int | None = None

    def __enter__(self) -> Timer:
        self._start = time.perf_counter_ns() if _enabled else None
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._start is None:
            return
        self.elapsed_micros = (time.perf_counter_ns() - self._start) // 1000
        self._start = None
        print(f"[TIMING] {self.name}: {self.elapsed_micros}μs", file=sys.stderr)


def _add(name: str, micros: int) -> None:
    if micros < 0:
        raise ValueError(f"elapsed time cannot be negative: {micros}")
    if not _enabled:
        return
    with _lock:
        _counters[name] += int(micros)


def add_search_layer_time(micros: int) -> None:
    """Add microseconds spent searching a layer."""
    _add("search_layer", micros)


def add_prune_time(micros: int) -> None:
    """Add microseconds spent pruning neighbour lists."""
    _add("prune", micros)


def add_fetch_node_time(micros: int) -> None:
    """Add microseconds spent fetching nodes."""
    _add("fetch_node", micros)


def add_fetch_neighbors_time(micros: int) -> None:
    """Add microseconds spent fetching neighbour lists."""
    _add("fetch_neighbors", micros)


def add_insert_edge_time(micros: int) -> None:
    """Add microseconds spent inserting edges."""
    _add("insert_edge", micros)


def add_distance_calc_time(micros: int) -> None:
    """Add microseconds spent computing distances."""
    _add("distance_calc", micros)


def timing_snapshot() -> dict[str, int]:
    """Return a copy of the accumulated counters, in microseconds."""
    with _lock:
        return dict(_counters)


def print_timing_summary() -> None:
    """Write the accumulated counters, in milliseconds, to standard error."""
    if not _enabled:
        return
    snapshot = timing_snapshot()
    lines = ["", "=== Timing Summary ==="]
    lines.extend(
        f"{name + ':':<18}{snapshot[name] // 1000}ms" for name in _COUNTER_NAMES
    )
    print("\n".join(lines), file=sys.stderr)


def reset_timers() -> None:
    """Set every counter back to zero."""
    with _lock:
        for name in _COUNTER_NAMES:
            _counters[name] = 0