"""In-process metrics for sync and tool calls.

Two kinds of signal live here: per-operation latency windows (fed by the
``perf_counter`` try/finally blocks around engine operations and MCP tools)
and plain named counters such as ``remote.retries``.  Nothing is exported;
callers read snapshots.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from collections import deque
from threading import Lock

logger = logging.getLogger(__name__)

# Samples kept per operation for percentile estimates.
WINDOW_SIZE = 256


class OperationTimings:
    """Running totals plus a bounded window of recent samples."""

    def __init__(self, window: int = WINDOW_SIZE) -> None:
        self.calls = 0
        self.failures = 0
        self.total_ms = 0.0
        self.fastest_ms = math.inf
        self.slowest_ms = 0.0
        self.recent: deque[float] = deque(maxlen=window)

    def add(self, elapsed_ms: float, ok: bool) -> None:
        self.calls += 1
        self.failures += 0 if ok else 1
        self.total_ms += elapsed_ms
        self.fastest_ms = min(self.fastest_ms, elapsed_ms)
        self.slowest_ms = max(self.slowest_ms, elapsed_ms)
        self.recent.append(elapsed_ms)

    def percentile(self, fraction: float) -> float:
        if not self.recent:
            return 0.0
        ordered = sorted(self.recent)
        rank = max(math.ceil(fraction * len(ordered)) - 1, 0)
        return ordered[rank]

    def as_dict(self) -> dict[str, float | int]:
        return {
            "count": self.calls,
            "error_count": self.failures,
            "avg_ms": round(self.total_ms / self.calls, 3) if self.calls else 0.0,
            "min_ms": round(self.fastest_ms, 3) if self.calls else 0.0,
            "max_ms": round(self.slowest_ms, 3),
            "p95_ms": round(self.percentile(0.95), 3),
        }


_lock = Lock()
_timings: dict[str, OperationTimings] = {}
_counters: Counter[str] = Counter()


def record_latency(*, operation: str, duration_ms: float, ok: bool = True) -> None:
    """Record one latency sample; negative durations (clock skew) count as zero."""
    elapsed = max(float(duration_ms), 0.0)
    with _lock:
        timings = _timings.get(operation)
        if timings is None:
            timings = _timings[operation] = OperationTimings()
        timings.add(elapsed, ok)
    logger.info("latency operation=%s duration_ms=%.3f ok=%s", operation, elapsed, ok)


def increment_counter(name: str, amount: int = 1) -> None:
    """Bump a named counter (e.g. ``audit.write_failures``)."""
    with _lock:
        _counters[name] += amount


def latency_metrics_snapshot() -> dict[str, dict[str, float | int]]:
    with _lock:
        return {name: _timings[name].as_dict() for name in sorted(_timings)}


def counter_snapshot() -> dict[str, int]:
    with _lock:
        return dict(sorted(_counters.items()))


def reset_metrics() -> None:
    """Forget every sample and counter (test helper)."""
    with _lock:
        _timings.clear()
        _counters.clear()
