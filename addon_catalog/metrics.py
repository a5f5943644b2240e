"""In-process counters and sample windows for the ingestion and download paths.

Exposed as JSON at ``/metrics-lite``; nothing is persisted across restarts.
"""

import time
from collections import defaultdict, deque
from contextlib import contextmanager
from typing import Any, Deque, Dict, Iterable, Optional

SAMPLE_WINDOW = 1000


def _percentile(ordered: list, fraction: float) -> float:
    return ordered[min(int(len(ordered) * fraction), len(ordered) - 1)]


def _summarize(samples: Iterable[float]) -> Optional[Dict[str, float]]:
    ordered = sorted(samples)
    if not ordered:
        return None
    return {
        "count": len(ordered),
        "avg": sum(ordered) / len(ordered),
        "p50": _percentile(ordered, 0.5),
        "p95": _percentile(ordered, 0.95),
        "p99": _percentile(ordered, 0.99),
        "max": ordered[-1],
    }


class CatalogMetrics:
    def __init__(self, window: int = SAMPLE_WINDOW):
        self.window = window
        self.counters: Dict[str, int] = defaultdict(int)
        self.histograms: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=self.window))
        self.started_at = time.time()

    @staticmethod
    def _key(name: str, labels: Optional[Dict[str, str]]) -> str:
        if not labels:
            return name
        rendered = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{rendered}}}"

    def increment(self, name: str, value: int = 1, labels: Optional[Dict[str, str]] = None) -> None:
        self.counters[self._key(name, labels)] += value

    def record_histogram(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        """Keep the most recent samples only (see ``window``)."""
        self.histograms[self._key(name, labels)].append(value)

    @contextmanager
    def timer(self, name: str, labels: Optional[Dict[str, str]] = None):
        """Record the wall time of the block in seconds, whether or not it raises."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.record_histogram(name, time.perf_counter() - started, labels)

    def get_metrics(self) -> Dict[str, Any]:
        histograms = {}
        for key, samples in self.histograms.items():
            summary = _summarize(samples)
            if summary is not None:
                histograms[key] = summary
        now = time.time()
        return {
            "uptime_seconds": now - self.started_at,
            "timestamp": now,
            "counters": dict(self.counters),
            "histograms": histograms,
        }

    def reset(self) -> None:
        self.counters.clear()
        self.histograms.clear()


metrics = CatalogMetrics()
