from __future__ import annotations

from collections import deque
from threading import Lock
from typing import Deque, Dict

WEBHOOK_REJECTION_COUNTERS = ("webhook_rejected_signature", "webhook_rejected_replay")


class MetricsCollector:
    """In-memory, best-effort metrics for a single process.

    Counters cover submission transitions, webhook outcomes and interview
    completions by path; latency windows cover LLM calls. Served on
    ``/healthz``.
    """

    def __init__(self, capacity: int = 500) -> None:
        self.capacity = capacity
        self._lock = Lock()
        self.counters: Dict[str, int] = {}
        self.latencies: Dict[str, Deque[float]] = {}

    def increment_counter(self, name: str, value: int = 1) -> None:
        with self._lock:
            self.counters[name] = self.counters.get(name, 0) + int(value)

    def record_histogram(self, name: str, value: float) -> None:
        """Add a latency sample (ms); only the most recent ``capacity`` are kept."""
        with self._lock:
            window = self.latencies.setdefault(name, deque(maxlen=self.capacity))
            window.append(max(0.0, float(value)))

    @staticmethod
    def _p95(values: list[float]) -> float:
        if not values:
            return 0.0
        values = sorted(values)
        return float(values[int(round(0.95 * (len(values) - 1)))])

    def snapshot(self) -> dict:
        with self._lock:
            counters = dict(self.counters)
            windows = {name: list(values) for name, values in self.latencies.items()}

        rejected = sum(counters.get(name, 0) for name in WEBHOOK_REJECTION_COUNTERS)
        delivered = rejected + counters.get("webhook_accepted", 0)
        return {
            "counters": counters,
            "p95_ms": {name: round(self._p95(values), 2) for name, values in windows.items()},
            "webhook_rejection_rate": round(rejected / delivered, 4) if delivered else 0.0,
        }

    def reset(self) -> None:
        with self._lock:
            self.counters.clear()
            self.latencies.clear()


collector = MetricsCollector()
