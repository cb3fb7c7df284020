# firewatch/infra/metrics.py
"""
In-process counters and latency histograms, served as JSON on /metrics.

Keys are ``name{label=value,...}`` with labels sorted, so the same label
set always lands on the same series.
"""
from __future__ import annotations
import time
from collections import Counter, deque
from threading import Lock
from typing import Deque, Dict
from firewatch.infra.logging_config import get_logger

logger = get_logger(__name__)

# Samples kept per histogram; older observations fall off
HISTOGRAM_WINDOW = 5000


class Histogram:
    """Sliding window of observed values with summary statistics"""

    def __init__(self, window: int = HISTOGRAM_WINDOW):
        self.values: Deque[float] = deque(maxlen=window)
        self.count = 0

    def observe(self, value: float) -> None:
        self.values.append(value)
        self.count += 1

    def get_stats(self) -> dict:
        if not self.values:
            return {"count": 0, "min": 0, "max": 0, "avg": 0, "p95": 0, "p99": 0}

        ordered = sorted(self.values)
        last = len(ordered) - 1
        return {
            "count": self.count,
            "min": ordered[0],
            "max": ordered[-1],
            "avg": sum(ordered) / len(ordered),
            "p95": ordered[min(int(len(ordered) * 0.95), last)],
            "p99": ordered[min(int(len(ordered) * 0.99), last)],
        }


class MetricsCollector:
    def __init__(self):
        self._counters: Counter[str] = Counter()
        self._histograms: Dict[str, Histogram] = {}
        self._lock = Lock()

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] += amount

    def observe_histogram(self, name: str, value: float, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            histogram = self._histograms.get(key)
            if histogram is None:
                histogram = self._histograms[key] = Histogram()
            histogram.observe(value)

    def get_metrics(self) -> dict:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "histograms": {k: h.get_stats() for k, h in self._histograms.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
        logger.debug("Metrics reset")

    @staticmethod
    def _make_key(name: str, labels: dict | None) -> str:
        if not labels:
            return name
        rendered = ",".join(f"{k}={labels[k]}" for k in sorted(labels))
        return f"{name}{{{rendered}}}"


_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    _metrics.inc_counter(name, amount, labels or None)


def observe_histogram(name: str, value: float, **labels) -> None:
    _metrics.observe_histogram(name, value, labels or None)


class Timer:
    """``with Timer("notification_send_seconds", channel="telegram"):`` records elapsed seconds, also on error"""

    def __init__(self, metric_name: str, **labels):
        self.metric_name = metric_name
        self.labels = labels
        self._started: float | None = None

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._started is not None:
            observe_histogram(self.metric_name, time.perf_counter() - self._started, **self.labels)


class AppMetrics:
    """Named counters for incident and alert events"""

    @staticmethod
    def incident_created(status: str) -> None:
        inc_counter("incidents_created_total", status=status)

    @staticmethod
    def incident_updated() -> None:
        inc_counter("incidents_updated_total")

    @staticmethod
    def incident_deleted(count: int = 1) -> None:
        inc_counter("incidents_deleted_total", amount=count)

    @staticmethod
    def validation_failed(operation: str) -> None:
        inc_counter("validation_failures_total", operation=operation)

    @staticmethod
    def notification_sent(channel: str) -> None:
        inc_counter("notifications_sent_total", channel=channel)

    @staticmethod
    def notification_failed(channel: str) -> None:
        inc_counter("notifications_failed_total", channel=channel)

    @staticmethod
    def dispatch_completed(success: bool) -> None:
        inc_counter("dispatches_total", outcome="success" if success else "failure")

    @staticmethod
    def track_send_time(channel: str) -> Timer:
        return Timer("notification_send_seconds", channel=channel)
