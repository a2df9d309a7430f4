# app/infra/metrics.py
"""
In-process counters and histograms, exposed as JSON at ``/metrics``.

Metric keys are ``name{label=value,...}`` with labels sorted, so the same
label set always lands on the same series.
"""
from __future__ import annotations
from collections import defaultdict, deque
from threading import Lock
from typing import Dict
from dataclasses import dataclass, field
from app.infra.logging_config import get_logger

logger = get_logger(__name__)

# Histograms keep only the most recent samples
HISTOGRAM_MAX_SAMPLES = 1000


@dataclass
class Counter:
    value: int = 0

    def inc(self, amount: int = 1) -> None:
        self.value += amount


@dataclass
class Histogram:
    """Sliding window of observed values (e.g. request durations)"""
    values: deque = field(default_factory=lambda: deque(maxlen=HISTOGRAM_MAX_SAMPLES))

    def observe(self, value: float) -> None:
        self.values.append(value)

    def get_stats(self) -> dict:
        if not self.values:
            return {"count": 0, "min": 0, "max": 0, "avg": 0, "p95": 0, "p99": 0}

        ordered = sorted(self.values)
        count = len(ordered)

        def percentile(p: float) -> float:
            return ordered[min(int(count * p), count - 1)]

        return {
            "count": count,
            "min": ordered[0],
            "max": ordered[-1],
            "avg": sum(ordered) / count,
            "p95": percentile(0.95),
            "p99": percentile(0.99),
        }


class MetricsCollector:
    """Thread-safe registry of counters and histograms."""

    def __init__(self):
        self._counters: Dict[str, Counter] = defaultdict(Counter)
        self._histograms: Dict[str, Histogram] = defaultdict(Histogram)
        self._lock = Lock()

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key].inc(amount)

    def observe_histogram(self, name: str, value: float, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._histograms[key].observe(value)

    def get_counter(self, name: str, **labels) -> int:
        key = self._make_key(name, labels or None)
        with self._lock:
            counter = self._counters.get(key)
            return counter.value if counter else 0

    def get_metrics(self) -> dict:
        with self._lock:
            counters = {k: v.value for k, v in self._counters.items()}
            histograms = {k: v.get_stats() for k, v in self._histograms.items()}

        return {
            "counters": counters,
            "histograms": histograms,
        }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
        logger.info("Metrics reset")

    @staticmethod
    def _make_key(name: str, labels: dict | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    _metrics.inc_counter(name, amount, labels or None)


def observe_histogram(name: str, value: float, **labels) -> None:
    _metrics.observe_histogram(name, value, labels or None)


# Application-specific metrics
class AppMetrics:
    """Application-level metrics tracking"""

    @staticmethod
    def job_created() -> None:
        inc_counter("jobs_created_total")

    @staticmethod
    def job_updated(source: str, fields: int) -> None:
        inc_counter("job_updates_total", source=source)
        inc_counter("job_field_changes_total", amount=fields, source=source)

    @staticmethod
    def job_deleted() -> None:
        inc_counter("jobs_deleted_total")

    @staticmethod
    def completion_rejected() -> None:
        inc_counter("job_completion_rejected_total")

    @staticmethod
    def dispatch_prepared(kind: str, platform: str) -> None:
        inc_counter("dispatch_prepared_total", kind=kind, platform=platform)

    @staticmethod
    def dispatch_failed(kind: str, reason: str) -> None:
        inc_counter("dispatch_failed_total", kind=kind, reason=reason)

    @staticmethod
    def admin_notification_sent(channel: str) -> None:
        inc_counter("admin_notifications_sent_total", channel=channel)

    @staticmethod
    def admin_notification_failed(channel: str) -> None:
        inc_counter("admin_notifications_failed_total", channel=channel)

    @staticmethod
    def job_id_collision() -> None:
        inc_counter("job_id_collisions_total")

    @staticmethod
    def job_save_conflict() -> None:
        inc_counter("job_save_conflicts_total")

    @staticmethod
    def database_error(operation: str) -> None:
        inc_counter("database_errors_total", operation=operation)

    @staticmethod
    def auth_failed(reason: str) -> None:
        inc_counter("auth_failures_total", reason=reason)

    @staticmethod
    def request_completed(method: str, status_code: int, seconds: float) -> None:
        inc_counter("http_requests_total", method=method, status=status_code)
        observe_histogram("http_request_seconds", seconds, method=method)
