"""
In-process metrics with Prometheus text exposition
Tracks email sends, queue outcomes and tenant query timings
"""
import time
from collections import defaultdict
from threading import Lock
from typing import Dict, Optional, Tuple
import logging

logger = logging.getLogger(__name__)

LabelKey = Tuple[Tuple[str, str], ...]

# Keep at most this many observations per histogram series
HISTOGRAM_WINDOW = 1000


def _label_key(labels: Optional[Dict[str, str]]) -> LabelKey:
    return tuple(sorted((k, str(v)) for k, v in (labels or {}).items()))


def _format_labels(key: LabelKey, extra: Optional[Dict[str, str]] = None) -> str:
    pairs = list(key) + sorted((extra or {}).items())
    if not pairs:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in pairs) + "}"


class MetricsCollector:
    """
    Thread-safe metrics collector

    Counters and histograms are keyed by metric name and a sorted label tuple.
    """

    def __init__(self):
        self._lock = Lock()
        self._counters: Dict[str, Dict[LabelKey, float]] = defaultdict(lambda: defaultdict(float))
        self._histograms: Dict[str, Dict[LabelKey, list]] = defaultdict(lambda: defaultdict(list))

    def increment_counter(self, name: str, value: float = 1.0, labels: Optional[Dict[str, str]] = None):
        """
        Increment a counter metric

        Args:
            name: Metric name (e.g., "emails_sent_total")
            value: Increment value (default: 1.0)
            labels: Optional labels dict (e.g., {"provider": "ses"})
        """
        with self._lock:
            self._counters[name][_label_key(labels)] += value

    def record_histogram(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        """Record one observation (seconds for timings)"""
        with self._lock:
            series = self._histograms[name][_label_key(labels)]
            series.append(value)
            if len(series) > HISTOGRAM_WINDOW:
                del series[:-HISTOGRAM_WINDOW]

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        with self._lock:
            return self._counters.get(name, {}).get(_label_key(labels), 0.0)

    def get_histogram_stats(self, name: str, labels: Optional[Dict[str, str]] = None) -> Dict[str, float]:
        """
        Get histogram statistics

        Returns:
            Dict with count, sum, min, max, avg
        """
        with self._lock:
            values = list(self._histograms.get(name, {}).get(_label_key(labels), []))
        if not values:
            return {"count": 0, "sum": 0, "min": 0, "max": 0, "avg": 0}
        return {
            "count": len(values),
            "sum": sum(values),
            "min": min(values),
            "max": max(values),
            "avg": sum(values) / len(values),
        }

    def reset(self):
        with self._lock:
            self._counters.clear()
            self._histograms.clear()

    def format_prometheus(self) -> str:
        """
        Format metrics in Prometheus text format
        Histograms are exposed as summaries with p50/p95/p99 quantiles
        """
        lines = []
        with self._lock:
            for name in sorted(self._counters):
                lines.append(f"# TYPE {name} counter")
                for key, value in sorted(self._counters[name].items()):
                    lines.append(f"{name}{_format_labels(key)} {value}")

            for name in sorted(self._histograms):
                lines.append(f"# TYPE {name} summary")
                for key, values in sorted(self._histograms[name].items()):
                    if not values:
                        continue
                    ordered = sorted(values)
                    for quantile in (0.5, 0.95, 0.99):
                        index = min(int(len(ordered) * quantile), len(ordered) - 1)
                        lines.append(
                            f"{name}{_format_labels(key, {'quantile': str(quantile)})} {ordered[index]}"
                        )
                    lines.append(f"{name}_count{_format_labels(key)} {len(values)}")
                    lines.append(f"{name}_sum{_format_labels(key)} {sum(values)}")

        return "\n".join(lines) + "\n"


_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector instance"""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


def increment_counter(name: str, value: float = 1.0, labels: Optional[Dict[str, str]] = None):
    get_metrics_collector().increment_counter(name, value, labels)


def record_histogram(name: str, value: float, labels: Optional[Dict[str, str]] = None):
    get_metrics_collector().record_histogram(name, value, labels)


def record_email_result(provider: str, status: str, count: int = 1):
    """Count per-recipient email outcomes (sent, failed, suppressed)"""
    increment_counter("emails_total", count, {"provider": provider, "status": status})


def record_queue_outcome(outcome: str, count: int = 1):
    """Count queue worker outcomes (sent, retried, failed)"""
    if count:
        increment_counter("email_queue_messages_total", count, {"outcome": outcome})


def record_tenant_query(duration_seconds: float, success: bool):
    increment_counter("tenant_queries_total", labels={"status": "ok" if success else "error"})
    record_histogram("tenant_query_duration_seconds", duration_seconds)


class Timer:
    """Context manager recording elapsed seconds into a histogram"""

    def __init__(self, metric_name: str, labels: Optional[Dict[str, str]] = None):
        self.metric_name = metric_name
        self.labels = labels or {}
        self.start_time = None
        self.elapsed = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.perf_counter() - self.start_time
        record_histogram(self.metric_name, self.elapsed, self.labels)
