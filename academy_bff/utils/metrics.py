"""
Prometheus Metrics

Provides application metrics in Prometheus text format:
- HTTP request metrics (count, duration, status codes)
- Reconciliation metrics (poll cycles, detected changes, refunds, grants)
- Queue/size gauges (snapshot cache, recent changes, refund retries)
"""

from typing import Dict, List
from collections import defaultdict
from threading import Lock


class Counter:
    """Simple counter metric."""

    def __init__(self, name: str, description: str, labels: tuple = ()):
        self.name = name
        self.description = description
        self.labels = labels
        self._values: Dict[tuple, float] = defaultdict(float)
        self._lock = Lock()

    def inc(self, value: float = 1, **label_values):
        """Increment counter."""
        key = tuple(label_values.get(l, '') for l in self.labels)
        with self._lock:
            self._values[key] += value

    def get(self, **label_values) -> float:
        key = tuple(label_values.get(l, '') for l in self.labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def get_all(self) -> Dict[tuple, float]:
        """Get all values."""
        with self._lock:
            return dict(self._values)


class Gauge:
    """Simple gauge metric (can go up and down)."""

    def __init__(self, name: str, description: str, labels: tuple = ()):
        self.name = name
        self.description = description
        self.labels = labels
        self._values: Dict[tuple, float] = defaultdict(float)
        self._lock = Lock()

    def set(self, value: float, **label_values):
        """Set gauge value."""
        key = tuple(label_values.get(l, '') for l in self.labels)
        with self._lock:
            self._values[key] = value

    def get(self, **label_values) -> float:
        key = tuple(label_values.get(l, '') for l in self.labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def get_all(self) -> Dict[tuple, float]:
        """Get all values."""
        with self._lock:
            return dict(self._values)


class Histogram:
    """Simple histogram metric."""

    DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, float('inf'))

    def __init__(self, name: str, description: str, labels: tuple = (), buckets: tuple = None):
        self.name = name
        self.description = description
        self.labels = labels
        self.buckets = buckets or self.DEFAULT_BUCKETS
        self._counts: Dict[tuple, Dict[float, int]] = defaultdict(lambda: defaultdict(int))
        self._sums: Dict[tuple, float] = defaultdict(float)
        self._totals: Dict[tuple, int] = defaultdict(int)
        self._lock = Lock()

    def observe(self, value: float, **label_values):
        """Record an observation."""
        key = tuple(label_values.get(l, '') for l in self.labels)
        with self._lock:
            self._sums[key] += value
            self._totals[key] += 1
            for bucket in self.buckets:
                if value <= bucket:
                    self._counts[key][bucket] += 1

    def get_all(self) -> Dict:
        """Get all values."""
        with self._lock:
            return {
                'counts': {k: dict(v) for k, v in self._counts.items()},
                'sums': dict(self._sums),
                'totals': dict(self._totals)
            }


# ================================
# APPLICATION METRICS
# ================================

# HTTP Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labels=("method", "path", "status_code")
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    labels=("method", "path")
)

# Reconciliation Metrics
booking_poll_cycles_total = Counter(
    "booking_poll_cycles_total",
    "Booking poll cycles run",
    labels=("status",)
)

booking_poll_duration_seconds = Histogram(
    "booking_poll_duration_seconds",
    "Booking poll cycle duration in seconds"
)

booking_changes_total = Counter(
    "booking_changes_total",
    "Booking status changes detected by polling",
    labels=("new_status",)
)

refunds_total = Counter(
    "refunds_total",
    "Refund attempts for cancelled bookings",
    labels=("source", "status")
)

free_class_grants_total = Counter(
    "free_class_grants_total",
    "First-free-class entitlement grants",
    labels=("status",)
)

webhook_events_total = Counter(
    "webhook_events_total",
    "Webhook events received",
    labels=("event_type", "status")
)

# Size Gauges
booking_cache_size = Gauge(
    "booking_cache_size",
    "Bookings held in the poller snapshot cache"
)

recent_changes_size = Gauge(
    "recent_changes_size",
    "Entries in the recent changes log"
)

refund_retry_queue_size = Gauge(
    "refund_retry_queue_size",
    "Open rows in the refund retry outbox"
)

COUNTERS = (
    http_requests_total,
    booking_poll_cycles_total,
    booking_changes_total,
    refunds_total,
    free_class_grants_total,
    webhook_events_total,
)
GAUGES = (booking_cache_size, recent_changes_size, refund_retry_queue_size)
HISTOGRAMS = (http_request_duration_seconds, booking_poll_duration_seconds)


def _label_str(labels: tuple, key: tuple) -> str:
    return ",".join(f'{k}="{v}"' for k, v in zip(labels, key))


def _sample(name: str, labels: tuple, key: tuple, value) -> str:
    label_str = _label_str(labels, key)
    if label_str:
        return f"{name}{{{label_str}}} {value}"
    return f"{name} {value}"


def format_prometheus_metrics() -> str:
    """Format all metrics in Prometheus text format."""
    lines: List[str] = []

    for metric in COUNTERS:
        lines.append(f"# HELP {metric.name} {metric.description}")
        lines.append(f"# TYPE {metric.name} counter")
        for key, value in metric.get_all().items():
            lines.append(_sample(metric.name, metric.labels, key, value))

    for metric in GAUGES:
        lines.append(f"# HELP {metric.name} {metric.description}")
        lines.append(f"# TYPE {metric.name} gauge")
        for key, value in metric.get_all().items():
            lines.append(_sample(metric.name, metric.labels, key, value))

    for metric in HISTOGRAMS:
        data = metric.get_all()
        lines.append(f"# HELP {metric.name} {metric.description}")
        lines.append(f"# TYPE {metric.name} histogram")
        for key in data['sums'].keys():
            counts = data['counts'].get(key, {})
            for bucket in metric.buckets:
                le = "+Inf" if bucket == float('inf') else bucket
                bucket_labels = metric.labels + ("le",)
                lines.append(_sample(f"{metric.name}_bucket", bucket_labels, key + (le,), counts.get(bucket, 0)))
            lines.append(_sample(f"{metric.name}_sum", metric.labels, key, data['sums'][key]))
            lines.append(_sample(f"{metric.name}_count", metric.labels, key, data['totals'][key]))

    return "\n".join(lines) + "\n"


# ================================
# CONVENIENCE FUNCTIONS
# ================================

def record_http_request(method: str, path: str, status_code: int, duration: float):
    """Record an HTTP request."""
    http_requests_total.inc(method=method, path=path, status_code=str(status_code))
    http_request_duration_seconds.observe(duration, method=method, path=path)


def record_poll_cycle(status: str, duration: float):
    booking_poll_cycles_total.inc(status=status)
    booking_poll_duration_seconds.observe(duration)


def record_refund(source: str, status: str):
    refunds_total.inc(source=source, status=status)


def record_webhook_event(event_type: str, status: str):
    """Record a webhook event."""
    webhook_events_total.inc(event_type=event_type, status=status)
