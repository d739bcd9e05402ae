"""Prometheus-compatible metrics for signaling coordinator observability.

Tracks room lifecycle, join outcomes, and relay volume:
- Rooms created/destroyed and currently active
- Joins accepted and rejected (room full, already joined)
- Negotiation envelopes and chat messages relayed
- Room lifetime distribution

Metrics are kept in memory and exposed via the /metrics endpoint in
Prometheus exposition format.
"""

import logging
import threading
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class HistogramBucket:
    """Histogram bucket for duration distributions."""

    le: float
    count: int = 0  # observations <= le, cumulative


@dataclass
class Histogram:
    """Histogram metric with fixed bucket boundaries.

    Buckets cover 1s to 2h, the range of a consultation call.
    """

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    buckets: list[HistogramBucket] = field(
        default_factory=lambda: [
            HistogramBucket(le=1.0),
            HistogramBucket(le=10.0),
            HistogramBucket(le=60.0),
            HistogramBucket(le=300.0),  # 5 min
            HistogramBucket(le=900.0),  # 15 min
            HistogramBucket(le=1800.0),  # 30 min
            HistogramBucket(le=3600.0),  # 1 h
            HistogramBucket(le=7200.0),  # 2 h
            HistogramBucket(le=float("inf")),
        ]
    )
    sum: float = 0.0
    count: int = 0

    def observe(self, value: float) -> None:
        """Record an observation.

        Args:
            value: Observed value in seconds
        """
        self.sum += value
        self.count += 1
        for bucket in self.buckets:
            if value <= bucket.le:
                bucket.count += 1


@dataclass
class Counter:
    """Monotonic total (joins, relayed envelopes)."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount


@dataclass
class Gauge:
    """Point-in-time level (active rooms, open connections)."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def set(self, value: float) -> None:
        self.value = value

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount

    def dec(self, amount: float = 1.0) -> None:
        self.value -= amount


class MetricsCollector:
    """In-memory registry of coordinator metrics.

    Guarded by a re-entrant lock so the health server and the transport may
    record and export concurrently.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()

        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._histograms: dict[str, Histogram] = {}

        self._init_room_metrics()
        self._init_relay_metrics()

        logger.debug("MetricsCollector initialized")

    def _init_room_metrics(self) -> None:
        """Initialize room lifecycle metrics."""
        self._counters["rooms_created_total"] = Counter(
            name="rooms_created_total",
            help="Total number of rooms created",
        )
        self._counters["rooms_destroyed_total"] = Counter(
            name="rooms_destroyed_total",
            help="Total number of rooms destroyed",
        )
        self._gauges["rooms_active"] = Gauge(
            name="rooms_active",
            help="Number of rooms currently open",
        )
        self._gauges["connections_active"] = Gauge(
            name="connections_active",
            help="Number of open signaling connections",
        )
        self._counters["joins_total"] = Counter(
            name="joins_total",
            help="Total number of accepted joins",
        )
        self._counters["join_rejections_total"] = Counter(
            name="join_rejections_total",
            help="Total number of rejected joins (room full or already joined)",
        )
        self._histograms["room_lifetime_seconds"] = Histogram(
            name="room_lifetime_seconds",
            help="Room lifetime in seconds (first join to last leave)",
        )

    def _init_relay_metrics(self) -> None:
        """Initialize relay volume metrics."""
        self._counters["envelopes_relayed_total"] = Counter(
            name="envelopes_relayed_total",
            help="Total number of negotiation envelopes relayed",
        )
        self._counters["chat_messages_relayed_total"] = Counter(
            name="chat_messages_relayed_total",
            help="Total number of chat messages relayed",
        )
        self._counters["relay_failures_total"] = Counter(
            name="relay_failures_total",
            help="Total number of deliveries dropped because the recipient was gone",
        )

    # === Room metrics ===

    def record_room_created(self) -> None:
        with self._lock:
            self._counters["rooms_created_total"].inc()
            self._gauges["rooms_active"].inc()

    def record_room_destroyed(self, lifetime_seconds: float) -> None:
        """Record room destruction.

        Args:
            lifetime_seconds: Time since the room was created
        """
        with self._lock:
            self._counters["rooms_destroyed_total"].inc()
            self._gauges["rooms_active"].dec()
            self._histograms["room_lifetime_seconds"].observe(lifetime_seconds)

    def record_join(self, accepted: bool = True) -> None:
        with self._lock:
            if accepted:
                self._counters["joins_total"].inc()
            else:
                self._counters["join_rejections_total"].inc()

    def record_connection_open(self) -> None:
        with self._lock:
            self._gauges["connections_active"].inc()

    def record_connection_closed(self) -> None:
        with self._lock:
            self._gauges["connections_active"].dec()

    # === Relay metrics ===

    def record_relay(self, kind: str, delivered: int = 1) -> None:
        """Record a relayed message.

        Args:
            kind: "signal" or "chat"
            delivered: Number of recipients the message reached
        """
        with self._lock:
            name = "chat_messages_relayed_total" if kind == "chat" else "envelopes_relayed_total"
            self._counters[name].inc(float(delivered))

    def record_relay_failure(self) -> None:
        with self._lock:
            self._counters["relay_failures_total"].inc()

    # === Export ===

    def export_prometheus(self) -> str:
        """Render every metric as Prometheus text exposition (version 0.0.4)."""
        with self._lock:
            lines: list[str] = []

            scalars: list[tuple[str, Counter | Gauge]] = [
                *(("counter", c) for c in self._counters.values()),
                *(("gauge", g) for g in self._gauges.values()),
            ]
            for kind, metric in scalars:
                lines += self._header(metric.name, metric.help, kind)
                lines.append(f"{metric.name}{self._format_labels(metric.labels)} {metric.value}")

            for hist in self._histograms.values():
                lines += self._header(hist.name, hist.help, "histogram")
                for bucket in hist.buckets:
                    le = "+Inf" if bucket.le == float("inf") else str(bucket.le)
                    lines.append(
                        f"{hist.name}_bucket{self._format_labels({**hist.labels, 'le': le})} "
                        f"{bucket.count}"
                    )
                suffix = self._format_labels(hist.labels)
                lines.append(f"{hist.name}_sum{suffix} {hist.sum}")
                lines.append(f"{hist.name}_count{suffix} {hist.count}")

            return "\n".join(lines) + "\n"

    @staticmethod
    def _header(name: str, help_text: str, kind: str) -> list[str]:
        return [f"# HELP {name} {help_text}", f"# TYPE {name} {kind}"]

    @staticmethod
    def _format_labels(labels: dict[str, str]) -> str:
        if not labels:
            return ""
        pairs = ",".join(f'{key}="{value}"' for key, value in sorted(labels.items()))
        return f"{{{pairs}}}"

    def get_summary(self) -> dict[str, float]:
        """Get summary statistics for monitoring dashboards."""
        with self._lock:
            summary = {name: c.value for name, c in self._counters.items()}
            summary.update({name: g.value for name, g in self._gauges.items()})
            return summary


# Process-wide collector used when none is injected
_metrics_collector: MetricsCollector | None = None
_collector_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """Return the process-wide collector, creating it on first use."""
    global _metrics_collector

    if _metrics_collector is None:
        with _collector_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()

    return _metrics_collector
