"""Prometheus metrics for a STREST client connection."""

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest


class ClientMetrics:
    """Counters and gauges describing one client's traffic.

    Each instance registers its collectors on its own ``CollectorRegistry``
    unless one is passed in, so several clients never collide on metric
    names in the global registry.
    """

    def __init__(self, registry: CollectorRegistry | None = None, namespace: str = "strest_client"):
        self.namespace = namespace
        self.registry = registry if registry is not None else CollectorRegistry()

        self.requests_sent = Counter(
            f"{namespace}_requests_sent_total",
            "Requests written to the transport",
            ["method"],
            registry=self.registry,
        )
        self.frames_received = Counter(
            f"{namespace}_frames_received_total",
            "Response frames dispatched to a transaction",
            registry=self.registry,
        )
        self.transactions_completed = Counter(
            f"{namespace}_transactions_completed_total",
            "Transactions ended by a complete status",
            registry=self.registry,
        )
        self.transactions_failed = Counter(
            f"{namespace}_transactions_failed_total",
            "Transactions failed by connection loss",
            registry=self.registry,
        )
        self.unroutable_frames = Counter(
            f"{namespace}_unroutable_frames_total",
            "Frames dropped because no transaction matched",
            registry=self.registry,
        )
        self.malformed_frames = Counter(
            f"{namespace}_malformed_frames_total",
            "Frames dropped because they could not be parsed",
            registry=self.registry,
        )
        self.reconnect_attempts = Counter(
            f"{namespace}_reconnect_attempts_total",
            "Connection attempts made by the reconnect loop",
            registry=self.registry,
        )
        self.pending_transactions = Gauge(
            f"{namespace}_pending_transactions",
            "Transactions awaiting completion",
            registry=self.registry,
        )

    def value(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Read a sample value, 0.0 when it has not been recorded yet."""
        sample = self.registry.get_sample_value(f"{self.namespace}_{name}", labels or {})
        return sample or 0.0

    def export(self) -> bytes:
        """Render all metrics in the Prometheus text format."""
        return generate_latest(self.registry)
