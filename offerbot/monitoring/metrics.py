"""
Prometheus metrics for the offer bot.

Organized into: reconciliation, submissions, connection, oracle, lifecycle.
Each instance owns a private registry so tests never collide on names.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server


class OfferBotMetrics:
    """Metrics for offer reconciliation and valuation tracking."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()

        # === Reconciliation ===
        self.cycles = Counter(
            'reconcile_cycles_total',
            'Reconciliation cycles by outcome',
            labelnames=['outcome'],
            registry=reg
        )
        self.cycle_latency_ms = Histogram(
            'reconcile_cycle_latency_ms',
            'Duration of one reconciliation cycle (milliseconds)',
            buckets=[50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000],
            registry=reg
        )
        self.consecutive_errors = Gauge(
            'reconcile_consecutive_errors',
            'Consecutive failed reconciliation cycles',
            registry=reg
        )
        self.target_offer_present = Gauge(
            'target_offer_present',
            'Whether the last cycle found the target offer (1=yes)',
            registry=reg
        )

        # === Submissions ===
        self.offers_created = Counter(
            'offers_created_total',
            'Offers successfully created',
            registry=reg
        )
        self.offers_cancelled = Counter(
            'offers_cancelled_total',
            'Offers successfully cancelled',
            registry=reg
        )
        self.submission_failures = Counter(
            'submission_failures_total',
            'Transactions that did not settle with tesSUCCESS',
            labelnames=['kind'],
            registry=reg
        )
        self.submission_queue_wait_ms = Histogram(
            'submission_queue_wait_ms',
            'Time spent waiting for the account submission slot (milliseconds)',
            buckets=[1, 10, 100, 1000, 5000, 30000],
            registry=reg
        )

        # === Connection ===
        self.reconnects = Counter(
            'ledger_reconnects_total',
            'Reconnect attempts by outcome',
            labelnames=['outcome'],
            registry=reg
        )
        self.connected = Gauge(
            'ledger_connected',
            'Ledger connection state (1=connected)',
            registry=reg
        )

        # === Oracle ===
        self.valuation_value = Gauge(
            'valuation_value',
            'Last accepted valuation',
            registry=reg
        )
        self.valuation_confidence = Gauge(
            'valuation_confidence',
            'Confidence of the last aggregated valuation',
            registry=reg
        )
        self.valuation_cov = Gauge(
            'valuation_coefficient_of_variation',
            'Cross-source coefficient of variation of the last aggregation',
            registry=reg
        )
        self.price_updates = Counter(
            'price_updates_total',
            'Price update events published',
            registry=reg
        )
        self.source_failures = Counter(
            'valuation_source_failures_total',
            'Valuation source fetch failures',
            labelnames=['source'],
            registry=reg
        )
        self.degraded_aggregations = Counter(
            'valuation_degraded_total',
            'Aggregations answered from cache or synthetic estimate',
            labelnames=['mode'],
            registry=reg
        )

        # === Lifecycle ===
        self.bot_started = Counter(
            'bot_started_total',
            'Bot instances started',
            registry=reg
        )

        self.registry = reg

    def get_registry(self) -> CollectorRegistry:
        """Return the Prometheus registry for export."""
        return self.registry

    def serve(self, port: int) -> None:
        """Expose /metrics on `port` from a background thread."""
        start_http_server(port, registry=self.registry)
