"""
Prometheus metrics collection and export for the analysis pipeline.
"""
import time
from typing import Dict, Any
from prometheus_client import Counter, Histogram, CollectorRegistry, start_http_server
import structlog

logger = structlog.get_logger()


class MetricsCollector:
    """Collect and export Prometheus metrics for the analysis pipeline."""

    def __init__(self, registry: CollectorRegistry = None):
        self.start_time = time.time()
        self.port = None
        self.registry = registry or CollectorRegistry()
        self._init_metrics()

    def start_server(self, port: int = 9108) -> bool:
        """Expose the registry over HTTP."""
        try:
            start_http_server(port, registry=self.registry)
        except OSError as e:
            logger.warning("Failed to start metrics server", port=port, error=str(e))
            return False
        self.port = port
        logger.info("Prometheus metrics server started", **self.get_metrics_summary())
        return True

    def _init_metrics(self):
        """Initialize Prometheus metrics."""

        self.runs_total = Counter(
            'runs_total',
            'Total analyze runs',
            ['status'],  # ok, rejected, failed
            registry=self.registry
        )

        self.records_total = Counter(
            'records_total',
            'Total records analyzed',
            registry=self.registry
        )

        self.batches_total = Counter(
            'batches_total',
            'Total record batches sent for classification',
            registry=self.registry
        )

        self.oracle_calls_total = Counter(
            'oracle_calls_total',
            'Oracle calls by role and outcome',
            ['role', 'status'],  # classify|merge, ok|failed
            registry=self.registry
        )

        self.oracle_latency_ms = Histogram(
            'oracle_latency_ms',
            'Oracle call latency in milliseconds',
            buckets=[50, 100, 250, 500, 1000, 2000, 5000, 10000, 30000],
            registry=self.registry
        )

        self.repair_fallbacks_total = Counter(
            'repair_fallbacks_total',
            'Oracle answers that could not be parsed and fell back to defaults',
            ['role'],
            registry=self.registry
        )

        self.merge_rounds = Histogram(
            'merge_rounds',
            'Merge rounds needed per run',
            buckets=[0, 1, 2, 3, 4, 6, 8],
            registry=self.registry
        )

        self.credits_reserved_total = Counter(
            'credits_reserved_total',
            'Total credits reserved',
            registry=self.registry
        )

        self.ledger_rejections_total = Counter(
            'ledger_rejections_total',
            'Credit reservations rejected',
            ['reason'],  # insufficient_credits, account_not_found
            registry=self.registry
        )

        self.storage_errors_total = Counter(
            'storage_errors_total',
            'Persistence failures by operation',
            ['operation'],  # save_mini, save_final
            registry=self.registry
        )

    def record_run_total(self, status: str):
        """Record run status."""
        self.runs_total.labels(status=status).inc()
        logger.debug("Recorded run status", status=status)

    def record_records(self, count: int):
        self.records_total.inc(count)

    def record_batches(self, count: int):
        self.batches_total.inc(count)

    def record_oracle_call(self, role: str, status: str, latency_ms: float = None):
        """Record one oracle call and, when known, its latency."""
        self.oracle_calls_total.labels(role=role, status=status).inc()
        if latency_ms is not None:
            self.oracle_latency_ms.observe(latency_ms)
        logger.debug("Recorded oracle call", role=role, status=status, latency_ms=latency_ms)

    def record_repair_fallback(self, role: str):
        self.repair_fallbacks_total.labels(role=role).inc()

    def record_merge_rounds(self, rounds: int):
        self.merge_rounds.observe(rounds)

    def record_credits_reserved(self, amount: int):
        self.credits_reserved_total.inc(amount)

    def record_ledger_rejection(self, reason: str):
        self.ledger_rejections_total.labels(reason=reason).inc()
        logger.debug("Recorded ledger rejection", reason=reason)

    def record_storage_error(self, operation: str):
        self.storage_errors_total.labels(operation=operation).inc()
        logger.debug("Recorded storage error", operation=operation)

    def get_metric_value(self, name: str, labels: Dict[str, str] = None) -> float:
        """Return the current value of a sample, 0.0 when absent."""
        value = self.registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get a summary of current metrics."""
        return {
            'uptime_seconds': time.time() - self.start_time,
            'port': self.port,
            'metrics_available': [
                'runs_total',
                'records_total',
                'batches_total',
                'oracle_calls_total',
                'oracle_latency_ms',
                'repair_fallbacks_total',
                'merge_rounds',
                'credits_reserved_total',
                'ledger_rejections_total',
                'storage_errors_total',
            ]
        }
