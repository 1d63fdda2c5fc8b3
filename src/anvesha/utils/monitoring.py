"""
Monitoring and metrics collection for the crawler.
"""

import logging
import time
from typing import Any, Dict, Optional

from prometheus_client import (
    CollectorRegistry, Counter, Gauge, Histogram, generate_latest, start_http_server,
)


FAILURE_KINDS = ('transient', 'permanent', 'denied', 'storage', 'internal')


class MetricsCollector:
    """
    Prometheus metrics held in a private registry.

    A private registry keeps several crawler instances (and tests) from
    colliding on metric names in the process-wide default registry.
    """

    def __init__(self, enable_prometheus: bool = False, prometheus_port: int = 8000):
        self.logger = logging.getLogger(__name__)
        self.enable_prometheus = enable_prometheus
        self.prometheus_port = prometheus_port
        self.registry = CollectorRegistry()

        self.pages_crawled = Counter(
            'anvesha_pages_crawled',
            'Pages fetched, processed and stored',
            registry=self.registry
        )
        self.pages_failed = Counter(
            'anvesha_pages_failed',
            'URLs given up on, by failure kind',
            ['kind'],
            registry=self.registry
        )
        self.retries = Counter(
            'anvesha_fetch_retries',
            'Transient fetch failures that were retried',
            registry=self.registry
        )
        self.links_discovered = Counter(
            'anvesha_links_discovered',
            'Outbound links extracted from pages',
            registry=self.registry
        )
        self.frontier_rejected = Counter(
            'anvesha_frontier_rejected',
            'URLs refused by the frontier',
            registry=self.registry
        )
        self.bytes_downloaded = Counter(
            'anvesha_bytes_downloaded',
            'Total bytes downloaded',
            registry=self.registry
        )
        self.fetch_duration = Histogram(
            'anvesha_fetch_duration_seconds',
            'Response time for HTTP requests',
            registry=self.registry
        )
        self.frontier_size = Gauge(
            'anvesha_frontier_size',
            'Number of URLs waiting in the frontier',
            registry=self.registry
        )
        self.active_workers = Gauge(
            'anvesha_active_workers',
            'Workers currently processing a URL',
            registry=self.registry
        )

    def start_server(self):
        """Start the Prometheus metrics HTTP exporter, if enabled."""
        if not self.enable_prometheus:
            return
        try:
            start_http_server(self.prometheus_port, registry=self.registry)
            self.logger.info(f"Prometheus metrics server started on port {self.prometheus_port}")
        except OSError as e:
            self.logger.error(f"Failed to start Prometheus server: {e}")

    def get_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Current value of a sample, 0.0 if it was never recorded."""
        value = self.registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0

    def export_text(self) -> bytes:
        """Metrics in the Prometheus text exposition format."""
        return generate_latest(self.registry)


class CrawlerMonitor:
    """High-level monitoring interface for the crawler."""

    def __init__(self, metrics_collector: MetricsCollector):
        self.metrics = metrics_collector
        self.start_time = time.time()

    def record_page_crawled(self, status_code: int, fetch_time: float, content_length: int):
        self.metrics.pages_crawled.inc()
        self.metrics.fetch_duration.observe(fetch_time)
        self.metrics.bytes_downloaded.inc(content_length)

    def record_failure(self, kind: str):
        self.metrics.pages_failed.labels(kind=kind).inc()

    def record_retry(self):
        self.metrics.retries.inc()

    def record_links(self, discovered: int, rejected: int = 0):
        self.metrics.links_discovered.inc(discovered)
        if rejected:
            self.metrics.frontier_rejected.inc(rejected)

    def update_frontier_size(self, size: int):
        self.metrics.frontier_size.set(size)

    def update_active_workers(self, count: int):
        self.metrics.active_workers.set(count)

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the main metrics."""
        runtime = time.time() - self.start_time
        crawled = self.metrics.get_value('anvesha_pages_crawled_total')
        return {
            'runtime_seconds': runtime,
            'pages_crawled': crawled,
            'pages_failed': sum(
                self.metrics.get_value('anvesha_pages_failed_total', {'kind': kind})
                for kind in FAILURE_KINDS
            ),
            'links_discovered': self.metrics.get_value('anvesha_links_discovered_total'),
            'pages_per_minute': crawled / (runtime / 60) if runtime > 0 else 0,
        }
