"""
Monitoring and metrics collection for the crawler.
"""

import time
import logging
from collections import Counter as Tally
from typing import Dict, Optional, Any

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest
from prometheus_client import start_http_server


class MetricsCollector:
    """
    Crawl metrics kept on a private Prometheus registry.

    A private registry lets several crawlers live in one process without
    their metric names colliding. Current values are also tallied in memory
    for the end-of-crawl summary.
    """

    def __init__(self, enable_prometheus: bool = False, prometheus_port: int = 8000):
        self.logger = logging.getLogger(__name__)
        self.enable_prometheus = enable_prometheus
        self.prometheus_port = prometheus_port
        self.values: Tally = Tally()

        self.registry = CollectorRegistry()
        self.prometheus_metrics = {
            'urls_crawled_total': Counter(
                'recrawl_urls_crawled_total',
                'Total number of URLs fetched',
                ['status_code'],
                registry=self.registry
            ),
            'errors_total': Counter(
                'recrawl_errors_total',
                'Total number of fetch errors',
                ['error_type'],
                registry=self.registry
            ),
            'duplicates_skipped_total': Counter(
                'recrawl_duplicates_skipped_total',
                'Total number of duplicate URLs and pages skipped',
                ['duplicate_type'],
                registry=self.registry
            ),
            'traps_skipped_total': Counter(
                'recrawl_traps_skipped_total',
                'Total number of URLs skipped as crawler traps',
                registry=self.registry
            ),
            'response_time_seconds': Histogram(
                'recrawl_response_time_seconds',
                'Response time for HTTP requests',
                registry=self.registry
            ),
            'queue_size': Gauge(
                'recrawl_queue_size',
                'Number of URLs waiting for dispatch',
                registry=self.registry
            ),
            'active_workers': Gauge(
                'recrawl_active_workers',
                'Number of workers busy with a URL',
                registry=self.registry
            ),
        }

    def start_prometheus_server(self):
        """Start the Prometheus metrics HTTP server."""
        if not self.enable_prometheus:
            return

        try:
            start_http_server(self.prometheus_port, registry=self.registry)
            self.logger.info(f"Prometheus metrics server started on port {self.prometheus_port}")
        except OSError as e:
            self.logger.error(f"Failed to start Prometheus server: {e}")

    def increment_counter(self, name: str, labels: Optional[Dict[str, str]] = None):
        """Increment a counter metric."""
        self.values[name] += 1
        metric = self.prometheus_metrics[name]
        if labels:
            metric.labels(**labels).inc()
        else:
            metric.inc()

    def set_gauge(self, name: str, value: float):
        """Set a gauge metric value."""
        self.values[name] = value
        self.prometheus_metrics[name].set(value)

    def observe_histogram(self, name: str, value: float):
        """Record a histogram observation."""
        self.prometheus_metrics[name].observe(value)

    def get_current_values(self) -> Dict[str, float]:
        """Get current values of all metrics."""
        return dict(self.values)

    def export_text(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)


class CrawlerMonitor:
    """High-level monitoring interface for the crawler."""

    def __init__(self, metrics_collector: Optional[MetricsCollector] = None):
        self.metrics = metrics_collector or MetricsCollector()
        self.start_time = time.time()

    def record_url_crawled(self, status_code: int, response_time: float):
        """Record a fetched URL."""
        self.metrics.increment_counter('urls_crawled_total', {'status_code': str(status_code)})
        self.metrics.observe_histogram('response_time_seconds', response_time)

    def record_error(self, error_type: str):
        """Record a fetch error."""
        self.metrics.increment_counter('errors_total', {'error_type': error_type})

    def record_duplicate_skipped(self, duplicate_type: str):
        """Record a duplicate URL or page skip."""
        self.metrics.increment_counter('duplicates_skipped_total',
                                       {'duplicate_type': duplicate_type})

    def record_trap_skipped(self):
        """Record a URL skipped as a crawler trap."""
        self.metrics.increment_counter('traps_skipped_total')

    def update_queue_size(self, size: int):
        """Update the queue size metric."""
        self.metrics.set_gauge('queue_size', size)

    def update_active_workers(self, count: int):
        """Update the active workers count."""
        self.metrics.set_gauge('active_workers', count)

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        current_values = self.metrics.get_current_values()
        runtime = time.time() - self.start_time

        return {
            'runtime_seconds': runtime,
            'metrics': current_values,
            'rates': {
                'urls_per_second': current_values.get('urls_crawled_total', 0) / runtime if runtime > 0 else 0,
            }
        }


def initialize_monitoring(enable_prometheus: bool = False, prometheus_port: int = 8000) -> CrawlerMonitor:
    """Create a monitor and start its metrics server when enabled."""
    metrics_collector = MetricsCollector(enable_prometheus, prometheus_port)
    metrics_collector.start_prometheus_server()
    return CrawlerMonitor(metrics_collector)
