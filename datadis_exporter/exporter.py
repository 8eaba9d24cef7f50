"""Prometheus metrics exporter module.

This module handles:
- Defining Prometheus operational metrics for the gather cycle
- Exposing the metrics HTTP server on a configurable port
"""

import logging
import time
from typing import Optional

from prometheus_client import Counter, Gauge, start_http_server, REGISTRY, CollectorRegistry

# Configure module logger
logger = logging.getLogger(__name__)


class DatadisExporter:
    """Prometheus exporter for the Datadis gather cycle.

    Exposes the following metrics:
    - datadis_scrape_success: Whether the last gather succeeded (1=success, 0=failure)
    - datadis_scrape_timestamp: Unix timestamp of last gather
    - datadis_scrape_duration_seconds: Duration of last gather
    - datadis_points_emitted: Points emitted by the last gather
    - datadis_supplies: Number of supplies being collected
    - datadis_errors_total: Gather failures by error type

    Attributes:
        port: HTTP server port (default 9121)
    """

    def __init__(self, port: int = 9121, registry: Optional[CollectorRegistry] = None):
        """Initialize the exporter.

        Args:
            port: Port to run the HTTP server on
            registry: Optional custom registry for testing. If None, uses default REGISTRY.
        """
        self.port = port
        self._registry = registry if registry is not None else REGISTRY
        self._server_started = False

        self._scrape_success = Gauge(
            'datadis_scrape_success',
            'Whether the last gather succeeded (1=success, 0=failure)',
            registry=self._registry
        )

        self._scrape_timestamp = Gauge(
            'datadis_scrape_timestamp',
            'Unix timestamp of the last gather',
            registry=self._registry
        )

        self._scrape_duration = Gauge(
            'datadis_scrape_duration_seconds',
            'Duration of the last gather in seconds',
            registry=self._registry
        )

        self._points_emitted = Gauge(
            'datadis_points_emitted',
            'Number of points emitted by the last gather',
            registry=self._registry
        )

        self._supplies = Gauge(
            'datadis_supplies',
            'Number of supplies being collected',
            registry=self._registry
        )

        self._errors = Counter(
            'datadis_errors',
            'Gather failures by error type',
            ['type'],
            registry=self._registry
        )

    def set_scrape_success(self, success: bool, duration: float, points: int = 0) -> None:
        """Update operational metrics after a gather attempt.

        Args:
            success: Whether the gather succeeded
            duration: How long the gather took in seconds
            points: Number of points emitted
        """
        self._scrape_success.set(1 if success else 0)
        self._scrape_timestamp.set(time.time())
        self._scrape_duration.set(duration)
        self._points_emitted.set(points)

    def set_supplies(self, count: int) -> None:
        self._supplies.set(count)

    def record_error(self, err: Exception) -> None:
        """Count a gather failure under its exception class name."""
        self._errors.labels(type=type(err).__name__).inc()

    def start(self) -> None:
        """Start the HTTP server to expose metrics.

        The server runs in a daemon thread and exposes metrics at:
        http://localhost:{port}/metrics
        """
        if self._server_started:
            logger.warning("Prometheus server already started")
            return

        logger.info(f"Starting Prometheus HTTP server on port {self.port}")
        start_http_server(self.port, registry=self._registry)
        self._server_started = True
