"""Prometheus registries: per-scrape gauges and the exporter's own metrics."""
from typing import Dict, Iterable, Tuple
from prometheus_client import (
    Counter, Gauge, Histogram,
    CollectorRegistry, generate_latest
)
import logging

from gqlexporter.errors import FlattenError
from gqlexporter.series import SeriesPoint

logger = logging.getLogger(__name__)


class ScrapeRegistry:
    """Gauge families built from one scrape's flattened data."""

    def __init__(self):
        # A fresh registry per scrape so stale series never leak between scrapes
        self.registry = CollectorRegistry()

        # Gauge families keyed by (name, sorted label names)
        self.gauges: Dict[Tuple[str, Tuple[str, ...]], Gauge] = {}

        # Label names a metric name was first registered with
        self.label_names: Dict[str, Tuple[str, ...]] = {}

    def _gauge_for(self, point: SeriesPoint) -> Gauge:
        key = point.gauge_key()
        gauge = self.gauges.get(key)
        if gauge is not None:
            return gauge

        name, label_names = key
        registered = self.label_names.get(name)
        if registered is not None:
            raise FlattenError(
                f"metric {name} registered with labels {list(registered)} "
                f"is also produced with labels {list(label_names)}"
            )

        try:
            gauge = Gauge(
                name,
                f"Value of {name} from the GraphQL response",
                label_names,
                registry=self.registry
            )
        except ValueError as e:
            raise FlattenError(f"cannot register metric {name} with labels {list(label_names)}: {e}")

        self.gauges[key] = gauge
        self.label_names[name] = label_names
        logger.debug(f"Registered gauge {name} with labels {list(label_names)}")
        return gauge

    def export_point(self, point: SeriesPoint):
        """Set a single observation, registering its family on first sight."""
        gauge = self._gauge_for(point)
        if point.labels:
            # Positional, since "self" is a valid label name
            label_values = [point.labels[n] for n in point.label_names()]
            gauge.labels(*label_values).set(point.value)
        else:
            gauge.set(point.value)

    def export_points(self, points: Iterable[SeriesPoint]) -> int:
        """Export multiple observations; returns how many were set."""
        count = 0
        for point in points:
            self.export_point(point)
            count += 1
        return count

    def render(self) -> bytes:
        """Text exposition of every registered gauge."""
        return generate_latest(self.registry)


class SelfMetrics:
    """Self-monitoring metrics for the exporter."""

    def __init__(self, registry=None, prefix="graphql_exporter_"):
        if registry is None:
            registry = CollectorRegistry()
        self.registry = registry

        self.scrapes_total = Counter(
            f"{prefix}scrapes_total",
            "Total number of scrapes served",
            ["outcome"],
            registry=registry
        )

        self.cache_requests_total = Counter(
            f"{prefix}cache_requests_total",
            "Cache lookups by result",
            ["result"],
            registry=registry
        )

        self.cache_write_errors_total = Counter(
            f"{prefix}cache_write_errors_total",
            "Total number of failed cache writes",
            registry=registry
        )

        self.query_errors_total = Counter(
            f"{prefix}query_errors_total",
            "Scrapes failed by error kind",
            ["kind"],
            registry=registry
        )

        self.scrape_duration_seconds = Histogram(
            f"{prefix}scrape_duration_seconds",
            "Duration of each scrape in seconds",
            buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0],
            registry=registry
        )

    def record_scrape(self, outcome: str, duration: float):
        """Record a finished scrape."""
        self.scrapes_total.labels(outcome=outcome).inc()
        self.scrape_duration_seconds.observe(duration)

    def record_cache(self, hit: bool):
        """Record a cache lookup."""
        self.cache_requests_total.labels(result="hit" if hit else "miss").inc()

    def record_cache_write_error(self):
        self.cache_write_errors_total.inc()

    def record_error(self, kind: str):
        """Record a failed scrape by error kind."""
        self.query_errors_total.labels(kind=kind).inc()

    def render(self) -> bytes:
        return generate_latest(self.registry)
