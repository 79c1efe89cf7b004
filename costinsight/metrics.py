import logging
import threading
import time
from typing import Iterable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    GCCollector,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

LOG = logging.getLogger(__name__)

HTTP_DURATION_NAME = "http_request_duration_ms"
HTTP_DURATION_LABELS = ["method", "route", "code"]
# response time from 50ms to 10s
HTTP_DURATION_BUCKETS = [50, 100, 200, 300, 400, 500, 750, 1000, 2500, 5000, 10000]
UNMATCHED_ROUTE = "<unmatched>"


class SampledCollector:
    """Serve the last snapshot of the wrapped collectors.

    The snapshot is refreshed by ``sample()``, normally from the background
    scheduler, so a scrape never walks /proc itself unless nothing has been
    sampled yet.
    """

    def __init__(self, collectors: Iterable):
        self._collectors = list(collectors)
        self._lock = threading.Lock()
        self._snapshot = None
        self.last_sampled: float = 0.0

    def sample(self):
        families = []
        for collector in self._collectors:
            families.extend(collector.collect())
        with self._lock:
            self._snapshot = families
            self.last_sampled = time.time()
        return families

    def collect(self):
        with self._lock:
            snapshot = self._snapshot
        if snapshot is None:
            snapshot = self.sample()
        return list(snapshot)


class MetricsRegistry:
    """Process metrics plus the HTTP request-duration histogram.

    ``client`` is the underlying ``CollectorRegistry``; every instance owns a
    fresh one so building a second registry never collides with the first.
    """

    def __init__(self, sample_seconds: float = 5.0):
        self.sample_seconds = sample_seconds
        self.client = CollectorRegistry()
        self.default_metrics = SampledCollector([
            ProcessCollector(registry=None),
            PlatformCollector(registry=None),
            # GCCollector always registers itself; give it a throwaway registry
            GCCollector(registry=CollectorRegistry()),
        ])
        self.client.register(self.default_metrics)
        self.http_request_duration_ms = Histogram(
            HTTP_DURATION_NAME,
            "Duration of HTTP requests in ms",
            HTTP_DURATION_LABELS,
            buckets=HTTP_DURATION_BUCKETS,
            registry=self.client,
        )
        self._scheduler: Optional[BackgroundScheduler] = None
        self._scheduler_lock = threading.Lock()

    def observe_request(self, method: str, route: str, code, duration_ms: float):
        self.http_request_duration_ms.labels(method=method, route=route, code=str(code)).observe(duration_ms)

    def start_sampling(self) -> BackgroundScheduler:
        with self._scheduler_lock:
            if self._scheduler is None:
                self.default_metrics.sample()
                scheduler = BackgroundScheduler()
                scheduler.add_job(self.default_metrics.sample, "interval", seconds=self.sample_seconds,
                                  id="default-metrics")
                scheduler.start()
                self._scheduler = scheduler
                LOG.info(f"Sampling default metrics every {self.sample_seconds}s")
            return self._scheduler

    def stop_sampling(self):
        with self._scheduler_lock:
            if self._scheduler is not None:
                self._scheduler.shutdown(wait=False)
                self._scheduler = None

    @property
    def sampling(self) -> bool:
        return self._scheduler is not None

    def render(self):
        return generate_latest(self.client), CONTENT_TYPE_LATEST


_metrics: Optional[MetricsRegistry] = None
_metrics_lock = threading.Lock()


def init_metrics(sample_seconds: float = 5.0) -> MetricsRegistry:
    """Return the process-wide registry, creating it on first use."""
    global _metrics
    with _metrics_lock:
        if _metrics is None:
            _metrics = MetricsRegistry(sample_seconds=sample_seconds)
        return _metrics
