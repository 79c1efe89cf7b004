from unittest.mock import MagicMock

from fastapi.testclient import TestClient
from prometheus_client.core import GaugeMetricFamily

from costinsight.app import create_app
from costinsight.config import Settings
from costinsight.metrics import HTTP_DURATION_BUCKETS, MetricsRegistry, SampledCollector, init_metrics


def _bucket_bounds(registry: MetricsRegistry):
    bounds = []
    for family in registry.client.collect():
        if family.name != "http_request_duration_ms":
            continue
        for sample in family.samples:
            if sample.name == "http_request_duration_ms_bucket":
                bounds.append(sample.labels["le"])
    return bounds


def test_histogram_keeps_fixed_buckets():
    m = MetricsRegistry()
    m.observe_request("GET", "/costs", 200, 42.0)
    assert HTTP_DURATION_BUCKETS == [50, 100, 200, 300, 400, 500, 750, 1000, 2500, 5000, 10000]
    assert _bucket_bounds(m) == [f"{float(b)}" for b in HTTP_DURATION_BUCKETS] + ["+Inf"]


def test_observation_lands_in_labelled_bucket():
    m = MetricsRegistry()
    m.observe_request("POST", "/costs", 500, 120.0)
    labels = {"method": "POST", "route": "/costs", "code": "500"}
    assert m.client.get_sample_value("http_request_duration_ms_bucket", {**labels, "le": "100.0"}) == 0
    assert m.client.get_sample_value("http_request_duration_ms_bucket", {**labels, "le": "200.0"}) == 1
    assert m.client.get_sample_value("http_request_duration_ms_sum", labels) == 120.0


def test_registration_twice_does_not_raise():
    first = init_metrics()
    second = init_metrics()
    assert first is second
    assert first.http_request_duration_ms is second.http_request_duration_ms
    MetricsRegistry()
    MetricsRegistry()


def test_sampled_collector_serves_snapshot():
    family = GaugeMetricFamily("fake_gauge", "fake")
    family.add_metric([], 1.0)
    inner = MagicMock()
    inner.collect.return_value = [family]
    collector = SampledCollector([inner])

    assert collector.collect() == [family]
    assert collector.collect() == [family]
    assert inner.collect.call_count == 1

    collector.sample()
    assert inner.collect.call_count == 2
    assert collector.last_sampled > 0


def test_sampling_start_stop_is_idempotent():
    m = MetricsRegistry(sample_seconds=5)
    scheduler = m.start_sampling()
    try:
        assert m.start_sampling() is scheduler
        assert m.sampling
        assert scheduler.get_job("default-metrics") is not None
    finally:
        m.stop_sampling()
    m.stop_sampling()
    assert not m.sampling


def test_default_metrics_are_exposed():
    payload, ctype = MetricsRegistry().render()
    assert ctype.startswith("text/plain")
    assert b"python_info" in payload
    assert b"python_gc_objects_collected_total" in payload


def test_middleware_times_requests(client, aws_provider, metrics):
    aws_provider.fetch_costs.return_value = {}
    client.post("/costs", json={"cloudProvider": "aws"})
    client.post("/costs", json={"cloudProvider": "nope"})
    client.get("/does-not-exist")
    client.get("/also-missing")

    count = metrics.client.get_sample_value
    assert count("http_request_duration_ms_count", {"method": "POST", "route": "/costs", "code": "200"}) == 1
    assert count("http_request_duration_ms_count", {"method": "POST", "route": "/costs", "code": "400"}) == 1
    assert count("http_request_duration_ms_count",
                 {"method": "GET", "route": "<unmatched>", "code": "404"}) == 2


def test_metrics_endpoint(client, aws_provider):
    aws_provider.fetch_costs.return_value = {}
    client.post("/costs", json={"cloudProvider": "aws"})
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "http_request_duration_ms_bucket{" in r.text
    assert 'route="/costs"' in r.text
    assert "python_info" in r.text


def _route_labels(registry: MetricsRegistry):
    labels = set()
    for family in registry.client.collect():
        if family.name == "http_request_duration_ms":
            labels.update(s.labels["route"] for s in family.samples if s.name.endswith("_count"))
    return labels


def test_unknown_paths_share_one_series(client, metrics):
    for i in range(25):
        client.get(f"/scan/{i}")
    assert _route_labels(metrics) == {"<unmatched>"}
    assert metrics.client.get_sample_value(
        "http_request_duration_ms_count", {"method": "GET", "route": "<unmatched>", "code": "404"}) == 25


def test_route_label_is_the_template_and_errors_count_as_500(metrics):
    app = create_app(settings=Settings(), providers={}, metrics=metrics)

    @app.get("/items/{item_id}")
    def get_item(item_id: str):
        return {"id": item_id}

    @app.get("/explode")
    def explode():
        raise RuntimeError("handler blew up")

    client = TestClient(app, raise_server_exceptions=False)
    assert client.get("/items/a").status_code == 200
    assert client.get("/items/b").status_code == 200
    assert client.get("/explode").status_code == 500

    count = metrics.client.get_sample_value
    assert count("http_request_duration_ms_count", {"method": "GET", "route": "/items/{item_id}", "code": "200"}) == 2
    assert count("http_request_duration_ms_count", {"method": "GET", "route": "/explode", "code": "500"}) == 1
    assert "/items/a" not in _route_labels(metrics)
