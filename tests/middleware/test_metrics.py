from __future__ import annotations

from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from tests.conftest import auth


def _count(method: str, endpoint: str, status_code: str) -> float:
    value = REGISTRY.get_sample_value(
        "http_requests_total",
        {"method": method, "endpoint": endpoint, "status_code": status_code},
    )
    return value if value is not None else 0.0


def test_request_is_counted(client: TestClient) -> None:
    before = _count("GET", "/health", "200")
    client.get("/health")
    assert _count("GET", "/health", "200") - before == 1


def test_endpoint_label_is_route_template(client: TestClient, creator_token: str) -> None:
    template = "/v1/certificates/{certificate_id}"
    before = _count("GET", template, "404")
    client.get("/v1/certificates/CERT-NOPE", headers=auth(creator_token))
    client.get("/v1/certificates/CERT-OTHER", headers=auth(creator_token))
    assert _count("GET", template, "404") - before == 2
    assert _count("GET", "/v1/certificates/CERT-NOPE", "404") == 0


def test_unmatched_paths_share_one_label(client: TestClient) -> None:
    before = _count("GET", "unmatched", "404")
    client.get("/no/such/path")
    assert _count("GET", "unmatched", "404") - before == 1


def test_auth_failures_are_counted(client: TestClient) -> None:
    before = _count("POST", "/v1/certificates", "401")
    client.post("/v1/certificates", json={})
    assert _count("POST", "/v1/certificates", "401") - before == 1


def test_metrics_scrape_is_not_counted(client: TestClient) -> None:
    before = _count("GET", "/metrics", "200")
    client.get("/metrics")
    client.get("/metrics")
    assert _count("GET", "/metrics", "200") == before


def test_duration_is_observed(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health"}
    before = REGISTRY.get_sample_value("http_request_duration_seconds_count", labels) or 0.0
    client.get("/health")
    after = REGISTRY.get_sample_value("http_request_duration_seconds_count", labels)
    assert after == before + 1
