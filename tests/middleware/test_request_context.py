from __future__ import annotations

import logging
import uuid

import pytest
from fastapi.testclient import TestClient

from certvault.middleware.request_context import request_id_var

_LOGGER = "certvault.middleware.request_context"


def test_generates_uuid_when_absent(client: TestClient) -> None:
    resp = client.get("/health")
    uuid.UUID(resp.headers["X-Request-ID"])


def test_echoes_client_request_id(client: TestClient) -> None:
    resp = client.get("/health", headers={"X-Request-ID": "trace-abc-123"})
    assert resp.headers["X-Request-ID"] == "trace-abc-123"


def test_overlong_request_id_is_replaced(client: TestClient) -> None:
    resp = client.get("/health", headers={"X-Request-ID": "x" * 500})
    assert resp.headers["X-Request-ID"] != "x" * 500
    uuid.UUID(resp.headers["X-Request-ID"])


def test_header_present_on_error_responses(client: TestClient) -> None:
    resp = client.post("/v1/certificates", json={}, headers={"X-Request-ID": "req-401"})
    assert resp.status_code == 401
    assert resp.headers["X-Request-ID"] == "req-401"


def test_summary_line_carries_request_fields(
    client: TestClient, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.INFO, logger=_LOGGER):
        client.get("/health", headers={"X-Request-ID": "req-log-1"})

    records = [r for r in caplog.records if r.name == _LOGGER]
    assert records
    record = records[-1]
    assert record.request_id == "req-log-1"  # type: ignore[attr-defined]
    assert record.method == "GET"  # type: ignore[attr-defined]
    assert record.path == "/health"  # type: ignore[attr-defined]
    assert record.status_code == 200  # type: ignore[attr-defined]


def test_context_is_reset_after_request(client: TestClient) -> None:
    client.get("/health", headers={"X-Request-ID": "req-reset"})
    assert request_id_var.get() == "-"
