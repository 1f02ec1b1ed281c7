from __future__ import annotations

from fastapi.testclient import TestClient

from certvault.services.ingestion import SAMPLE_HEADERS, sample_csv
from tests.conftest import auth


def _upload(client: TestClient, token: str, content: bytes, **params: str):
    return client.post(
        "/v1/uploads/csv",
        params=params,
        files={"file": ("certs.csv", content, "text/csv")},
        headers=auth(token),
    )


def test_template_is_csv_attachment(client: TestClient) -> None:
    resp = client.get("/v1/uploads/template")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert "certificate_template.csv" in resp.headers["content-disposition"]
    header = resp.text.splitlines()[0]
    assert header.split(",")[0] == '"studentId"'
    assert len(header.split(",")) == len(SAMPLE_HEADERS)


def test_upload_requires_permission(client: TestClient, token: str) -> None:
    resp = _upload(client, token, sample_csv().encode())
    assert resp.status_code == 403


def test_upload_reports_without_creating(client: TestClient, creator_token: str) -> None:
    resp = _upload(client, creator_token, sample_csv().encode())
    assert resp.status_code == 200
    report = resp.json()
    assert report["uploadId"].startswith("UPLOAD-")
    assert (report["totalRows"], report["validRows"], report["invalidRows"]) == (2, 2, 0)
    assert report["canProceed"] is True
    assert "batch" not in report

    listed = client.get("/v1/certificates", headers=auth(creator_token)).json()
    assert listed["count"] == 0


def test_upload_with_create(client: TestClient, creator_token: str) -> None:
    resp = _upload(client, creator_token, sample_csv().encode(), create="true")
    assert resp.status_code == 200
    batch = resp.json()["batch"]
    assert batch["batchId"].startswith("BATCH-")
    assert (batch["total"], batch["succeeded"], batch["failed"]) == (2, 2, 0)

    listed = client.get("/v1/certificates", headers=auth(creator_token)).json()
    titles = sorted(c["title"] for c in listed["certificates"])
    assert titles == ["Certificate - Database Systems", "Certificate - Web Development"]


def test_invalid_rows_are_reported_per_row(client: TestClient, creator_token: str) -> None:
    content = (
        "studentId,name,institution,subject\n"
        "S1,Ada Lovelace,Tech University,Mathematics\n"
        "S2,,Tech University,Physics\n"
    ).encode()
    report = _upload(client, creator_token, content).json()
    assert (report["validRows"], report["invalidRows"]) == (1, 1)
    assert report["errors"][0]["rowIndex"] == 2
    assert report["recommendations"]


def test_missing_headers_is_422(client: TestClient, creator_token: str) -> None:
    resp = _upload(client, creator_token, b"studentId,name\nS1,Ada\n")
    assert resp.status_code == 422
    body = resp.json()["detail"]
    assert "Missing required headers" in body["message"]
    assert "institution column is required" in body["errors"]


def test_empty_file_is_422(client: TestClient, creator_token: str) -> None:
    resp = _upload(client, creator_token, b"  \n")
    assert resp.status_code == 422
    assert resp.json()["detail"]["message"] == "Uploaded file is empty"


def test_non_csv_is_422(client: TestClient, creator_token: str) -> None:
    resp = client.post(
        "/v1/uploads/csv",
        files={"file": ("photo.png", b"\x89PNG", "image/png")},
        headers=auth(creator_token),
    )
    assert resp.status_code == 422


def test_rows_endpoint(client: TestClient, creator_token: str) -> None:
    resp = client.post(
        "/v1/uploads/rows",
        params={"create": "true"},
        json={
            "rows": [
                {
                    "Student ID": "S9",
                    "Full Name": "Grace Hopper",
                    "University": "Navy College",
                    "Course": "Compilers",
                }
            ]
        },
        headers=auth(creator_token),
    )
    assert resp.status_code == 200, resp.text
    report = resp.json()
    assert report["validRows"] == 1
    assert report["batch"]["succeeded"] == 1
