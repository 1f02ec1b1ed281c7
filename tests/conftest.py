from __future__ import annotations

import dataclasses
import datetime
import sys
from collections.abc import Iterator
from pathlib import Path

# Ensure repo root is on sys.path so `import certvault` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from certvault.core.config import SETTINGS  # noqa: E402
from certvault.main import app  # noqa: E402
from certvault.models.certificate import (  # noqa: E402
    CertificateDraft,
    CertificateType,
    Course,
    Institution,
    Recipient,
)
from certvault.models.principal import (  # noqa: E402
    CREATE_CERTIFICATES,
    ISSUE_CERTIFICATES,
    VERIFY_CERTIFICATES,
    Principal,
)
from certvault.repos.certificate_repo import InMemoryCertificateRepo  # noqa: E402
from certvault.services import token_service  # noqa: E402
from certvault.services.blob_store import InMemoryBlobStore  # noqa: E402
from certvault.services.cache import InMemoryCacheService  # noqa: E402
from certvault.services.ledger import InMemoryLedger  # noqa: E402
from certvault.services.registry import Services, build_services  # noqa: E402

TEST_SETTINGS = dataclasses.replace(
    SETTINGS,
    app_env="test",
    database_url=None,
    redis_url=None,
    ipfs_api_url=None,
    kdf_algorithm="pbkdf2-sha256",
    kdf_iterations=100_000,
)

CREATOR = Principal(user_id="creator-1", permissions=frozenset({CREATE_CERTIFICATES}))
OTHER_CREATOR = Principal(
    user_id="creator-2", permissions=frozenset({CREATE_CERTIFICATES})
)
VERIFIER = Principal(user_id="verifier-1", permissions=frozenset({VERIFY_CERTIFICATES}))
ISSUER = Principal(user_id="issuer-1", permissions=frozenset({ISSUE_CERTIFICATES}))
ADMIN = Principal(user_id="admin-1", roles=frozenset({"admin"}))
NOBODY = Principal(user_id="nobody")


def make_draft(**overrides: object) -> CertificateDraft:
    """The reference certificate used across the suite (CERT-A1)."""
    fields: dict[str, object] = {
        "title": "Certificate - Mathematics",
        "type": CertificateType.ACADEMIC,
        "certificate_id": "CERT-A1",
        "recipient": Recipient(student_id="S1", name="Ada Lovelace"),
        "institution": Institution(name="Tech University", department="Science"),
        "course": Course(
            subject="Mathematics",
            grade="A",
            credits=4.0,
            completion_date=datetime.date(2024, 6, 1),
        ),
    }
    fields.update(overrides)
    return CertificateDraft(**fields)  # type: ignore[arg-type]


def certificate_body(certificate_id: str = "CERT-A1", **overrides: object) -> dict:
    """JSON body for POST /v1/certificates."""
    body: dict[str, object] = {
        "certificateId": certificate_id,
        "title": "Certificate - Mathematics",
        "type": "academic",
        "recipient": {"studentId": "S1", "name": "Ada Lovelace"},
        "institution": {"name": "Tech University", "department": "Science"},
        "course": {
            "subject": "Mathematics",
            "grade": "A",
            "credits": 4,
            "completionDate": "2024-06-01",
        },
    }
    body.update(overrides)
    return body


@pytest.fixture
def services() -> Iterator[Services]:
    """A fresh in-memory service graph installed on the app."""
    built = build_services(
        TEST_SETTINGS,
        repo=InMemoryCertificateRepo(),
        blob_store=InMemoryBlobStore(),
        ledger=InMemoryLedger(),
        cache=InMemoryCacheService(),
    )
    app.state.services = built
    yield built
    app.state.services = None


@pytest.fixture
def client(services: Services) -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = "test-user",
    roles: list[str] | None = None,
    permissions: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(
        sub=username, roles=roles, permissions=permissions
    )


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def token() -> str:
    """Token with default role (user) and no permissions."""
    return mint_token()


@pytest.fixture
def creator_token() -> str:
    return mint_token(username=CREATOR.user_id, permissions=[CREATE_CERTIFICATES])


@pytest.fixture
def verifier_token() -> str:
    return mint_token(username=VERIFIER.user_id, permissions=[VERIFY_CERTIFICATES])


@pytest.fixture
def issuer_token() -> str:
    return mint_token(username=ISSUER.user_id, permissions=[ISSUE_CERTIFICATES])


@pytest.fixture
def admin_token() -> str:
    """Token with admin role."""
    return mint_token(username=ADMIN.user_id, roles=["admin"])
