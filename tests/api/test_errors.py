from __future__ import annotations

import pytest

from certvault.api.errors import status_for
from certvault.core.errors import (
    CertVaultError,
    ExternalCollaboratorError,
    IntegrityError,
    InvalidTransition,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (ValidationError("bad"), 422),
        (InvalidTransition("no", current_status="issued"), 409),
        (IntegrityError("tampered"), 400),
        (NotFoundError("gone"), 404),
        (PermissionDenied("nope"), 403),
        (ExternalCollaboratorError("blob_store", "put", "timeout"), 502),
        (CertVaultError("other"), 500),
    ],
)
def test_status_for(exc: CertVaultError, expected: int) -> None:
    assert status_for(exc) == expected


def test_external_error_message_names_collaborator() -> None:
    exc = ExternalCollaboratorError("ledger", "anchor", "connection refused")
    assert str(exc) == "ledger anchor failed: connection refused"
